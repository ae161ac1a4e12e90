"""Consensus engines that confirm events, detect cheaters and keep the DAG index updated."""

from __future__ import annotations

from collections.abc import Callable, MutableMapping
from typing import Any, Optional, Protocol

from lachesis.election import ValidatorSet
from lachesis.event import Block, ConsensusCallbacks, Event
from lachesis.event_hash import EventHash
from lachesis.orderer import Config, EventSource, ForklessCauseIndex, Orderer, OrdererCallbacks
from lachesis.store import Store

_ID_TAIL_LENGTH = 24


class HighestBefore(Protocol):
    """A merged vector clock of an event, as seen per validator index."""

    def is_fork_detected(self, validator_idx: int) -> bool: ...


class DagIndex(ForklessCauseIndex, Protocol):
    """The DAG index needed for cheater detection."""

    def get_merged_highest_before(self, event_hash: EventHash) -> HighestBefore: ...


class DagIndexer(DagIndex, Protocol):
    """A DAG index that is updated as events are built and processed."""

    def add(self, event: Event) -> None: ...

    def flush(self) -> None: ...

    def drop_not_flushed(self) -> None: ...

    def reset(
        self,
        validators: ValidatorSet,
        db: MutableMapping,
        get_event: Callable[[EventHash], Optional[Event]],
    ) -> None: ...


class Lachesis(Orderer):
    """An orderer that also confirms events of decided blocks and reports cheaters."""

    def __init__(
        self,
        store: Store,
        source: EventSource,
        dag_index: DagIndex,
        config: Optional[Config] = None,
    ) -> None:
        super().__init__(store, source, dag_index, config)
        self.dag_index: DagIndex = dag_index
        self.consensus_callbacks = ConsensusCallbacks()

    def _confirm_events(
        self,
        frame: int,
        atropos: EventHash,
        on_event_confirmed: Optional[Callable[[Event], None]],
    ) -> None:
        def accept(event: Event) -> bool:
            if self.store.get_event_confirmed_on(event.id) != 0:
                return False
            self.store.set_event_confirmed_on(event.id, frame)
            if on_event_confirmed is not None:
                on_event_confirmed(event)
            return True

        self.dfs_subgraph(atropos, accept)

    def _apply_atropos(self, decided_frame: int, atropos: EventHash) -> Optional[Any]:
        clock = self.dag_index.get_merged_highest_before(atropos)
        validators = self.store.validators
        # cheaters are listed in the deterministic validator order
        cheaters = tuple(
            creator
            for idx, creator in enumerate(validators.sorted_ids)
            if clock.is_fork_detected(idx)
        )

        begin_block = self.consensus_callbacks.begin_block
        if begin_block is None:
            return None
        block_callbacks = begin_block(Block(atropos=atropos, cheaters=cheaters))

        self._confirm_events(decided_frame, atropos, block_callbacks.apply_event)

        if block_callbacks.end_block is not None:
            return block_callbacks.end_block()
        return None

    def bootstrap(self, callbacks: ConsensusCallbacks) -> None:  # type: ignore[override]
        """Restore state from the store and start delivering blocks to ``callbacks``."""
        self.bootstrap_with_orderer(callbacks, self.orderer_callbacks())

    def bootstrap_with_orderer(
        self, callbacks: ConsensusCallbacks, orderer_callbacks: OrdererCallbacks
    ) -> None:
        """Bootstrap the orderer with ``orderer_callbacks``, then install ``callbacks``."""
        Orderer.bootstrap(self, orderer_callbacks)
        self.consensus_callbacks = callbacks

    def orderer_callbacks(self) -> OrdererCallbacks:
        return OrdererCallbacks(apply_atropos=self._apply_atropos)


class _UniqueId:
    """Sequential provisional ids for events under construction."""

    def __init__(self) -> None:
        self._counter = 0

    def sample(self) -> bytes:
        self._counter += 1
        raw = self._counter.to_bytes((self._counter.bit_length() + 7) // 8, "big")
        return raw[:_ID_TAIL_LENGTH].ljust(_ID_TAIL_LENGTH, b"\x00")


class IndexedLachesis(Lachesis):
    """A Lachesis engine that keeps its DAG index in step with the events it sees."""

    def __init__(
        self,
        store: Store,
        source: EventSource,
        dag_indexer: DagIndexer,
        config: Optional[Config] = None,
    ) -> None:
        super().__init__(store, source, dag_indexer, config)
        self.dag_indexer = dag_indexer
        self._unique_dirty_id = _UniqueId()

    def build(self, event: Event) -> None:
        """Give the event a provisional id and fill in its frame."""
        event.set_id(self._unique_dirty_id.sample())  # type: ignore[attr-defined]
        try:
            self.dag_indexer.add(event)
            super().build(event)
        finally:
            self.dag_indexer.drop_not_flushed()

    def process(self, event: Event) -> None:
        """Index the event and take it into processing; parents must come first."""
        try:
            self.dag_indexer.add(event)
            super().process(event)
            self.dag_indexer.flush()
        finally:
            self.dag_indexer.drop_not_flushed()

    def bootstrap(self, callbacks: ConsensusCallbacks) -> None:  # type: ignore[override]
        """Bootstrap, resetting the DAG index whenever an epoch database is loaded."""
        base = self.orderer_callbacks()

        def epoch_db_loaded(epoch: int) -> None:
            if base.epoch_db_loaded is not None:
                base.epoch_db_loaded(epoch)
            self.dag_indexer.reset(
                self.store.validators,
                self.store.vector_index_table,
                self.source.get_event,
            )

        self.bootstrap_with_orderer(
            callbacks,
            OrdererCallbacks(apply_atropos=base.apply_atropos, epoch_db_loaded=epoch_db_loaded),
        )