"""Event ordering: frame calculation, root bookkeeping and Atropos election."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional, Protocol

from lachesis.election import Election, ValidatorSet
from lachesis.event import Event
from lachesis.event_hash import EventHash
from lachesis.store import FIRST_FRAME, Genesis, LastDecidedState, Store


class EventSource(Protocol):
    """Access to events kept in an external storage."""

    def has_event(self, event_hash: EventHash) -> bool: ...

    def get_event(self, event_hash: EventHash) -> Optional[Event]: ...


class ForklessCauseIndex(Protocol):
    """The part of the DAG index the orderer needs."""

    def forkless_cause(self, a: EventHash, b: EventHash) -> bool: ...


@dataclass(frozen=True)
class Config:
    """Orderer settings.

    ``suppress_frame_panic`` accepts events whose claimed frame differs from
    the calculated one; it is meant only for importing old event files.
    """

    suppress_frame_panic: bool = False


@dataclass
class OrdererCallbacks:
    """``apply_atropos`` returns new validators when the epoch must be sealed."""

    apply_atropos: Optional[Callable[[int, EventHash], Optional[ValidatorSet]]] = None
    epoch_db_loaded: Optional[Callable[[int], None]] = None


class WrongFrameError(ValueError):
    """Raised when an event claims a frame other than the calculated one."""

    def __init__(self) -> None:
        super().__init__("claimed frame mismatched with calculated")


def _quorum(validators: ValidatorSet) -> int:
    return validators.total_weight * 2 // 3 + 1


class Orderer:
    """Reaches finality on the order of events; does no DAG indexing of its own."""

    def __init__(
        self,
        store: Store,
        source: EventSource,
        dag_index: ForklessCauseIndex,
        config: Optional[Config] = None,
    ) -> None:
        self.store = store
        self.source = source
        self.dag_index = dag_index
        self.config = config or Config()
        self.election: Optional[Election] = None
        self.callbacks = OrdererCallbacks()

    # --- bootstrap and reset ------------------------------------------------

    def bootstrap(self, callbacks: OrdererCallbacks) -> None:
        """Restore the election state from the store and replay undecided roots."""
        if self.election is not None:
            raise RuntimeError("already bootstrapped")
        self.callbacks = callbacks
        self.store.open_epoch_db(self.store.epoch)
        if self.callbacks.epoch_db_loaded is not None:
            self.callbacks.epoch_db_loaded(self.store.epoch)
        self.election = Election(
            self.store.last_decided_frame + 1,
            self.store.validators,
            self.dag_index.forkless_cause,
            self.store.get_frame_roots,
        )
        self._bootstrap_election()

    def reset(self, epoch: int, validators: ValidatorSet) -> None:
        """Switch to a new, empty epoch."""
        self.store.switch_genesis(Genesis(epoch=epoch, validators=validators))
        self._reset_epoch_store(epoch)
        if self.callbacks.epoch_db_loaded is not None:
            self.callbacks.epoch_db_loaded(self.store.epoch)
        self._require_election().reset_epoch(FIRST_FRAME, validators)

    # --- event processing ---------------------------------------------------

    def build(self, event: Event) -> None:
        """Fill in the event's frame."""
        if event.epoch != self.store.epoch:
            raise ValueError("event has wrong epoch")
        if event.creator not in self.store.validators.sorted_ids:
            raise ValueError("event wasn't created by an existing validator")
        _, frame = self._calc_frame_idx(event)
        event.frame = frame

    def process(self, event: Event) -> None:
        """Take an event into processing; parents must be processed first."""
        self_parent_frame = self._check_and_save_event(event)
        if self_parent_frame == event.frame:
            return
        self._handle_election(event)

    def process_local_event(self, event: Event) -> None:
        """Process an event whose frame was calculated locally."""
        if self._self_parent_frame(event) == event.frame:
            return
        self.store.add_root(event)
        self._handle_election(event)

    def _check_and_save_event(self, event: Event) -> int:
        self_parent_frame, frame = self._calc_frame_idx(event)
        if not self.config.suppress_frame_panic and event.frame != frame:
            raise WrongFrameError()
        if self_parent_frame != frame:
            self.store.add_root(event)
        return self_parent_frame

    def _require_election(self) -> Election:
        if self.election is None:
            raise RuntimeError("orderer is not bootstrapped")
        return self.election

    def _handle_election(self, root: Event) -> None:
        decisions = self._require_election().vote_and_aggregate(root.frame, root.creator, root.id)
        for decision in decisions:
            if self._on_frame_decided(decision.frame, decision.atropos_hash):
                return

    def _bootstrap_election(self) -> None:
        election = self._require_election()
        frame = self.store.last_decided_frame + 1
        while True:
            roots = self.store.get_frame_roots(frame)
            if not roots:
                return
            for root in roots:
                for decision in election.vote_and_aggregate(frame, root.validator_id, root.root_hash):
                    if self._on_frame_decided(decision.frame, decision.atropos_hash):
                        return
            frame += 1

    # --- frames -------------------------------------------------------------

    def _get_event(self, event_hash: EventHash) -> Event:
        event = self.source.get_event(event_hash)
        if event is None:
            raise LookupError(f"event not found {event_hash}")
        return event

    def _forkless_caused_by_quorum_on(self, event: Event, frame: int) -> bool:
        """True if the event is forkless caused by 2/3W roots of ``frame``."""
        validators = self.store.validators
        weights = {vid: validators.weight_by_idx(i) for i, vid in enumerate(validators.sorted_ids)}
        quorum = _quorum(validators)
        counted: set[int] = set()
        observed = 0
        for root in self.store.get_frame_roots(frame):
            if root.validator_id not in counted and self.dag_index.forkless_cause(event.id, root.root_hash):
                counted.add(root.validator_id)
                observed += weights.get(root.validator_id, 0)
            if observed >= quorum:
                return True
        return observed >= quorum

    def _calc_frame_idx(self, event: Event) -> tuple[int, int]:
        """Return the self-parent's frame and the event's frame."""
        self_parent = event.self_parent()
        if self_parent is None:
            return 0, 1
        self_parent_frame = self._get_event(self_parent).frame
        frame = max([self_parent_frame, *(self._get_event(p).frame for p in event.parents)])
        if self._forkless_caused_by_quorum_on(event, frame):
            frame += 1
        return self_parent_frame, frame

    def _self_parent_frame(self, event: Event) -> int:
        self_parent = event.self_parent()
        if self_parent is None:
            return 0
        return self._get_event(self_parent).frame

    # --- decided frames -----------------------------------------------------

    def _on_frame_decided(self, frame: int, atropos: EventHash) -> bool:
        """Record a decided frame; returns True if the epoch was sealed."""
        new_validators = None
        if self.callbacks.apply_atropos is not None:
            new_validators = self.callbacks.apply_atropos(frame, atropos)

        if new_validators is not None:
            self._seal_epoch(new_validators)
            self._require_election().reset_epoch(FIRST_FRAME, new_validators)
            self.store.last_decided_state = LastDecidedState(last_decided_frame=FIRST_FRAME - 1)
            return True
        self.store.last_decided_state = LastDecidedState(last_decided_frame=frame)
        return False

    def _reset_epoch_store(self, new_epoch: int) -> None:
        self.store.drop_epoch_db()
        self.store.open_epoch_db(new_epoch)
        if self.callbacks.epoch_db_loaded is not None:
            self.callbacks.epoch_db_loaded(new_epoch)

    def _seal_epoch(self, new_validators: ValidatorSet) -> None:
        state = self.store.epoch_state
        state = dataclasses.replace(state, epoch=state.epoch + 1, validators=new_validators)
        self.store.epoch_state = state
        self._reset_epoch_store(state.epoch)

    # --- traversal ----------------------------------------------------------

    def dfs_subgraph(self, head: EventHash, accept: Callable[[Event], bool]) -> None:
        """Walk the events observed by ``head`` that ``accept`` lets through.

        ``accept`` may be called more than once for the same event.
        """
        stack = [head]
        while stack:
            event = self._get_event(stack.pop())
            if not accept(event):
                continue
            stack.extend(event.parents)