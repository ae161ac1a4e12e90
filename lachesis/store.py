"""Persistent consensus state: epoch state, last decided frame, roots and confirmations."""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable, Iterator, MutableMapping
from dataclasses import dataclass
from typing import Any, Optional

from lachesis.event import Event
from lachesis.event_hash import EventHash, uint32_bytes

FIRST_FRAME = 1

_FRAME_SIZE = 4
_VALIDATOR_ID_SIZE = 4
_EVENT_ID_SIZE = 32
_ROOT_KEY_SIZE = _FRAME_SIZE + _VALIDATOR_ID_SIZE + _EVENT_ID_SIZE

_DS_KEY = b"d"
_ES_KEY = b"e"

EpochDBProducer = Callable[[int], MutableMapping]


class NoGenesisError(LookupError):
    """Raised when state is read from a store that has no genesis applied."""

    def __init__(self) -> None:
        super().__init__("genesis not applied")


@dataclass(frozen=True)
class StoreConfig:
    """Cache limits: total number of cached roots and number of cached frames."""

    roots_num: int = 1000
    roots_frames: int = 100


def default_store_config(scale: Optional[Callable[[int], int]] = None) -> StoreConfig:
    """Configuration for live use, with every cache size passed through ``scale``."""
    if scale is None:
        def scale(value: int) -> int:
            return value
    return StoreConfig(roots_num=scale(1000), roots_frames=scale(100))


def lite_store_config() -> StoreConfig:
    """Small configuration for tests and in-memory use."""
    return default_store_config(lambda value: value * 1 // 20)


@dataclass(frozen=True)
class Genesis:
    epoch: int
    validators: Any


@dataclass(frozen=True)
class EpochState:
    """Values that change only when the epoch changes."""

    epoch: int
    validators: Any

    def __str__(self) -> str:
        return f"{self.epoch}/{self.validators}"


@dataclass(frozen=True)
class LastDecidedState:
    """Values that change only after a frame is decided."""

    last_decided_frame: int


@dataclass(frozen=True)
class RootDescriptor:
    validator_id: int
    root_hash: EventHash


class _Table(MutableMapping):
    """A view of a key-value mapping restricted to keys starting with a prefix."""

    def __init__(self, db: MutableMapping, prefix: bytes) -> None:
        self._db = db
        self._prefix = prefix

    def __getitem__(self, key: bytes) -> Any:
        return self._db[self._prefix + key]

    def __setitem__(self, key: bytes, value: Any) -> None:
        self._db[self._prefix + key] = value

    def __delitem__(self, key: bytes) -> None:
        del self._db[self._prefix + key]

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.keys_with_prefix(b""))

    def __len__(self) -> int:
        return sum(1 for key in self._db if key.startswith(self._prefix))

    def keys_with_prefix(self, prefix: bytes) -> list[bytes]:
        """Keys (without the table prefix) that start with ``prefix``, in byte order."""
        full = self._prefix + prefix
        cut = len(self._prefix)
        return [key[cut:] for key in sorted(k for k in self._db if k.startswith(full))]


class _WeightedLRU:
    """LRU cache bounded both by total weight and by number of entries."""

    def __init__(self, max_weight: int, max_size: int) -> None:
        self._max_weight = max_weight
        self._max_size = max_size
        self._items: OrderedDict[Any, tuple[Any, int]] = OrderedDict()
        self._weight = 0

    def get(self, key: Any) -> Optional[Any]:
        if key not in self._items:
            return None
        self._items.move_to_end(key)
        return self._items[key][0]

    def add(self, key: Any, value: Any, weight: int) -> None:
        if key in self._items:
            self._weight -= self._items.pop(key)[1]
        self._items[key] = (value, weight)
        self._weight += weight
        while self._items and (self._weight > self._max_weight or len(self._items) > self._max_size):
            _, (_, evicted_weight) = self._items.popitem(last=False)
            self._weight -= evicted_weight

    def purge(self) -> None:
        self._items.clear()
        self._weight = 0


def _root_record_key(frame: int, root: RootDescriptor) -> bytes:
    return uint32_bytes(frame) + uint32_bytes(root.validator_id) + bytes(root.root_hash)


class Store:
    """Consensus storage over an in-memory main database and per-epoch databases."""

    def __init__(
        self,
        get_epoch_db: Optional[EpochDBProducer] = None,
        config: Optional[StoreConfig] = None,
    ) -> None:
        self.get_epoch_db: EpochDBProducer = get_epoch_db or (lambda epoch: {})
        self.config = config or lite_store_config()
        self.main_db: dict = {}
        self._last_decided_table: Optional[_Table] = _Table(self.main_db, b"c")
        self._epoch_state_table: Optional[_Table] = _Table(self.main_db, b"e")
        self._cached_last_decided: Optional[LastDecidedState] = None
        self._cached_epoch_state: Optional[EpochState] = None
        self._frame_roots = _WeightedLRU(self.config.roots_num, self.config.roots_frames)

        self.epoch_db: Optional[MutableMapping] = None
        self.roots_table: Optional[_Table] = None
        self.vector_index_table: Optional[_Table] = None
        self.confirmed_event_table: Optional[_Table] = None

    # --- database lifecycle -------------------------------------------------

    def close(self) -> None:
        """Leave the underlying databases; the store is unusable afterwards."""
        self._last_decided_table = None
        self._epoch_state_table = None
        self._cached_last_decided = None
        self._cached_epoch_state = None
        self._frame_roots.purge()
        self.roots_table = None
        self.vector_index_table = None
        self.confirmed_event_table = None

    def drop_epoch_db(self) -> None:
        """Drop the contents of the current epoch database, if one is open."""
        if self.epoch_db is not None:
            self.epoch_db.clear()
        self.epoch_db = None
        self.roots_table = None
        self.vector_index_table = None
        self.confirmed_event_table = None

    def open_epoch_db(self, epoch: int) -> None:
        """Open the database of ``epoch`` and clear the roots cache."""
        self._frame_roots.purge()
        self.epoch_db = self.get_epoch_db(epoch)
        self.roots_table = _Table(self.epoch_db, b"r")
        self.vector_index_table = _Table(self.epoch_db, b"v")
        self.confirmed_event_table = _Table(self.epoch_db, b"C")

    def _main_table(self, table: Optional[_Table]) -> _Table:
        if table is None:
            raise RuntimeError("store is closed")
        return table

    def _epoch_table(self, table: Optional[_Table]) -> _Table:
        if table is None:
            raise RuntimeError("epoch database is not open")
        return table

    # --- genesis ------------------------------------------------------------

    def apply_genesis(self, genesis: Optional[Genesis]) -> None:
        """Apply the genesis state; fails if a genesis was already applied."""
        if _DS_KEY in self._main_table(self._last_decided_table):
            raise ValueError("genesis already applied")
        self.switch_genesis(genesis)

    def switch_genesis(self, genesis: Optional[Genesis]) -> None:
        """Replace the epoch and decided states with those of ``genesis``."""
        if genesis is None:
            raise ValueError("genesis config shouldn't be nil")
        if len(genesis.validators) == 0:
            raise ValueError("genesis validators shouldn't be empty")
        self.epoch_state = EpochState(epoch=genesis.epoch, validators=genesis.validators)
        self.last_decided_state = LastDecidedState(last_decided_frame=FIRST_FRAME - 1)

    # --- epoch state --------------------------------------------------------

    @property
    def epoch_state(self) -> EpochState:
        if self._cached_epoch_state is not None:
            return self._cached_epoch_state
        state = self._main_table(self._epoch_state_table).get(_ES_KEY)
        if state is None:
            raise NoGenesisError()
        self._cached_epoch_state = state
        return state

    @epoch_state.setter
    def epoch_state(self, state: EpochState) -> None:
        self._main_table(self._epoch_state_table)[_ES_KEY] = state
        self._cached_epoch_state = state

    @property
    def epoch(self) -> int:
        return self.epoch_state.epoch

    @property
    def validators(self) -> Any:
        return self.epoch_state.validators

    # --- last decided state -------------------------------------------------

    @property
    def last_decided_state(self) -> LastDecidedState:
        if self._cached_last_decided is not None:
            return self._cached_last_decided
        state = self._main_table(self._last_decided_table).get(_DS_KEY)
        if state is None:
            raise NoGenesisError()
        self._cached_last_decided = state
        return state

    @last_decided_state.setter
    def last_decided_state(self, state: LastDecidedState) -> None:
        self._main_table(self._last_decided_table)[_DS_KEY] = state
        self._cached_last_decided = state

    @property
    def last_decided_frame(self) -> int:
        return self.last_decided_state.last_decided_frame

    # --- roots --------------------------------------------------------------

    def add_root(self, root: Event) -> None:
        """Store ``root`` under its frame."""
        frame = root.frame
        descriptor = RootDescriptor(validator_id=root.creator, root_hash=EventHash(root.id))
        self._epoch_table(self.roots_table)[_root_record_key(frame, descriptor)] = b""
        cached = self._frame_roots.get(frame)
        if cached is not None:
            roots = [*cached, descriptor]
            self._frame_roots.add(frame, roots, len(roots))

    def get_frame_roots(self, frame: int) -> list[RootDescriptor]:
        """All roots stored for ``frame``."""
        cached = self._frame_roots.get(frame)
        if cached is not None:
            return list(cached)
        table = self._epoch_table(self.roots_table)
        roots = []
        for key in table.keys_with_prefix(uint32_bytes(frame)):
            if len(key) != _ROOT_KEY_SIZE:
                raise ValueError(f"roots table: incorrect key len={len(key)}")
            validator = key[_FRAME_SIZE:_FRAME_SIZE + _VALIDATOR_ID_SIZE]
            roots.append(
                RootDescriptor(
                    validator_id=int.from_bytes(validator, "big"),
                    root_hash=EventHash.from_raw(key[_FRAME_SIZE + _VALIDATOR_ID_SIZE:]),
                )
            )
        self._frame_roots.add(frame, roots, len(roots))
        return list(roots)

    # --- confirmed events ---------------------------------------------------

    def set_event_confirmed_on(self, event_hash: EventHash, frame: int) -> None:
        """Record the frame on which the event was confirmed."""
        self._epoch_table(self.confirmed_event_table)[bytes(event_hash)] = uint32_bytes(frame)

    def get_event_confirmed_on(self, event_hash: EventHash) -> int:
        """The frame on which the event was confirmed, or 0 if it is not confirmed."""
        raw = self._epoch_table(self.confirmed_event_table).get(bytes(event_hash))
        if raw is None:
            return 0
        return int.from_bytes(raw, "big")