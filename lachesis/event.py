"""Base consensus events, blocks and the callbacks used during block processing."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Optional, Protocol

from lachesis.event_hash import ZERO_EVENT_HASH, EventHash, hashes_to_str, uint32_bytes

ID_TAIL_LENGTH = 24


class Event(Protocol):
    """What the consensus engine needs from an event."""

    epoch: int
    seq: int
    frame: int
    creator: int
    lamport: int
    parents: list[EventHash]
    id: EventHash

    def self_parent(self) -> Optional[EventHash]: ...

    def size(self) -> int: ...


@dataclass
class BaseEvent:
    """A consensus message without payload or signature; applications extend it."""

    epoch: int = 0
    seq: int = 0
    frame: int = 0
    creator: int = 0
    parents: list[EventHash] = field(default_factory=list)
    lamport: int = 0
    id: EventHash = ZERO_EVENT_HASH

    def set_id(self, rid: bytes) -> None:
        """Set the id from a 24-byte tail, prefixed with the epoch and Lamport time."""
        rid = bytes(rid)
        if len(rid) != ID_TAIL_LENGTH:
            raise ValueError(f"id tail must be {ID_TAIL_LENGTH} bytes, got {len(rid)}")
        self.id = EventHash(uint32_bytes(self.epoch) + uint32_bytes(self.lamport) + rid)

    def self_parent(self) -> Optional[EventHash]:
        """The event's self-parent, if it has one."""
        if self.seq <= 1 or not self.parents:
            return None
        return self.parents[0]

    def is_self_parent(self, event_hash: EventHash) -> bool:
        parent = self.self_parent()
        return parent is not None and parent == event_hash

    def size(self) -> int:
        return 4 + 4 + 4 + 4 + len(self.parents) * 32 + 4 + 32

    def __str__(self) -> str:
        return (
            f"{{id={self.id.short_id(3)}, p={hashes_to_str(self.parents)}, "
            f"by={self.creator}, frame={self.frame}}}"
        )


@dataclass(frozen=True)
class Block:
    """A decided Atropos together with the cheaters it observes."""

    atropos: EventHash
    cheaters: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "cheaters", tuple(self.cheaters))


@dataclass
class BlockCallbacks:
    """Per-block callbacks: ``apply_event`` per confirmed event, ``end_block`` at the end.

    ``end_block`` returns the validators of a new epoch when the epoch must be
    sealed after this block, or None otherwise.
    """

    apply_event: Optional[Callable[[Event], None]] = None
    end_block: Optional[Callable[[], object]] = None


@dataclass
class ConsensusCallbacks:
    """Callbacks called by the consensus engine during block processing."""

    begin_block: Optional[Callable[[Block], BlockCallbacks]] = None


def events_to_str(events: Iterable[Event]) -> str:
    return " ".join(str(e) for e in events)


def event_ids(events: Iterable[Event]) -> list[EventHash]:
    return [e.id for e in events]


def events_size(events: Sequence[Event]) -> int:
    """Total encoded size of the events."""
    return sum(e.size() for e in events)