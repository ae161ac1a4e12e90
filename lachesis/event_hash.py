"""Event hashes, the human-readable name registries and hashing helpers."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable

HASH_LENGTH = 32
_EPOCH_END = 4
_LAMPORT_END = 8

_event_names: dict[bytes, str] = {}
_node_names: dict[int, str] = {}


def uint32_bytes(value: int) -> bytes:
    """Return ``value`` as 4 big-endian bytes."""
    if not 0 <= value <= 0xFFFFFFFF:
        raise ValueError(f"value {value} does not fit into 32 bits")
    return value.to_bytes(4, "big")


class EventHash(bytes):
    """A 32-byte event identifier: epoch (4 bytes), Lamport time (4 bytes), id (24 bytes)."""

    __slots__ = ()

    def __new__(cls, value: bytes | None = None) -> EventHash:
        data = bytes(HASH_LENGTH) if value is None else bytes(value)
        if len(data) != HASH_LENGTH:
            raise ValueError(f"event hash must be {HASH_LENGTH} bytes, got {len(data)}")
        return super().__new__(cls, data)

    @classmethod
    def from_raw(cls, raw: bytes) -> EventHash:
        """Build a hash from bytes, cropping from the left or zero-padding on the left."""
        data = bytes(raw)[-HASH_LENGTH:] if raw else b""
        return cls(data.rjust(HASH_LENGTH, b"\x00"))

    @classmethod
    def from_hex(cls, text: str) -> EventHash:
        """Build a hash from a hex string, with or without a ``0x`` prefix."""
        if text[:2] in ("0x", "0X"):
            text = text[2:]
        if len(text) % 2:
            text = "0" + text
        return cls.from_raw(bytes.fromhex(text))

    def epoch(self) -> int:
        """The epoch stored in bytes [0:4]."""
        return int.from_bytes(self[:_EPOCH_END], "big")

    def lamport(self) -> int:
        """The Lamport time stored in bytes [4:8]."""
        return int.from_bytes(self[_EPOCH_END:_LAMPORT_END], "big")

    def short_id(self, precision: int) -> str:
        """A readable id: the registered name, or ``epoch:lamport:hexprefix``."""
        name = get_event_name(self)
        if name:
            return name
        tail = self[_LAMPORT_END:_LAMPORT_END + precision].hex()
        return f"{self.epoch()}:{self.lamport()}:{tail}"

    def full_id(self) -> str:
        """A readable id carrying every byte of the hash."""
        return self.short_id(HASH_LENGTH - _LAMPORT_END)

    def is_zero(self) -> bool:
        return not any(self)

    def __str__(self) -> str:
        return self.short_id(3)

    def __repr__(self) -> str:
        return f"EventHash(0x{bytes(self).hex()})"


ZERO_EVENT_HASH = EventHash()


def hash_of(*args: bytes) -> EventHash:
    """SHA-256 of the concatenation of all given byte strings."""
    digest = hashlib.sha256()
    for part in args:
        digest.update(part)
    return EventHash(digest.digest())


def set_event_name(event_hash: bytes, name: str) -> None:
    _event_names[bytes(event_hash)] = name


def get_event_name(event_hash: bytes) -> str:
    return _event_names.get(bytes(event_hash), "")


def set_node_name(validator_id: int, name: str) -> None:
    _node_names[validator_id] = name


def get_node_name(validator_id: int) -> str:
    return _node_names.get(validator_id, "")


def hashes_to_str(hashes: Iterable[EventHash]) -> str:
    """Render hashes as ``[a, b, ...]`` using their short ids."""
    return "[" + ", ".join(str(h) for h in hashes) + "]"