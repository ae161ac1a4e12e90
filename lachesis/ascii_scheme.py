"""Drawing event DAGs as ASCII schemes and building DAGs from such schemes."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from lachesis.event import BaseEvent, Event
from lachesis.event_hash import (
    EventHash,
    get_event_name,
    get_node_name,
    hash_of,
    set_event_name,
    set_node_name,
)

_ID_TAIL_LENGTH = 24
_FILLERS = re.compile("[ ─═]+")


# --- serialization ------------------------------------------------------------


def _rlp_prefix(length: int, offset: int) -> bytes:
    if length <= 55:
        return bytes([offset + length])
    encoded = length.to_bytes((length.bit_length() + 7) // 8, "big")
    return bytes([offset + 55 + len(encoded)]) + encoded


def _rlp(item: Any) -> bytes:
    """Recursive length prefix encoding of byte strings, integers, strings and lists."""
    if isinstance(item, list):
        payload = b"".join(_rlp(x) for x in item)
        return _rlp_prefix(len(payload), 0xC0) + payload
    if isinstance(item, str):
        data = item.encode()
    elif isinstance(item, int):
        if item < 0:
            raise ValueError("cannot encode a negative integer")
        data = item.to_bytes((item.bit_length() + 7) // 8, "big")
    else:
        data = bytes(item)
    if len(data) == 1 and data[0] < 0x80:
        return data
    return _rlp_prefix(len(data), 0x80) + data


@dataclass
class DagEvent(BaseEvent):
    """A named event used to build and draw DAGs."""

    name: str = ""

    def to_bytes(self) -> bytes:
        """The event's fields in recursive length prefix encoding."""
        return _rlp(
            [
                self.epoch,
                self.seq,
                self.frame,
                self.creator,
                [bytes(p) for p in self.parents],
                self.lamport,
                bytes(self.id),
                self.name,
            ]
        )

    def add_parent(self, event_hash: EventHash) -> None:
        self.parents = [*self.parents, event_hash]


def calc_hash(event: DagEvent) -> bytes:
    """The 24-byte id tail of a fully built event: a prefix of its SHA-256."""
    return hashlib.sha256(event.to_bytes()).digest()[:_ID_TAIL_LENGTH]


# --- parsing ------------------------------------------------------------------


@dataclass
class ForEachEvent:
    """Callbacks run while events are created.

    ``build`` runs before the event gets its id; if it raises, the event is
    skipped. ``process`` runs for every event that was kept.
    """

    process: Optional[Callable[[DagEvent, str], None]] = None
    build: Optional[Callable[[DagEvent, str], None]] = None


def _extend(refs: list[int], col: int) -> None:
    refs.extend([0] * (col + 1 - len(refs)))


def ascii_scheme_for_each(
    scheme: str, callback: ForEachEvent
) -> tuple[list[int], dict[int, list[DagEvent]], dict[str, DagEvent]]:
    """Parse events from an ASCII scheme.

    Joiners ║ ╬ ╠ ╣ ╫ ╚ ╝ ╩ and the optional fillers ─ ═ draw the scheme.
    Returns the validator ids by column, each validator's events and the
    events by name.
    """
    nodes: list[int] = []
    events: dict[int, list[DagEvent]] = {}
    names: dict[str, DagEvent] = {}
    cur_far_refs: dict[int, int] = {}

    for line in scheme.strip().split("\n"):
        n_names: list[str] = []
        n_creators: list[int] = []
        n_links: list[list[int]] = []
        prev_ref = 0
        prev_far_refs, cur_far_refs = cur_far_refs, {}

        col = 0
        for raw in _FILLERS.split(line.strip()):
            if not raw:
                continue
            symbol = raw.strip()
            if symbol.startswith("//"):
                break

            if symbol == "":
                col -= 1
            elif symbol in ("╠", "║╠", "╠╫"):
                refs = [0] * (col + 1)
                refs[col] = 1
                n_links.append(refs)
            elif symbol in ("║╚", "╚"):
                refs = [0] * (col + 1)
                refs[col] = prev_far_refs.get(col, 2)
                n_links.append(refs)
            elif symbol in ("╣", "╣║", "╫╣", "╬"):
                _extend(n_links[-1], col)
                n_links[-1][col] = 1
            elif symbol in ("╝║", "╝", "╩╫", "╫╩"):
                _extend(n_links[-1], col)
                n_links[-1][col] = prev_far_refs.get(col, 2)
            elif symbol in ("╫", "║", "║║"):
                pass
            elif symbol.startswith("║") or symbol.endswith("║"):
                cur_far_refs[col] = int(symbol.strip("║"))
            else:
                if symbol in names:
                    raise ValueError(f"event '{symbol}' already exists")
                n_creators.append(col)
                n_names.append(symbol)
                if len(n_links) < len(n_names):
                    n_links.append([0] * (col + 1))

            if symbol not in ("╚", "╝"):
                col += 1
            elif col in prev_far_refs:
                prev_ref = prev_far_refs[col] - 1
            else:
                prev_ref = 1

        for name, creator_col, links in zip(n_names, n_creators, n_links):
            if len(nodes) <= creator_col:
                validator = int.from_bytes(hash_of(name.encode())[:4], "big")
                nodes.append(validator)
                events[validator] = []
            creator = nodes[creator_col]

            own = events[creator]
            last = len(own) - prev_ref - 1
            parents: list[EventHash] = []
            if last >= 0:
                self_parent = own[last]
                seq = self_parent.seq + 1
                parents.append(self_parent.id)
                max_lamport = self_parent.lamport
            else:
                seq = 1
                max_lamport = 0

            for other_col, ref in enumerate(links):
                if ref < 1:
                    continue
                others = events[nodes[other_col]]
                index = len(others) - ref
                # a fork of the very first event has no parents
                if index < 0:
                    break
                parent = others[index]
                if parent.id in parents:
                    continue
                parents.append(parent.id)
                max_lamport = max(max_lamport, parent.lamport)

            event = DagEvent(seq=seq, creator=creator, parents=parents, lamport=max_lamport + 1, name=name)
            if callback.build is not None:
                try:
                    callback.build(event, name)
                except Exception:
                    continue
            event.set_id(calc_hash(event))
            own.append(event)
            names[name] = event
            set_event_name(event.id, name)
            if callback.process is not None:
                callback.process(event, name)

    for node, node_events in events.items():
        if not node_events:
            continue
        first_name = str(node_events[0].id)
        if first_name.startswith("node"):
            set_node_name(node, "node" + first_name[4:5].upper())
        else:
            set_node_name(node, "node" + first_name[0:1].upper())

    return nodes, events, names


def ascii_scheme_to_dag(
    scheme: str,
) -> tuple[list[int], dict[int, list[DagEvent]], dict[str, DagEvent]]:
    """Parse events from an ASCII scheme without callbacks."""
    return ascii_scheme_for_each(scheme, ForEachEvent())


# --- ordering -----------------------------------------------------------------


def by_parents(events: Iterable[Event]) -> list[Event]:
    """The events in topological order: known parents come before their children."""
    unsorted = list(events)
    exists = {e.id for e in unsorted}
    ready: set[EventHash] = set()
    result: list[Event] = []
    while unsorted:
        for position, event in enumerate(unsorted):
            if all(p not in exists or p in ready for p in event.parents):
                result.append(event)
                del unsorted[position]
                ready.add(event.id)
                break
        else:
            raise ValueError("events contain a parent cycle")
    return result


# --- drawing ------------------------------------------------------------------


class _Position(Enum):
    NONE = 0
    PASS = 1
    FIRST = 2
    LEFT = 3
    RIGHT = 4
    LAST = 5


@dataclass
class _Row:
    name: str
    own: int
    refs: list[int] = field(default_factory=list)
    first: int = 0
    last: int = 0

    def position(self, i: int) -> _Position:
        if i < self.own:
            if i < self.first:
                return _Position.NONE
            if i > self.first:
                return _Position.LEFT if self.refs[i] > 0 else _Position.PASS
            return _Position.FIRST
        if i > self.last:
            return _Position.NONE
        if i < self.last:
            if self.refs[i] > 0 or i == self.own:
                return _Position.RIGHT
            return _Position.PASS
        return _Position.LAST


def _nolink(n: int) -> str:
    return " " * n


def _link(n: int) -> str:
    if n < 3:
        return " " * n
    text = "══" * ((n - 1) // 2) + "═"
    if n % 2 == 0:
        text += "═"
    return text


def _lift(rows: list[_Row], curr: int, row: _Row, i_ref: int, ref: int) -> int:
    """Try to move ``row`` up next to the row it far-references; return its new index."""
    prev = curr - 1
    while True:
        if prev < 0:
            raise IndexError("far reference to a missing row")
        if rows[prev].own == i_ref:
            break
        if row.own == rows[prev].own:
            return curr
        prev -= 1

    prev_row = rows[prev]
    row.refs[i_ref] = ref - 1

    if len(prev_row.refs) > row.own:
        if prev_row.refs[row.own] != 1:
            row.refs[i_ref] = ref
            return curr
        prev_row.refs[row.own] += 1

    it = prev + 1
    for p_ref, value in enumerate(prev_row.refs):
        if it == curr:
            break
        if p_ref == prev_row.own or value == 0:
            continue
        if len(rows[it].refs) > prev_row.own:
            row.refs[i_ref] = ref
            return curr
        while True:
            if p_ref == rows[it].own and prev_row.refs[p_ref] < 2:
                prev_row.refs[p_ref] += 1
                it = prev + 1
                break
            if it < curr:
                it += 1
                continue
            it = prev + 1
            break

    if len(prev_row.refs) < len(row.refs):
        prev_row.refs.extend([0] * (len(row.refs) - len(prev_row.refs)))

    rows[curr], rows[prev] = rows[prev], rows[curr]
    return prev


def _optimize(rows: list[_Row]) -> None:
    for curr, row in enumerate(rows):
        for i_ref, ref in enumerate(row.refs):
            if ref < 3:
                continue
            curr = _lift(rows, curr, row, i_ref, ref)


def _first_line(row: _Row, col_width: int) -> str:
    parts = []
    for i, ref in enumerate(row.refs):
        cell = " ║"
        position = row.position(i)
        if ref == 2:
            if position in (_Position.FIRST, _Position.LEFT):
                cell = " ║║"
            elif position in (_Position.RIGHT, _Position.LAST):
                cell = "║║"
        if ref > 2:
            if position in (_Position.FIRST, _Position.LEFT):
                cell = f" ║{ref}"
            elif position in (_Position.RIGHT, _Position.LAST):
                cell = f"{ref}║"
        parts.append(cell + _nolink(col_width - len(cell) + 2))
    return "".join(parts)


def _second_line(row: _Row, col_width: int) -> str:
    parts = []
    for i, ref in enumerate(row.refs):
        position = row.position(i)
        if i == row.own and ref == 0:
            tail = col_width - len(row.name) + 1
            filler = _link(tail) if position is _Position.RIGHT else _nolink(tail)
            parts.append(" " + row.name + filler)
        elif i == row.own and ref > 1:
            tail = col_width - len(row.name)
            if position is _Position.FIRST:
                parts.append(row.name + " ╝" + _link(tail))
            elif position is _Position.LAST:
                parts.append("╚ " + row.name + _nolink(tail))
            else:
                parts.append("╚ " + row.name + _link(tail))
        elif ref > 1:
            parts.append(
                {
                    _Position.FIRST: " ║╚" + _link(col_width - 1),
                    _Position.LAST: "╝║" + _nolink(col_width),
                    _Position.LEFT: "─╫╩" + _link(col_width - 1),
                    _Position.RIGHT: "╩╫─" + _link(col_width - 1),
                    _Position.PASS: "─╫─" + _link(col_width - 1),
                }.get(position, " ║" + _nolink(col_width))
            )
        else:
            parts.append(
                {
                    _Position.FIRST: " ╠" + _link(col_width),
                    _Position.LAST: "═╣" + _nolink(col_width),
                    _Position.LEFT: "═╬" + _link(col_width),
                    _Position.RIGHT: "═╬" + _link(col_width),
                    _Position.PASS: "─╫─" + _link(col_width - 1),
                }.get(position, " ║" + _nolink(col_width))
            )
    return "".join(parts)


def _render(rows: Sequence[_Row], col_width: int) -> str:
    return "".join(
        _first_line(row, col_width) + "\n" + _second_line(row, col_width) + "\n" for row in rows
    )


def dag_to_ascii_scheme(events: Iterable[Event]) -> str:
    """Draw the events as an ASCII scheme that ``ascii_scheme_to_dag`` reads back."""
    ordered = by_parents(events)

    rows: list[_Row] = []
    col_width = 0
    processed: dict[EventHash, Event] = {}
    node_cols: dict[int, int] = {}
    event_index: dict[int, dict[EventHash, int]] = {}
    creator_last_index: dict[int, int] = {}
    seq_count: dict[int, dict[int, int]] = {}

    for event in ordered:
        creator = event.creator
        counts = seq_count.setdefault(creator, {})
        event_index.setdefault(creator, {})
        counts[event.seq] = counts.get(event.seq, 0) + 1
        creator_last_index[creator] = creator_last_index[creator] + 1 if creator in creator_last_index else 0

        ehash = event.id
        own = node_cols.setdefault(creator, len(node_cols))

        name = get_event_name(ehash)
        if not name:
            name = get_node_name(creator) or chr(ord("a") + own)
            name = f"{name}{event.seq:03d}"
        col_width = max(col_width, len(name))

        row = _Row(name=name, own=own, refs=[0] * len(node_cols))
        self_refs = 0
        for parent_hash in event.parents:
            parent = processed.get(parent_hash)
            if parent is None:
                raise ValueError(f"parent {parent_hash} of {ehash} not found")
            if parent.creator == creator:
                self_refs += 1
                # more than one event with this seq is a fork: keep the reference
                if counts[event.seq] == 1:
                    continue
            shift = 1 if parent.creator != creator else 0
            row.refs[node_cols[parent.creator]] = (
                creator_last_index[parent.creator] - event_index[parent.creator][parent.id] + shift
            )
        if (event.seq <= 1 and self_refs != 0) or (event.seq > 1 and self_refs != 1):
            raise ValueError(f"self-parents count of {ehash} is {self_refs}")

        row.first = len(row.refs)
        for i, ref in enumerate(row.refs):
            if ref == 0:
                continue
            row.first = min(row.first, i)
            row.last = max(row.last, i)

        rows.append(row)
        processed[ehash] = event
        event_index[creator][ehash] = creator_last_index[creator]

    _optimize(rows)
    return _render(rows, col_width + 3)