"""A min-heap of Atropos decisions ordered by frame."""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from itertools import count

from lachesis.event_hash import EventHash


@dataclass(frozen=True)
class AtroposDecision:
    """The Atropos elected for a frame."""

    frame: int
    atropos_hash: EventHash


class AtroposHeap:
    """Buffer of decided Atropoi, delivered in contiguous frame order."""

    def __init__(self) -> None:
        self._entries: list[tuple[int, int, AtroposDecision]] = []
        self._counter = count()

    def push(self, decision: AtroposDecision) -> None:
        heapq.heappush(self._entries, (decision.frame, next(self._counter), decision))

    def pop(self) -> AtroposDecision:
        """Remove and return the decision with the lowest frame."""
        if not self._entries:
            raise IndexError("pop from an empty atropos heap")
        return heapq.heappop(self._entries)[2]

    def __len__(self) -> int:
        return len(self._entries)

    def delivery_ready(self, frame_to_deliver: int) -> list[AtroposDecision]:
        """Pop the contiguous run of decisions starting at ``frame_to_deliver``.

        With frames [100, 101, 104] buffered and 100 to deliver, 100 and 101
        are returned and 104 stays buffered.
        """
        ready = []
        while self._entries and self._entries[0][0] == frame_to_deliver:
            ready.append(self.pop())
            frame_to_deliver += 1
        return ready