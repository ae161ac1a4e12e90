import random

import pytest

from lachesis.atropos_heap import AtroposDecision, AtroposHeap
from lachesis.event_hash import EventHash


def _hash(i: int) -> EventHash:
    return EventHash(bytes([i]) + bytes(31))


def _decision(frame: int) -> AtroposDecision:
    return AtroposDecision(frame, _hash(frame))


def test_random_push_pop():
    heap = AtroposHeap()
    decisions = [AtroposDecision(i, _hash(i)) for i in range(100)]
    random.shuffle(decisions)
    for decision in decisions:
        heap.push(decision)
    assert len(heap) == 100
    popped = [heap.pop().atropos_hash for _ in range(100)]
    assert popped == [_hash(i) for i in range(100)]
    assert len(heap) == 0


def test_pop_empty_raises():
    with pytest.raises(IndexError):
        AtroposHeap().pop()


def _drain(heap: AtroposHeap) -> list[EventHash]:
    return [heap.pop().atropos_hash for _ in range(len(heap))]


@pytest.mark.parametrize(
    "frames, delivered, remaining",
    [
        ([100, 101, 102], [100, 101, 102], []),
        ([101, 102], [], [101, 102]),
        ([100, 101, 104, 105], [100, 101], [104, 105]),
    ],
)
def test_delivery(frames, delivered, remaining):
    heap = AtroposHeap()
    for frame in frames:
        heap.push(_decision(frame))
    got = heap.delivery_ready(100)
    assert [d.atropos_hash for d in got] == [_hash(f) for f in delivered]
    assert _drain(heap) == [_hash(f) for f in remaining]