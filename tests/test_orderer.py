from __future__ import annotations

from dataclasses import dataclass

import pytest

from lachesis.event import BaseEvent
from lachesis.event_hash import hash_of
from lachesis.orderer import Config, Orderer, OrdererCallbacks, WrongFrameError
from lachesis.store import FIRST_FRAME, Genesis, Store

VALIDATOR_IDS = (1, 2, 3, 4)


@dataclass
class _Validators:
    weights: dict

    @property
    def sorted_ids(self):
        return sorted(self.weights)

    @property
    def total_weight(self):
        return sum(self.weights.values())

    def __len__(self):
        return len(self.weights)

    def weight_by_idx(self, idx):
        return self.weights[self.sorted_ids[idx]]


class _Source:
    def __init__(self):
        self.events = {}

    def add(self, event):
        self.events[event.id] = event

    def has_event(self, event_hash):
        return event_hash in self.events

    def get_event(self, event_hash):
        return self.events.get(event_hash)


class _Dag:
    """Ancestry stands in for forkless causality."""

    def __init__(self):
        self.parents = {}

    def add(self, event):
        self.parents[event.id] = list(event.parents)

    def forkless_cause(self, a, b):
        seen = set()
        stack = [a]
        while stack:
            current = stack.pop()
            if current == b:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.parents.get(current, []))
        return False


class _Net:
    def __init__(self, config=None, get_epoch_db=None, genesis=True):
        self.validators = _Validators({v: 1 for v in VALIDATOR_IDS})
        self.store = Store(get_epoch_db=get_epoch_db)
        if genesis:
            self.store.apply_genesis(Genesis(epoch=1, validators=self.validators))
        self.source = _Source()
        self.dag = _Dag()
        self.orderer = Orderer(self.store, self.source, self.dag, config)
        self.decided = []
        self.loaded = []
        self.seal_with = None

    def _apply(self, frame, atropos):
        self.decided.append((frame, atropos))
        return self.seal_with

    def bootstrap(self):
        self.orderer.bootstrap(
            OrdererCallbacks(apply_atropos=self._apply, epoch_db_loaded=self.loaded.append)
        )

    def submit(self, event):
        self.dag.add(event)
        self.orderer.build(event)
        self.source.add(event)
        self.orderer.process(event)


def _event(creator, seq, parents, lamport, epoch=1):
    event = BaseEvent(epoch=epoch, seq=seq, creator=creator, parents=list(parents), lamport=lamport)
    event.set_id(hash_of(f"{epoch}/{creator}/{seq}".encode())[:24])
    return event


def _full_mesh(rounds, epoch=1):
    prev = {}
    for r in range(1, rounds + 1):
        current = {}
        for v in VALIDATOR_IDS:
            parents = [prev[v].id] if v in prev else []
            parents += [prev[o].id for o in VALIDATOR_IDS if o != v and o in prev]
            event = _event(v, r, parents, r, epoch)
            current[v] = event
            yield event
        prev = current


@pytest.fixture
def net():
    n = _Net()
    n.bootstrap()
    return n


def test_genesis_events_are_roots_of_first_frame(net):
    events = list(_full_mesh(1))
    for e in events:
        net.submit(e)
    assert all(e.frame == FIRST_FRAME for e in events)
    roots = net.store.get_frame_roots(FIRST_FRAME)
    assert {r.root_hash for r in roots} == {e.id for e in events}
    assert {r.validator_id for r in roots} == set(VALIDATOR_IDS)


def test_frames_follow_rounds_in_full_mesh(net):
    events = list(_full_mesh(4))
    for e in events:
        net.submit(e)
    assert all(e.frame == e.seq for e in events)


def test_atropoi_are_decided_in_frame_order(net):
    events = list(_full_mesh(6))
    for e in events:
        net.submit(e)
    frames = [frame for frame, _ in net.decided]
    assert frames
    assert frames == list(range(FIRST_FRAME, FIRST_FRAME + len(frames)))
    assert net.store.last_decided_frame == frames[-1]
    for frame, atropos in net.decided:
        assert atropos in {e.id for e in events if e.frame == frame}


def test_non_root_event_is_not_stored_as_root(net):
    first_round = list(_full_mesh(1))
    for e in first_round:
        net.submit(e)
    lonely = _event(1, 2, [first_round[0].id], 2)
    net.submit(lonely)
    assert lonely.frame == FIRST_FRAME
    roots = {r.root_hash for r in net.store.get_frame_roots(FIRST_FRAME)}
    assert roots == {e.id for e in first_round}


def test_process_local_event_stores_roots_only(net):
    event = _event(1, 1, [], 1)
    net.dag.add(event)
    net.orderer.build(event)
    net.source.add(event)
    net.orderer.process_local_event(event)
    follower = _event(1, 2, [event.id], 2)
    net.dag.add(follower)
    net.orderer.build(follower)
    net.source.add(follower)
    net.orderer.process_local_event(follower)
    roots = [r.root_hash for r in net.store.get_frame_roots(FIRST_FRAME)]
    assert roots == [event.id]


def test_build_rejects_wrong_epoch(net):
    event = _event(1, 1, [], 1, epoch=2)
    with pytest.raises(ValueError, match="wrong epoch"):
        net.orderer.build(event)


def test_build_rejects_unknown_creator(net):
    event = _event(99, 1, [], 1)
    with pytest.raises(ValueError, match="existing validator"):
        net.orderer.build(event)


def test_process_rejects_claimed_wrong_frame(net):
    event = _event(1, 1, [], 1)
    net.dag.add(event)
    net.orderer.build(event)
    net.source.add(event)
    event.frame = FIRST_FRAME + 1
    with pytest.raises(WrongFrameError):
        net.orderer.process(event)
    assert net.store.get_frame_roots(FIRST_FRAME + 1) == []


def test_suppressed_frame_check_keeps_claimed_frame():
    net = _Net(config=Config(suppress_frame_panic=True))
    net.bootstrap()
    event = _event(1, 1, [], 1)
    net.dag.add(event)
    net.orderer.build(event)
    net.source.add(event)
    event.frame = FIRST_FRAME + 4
    net.orderer.process(event)
    assert [r.root_hash for r in net.store.get_frame_roots(FIRST_FRAME + 4)] == [event.id]


def test_bootstrap_twice_is_rejected(net):
    with pytest.raises(RuntimeError, match="already bootstrapped"):
        net.orderer.bootstrap(OrdererCallbacks())
    assert net.loaded == [1]


def test_epoch_is_sealed_when_callback_returns_validators(net):
    new_validators = _Validators({1: 2, 2: 1, 3: 1, 4: 1})
    net.seal_with = new_validators
    for e in _full_mesh(6):
        net.submit(e)
        if net.store.epoch != 1:
            break
    assert net.store.epoch == 2
    assert net.store.validators is new_validators
    assert net.store.last_decided_frame == FIRST_FRAME - 1
    assert net.loaded[-1] == net.store.epoch
    assert net.decided[0][0] == FIRST_FRAME


def test_reset_switches_to_empty_epoch(net):
    for e in _full_mesh(2):
        net.submit(e)
    new_validators = _Validators({1: 2, 2: 1})
    net.orderer.reset(7, new_validators)
    assert net.store.epoch == 7
    assert net.store.validators is new_validators
    assert net.store.last_decided_frame == FIRST_FRAME - 1
    assert net.loaded == [1, 7, 7]
    assert net.store.get_frame_roots(FIRST_FRAME) == []


def test_restart_continues_like_uninterrupted_run():
    dbs = {}

    def producer(epoch):
        return dbs.setdefault(epoch, {})

    events = list(_full_mesh(8))
    split = 5 * len(VALIDATOR_IDS)

    first = _Net(get_epoch_db=producer)
    first.bootstrap()
    for e in events[:split]:
        first.submit(e)

    restored = _Net(get_epoch_db=producer, genesis=False)
    restored.store.main_db.update(first.store.main_db)
    restored.source.events.update(first.source.events)
    restored.dag.parents.update(first.dag.parents)
    restored.bootstrap()
    assert restored.store.last_decided_frame == first.store.last_decided_frame
    for e in events[split:]:
        restored.submit(e)

    reference = _Net()
    reference.bootstrap()
    for e in events:
        reference.submit(e)

    last = first.store.last_decided_frame
    expected = [d for d in reference.decided if d[0] > last]
    assert expected
    assert restored.decided == expected
    assert restored.store.last_decided_frame == reference.store.last_decided_frame


def test_dfs_subgraph_visits_all_ancestors(net):
    events = list(_full_mesh(3))
    for e in events:
        net.source.add(e)
    head = events[-1]
    visited = set()

    def accept(event):
        visited.add(event.id)
        return True

    net.orderer.dfs_subgraph(head.id, accept)
    expected = {e.id for e in events if e.seq < 3} | {head.id}
    assert visited == expected


def test_dfs_subgraph_stops_where_filter_rejects(net):
    events = list(_full_mesh(2))
    for e in events:
        net.source.add(e)
    visited = []

    def accept(event):
        visited.append(event.id)
        return False

    net.orderer.dfs_subgraph(events[-1].id, accept)
    assert visited == [events[-1].id]


def test_dfs_subgraph_missing_event_raises(net):
    with pytest.raises(LookupError, match="event not found"):
        net.orderer.dfs_subgraph(hash_of(b"missing"), lambda e: True)