# lachesis

An asynchronous Byzantine fault tolerant consensus engine that orders the
events of a DAG. Validators emit events that reference parent events. The
engine assigns each event a frame and records the frame roots. It then runs
an election among the roots to decide one *Atropos* per frame. Each decided
Atropos becomes a block, and the events it observes are confirmed.

The package is pure Python and has no runtime dependencies.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `lachesis.event_hash` defines `EventHash`, a 32-byte identifier. Its first
  four bytes hold the epoch (`epoch()`) and the next four hold the Lamport
  time (`lamport()`). `EventHash.from_raw` and `EventHash.from_hex` build
  hashes, and `short_id` and `full_id` render them. The module also has
  `hash_of` (SHA-256 of the concatenated arguments) and `uint32_bytes`. It
  keeps a registry of readable names, used when hashes are printed:
  `set_event_name`, `get_event_name`, `set_node_name` and `get_node_name`.
- `lachesis.event` has `BaseEvent`, a dataclass with epoch, seq, frame,
  creator, parents, Lamport time and id. `BaseEvent.set_id` builds the id
  from a 24-byte tail. `self_parent` and `is_self_parent` give access to the
  self-parent. The module also has the `Block`, `BlockCallbacks` and
  `ConsensusCallbacks` records, and the helpers `events_to_str`, `event_ids`
  and `events_size`.
- `lachesis.store` has `Store`, which keeps the consensus state in in-memory
  mappings:
  - the epoch state (`epoch_state`, `epoch`, `validators`);
  - the last decided frame (`last_decided_state`, `last_decided_frame`);
  - the frame roots (`add_root`, `get_frame_roots`, held in a weighted LRU
    cache);
  - the confirmed events (`set_event_confirmed_on`, `get_event_confirmed_on`).

  `Store.apply_genesis(Genesis(epoch, validators))` sets the initial state.
  It raises `ValueError` if a genesis was already applied. Reading state
  before any genesis raises `NoGenesisError`. The cache sizes come from
  `StoreConfig` (`default_store_config`, `lite_store_config`). Per-epoch data
  lives in a mapping returned by the `get_epoch_db` callable passed to
  `Store`.
- `lachesis.vector_ops` has the element-wise vector operations used for vote
  aggregation.
- `lachesis.atropos_heap` has `AtroposHeap`, which buffers `AtroposDecision`s.
  `delivery_ready` releases them in contiguous frame order.
- `lachesis.election` has `Election`. For each root, `vote_and_aggregate`
  registers the root's votes and returns the Atropoi that are ready to be
  delivered.
- `lachesis.orderer` has `Orderer`. It calculates frames (`build`), records
  roots and drives the election (`process`, `process_local_event`). It also
  seals epochs when `OrdererCallbacks.apply_atropos` returns new validators.
  `process` raises `WrongFrameError` when an event claims the wrong frame,
  unless `Config(suppress_frame_panic=True)` is set. `dfs_subgraph` walks the
  events observed by a given event.
- `lachesis.lachesis` has `Lachesis` and `IndexedLachesis`.
  - `Lachesis` adds cheater detection, passed as `Block.cheaters`, and
    confirms the events observed by each Atropos through
    `BlockCallbacks.apply_event`.
  - `IndexedLachesis` also keeps a DAG indexer in step with the events it
    builds and processes.
- `lachesis.ascii_scheme` parses DAGs drawn as ASCII diagrams
  (`ascii_scheme_to_dag`, `ascii_scheme_for_each`) and draws them back
  (`dag_to_ascii_scheme`). Parsed events are `DagEvent`s, which are named
  `BaseEvent`s. `by_parents` orders events so that parents come first.

## Example

```python
from lachesis.ascii_scheme import ascii_scheme_to_dag

nodes, events, names = ascii_scheme_to_dag("""
a0  b0
║   ║
a1══╣
║   ║
""")
print(len(nodes))                             # 2
print([str(p) for p in names["a1"].parents])  # ['a0', 'b0']
```

## Running consensus

1. Create a `Store` and apply a genesis.
2. Build an `IndexedLachesis` over three objects: the store, an event source
   (any object with `has_event` and `get_event`) and a DAG indexer.
3. Call `bootstrap` with `ConsensusCallbacks`.
4. Feed events with `build` and `process`, parents first.

Each decided block arrives through `ConsensusCallbacks.begin_block`. If
`BlockCallbacks.end_block` returns a validator group, the current epoch is
sealed and a new one starts with those validators.

The validator group is any object that has the following members:

- `sorted_ids`: validator ids in index order;
- `total_weight`;
- `__len__`;
- `weight_by_idx(idx)`.

## What is not included

- **No DAG index.** The engines need an object that answers
  `forkless_cause(a, b)` and `get_merged_highest_before(event_hash)`. For
  `IndexedLachesis` it must also provide `add`, `flush`, `drop_not_flushed`
  and `reset`. You have to supply it.
- **No persistent storage.** `Store` keeps its state in memory only.
- **No command-line tool.** The package has nothing to check recorded event
  databases against the election.