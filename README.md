# rollblock

Storage components for state that advances block by block and has to be
able to roll back: an append-only block journal, an LMDB-backed metadata
store, checksummed state snapshots and a lock over the data directory.

## Install

```
pip install rollblock
```

## Modules

- `rollblock.journal.FileBlockJournal` appends one entry per block (its
  operations plus the undo information) to `journal.bin` and records where
  it was written in the fixed-width index `journal.idx`.
  - `append(block, undo, operations)` returns a `JournalMeta`; it raises
    `JournalBlockIdMismatchError` when `undo.block_height` is not `block`.
  - `iter_backwards(start, end)` returns a `JournalIter` over heights
    `end..=start`, newest first; it is an iterator and a context manager
    that closes the journal file. `start < end` raises
    `InvalidBlockRangeError`.
  - `read_entry(meta)`, `list_entries()`, `truncate_after(block)`,
    `rewrite_index(metas)` and `scan_entries()` (rebuilds the entry list
    from `journal.bin`, stopping at the first truncated or damaged entry).
  - Payloads are zstd-compressed unless `JournalOptions(compress=False)` is
    passed, and carry a BLAKE3-derived checksum; a damaged payload raises
    `JournalChecksumMismatchError`.
  - `FileBlockJournal.open_read_only(root_dir)` refuses writes with
    `ReadOnlyOperationError`.
- `rollblock.journal_format` holds the 40-byte `JournalHeader` and
  `read_journal_block`; `rollblock.journal_maintenance` holds the
  truncate/rewrite/scan functions the journal uses.
- `rollblock.metadata.LmdbMetadataStore` keeps the current block height
  (0 until set), a `JournalMeta` per block, the `ShardLayout`, the
  `DurabilityMode` (`DurabilityMode.synchronous()` or
  `DurabilityMode.asynchronous(max_pending_blocks)`) and the LMDB map size
  (2 GiB by default). `get_journal_offsets(start, end)` returns offsets in
  ascending block order; `record_block_commit` writes the offset and the
  current height in one transaction. `clone()` returns another handle on the
  same environment; `close()` closes it for all handles.
  `LmdbMetadataStore.open_read_only(path)` opens an existing store.
- `rollblock.snapshot.MmapSnapshotter` writes the contents of a list of
  `rollblock.types.StateShard` objects to `snapshot_<16 hex digits>.bin`
  and loads it back into shards, returning the block height.
  `create_snapshot` returns the existing file instead of writing when the
  latest snapshot is at the same or a higher block; after writing, snapshots
  older than the two newest are removed. `prune_snapshots_after(block)`
  deletes snapshots above `block`. Loading checks the shard count and the
  checksum and raises `SnapshotCorruptedError` on mismatch.
- `rollblock.store_lock.StoreLockGuard.acquire(data_dir, mode)` takes an
  exclusive lock on `rollblock.lock` for `StoreMode.READ_WRITE` or a shared
  one for `StoreMode.READ_ONLY`, without waiting; a busy lock raises
  `DataDirLockedError`.

All errors derive from `rollblock.errors.StoreError`.

## Examples

```python
from rollblock.journal import FileBlockJournal
from rollblock.types import BlockUndo, Operation

journal = FileBlockJournal("data/journal")
undo = BlockUndo(block_height=1, shard_undos=[])
journal.append(1, undo, [Operation(key=bytes(8), value=7)])

with journal.iter_backwards(1, 1) as entries:
    for block in entries:
        print(block.block_height, block.operations)
```

```python
from rollblock.metadata import LmdbMetadataStore

with LmdbMetadataStore("data/metadata") as store:
    store.set_current_block(42)
    assert store.current_block() == 42
```

```python
from rollblock.snapshot import MmapSnapshotter
from rollblock.types import StateShard

shards = [StateShard(i) for i in range(2)]
shards[0].import_data([(bytes([1] * 8), 100)])

snapshotter = MmapSnapshotter("data/snapshots")
path = snapshotter.create_snapshot(10, shards)
assert snapshotter.load_snapshot(path, shards) == 10
```

```python
from rollblock.store_lock import StoreLockGuard, StoreMode

with StoreLockGuard.acquire("data", StoreMode.READ_WRITE):
    ...  # a second writer now fails with DataDirLockedError
```

## What it does not do

This package provides the storage pieces only. There is no store object that
applies blocks of operations, tracks undo data, replays the journal on
startup or rolls state back: callers combine the journal, metadata store and
snapshotter themselves. `StateShard` is a plain in-memory dictionary used to
feed and receive snapshots. There is no command-line tool and no server.

## Tests

```
pip install -e ".[test]"
pytest
```