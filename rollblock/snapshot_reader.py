"""Loading a snapshot file back into state shards."""

from __future__ import annotations

import struct
from os import PathLike
from pathlib import Path
from typing import Sequence

from .errors import SnapshotCorruptedError
from .snapshot_format import checksum_to_u64, parse_header
from .types import StateShard

_U64 = struct.Struct("<Q")
_ENTRY = struct.Struct("<8sQ")


def load_snapshot(path: str | PathLike[str], shards: Sequence[StateShard]) -> int:
    """Replace the content of ``shards`` with the snapshot's and return its block height."""
    path = Path(path)
    shards = list(shards)
    data = path.read_bytes()
    header = parse_header(path, data)

    if header.shard_count != len(shards):
        raise SnapshotCorruptedError(
            path,
            f"shard count mismatch: snapshot has {header.shard_count}, "
            f"but {len(shards)} shards provided",
        )

    if header.checksum is not None:
        computed = checksum_to_u64(data[header.header_size:])
        if computed != header.checksum:
            raise SnapshotCorruptedError(
                path,
                f"checksum mismatch: expected {header.checksum:016x}, got {computed:016x}",
            )

    offsets_end = header.header_size + header.shard_count * _U64.size
    if offsets_end > len(data):
        raise SnapshotCorruptedError(path, "unexpected end of file while reading offsets")

    offsets: list[int] = []
    for (offset,) in _U64.iter_unpack(data[header.header_size:offsets_end]):
        if offset < offsets_end:
            raise SnapshotCorruptedError(
                path, f"offset for shard points inside header: {offset}"
            )
        offsets.append(offset)

    for shard_idx, (shard, data_offset) in enumerate(zip(shards, offsets)):
        if data_offset + _U64.size > len(data):
            raise SnapshotCorruptedError(path, f"invalid offset for shard {shard_idx}")
        (entry_count,) = _U64.unpack_from(data, data_offset)
        start = data_offset + _U64.size
        end = start + entry_count * _ENTRY.size
        if end > len(data):
            raise SnapshotCorruptedError(
                path, f"unexpected end of file while reading shard {shard_idx} entries"
            )
        shard.import_data(list(_ENTRY.iter_unpack(data[start:end])))

    return header.block_height