"""Writing the state shards to a snapshot file, atomically."""

from __future__ import annotations

import os
import struct
from os import PathLike
from pathlib import Path
from typing import BinaryIO, Sequence

from .errors import SnapshotCorruptedError
from .fs import sync_directory
from .snapshot_format import (
    SNAPSHOT_CHECKSUM_OFFSET,
    SNAPSHOT_HEADER_SIZE_V2,
    checksum_from_reader,
    encode_header,
)
from .snapshot_gc import snapshot_path
from .types import KEY_SIZE, U64_MAX, StateShard

_U64 = struct.Struct("<Q")
_ENTRY_SIZE = KEY_SIZE + _U64.size


def _stream_shard(file: BinaryIO, shard: StateShard) -> int:
    count = 0

    def sink(key, value: int) -> None:
        nonlocal count
        key = bytes(key)
        if len(key) != KEY_SIZE:
            raise ValueError(f"key must be {KEY_SIZE} bytes, got {len(key)}")
        file.write(key)
        file.write(_U64.pack(value))
        count += 1

    shard.visit_entries(sink)
    return count


def write_snapshot(
    root_dir: str | PathLike[str], block: int, shards: Sequence[StateShard]
) -> Path:
    """Write every shard's entries as the snapshot for ``block`` and return its path."""
    root = Path(root_dir)
    final_path = snapshot_path(root, block)
    tmp_path = final_path.with_suffix(".tmp")
    shards = list(shards)
    shard_count = len(shards)

    tmp_path.unlink(missing_ok=True)
    header = encode_header(block, shard_count)

    offsets: list[int] = []
    counts: list[int] = []
    with open(tmp_path, "w+b") as file:
        file.write(header)
        file.write(bytes(shard_count * _U64.size))

        current_offset = SNAPSHOT_HEADER_SIZE_V2 + shard_count * _U64.size
        for shard in shards:
            offsets.append(current_offset)
            file.write(_U64.pack(0))
            count = _stream_shard(file, shard)
            current_offset += _U64.size + count * _ENTRY_SIZE
            if current_offset > U64_MAX:
                raise SnapshotCorruptedError(
                    tmp_path, "snapshot size overflow while updating offsets"
                )
            counts.append(count)

        for offset, count in zip(offsets, counts):
            file.seek(offset)
            file.write(_U64.pack(count))

        if offsets:
            file.seek(SNAPSHOT_HEADER_SIZE_V2)
            file.write(b"".join(_U64.pack(offset) for offset in offsets))
        file.flush()
        os.fsync(file.fileno())

        file.seek(SNAPSHOT_HEADER_SIZE_V2)
        checksum = checksum_from_reader(file)

        file.seek(SNAPSHOT_CHECKSUM_OFFSET)
        file.write(_U64.pack(checksum))
        file.flush()
        os.fsync(file.fileno())

    final_path.unlink(missing_ok=True)
    os.replace(tmp_path, final_path)
    sync_directory(root)
    return final_path