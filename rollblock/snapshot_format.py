"""Binary layout of snapshot files: header encoding, parsing and checksums."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import BinaryIO

from .errors import SnapshotCorruptedError
from .journal_format import _Blake3Hasher, _blake3

SNAPSHOT_MAGIC = b"MHIS"
SNAPSHOT_VERSION = 2
SNAPSHOT_HEADER_RESERVED = 0
SNAPSHOT_HEADER_SIZE_V1 = 22
SNAPSHOT_HEADER_SIZE_V2 = 32
SNAPSHOT_CHECKSUM_OFFSET = 24

_READ_CHUNK = 64 * 1024
_V2_PREFIX = struct.Struct("<4sHHQQ")
_V1_FIELDS = struct.Struct("<QQ")
_U16 = struct.Struct("<H")
_U64 = struct.Struct("<Q")


@dataclass(frozen=True)
class SnapshotHeader:
    """Decoded snapshot header; ``checksum`` is ``None`` for version 1 files."""

    block_height: int
    shard_count: int
    checksum: int | None
    header_size: int


def encode_header(block: int, shard_count: int) -> bytes:
    """A version 2 header with a zero checksum, to be patched once the body is written."""
    try:
        prefix = _V2_PREFIX.pack(
            SNAPSHOT_MAGIC, SNAPSHOT_VERSION, SNAPSHOT_HEADER_RESERVED, block, shard_count
        )
    except struct.error as err:
        raise ValueError(f"cannot encode snapshot header: {err}") from None
    return prefix + bytes(SNAPSHOT_HEADER_SIZE_V2 - _V2_PREFIX.size)


def parse_header(path: str | PathLike[str], data: bytes) -> SnapshotHeader:
    """Decode and validate the header at the start of ``data``."""
    path = Path(path)
    if len(data) < SNAPSHOT_HEADER_SIZE_V1:
        raise SnapshotCorruptedError(path, "file too small for snapshot header")

    magic = bytes(data[0:4])
    if magic != SNAPSHOT_MAGIC:
        raise SnapshotCorruptedError(path, f"invalid magic bytes: {list(magic)}")

    (version,) = _U16.unpack_from(data, 4)
    if version == 1:
        block_height, shard_count = _V1_FIELDS.unpack_from(data, 6)
        return SnapshotHeader(
            block_height=block_height,
            shard_count=shard_count,
            checksum=None,
            header_size=SNAPSHOT_HEADER_SIZE_V1,
        )

    if version == SNAPSHOT_VERSION:
        if len(data) < SNAPSHOT_HEADER_SIZE_V2:
            raise SnapshotCorruptedError(path, "file too small for v2 header")
        _, _, reserved, block_height, shard_count = _V2_PREFIX.unpack_from(data, 0)
        if reserved != SNAPSHOT_HEADER_RESERVED:
            raise SnapshotCorruptedError(path, f"non-zero reserved field: {reserved}")
        (checksum,) = _U64.unpack_from(data, SNAPSHOT_CHECKSUM_OFFSET)
        return SnapshotHeader(
            block_height=block_height,
            shard_count=shard_count,
            checksum=checksum,
            header_size=SNAPSHOT_HEADER_SIZE_V2,
        )

    raise SnapshotCorruptedError(path, f"unsupported version: {version}")


def checksum_to_u64(data) -> int:
    """First eight bytes of the BLAKE3 digest of ``data``, read little-endian."""
    return int.from_bytes(_blake3(data)[:8], "little")


def checksum_from_reader(reader: BinaryIO) -> int:
    """Same checksum as :func:`checksum_to_u64`, computed over everything ``reader`` yields."""
    hasher = _Blake3Hasher()
    while chunk := reader.read(_READ_CHUNK):
        hasher.update(chunk)
    return int.from_bytes(hasher.digest()[:8], "little")