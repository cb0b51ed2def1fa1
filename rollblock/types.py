"""Core value types and their compact binary encoding."""

from __future__ import annotations

import enum
import struct
import threading
from dataclasses import dataclass, field
from typing import Callable, ClassVar, Iterable

from .errors import SerializationError

KEY_SIZE = 8
U64_MAX = (1 << 64) - 1
U32_MAX = (1 << 32) - 1

_U64 = struct.Struct("<Q")
_U32 = struct.Struct("<I")
_META = struct.Struct("<QQQI")


def _check_uint(name: str, value: int, limit: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= limit:
        raise ValueError(f"{name} must be an integer in 0..={limit}, got {value!r}")


def _as_key(key) -> bytes:
    key = bytes(key)
    if len(key) != KEY_SIZE:
        raise ValueError(f"key must be {KEY_SIZE} bytes, got {len(key)}")
    return key


class _Decoder:
    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._pos = 0

    def take(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            raise SerializationError("unexpected end of data")
        chunk = bytes(self._data[self._pos:end])
        self._pos = end
        return chunk

    def u64(self) -> int:
        return _U64.unpack(self.take(8))[0]

    def u32(self) -> int:
        return _U32.unpack(self.take(4))[0]

    def u8(self) -> int:
        return self.take(1)[0]


@dataclass(frozen=True)
class Operation:
    """A write of ``value`` to ``key``; a zero value deletes the key."""

    key: bytes
    value: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", _as_key(self.key))
        _check_uint("value", self.value, U64_MAX)

    def _encode(self) -> bytes:
        return self.key + _U64.pack(self.value)

    @classmethod
    def _decode(cls, dec: _Decoder) -> Operation:
        return cls(dec.take(KEY_SIZE), dec.u64())


class UndoOp(enum.Enum):
    """What a block did to a key, so it can be reverted."""

    INSERTED = 0
    UPDATED = 1
    DELETED = 2


@dataclass(frozen=True)
class UndoEntry:
    key: bytes
    previous: int | None
    op: UndoOp

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", _as_key(self.key))
        if self.previous is not None:
            _check_uint("previous", self.previous, U64_MAX)
        object.__setattr__(self, "op", UndoOp(self.op))

    def _encode(self) -> bytes:
        if self.previous is None:
            previous = b"\x00"
        else:
            previous = b"\x01" + _U64.pack(self.previous)
        return self.key + previous + _U32.pack(self.op.value)

    @classmethod
    def _decode(cls, dec: _Decoder) -> UndoEntry:
        key = dec.take(KEY_SIZE)
        tag = dec.u8()
        if tag == 0:
            previous = None
        elif tag == 1:
            previous = dec.u64()
        else:
            raise SerializationError(f"invalid option tag {tag}")
        variant = dec.u32()
        try:
            op = UndoOp(variant)
        except ValueError:
            raise SerializationError(f"invalid undo op variant {variant}") from None
        return cls(key, previous, op)


@dataclass
class ShardUndo:
    shard_index: int
    entries: list[UndoEntry] = field(default_factory=list)

    def _encode(self) -> bytes:
        parts = [_U64.pack(self.shard_index), _U64.pack(len(self.entries))]
        parts.extend(entry._encode() for entry in self.entries)
        return b"".join(parts)

    @classmethod
    def _decode(cls, dec: _Decoder) -> ShardUndo:
        shard_index = dec.u64()
        count = dec.u64()
        return cls(shard_index, [UndoEntry._decode(dec) for _ in range(count)])


@dataclass
class BlockUndo:
    block_height: int
    shard_undos: list[ShardUndo] = field(default_factory=list)

    def _encode(self) -> bytes:
        parts = [_U64.pack(self.block_height), _U64.pack(len(self.shard_undos))]
        parts.extend(shard._encode() for shard in self.shard_undos)
        return b"".join(parts)

    @classmethod
    def _decode(cls, dec: _Decoder) -> BlockUndo:
        block_height = dec.u64()
        count = dec.u64()
        return cls(block_height, [ShardUndo._decode(dec) for _ in range(count)])


@dataclass(frozen=True)
class JournalMeta:
    """Location and checksum of one block's entry in the journal file."""

    SIZE: ClassVar[int] = _META.size

    block_height: int
    offset: int
    compressed_len: int
    checksum: int

    def __post_init__(self) -> None:
        _check_uint("block_height", self.block_height, U64_MAX)
        _check_uint("offset", self.offset, U64_MAX)
        _check_uint("compressed_len", self.compressed_len, U64_MAX)
        _check_uint("checksum", self.checksum, U32_MAX)

    def to_bytes(self) -> bytes:
        return _META.pack(self.block_height, self.offset, self.compressed_len, self.checksum)

    @classmethod
    def from_bytes(cls, data: bytes) -> JournalMeta:
        if len(data) != cls.SIZE:
            raise SerializationError(
                f"journal meta needs {cls.SIZE} bytes, got {len(data)}"
            )
        return cls(*_META.unpack(data))


@dataclass
class JournalBlock:
    """Everything the journal keeps for one block."""

    block_height: int
    operations: list[Operation]
    undo: BlockUndo

    def to_bytes(self) -> bytes:
        parts = [_U64.pack(self.block_height), _U64.pack(len(self.operations))]
        parts.extend(op._encode() for op in self.operations)
        parts.append(self.undo._encode())
        return b"".join(parts)

    @classmethod
    def from_bytes(cls, data: bytes) -> JournalBlock:
        dec = _Decoder(data)
        block_height = dec.u64()
        count = dec.u64()
        operations = [Operation._decode(dec) for _ in range(count)]
        undo = BlockUndo._decode(dec)
        return cls(block_height, operations, undo)


@dataclass
class JournalOptions:
    compress: bool = True
    compression_level: int = 0


class StateShard:
    """An in-memory key/value partition of the state."""

    def __init__(self, shard_index: int = 0, initial_capacity: int = 0) -> None:
        self.shard_index = shard_index
        self.initial_capacity = initial_capacity
        self._entries: dict[bytes, int] = {}
        self._lock = threading.Lock()

    def import_data(self, entries: Iterable[tuple[bytes, int]]) -> None:
        """Replace the shard's whole content with ``entries``."""
        fresh: dict[bytes, int] = {}
        for key, value in entries:
            _check_uint("value", value, U64_MAX)
            fresh[_as_key(key)] = value
        with self._lock:
            self._entries = fresh

    def visit_entries(self, visitor: Callable[[bytes, int], None]) -> None:
        with self._lock:
            items = list(self._entries.items())
        for key, value in items:
            visitor(key, value)

    def get(self, key) -> int | None:
        with self._lock:
            return self._entries.get(bytes(key))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)