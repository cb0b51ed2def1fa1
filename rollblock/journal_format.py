"""On-disk layout of journal entries: header, checksum and payload decoding."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO, Iterable

import zstandard

from .errors import (
    InvalidJournalHeaderError,
    JournalBlockIdMismatchError,
    JournalChecksumMismatchError,
    SerializationError,
)
from .types import JournalBlock, JournalMeta, ShardUndo

JOURNAL_MAGIC = 0x4D484A31  # "MHJ1"
JOURNAL_VERSION = 1
JOURNAL_HEADER_FLAG_NONE = 0
JOURNAL_FLAG_UNCOMPRESSED = 0x0001
JOURNAL_HEADER_SIZE = 40

_HEADER = struct.Struct("<IHHQIQQI")


# --- BLAKE3 -----------------------------------------------------------------

_MASK = 0xFFFFFFFF
_IV = (
    0x6A09E667, 0xBB67AE85, 0x3C6EF372, 0xA54FF53A,
    0x510E527F, 0x9B05688C, 0x1F83D9AB, 0x5BE0CD19,
)
_PERMUTATION = (2, 6, 3, 10, 7, 0, 4, 13, 1, 11, 12, 5, 9, 14, 15, 8)
_CHUNK_START = 1
_CHUNK_END = 2
_PARENT = 4
_ROOT = 8
_BLOCK_LEN = 64
_CHUNK_LEN = 1024
_WORDS = struct.Struct("<16I")
_CV_BYTES = struct.Struct("<8I")


def _g(s: list[int], a: int, b: int, c: int, d: int, mx: int, my: int) -> None:
    s[a] = (s[a] + s[b] + mx) & _MASK
    x = s[d] ^ s[a]
    s[d] = ((x >> 16) | (x << 16)) & _MASK
    s[c] = (s[c] + s[d]) & _MASK
    x = s[b] ^ s[c]
    s[b] = ((x >> 12) | (x << 20)) & _MASK
    s[a] = (s[a] + s[b] + my) & _MASK
    x = s[d] ^ s[a]
    s[d] = ((x >> 8) | (x << 24)) & _MASK
    s[c] = (s[c] + s[d]) & _MASK
    x = s[b] ^ s[c]
    s[b] = ((x >> 7) | (x << 25)) & _MASK


def _compress(cv, words, counter: int, block_len: int, flags: int) -> list[int]:
    s = [*cv, *_IV[:4], counter & _MASK, (counter >> 32) & _MASK, block_len, flags]
    m = list(words)
    for round_index in range(7):
        _g(s, 0, 4, 8, 12, m[0], m[1])
        _g(s, 1, 5, 9, 13, m[2], m[3])
        _g(s, 2, 6, 10, 14, m[4], m[5])
        _g(s, 3, 7, 11, 15, m[6], m[7])
        _g(s, 0, 5, 10, 15, m[8], m[9])
        _g(s, 1, 6, 11, 12, m[10], m[11])
        _g(s, 2, 7, 8, 13, m[12], m[13])
        _g(s, 3, 4, 9, 14, m[14], m[15])
        if round_index < 6:
            m = [m[i] for i in _PERMUTATION]
    for i in range(8):
        s[i] ^= s[i + 8]
        s[i + 8] ^= cv[i]
    return s


def _words(block: bytes) -> tuple[int, ...]:
    return _WORDS.unpack(block.ljust(_BLOCK_LEN, b"\x00"))


@dataclass
class _Output:
    cv: tuple[int, ...]
    words: tuple[int, ...]
    counter: int
    block_len: int
    flags: int

    def chaining_value(self) -> tuple[int, ...]:
        return tuple(_compress(self.cv, self.words, self.counter, self.block_len, self.flags)[:8])

    def root_bytes(self) -> bytes:
        state = _compress(self.cv, self.words, 0, self.block_len, self.flags | _ROOT)
        return _CV_BYTES.pack(*state[:8])


class _ChunkState:
    def __init__(self, key: tuple[int, ...], counter: int) -> None:
        self.cv = key
        self.counter = counter
        self.block = bytearray()
        self.blocks_compressed = 0

    def __len__(self) -> int:
        return _BLOCK_LEN * self.blocks_compressed + len(self.block)

    def _start_flag(self) -> int:
        return _CHUNK_START if self.blocks_compressed == 0 else 0

    def update(self, data: memoryview) -> None:
        while data:
            if len(self.block) == _BLOCK_LEN:
                state = _compress(
                    self.cv, _words(bytes(self.block)), self.counter, _BLOCK_LEN, self._start_flag()
                )
                self.cv = tuple(state[:8])
                self.blocks_compressed += 1
                self.block.clear()
            take = min(_BLOCK_LEN - len(self.block), len(data))
            self.block += data[:take]
            data = data[take:]

    def output(self) -> _Output:
        return _Output(
            self.cv,
            _words(bytes(self.block)),
            self.counter,
            len(self.block),
            self._start_flag() | _CHUNK_END,
        )


def _parent_output(left, right) -> _Output:
    return _Output(_IV, (*left, *right), 0, _BLOCK_LEN, _PARENT)


class _Blake3Hasher:
    """Incremental BLAKE3 hasher producing 32-byte digests."""

    def __init__(self) -> None:
        self._chunk = _ChunkState(_IV, 0)
        self._stack: list[tuple[int, ...]] = []

    def _push_chunk_cv(self, cv: tuple[int, ...], total_chunks: int) -> None:
        while total_chunks & 1 == 0:
            cv = _parent_output(self._stack.pop(), cv).chaining_value()
            total_chunks >>= 1
        self._stack.append(cv)

    def update(self, data) -> None:
        view = memoryview(bytes(data))
        while view:
            if len(self._chunk) == _CHUNK_LEN:
                cv = self._chunk.output().chaining_value()
                total = self._chunk.counter + 1
                self._push_chunk_cv(cv, total)
                self._chunk = _ChunkState(_IV, total)
            take = min(_CHUNK_LEN - len(self._chunk), len(view))
            self._chunk.update(view[:take])
            view = view[take:]

    def digest(self) -> bytes:
        output = self._chunk.output()
        for cv in reversed(self._stack):
            output = _parent_output(cv, output.chaining_value())
        return output.root_bytes()


def _blake3(data) -> bytes:
    hasher = _Blake3Hasher()
    hasher.update(data)
    return hasher.digest()


# --- Journal header -----------------------------------------------------------


@dataclass(frozen=True)
class JournalHeader:
    """Fixed 40-byte little-endian header preceding each journal payload."""

    block_height: int
    entry_count: int
    compressed_len: int
    uncompressed_len: int
    checksum: int
    flags: int = JOURNAL_HEADER_FLAG_NONE
    magic: int = JOURNAL_MAGIC
    version: int = JOURNAL_VERSION

    def to_bytes(self) -> bytes:
        return _HEADER.pack(
            self.magic,
            self.version,
            self.flags,
            self.block_height,
            self.entry_count,
            self.compressed_len,
            self.uncompressed_len,
            self.checksum,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> JournalHeader:
        if len(data) != JOURNAL_HEADER_SIZE:
            raise InvalidJournalHeaderError("invalid header length")
        (magic, version, flags, block_height, entry_count,
         compressed_len, uncompressed_len, checksum) = _HEADER.unpack(data)
        if magic != JOURNAL_MAGIC:
            raise InvalidJournalHeaderError("invalid magic")
        if version != JOURNAL_VERSION:
            raise InvalidJournalHeaderError("unsupported version")
        return cls(
            block_height=block_height,
            entry_count=entry_count,
            compressed_len=compressed_len,
            uncompressed_len=uncompressed_len,
            checksum=checksum,
            flags=flags,
            magic=magic,
            version=version,
        )


def _read_exact(file: BinaryIO, size: int) -> bytes:
    data = file.read(size)
    if len(data) < size:
        raise EOFError(f"expected {size} bytes, got {len(data)}")
    return data


def _decompress(payload: bytes) -> bytes:
    try:
        return zstandard.ZstdDecompressor().decompressobj().decompress(payload)
    except zstandard.ZstdError as err:
        raise SerializationError(f"failed to decompress journal payload: {err}") from err


def read_journal_block(file: BinaryIO, meta: JournalMeta) -> JournalBlock:
    """Read and validate the entry described by ``meta``.

    Raises ``EOFError`` when the file ends before the entry does.
    """
    file.seek(meta.offset)
    header = JournalHeader.from_bytes(_read_exact(file, JOURNAL_HEADER_SIZE))

    if header.block_height != meta.block_height:
        raise JournalBlockIdMismatchError(meta.block_height, header.block_height)
    if header.compressed_len != meta.compressed_len:
        raise InvalidJournalHeaderError("compressed length mismatch")
    if header.checksum != meta.checksum:
        raise JournalChecksumMismatchError(meta.block_height)

    payload = _read_exact(file, meta.compressed_len)
    if checksum_to_u32(payload) != meta.checksum:
        raise JournalChecksumMismatchError(meta.block_height)

    if header.flags & JOURNAL_FLAG_UNCOMPRESSED:
        decompressed = payload
    else:
        decompressed = _decompress(payload)

    if len(decompressed) != header.uncompressed_len:
        raise InvalidJournalHeaderError("uncompressed length mismatch")

    entry = JournalBlock.from_bytes(decompressed)
    if entry.block_height != meta.block_height:
        raise JournalBlockIdMismatchError(meta.block_height, entry.block_height)

    if total_entry_count(entry.undo.shard_undos) != header.entry_count:
        raise InvalidJournalHeaderError("entry count mismatch")

    return entry


def total_entry_count(shards: Iterable[ShardUndo]) -> int:
    return sum(len(shard.entries) for shard in shards)


def checksum_to_u32(data) -> int:
    """First four bytes of the BLAKE3 digest of ``data``, read little-endian."""
    return int.from_bytes(_blake3(data)[:4], "little")