import io

import pytest
import zstandard

from rollblock.errors import (
    InvalidJournalHeaderError,
    JournalBlockIdMismatchError,
    JournalChecksumMismatchError,
)
from rollblock.journal_format import (
    JOURNAL_FLAG_UNCOMPRESSED,
    JOURNAL_HEADER_FLAG_NONE,
    JOURNAL_HEADER_SIZE,
    JournalHeader,
    checksum_to_u32,
    read_journal_block,
    total_entry_count,
)
from rollblock.types import (
    BlockUndo,
    JournalBlock,
    JournalMeta,
    Operation,
    ShardUndo,
    UndoEntry,
    UndoOp,
)


def _entry(block: int) -> JournalBlock:
    return JournalBlock(
        block,
        [Operation(bytes([block]) * 8, block)],
        BlockUndo(block, [ShardUndo(0, [UndoEntry(b"\x01" * 8, 42, UndoOp.UPDATED)])]),
    )


def _encode(entry, *, compress=False, entry_count=None, header_block=None, offset=0):
    serialized = entry.to_bytes()
    payload = zstandard.ZstdCompressor().compress(serialized) if compress else serialized
    flags = JOURNAL_HEADER_FLAG_NONE if compress else JOURNAL_FLAG_UNCOMPRESSED
    checksum = checksum_to_u32(payload)
    if entry_count is None:
        entry_count = total_entry_count(entry.undo.shard_undos)
    header = JournalHeader(
        entry.block_height if header_block is None else header_block,
        entry_count,
        len(payload),
        len(serialized),
        checksum,
        flags,
    )
    meta = JournalMeta(entry.block_height, offset, len(payload), checksum)
    return header.to_bytes() + payload, meta


def test_header_round_trip():
    header = JournalHeader(7, 3, 100, 250, 0xDEADBEEF, JOURNAL_FLAG_UNCOMPRESSED)
    data = header.to_bytes()
    assert len(data) == JOURNAL_HEADER_SIZE
    assert data[:4] == b"1JHM"
    assert JournalHeader.from_bytes(data) == header


def test_header_rejects_bad_magic():
    data = bytearray(JournalHeader(1, 0, 0, 0, 0).to_bytes())
    data[0] ^= 0xFF
    with pytest.raises(InvalidJournalHeaderError) as info:
        JournalHeader.from_bytes(bytes(data))
    assert info.value.reason == "invalid magic"


def test_header_rejects_unknown_version():
    data = JournalHeader(1, 0, 0, 0, 0, version=9).to_bytes()
    with pytest.raises(InvalidJournalHeaderError) as info:
        JournalHeader.from_bytes(data)
    assert info.value.reason == "unsupported version"


def test_checksum_of_known_inputs():
    assert checksum_to_u32(b"") == 0xB94913AF
    assert checksum_to_u32(b"abc") == 0xACB33764


def test_checksum_over_multiple_chunks_detects_change():
    data = bytes(range(256)) * 20
    changed = data[:-1] + bytes([data[-1] ^ 1])
    assert checksum_to_u32(data) == checksum_to_u32(bytearray(data))
    assert checksum_to_u32(data) != checksum_to_u32(changed)


def test_total_entry_count_sums_shards():
    shards = [
        ShardUndo(0, [UndoEntry(b"\x01" * 8, 1, UndoOp.UPDATED)] * 2),
        ShardUndo(1, []),
        ShardUndo(2, [UndoEntry(b"\x02" * 8, None, UndoOp.INSERTED)]),
    ]
    assert total_entry_count(shards) == 3
    assert total_entry_count([]) == 0


@pytest.mark.parametrize("compress", [False, True])
def test_read_journal_block_round_trip(compress):
    entry = _entry(7)
    data, meta = _encode(entry, compress=compress)
    assert read_journal_block(io.BytesIO(data), meta) == entry


def test_read_journal_block_at_offset():
    first, _ = _encode(_entry(1))
    second, meta = _encode(_entry(2), compress=True, offset=len(first))
    result = read_journal_block(io.BytesIO(first + second), meta)
    assert result.block_height == 2


def test_corrupted_payload_results_in_checksum_error():
    data, meta = _encode(_entry(5))
    corrupted = bytearray(data)
    corrupted[JOURNAL_HEADER_SIZE] ^= 0xFF
    with pytest.raises(JournalChecksumMismatchError) as info:
        read_journal_block(io.BytesIO(bytes(corrupted)), meta)
    assert info.value.block == 5


def test_meta_checksum_disagreeing_with_header():
    data, meta = _encode(_entry(4))
    wrong = JournalMeta(meta.block_height, meta.offset, meta.compressed_len, meta.checksum ^ 1)
    with pytest.raises(JournalChecksumMismatchError):
        read_journal_block(io.BytesIO(data), wrong)


def test_header_block_mismatch():
    data, meta = _encode(_entry(3), header_block=9)
    with pytest.raises(JournalBlockIdMismatchError) as info:
        read_journal_block(io.BytesIO(data), meta)
    assert (info.value.expected, info.value.found) == (3, 9)


def test_compressed_length_mismatch():
    data, meta = _encode(_entry(3))
    wrong = JournalMeta(meta.block_height, meta.offset, meta.compressed_len + 1, meta.checksum)
    with pytest.raises(InvalidJournalHeaderError) as info:
        read_journal_block(io.BytesIO(data), wrong)
    assert info.value.reason == "compressed length mismatch"


def test_entry_count_mismatch():
    data, meta = _encode(_entry(6), entry_count=5)
    with pytest.raises(InvalidJournalHeaderError) as info:
        read_journal_block(io.BytesIO(data), meta)
    assert info.value.reason == "entry count mismatch"


def test_truncated_payload_raises_eof():
    data, meta = _encode(_entry(2))
    with pytest.raises(EOFError):
        read_journal_block(io.BytesIO(data[:-2]), meta)


def test_truncated_header_raises_eof():
    data, meta = _encode(_entry(2))
    with pytest.raises(EOFError):
        read_journal_block(io.BytesIO(data[: JOURNAL_HEADER_SIZE - 1]), meta)