from rollblock.journal_format import (
    JOURNAL_FLAG_UNCOMPRESSED,
    JOURNAL_HEADER_SIZE,
    JournalHeader,
    checksum_to_u32,
)
from rollblock.journal_maintenance import rewrite_index, scan_entries, truncate_after
from rollblock.types import (
    BlockUndo,
    JournalBlock,
    JournalMeta,
    Operation,
    ShardUndo,
    UndoEntry,
    UndoOp,
)


def _entry_bytes(block):
    undo = BlockUndo(block, [ShardUndo(0, [UndoEntry(b"\x02" * 8, None, UndoOp.INSERTED)])])
    payload = JournalBlock(block, [Operation(bytes([block]) * 8, block)], undo).to_bytes()
    checksum = checksum_to_u32(payload)
    header = JournalHeader(
        block_height=block,
        entry_count=1,
        compressed_len=len(payload),
        uncompressed_len=len(payload),
        checksum=checksum,
        flags=JOURNAL_FLAG_UNCOMPRESSED,
    )
    return header.to_bytes() + payload, len(payload), checksum


def _write_journal(path, blocks):
    metas = []
    chunks = []
    offset = 0
    for block in blocks:
        raw, length, checksum = _entry_bytes(block)
        metas.append(JournalMeta(block, offset, length, checksum))
        chunks.append(raw)
        offset += len(raw)
    path.write_bytes(b"".join(chunks))
    return metas, chunks


def _read_index(path):
    data = path.read_bytes()
    size = JournalMeta.SIZE
    return [JournalMeta.from_bytes(data[i:i + size]) for i in range(0, len(data), size)]


def test_rewrite_index_writes_metas_and_removes_temp(tmp_path):
    index = tmp_path / "journal.idx"
    index.write_bytes(b"stale contents")
    metas = [JournalMeta(1, 0, 16, 1235), JournalMeta(3, 128, 16, 1237)]
    rewrite_index(index, metas)
    assert index.read_bytes() == b"".join(m.to_bytes() for m in metas)
    assert _read_index(index) == metas
    assert not (tmp_path / "journal.idx.tmp").exists()


def test_rewrite_index_with_no_metas_leaves_empty_file(tmp_path):
    index = tmp_path / "journal.idx"
    rewrite_index(index, [])
    assert index.read_bytes() == b""


def test_truncate_after_keeps_lower_blocks(tmp_path):
    journal = tmp_path / "journal.bin"
    index = tmp_path / "journal.idx"
    metas, chunks = _write_journal(journal, [1, 2, 3])
    truncate_after(journal, index, 2, metas)
    assert journal.read_bytes() == chunks[0] + chunks[1]
    assert _read_index(index) == metas[:2]


def test_truncate_after_below_all_blocks_empties_journal(tmp_path):
    journal = tmp_path / "journal.bin"
    index = tmp_path / "journal.idx"
    metas, _ = _write_journal(journal, [5, 6])
    truncate_after(journal, index, 4, metas)
    assert journal.read_bytes() == b""
    assert _read_index(index) == []


def test_truncate_after_creates_missing_journal(tmp_path):
    journal = tmp_path / "journal.bin"
    index = tmp_path / "journal.idx"
    truncate_after(journal, index, 10, [])
    assert journal.exists()
    assert journal.read_bytes() == b""


def test_scan_missing_journal_is_empty(tmp_path):
    assert scan_entries(tmp_path / "absent.bin") == []


def test_scan_recovers_all_valid_entries(tmp_path):
    journal = tmp_path / "journal.bin"
    metas, _ = _write_journal(journal, [1, 2, 3])
    assert scan_entries(journal) == metas


def test_scan_ignores_trailing_partial_header(tmp_path):
    journal = tmp_path / "journal.bin"
    metas, chunks = _write_journal(journal, [1, 2])
    journal.write_bytes(b"".join(chunks) + chunks[0][: JOURNAL_HEADER_SIZE - 1])
    assert scan_entries(journal) == metas


def test_scan_stops_at_truncated_payload(tmp_path):
    journal = tmp_path / "journal.bin"
    metas, chunks = _write_journal(journal, [1, 2, 3])
    journal.write_bytes(chunks[0] + chunks[1] + chunks[2][:-1])
    assert scan_entries(journal) == metas[:2]


def test_scan_stops_at_corrupted_entry(tmp_path):
    journal = tmp_path / "journal.bin"
    metas, chunks = _write_journal(journal, [1, 2, 3])
    damaged = bytearray(chunks[1])
    damaged[JOURNAL_HEADER_SIZE] ^= 0xFF
    journal.write_bytes(chunks[0] + bytes(damaged) + chunks[2])
    assert scan_entries(journal) == metas[:1]


def test_scan_stops_at_bad_magic(tmp_path):
    journal = tmp_path / "journal.bin"
    metas, chunks = _write_journal(journal, [1])
    journal.write_bytes(chunks[0] + b"XXXX" + chunks[0][4:])
    assert scan_entries(journal) == metas