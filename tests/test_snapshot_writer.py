import struct

from rollblock.snapshot_format import (
    SNAPSHOT_HEADER_RESERVED,
    SNAPSHOT_HEADER_SIZE_V2,
    SNAPSHOT_VERSION,
    checksum_to_u64,
    parse_header,
)
from rollblock.snapshot_gc import snapshot_path
from rollblock.snapshot_reader import load_snapshot
from rollblock.snapshot_writer import write_snapshot
from rollblock.types import StateShard


def _shards(count, capacity=16):
    return [StateShard(index, capacity) for index in range(count)]


def _u64(data, pos):
    return struct.unpack_from("<Q", data, pos)[0]


def test_writes_to_named_path(tmp_path):
    path = write_snapshot(tmp_path, 10, _shards(2))
    assert path == tmp_path / "snapshot_000000000000000a.bin"
    assert path.exists()
    assert not path.with_suffix(".tmp").exists()


def test_file_format_is_correct(tmp_path):
    path = write_snapshot(tmp_path, 777, _shards(2))
    data = path.read_bytes()

    assert data[0:4] == b"MHIS"
    assert struct.unpack_from("<H", data, 4)[0] == SNAPSHOT_VERSION
    assert struct.unpack_from("<H", data, 6)[0] == SNAPSHOT_HEADER_RESERVED
    assert _u64(data, 8) == 777
    assert _u64(data, 16) == 2
    assert _u64(data, 24) == checksum_to_u64(data[SNAPSHOT_HEADER_SIZE_V2:])


def test_empty_shard_sections(tmp_path):
    count = 3
    path = write_snapshot(tmp_path, 1, _shards(count))
    data = path.read_bytes()
    offsets_end = SNAPSHOT_HEADER_SIZE_V2 + 8 * count
    assert len(data) == offsets_end + 8 * count
    offsets = [_u64(data, SNAPSHOT_HEADER_SIZE_V2 + 8 * i) for i in range(count)]
    assert offsets == [offsets_end + 8 * i for i in range(count)]
    assert all(_u64(data, offset) == 0 for offset in offsets)


def test_entry_counts_and_offsets(tmp_path):
    shards = _shards(2)
    shards[0].import_data([(bytes([1] * 8), 11), (bytes([2] * 8), 22)])
    shards[1].import_data([(bytes([3] * 8), 33)])
    path = write_snapshot(tmp_path, 4, shards)
    data = path.read_bytes()

    first = _u64(data, SNAPSHOT_HEADER_SIZE_V2)
    second = _u64(data, SNAPSHOT_HEADER_SIZE_V2 + 8)
    assert first == SNAPSHOT_HEADER_SIZE_V2 + 16
    assert _u64(data, first) == 2
    assert second == first + 8 + 2 * 16
    assert _u64(data, second) == 1
    assert data[second + 8:second + 16] == bytes([3] * 8)
    assert _u64(data, second + 16) == 33
    assert len(data) == second + 8 + 16


def test_overwrites_existing_snapshot(tmp_path):
    shards = _shards(1)
    shards[0].import_data([(bytes([1] * 8), 5)])
    write_snapshot(tmp_path, 6, shards)
    shards[0].import_data([(bytes([1] * 8), 9)])
    path = write_snapshot(tmp_path, 6, shards)

    fresh = _shards(1)
    assert load_snapshot(path, fresh) == 6
    assert fresh[0].get(bytes([1] * 8)) == 9


def test_stale_temporary_file_is_replaced(tmp_path):
    stale = snapshot_path(tmp_path, 2).with_suffix(".tmp")
    stale.write_bytes(b"garbage")
    path = write_snapshot(tmp_path, 2, _shards(1))
    assert not stale.exists()
    header = parse_header(path, path.read_bytes())
    assert header.block_height == 2
    assert header.shard_count == 1


def test_zero_shards(tmp_path):
    path = write_snapshot(tmp_path, 8, [])
    data = path.read_bytes()
    assert len(data) == SNAPSHOT_HEADER_SIZE_V2
    assert load_snapshot(path, []) == 8