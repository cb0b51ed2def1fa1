import pytest

from rollblock.fs import sync_directory


def test_sync_missing_directory_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        sync_directory(tmp_path / "absent")


def test_sync_directory_keeps_entries(tmp_path):
    (tmp_path / "a.bin").write_bytes(b"data")
    (tmp_path / "b.bin").write_bytes(b"")
    before = sorted(p.name for p in tmp_path.iterdir())
    sync_directory(tmp_path)
    after = sorted(p.name for p in tmp_path.iterdir())
    assert after == before == ["a.bin", "b.bin"]


def test_sync_accepts_string_path(tmp_path):
    (tmp_path / "file").write_bytes(b"x")
    result = sync_directory(str(tmp_path))
    assert result is None
    assert (tmp_path / "file").read_bytes() == b"x"