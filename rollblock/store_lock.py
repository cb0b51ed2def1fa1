"""Advisory lock over a store's data directory."""

from __future__ import annotations

import enum
from os import PathLike
from pathlib import Path
from typing import BinaryIO

import portalocker

from .errors import DataDirLockedError, MissingMetadataError

LOCK_FILE_NAME = "rollblock.lock"


class StoreMode(enum.Enum):
    """How a store is opened."""

    READ_WRITE = "read-write"
    READ_ONLY = "read-only"

    def is_read_write(self) -> bool:
        return self is StoreMode.READ_WRITE


class StoreLockGuard:
    """Holds an exclusive (writer) or shared (reader) lock on the data directory."""

    def __init__(self, file: BinaryIO, path: Path, mode: StoreMode) -> None:
        self._file: BinaryIO | None = file
        self.path = path
        self.mode = mode

    @classmethod
    def acquire(cls, data_dir: str | PathLike[str], mode: StoreMode) -> StoreLockGuard:
        """Take the lock without blocking, raising if another handle holds it."""
        data_dir = Path(data_dir)
        if mode.is_read_write():
            data_dir.mkdir(parents=True, exist_ok=True)

        lock_path = data_dir / LOCK_FILE_NAME
        if mode.is_read_write():
            file = open(lock_path, "a+b")
            flags = portalocker.LockFlags.EXCLUSIVE | portalocker.LockFlags.NON_BLOCKING
        else:
            try:
                file = open(lock_path, "rb")
            except FileNotFoundError:
                raise MissingMetadataError("lock file") from None
            flags = portalocker.LockFlags.SHARED | portalocker.LockFlags.NON_BLOCKING

        try:
            portalocker.lock(file, flags)
        except portalocker.exceptions.LockException:
            file.close()
            raise DataDirLockedError(lock_path, mode.value) from None
        return cls(file, lock_path, mode)

    @property
    def held(self) -> bool:
        return self._file is not None

    def release(self) -> None:
        """Drop the lock; calling it again does nothing."""
        file, self._file = self._file, None
        if file is None:
            return
        try:
            portalocker.unlock(file)
        except (OSError, portalocker.exceptions.LockException):
            # Closing the descriptor releases the lock anyway.
            pass
        finally:
            file.close()

    def __enter__(self) -> StoreLockGuard:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __del__(self) -> None:
        try:
            self.release()
        except Exception:
            pass