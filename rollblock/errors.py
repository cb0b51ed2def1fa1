"""Exception hierarchy raised by the storage layer."""

from __future__ import annotations

from os import PathLike


class StoreError(Exception):
    """Base class for every error raised by the store."""


class MissingMetadataError(StoreError):
    """A file or directory the store relies on does not exist."""

    def __init__(self, what: str) -> None:
        super().__init__(f"missing metadata: {what}")
        self.what = what


class ReadOnlyOperationError(StoreError):
    """A mutating operation was attempted on a read-only handle."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"operation '{operation}' is not allowed in read-only mode")
        self.operation = operation


class DataDirLockedError(StoreError):
    """The data directory lock is held by another handle."""

    def __init__(self, path: str | PathLike[str], requested: str) -> None:
        super().__init__(f"data directory lock {path} is busy ({requested} access requested)")
        self.path = path
        self.requested = requested


class JournalBlockIdMismatchError(StoreError):
    """A journal entry belongs to a different block than expected."""

    def __init__(self, expected: int, found: int) -> None:
        super().__init__(f"journal block id mismatch: expected {expected}, found {found}")
        self.expected = expected
        self.found = found


class InvalidBlockRangeError(StoreError):
    """A block range whose bounds are out of order."""

    def __init__(self, start: int, end: int) -> None:
        super().__init__(f"invalid block range: {start}..={end}")
        self.start = start
        self.end = end


class InvalidJournalHeaderError(StoreError):
    """A journal entry header failed validation."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"invalid journal header: {reason}")
        self.reason = reason


class JournalChecksumMismatchError(StoreError):
    """A journal payload does not match its recorded checksum."""

    def __init__(self, block: int) -> None:
        super().__init__(f"journal checksum mismatch for block {block}")
        self.block = block


class SnapshotCorruptedError(StoreError):
    """A snapshot file is malformed or damaged."""

    def __init__(self, path: str | PathLike[str], reason: str) -> None:
        super().__init__(f"snapshot {path} is corrupted: {reason}")
        self.path = path
        self.reason = reason


class SerializationError(StoreError):
    """Encoded data could not be decoded, or a value could not be encoded."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message