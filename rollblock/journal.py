"""Append-only block journal holding the operations and undo data of every block."""

from __future__ import annotations

import abc
import logging
import os
import threading
from os import PathLike
from pathlib import Path
from typing import Iterable, Sequence

import zstandard

from . import journal_maintenance
from .errors import (
    InvalidBlockRangeError,
    InvalidJournalHeaderError,
    JournalBlockIdMismatchError,
    MissingMetadataError,
    ReadOnlyOperationError,
)
from .fs import sync_directory
from .journal_format import (
    JOURNAL_FLAG_UNCOMPRESSED,
    JOURNAL_HEADER_FLAG_NONE,
    JournalHeader,
    checksum_to_u32,
    read_journal_block,
    total_entry_count,
)
from .journal_iter import JournalIter
from .types import (
    U32_MAX,
    BlockUndo,
    JournalBlock,
    JournalMeta,
    JournalOptions,
    Operation,
)

logger = logging.getLogger(__name__)

JOURNAL_FILE_NAME = "journal.bin"
INDEX_FILE_NAME = "journal.idx"

_sync_data = getattr(os, "fdatasync", os.fsync)


class BlockJournal(abc.ABC):
    """Durable record of applied blocks that supports rollback."""

    @abc.abstractmethod
    def append(
        self, block: int, undo: BlockUndo, operations: Sequence[Operation]
    ) -> JournalMeta:
        """Persist one block and return where it was written."""

    @abc.abstractmethod
    def iter_backwards(self, start: int, end: int) -> JournalIter:
        """Iterate entries with heights in ``end..=start``, newest first."""

    @abc.abstractmethod
    def read_entry(self, meta: JournalMeta) -> JournalBlock:
        """Read the single entry described by ``meta``."""

    @abc.abstractmethod
    def list_entries(self) -> list[JournalMeta]:
        """All indexed entries, in the order they were appended."""

    @abc.abstractmethod
    def truncate_after(self, block: int) -> None:
        """Discard every entry above ``block``."""

    def rewrite_index(self, metas: Iterable[JournalMeta]) -> None:
        """Replace the entry index; journals without an index ignore this."""

    def scan_entries(self) -> list[JournalMeta]:
        """Rebuild the entry list from the journal data itself."""
        return []


class FileBlockJournal(BlockJournal):
    """Journal stored as ``journal.bin`` plus a fixed-width ``journal.idx`` index."""

    def __init__(
        self, root_dir: str | PathLike[str], options: JournalOptions | None = None
    ) -> None:
        root = Path(root_dir)
        root.mkdir(parents=True, exist_ok=True)
        journal_path = root / JOURNAL_FILE_NAME
        if not journal_path.exists():
            journal_path.touch()
        self._configure(root, options or JournalOptions(), read_only=False)

    @classmethod
    def open_read_only(cls, root_dir: str | PathLike[str]) -> FileBlockJournal:
        """Open an existing journal without permission to modify it."""
        root = Path(root_dir)
        if not root.exists():
            raise MissingMetadataError("journal directory")
        if not (root / JOURNAL_FILE_NAME).exists():
            raise MissingMetadataError(JOURNAL_FILE_NAME)
        journal = cls.__new__(cls)
        journal._configure(root, JournalOptions(), read_only=True)
        return journal

    def _configure(self, root: Path, options: JournalOptions, *, read_only: bool) -> None:
        self._root_dir = root
        self._journal_path = root / JOURNAL_FILE_NAME
        self._index_path = root / INDEX_FILE_NAME
        self._write_lock = threading.Lock()
        self.options = options
        self.read_only = read_only

    @property
    def root_dir(self) -> Path:
        return self._root_dir

    def _ensure_writable(self, operation: str) -> None:
        if self.read_only:
            raise ReadOnlyOperationError(operation)

    def _load_index(self) -> list[JournalMeta]:
        if not self._index_path.exists():
            return []
        data = self._index_path.read_bytes()
        size = JournalMeta.SIZE
        whole = len(data) - len(data) % size
        if whole != len(data):
            logger.warning(
                "Detected truncated journal index entry at offset %d; ignoring trailing bytes",
                whole,
            )
        return [
            JournalMeta.from_bytes(data[start:start + size])
            for start in range(0, whole, size)
        ]

    def _encode_payload(self, serialized: bytes) -> tuple[bytes, int]:
        if self.options.compress:
            compressor = zstandard.ZstdCompressor(level=self.options.compression_level)
            return compressor.compress(serialized), JOURNAL_HEADER_FLAG_NONE
        return serialized, JOURNAL_FLAG_UNCOMPRESSED

    def append(
        self, block: int, undo: BlockUndo, operations: Sequence[Operation]
    ) -> JournalMeta:
        self._ensure_writable("append")
        if undo.block_height != block:
            raise JournalBlockIdMismatchError(block, undo.block_height)

        with self._write_lock:
            entry = JournalBlock(block_height=block, operations=list(operations), undo=undo)
            serialized = entry.to_bytes()
            payload, flags = self._encode_payload(serialized)
            checksum = checksum_to_u32(payload)

            entry_count = total_entry_count(undo.shard_undos)
            if entry_count > U32_MAX:
                raise InvalidJournalHeaderError("entry count overflow")

            header = JournalHeader(
                block_height=block,
                entry_count=entry_count,
                compressed_len=len(payload),
                uncompressed_len=len(serialized),
                checksum=checksum,
                flags=flags,
            )

            journal_created = not self._journal_path.exists()
            with open(self._journal_path, "ab") as journal:
                offset = os.fstat(journal.fileno()).st_size
                journal.write(header.to_bytes())
                journal.write(payload)
                journal.flush()
                _sync_data(journal.fileno())
            if journal_created:
                sync_directory(self._journal_path.parent)

            meta = JournalMeta(
                block_height=block,
                offset=offset,
                compressed_len=len(payload),
                checksum=checksum,
            )

            index_created = not self._index_path.exists()
            with open(self._index_path, "ab") as index:
                index.write(meta.to_bytes())
                index.flush()
                _sync_data(index.fileno())
            if index_created:
                sync_directory(self._index_path.parent)

        return meta

    def iter_backwards(self, start: int, end: int) -> JournalIter:
        if start < end:
            raise InvalidBlockRangeError(start, end)
        selected = [
            meta
            for meta in reversed(self._load_index())
            if end <= meta.block_height <= start
        ]
        file = open(self._journal_path, "rb")
        return JournalIter(file, selected)

    def read_entry(self, meta: JournalMeta) -> JournalBlock:
        with open(self._journal_path, "rb") as file:
            return read_journal_block(file, meta)

    def list_entries(self) -> list[JournalMeta]:
        return self._load_index()

    def truncate_after(self, block: int) -> None:
        self._ensure_writable("truncate_after")
        with self._write_lock:
            if not self._journal_path.exists():
                return
            metas = self._load_index()
            journal_maintenance.truncate_after(
                self._journal_path, self._index_path, block, metas
            )

    def rewrite_index(self, metas: Iterable[JournalMeta]) -> None:
        self._ensure_writable("rewrite_index")
        with self._write_lock:
            journal_maintenance.rewrite_index(self._index_path, list(metas))

    def scan_entries(self) -> list[JournalMeta]:
        return journal_maintenance.scan_entries(self._journal_path)