"""Journal repair operations: truncation, index rewrite and recovery scans."""

from __future__ import annotations

import logging
import os
from os import PathLike
from pathlib import Path
from typing import Iterable

from .errors import InvalidJournalHeaderError, StoreError
from .fs import sync_directory
from .journal_format import JOURNAL_HEADER_SIZE, JournalHeader, read_journal_block
from .types import JournalMeta

logger = logging.getLogger(__name__)


def truncate_after(
    journal_path: str | PathLike[str],
    index_path: str | PathLike[str],
    block: int,
    metas: Iterable[JournalMeta],
) -> None:
    """Drop every journal entry above ``block`` from both the journal and its index."""
    journal_path = Path(journal_path)
    retained = [meta for meta in metas if meta.block_height <= block]

    if retained:
        last = retained[-1]
        new_len = last.offset + JOURNAL_HEADER_SIZE + last.compressed_len
    else:
        new_len = 0

    fd = os.open(journal_path, os.O_WRONLY | os.O_CREAT, 0o644)
    try:
        os.ftruncate(fd, new_len)
        os.fsync(fd)
    finally:
        os.close(fd)

    sync_directory(journal_path.parent)
    rewrite_index(index_path, retained)


def rewrite_index(index_path: str | PathLike[str], metas: Iterable[JournalMeta]) -> None:
    """Atomically replace the index file with ``metas``."""
    index_path = Path(index_path)
    temp_path = index_path.with_suffix(".idx.tmp")
    temp_path.unlink(missing_ok=True)

    with open(temp_path, "wb") as index_tmp:
        for meta in metas:
            index_tmp.write(meta.to_bytes())
        index_tmp.flush()
        os.fsync(index_tmp.fileno())

    index_path.unlink(missing_ok=True)
    os.replace(temp_path, index_path)
    sync_directory(index_path.parent)


def scan_entries(journal_path: str | PathLike[str]) -> list[JournalMeta]:
    """Walk the journal from the start and return every entry that validates.

    Scanning stops quietly at the first truncated or damaged entry.
    """
    journal_path = Path(journal_path)
    if not journal_path.exists():
        return []

    metas: list[JournalMeta] = []
    with open(journal_path, "rb") as file:
        file_size = os.fstat(file.fileno()).st_size
        offset = 0
        while True:
            file.seek(offset)
            header_bytes = file.read(JOURNAL_HEADER_SIZE)
            if len(header_bytes) < JOURNAL_HEADER_SIZE:
                break

            try:
                header = JournalHeader.from_bytes(header_bytes)
            except InvalidJournalHeaderError as err:
                logger.warning(
                    "Encountered invalid journal header at offset %d while scanning; "
                    "stopping recovery: %s",
                    offset,
                    err,
                )
                break

            meta = JournalMeta(
                block_height=header.block_height,
                offset=offset,
                compressed_len=header.compressed_len,
                checksum=header.checksum,
            )

            if offset + JOURNAL_HEADER_SIZE + meta.compressed_len > file_size:
                logger.warning(
                    "Detected truncated journal payload at offset %d (block %d) while "
                    "scanning; stopping recovery",
                    offset,
                    meta.block_height,
                )
                break

            try:
                read_journal_block(file, meta)
            except EOFError:
                logger.warning(
                    "Detected truncated journal payload at offset %d (block %d) while "
                    "scanning; stopping recovery",
                    offset,
                    meta.block_height,
                )
                break
            except (StoreError, OSError) as err:
                logger.warning(
                    "Failed to validate journal entry at offset %d (block %d) while "
                    "scanning; stopping recovery: %s",
                    offset,
                    meta.block_height,
                    err,
                )
                break

            metas.append(meta)
            offset = file.tell()

    return metas