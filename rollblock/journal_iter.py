"""Sequential reader over a chosen set of journal entries."""

from __future__ import annotations

from typing import BinaryIO, Iterable

from .journal_format import read_journal_block
from .types import JournalBlock, JournalMeta


class JournalIter:
    """Yields the journal blocks described by ``metas``, in the given order.

    A damaged entry raises when it is reached; iteration may continue with the
    entries after it.
    """

    def __init__(self, file: BinaryIO, metas: Iterable[JournalMeta]) -> None:
        self._file = file
        self.metas: tuple[JournalMeta, ...] = tuple(metas)
        self._pending = iter(self.metas)

    def __iter__(self) -> JournalIter:
        return self

    def __next__(self) -> JournalBlock:
        meta = next(self._pending)
        return read_journal_block(self._file, meta)

    @property
    def closed(self) -> bool:
        return self._file.closed

    def close(self) -> None:
        """Close the underlying journal file."""
        self._file.close()

    def __enter__(self) -> JournalIter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()