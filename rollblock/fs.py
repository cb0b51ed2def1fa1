"""Filesystem helpers shared by persistence components."""

from __future__ import annotations

import os
from os import PathLike


def sync_directory(path: str | PathLike[str]) -> None:
    """Flush a directory's entries to disk so that metadata changes are durable."""
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)