"""Naming, listing and removal of snapshot files in a snapshot directory."""

from __future__ import annotations

import logging
import os
import re
from os import PathLike
from pathlib import Path
from typing import Iterator

from .types import U64_MAX

logger = logging.getLogger(__name__)

MAX_RETAINED = 2

_NAME = re.compile(r"snapshot_(\+?[0-9A-Fa-f]+)\.bin")


def snapshot_path(root_dir: str | PathLike[str], block: int) -> Path:
    """Where the snapshot for ``block`` lives."""
    return Path(root_dir) / f"snapshot_{block:016x}.bin"


def _parse_block(file_name: str) -> int | None:
    match = _NAME.fullmatch(file_name)
    if match is None:
        return None
    block = int(match.group(1), 16)
    return block if block <= U64_MAX else None


def _snapshot_files(root: Path) -> Iterator[tuple[Path, int]]:
    with os.scandir(root) as entries:
        for entry in entries:
            if not entry.is_file(follow_symlinks=False):
                continue
            block = _parse_block(entry.name)
            if block is not None:
                yield Path(entry.path), block


def snapshots_desc(root_dir: str | PathLike[str]) -> list[tuple[Path, int]]:
    """All snapshots in ``root_dir`` as ``(path, block)``, highest block first."""
    root = Path(root_dir)
    if not root.exists():
        return []
    return sorted(_snapshot_files(root), key=lambda item: item[1], reverse=True)


def latest_snapshot(root_dir: str | PathLike[str]) -> tuple[Path, int] | None:
    """The snapshot with the highest block, if any."""
    snapshots = snapshots_desc(root_dir)
    return snapshots[0] if snapshots else None


def cleanup_old_snapshots(root_dir: str | PathLike[str], keep_block: int) -> None:
    """Remove stale snapshots beyond the newest few; failures are only logged."""
    try:
        snapshots = snapshots_desc(root_dir)
    except OSError as err:
        logger.warning("Failed to enumerate snapshots for cleanup: %s", err)
        return

    for path, block_height in snapshots[MAX_RETAINED:]:
        if block_height >= keep_block:
            continue
        try:
            path.unlink()
        except OSError as err:
            logger.warning(
                "Failed to remove stale snapshot %s (block %d, keep %d): %s",
                path,
                block_height,
                keep_block,
                err,
            )
        else:
            logger.info(
                "Removed stale snapshot %s (block %d) after creating snapshot for block %d",
                path,
                block_height,
                keep_block,
            )


def prune_after(root_dir: str | PathLike[str], block: int) -> None:
    """Delete every snapshot taken at a height above ``block``."""
    root = Path(root_dir)
    if not root.exists():
        return
    for path, snapshot_block in list(_snapshot_files(root)):
        if snapshot_block > block:
            logger.info(
                "Deleting snapshot %s (block %d) beyond rollback target %d",
                path,
                snapshot_block,
                block,
            )
            path.unlink()