"""Point-in-time snapshots of the state shards."""

from __future__ import annotations

import abc
import logging
from os import PathLike
from pathlib import Path
from typing import Sequence

from . import snapshot_gc
from .errors import MissingMetadataError
from .snapshot_reader import load_snapshot
from .snapshot_writer import write_snapshot
from .types import StateShard

logger = logging.getLogger(__name__)


class Snapshotter(abc.ABC):
    """Saves and restores the full content of the state shards."""

    @abc.abstractmethod
    def create_snapshot(self, block: int, shards: Sequence[StateShard]) -> Path:
        """Persist ``shards`` as the state at ``block`` and return the snapshot's path."""

    @abc.abstractmethod
    def load_snapshot(self, path: str | PathLike[str], shards: Sequence[StateShard]) -> int:
        """Load the snapshot at ``path`` into ``shards`` and return its block height."""

    def prune_snapshots_after(self, block: int) -> None:
        """Drop snapshots above ``block``; snapshotters without files ignore this."""


class MmapSnapshotter(Snapshotter):
    """Snapshots stored as ``snapshot_<hex block>.bin`` files in one directory."""

    def __init__(self, root_dir: str | PathLike[str]) -> None:
        root = Path(root_dir)
        root.mkdir(parents=True, exist_ok=True)
        self._root_dir = root

    @classmethod
    def open_read_only(cls, root_dir: str | PathLike[str]) -> MmapSnapshotter:
        """Use an existing snapshot directory without creating it."""
        root = Path(root_dir)
        if not root.exists():
            raise MissingMetadataError("snapshot directory")
        snapshotter = cls.__new__(cls)
        snapshotter._root_dir = root
        return snapshotter

    @property
    def root_dir(self) -> Path:
        return self._root_dir

    def latest_snapshot(self) -> tuple[Path, int] | None:
        return snapshot_gc.latest_snapshot(self._root_dir)

    def snapshots_desc(self) -> list[tuple[Path, int]]:
        return snapshot_gc.snapshots_desc(self._root_dir)

    def create_snapshot(self, block: int, shards: Sequence[StateShard]) -> Path:
        latest = self.latest_snapshot()
        if latest is not None:
            existing_path, existing_block = latest
            if existing_block >= block:
                logger.info(
                    "Skipping snapshot creation for block %d; latest snapshot %s is at "
                    "block %d and durable height has not advanced",
                    block,
                    existing_path,
                    existing_block,
                )
                return existing_path

        path = write_snapshot(self._root_dir, block, shards)
        snapshot_gc.cleanup_old_snapshots(self._root_dir, block)
        return path

    def load_snapshot(self, path: str | PathLike[str], shards: Sequence[StateShard]) -> int:
        return load_snapshot(path, shards)

    def prune_snapshots_after(self, block: int) -> None:
        snapshot_gc.prune_after(self._root_dir, block)