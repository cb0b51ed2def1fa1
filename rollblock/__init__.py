"""Block journal, LMDB metadata store, state snapshots and data-directory lock."""

__version__ = "0.1.0"