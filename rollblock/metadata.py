"""Block metadata: current height, journal offsets and store configuration."""

from __future__ import annotations

import abc
import struct
from dataclasses import dataclass
from os import PathLike
from pathlib import Path

import lmdb

from .errors import InvalidBlockRangeError, MissingMetadataError, SerializationError
from .types import U64_MAX, JournalMeta

DEFAULT_MAP_SIZE = 2 << 30
"""Default LMDB map size (2 GiB); enough for tens of millions of blocks."""

_MAX_DBS = 8
_STATE_DB = b"state"
_CONFIG_DB = b"config"
_OFFSETS_DB = b"journal_offsets"

_CURRENT_BLOCK_KEY = b"current_block"
_SHARD_LAYOUT_KEY = b"shard_layout"
_DURABILITY_MODE_KEY = b"durability_mode"
_LMDB_MAP_SIZE_KEY = b"lmdb_map_size"

_U64 = struct.Struct("<Q")
_U32 = struct.Struct("<I")
_BLOCK_KEY = struct.Struct(">Q")
_LAYOUT = struct.Struct("<QQ")

_SYNCHRONOUS_VARIANT = 0
_ASYNC_VARIANT = 1


def _check_u64(name: str, value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= U64_MAX:
        raise ValueError(f"{name} must be an integer in 0..={U64_MAX}, got {value!r}")


def _block_key(block: int) -> bytes:
    _check_u64("block", block)
    return _BLOCK_KEY.pack(block)


def _decode_u64(data: bytes, what: str) -> int:
    if len(data) != _U64.size:
        raise SerializationError(f"{what} needs {_U64.size} bytes, got {len(data)}")
    return _U64.unpack(data)[0]


@dataclass(frozen=True)
class ShardLayout:
    """How the state is partitioned into shards."""

    shards_count: int
    initial_capacity: int

    def __post_init__(self) -> None:
        _check_u64("shards_count", self.shards_count)
        _check_u64("initial_capacity", self.initial_capacity)

    def to_bytes(self) -> bytes:
        return _LAYOUT.pack(self.shards_count, self.initial_capacity)

    @classmethod
    def from_bytes(cls, data: bytes) -> ShardLayout:
        if len(data) != _LAYOUT.size:
            raise SerializationError(
                f"shard layout needs {_LAYOUT.size} bytes, got {len(data)}"
            )
        return cls(*_LAYOUT.unpack(data))


@dataclass(frozen=True)
class DurabilityMode:
    """Synchronous persistence, or asynchronous with a bounded queue of pending blocks."""

    max_pending_blocks: int | None = None

    def __post_init__(self) -> None:
        if self.max_pending_blocks is not None:
            _check_u64("max_pending_blocks", self.max_pending_blocks)

    @classmethod
    def synchronous(cls) -> DurabilityMode:
        return cls(None)

    @classmethod
    def asynchronous(cls, max_pending_blocks: int) -> DurabilityMode:
        return cls(max_pending_blocks)

    @property
    def is_synchronous(self) -> bool:
        return self.max_pending_blocks is None

    def to_bytes(self) -> bytes:
        if self.max_pending_blocks is None:
            return _U32.pack(_SYNCHRONOUS_VARIANT)
        return _U32.pack(_ASYNC_VARIANT) + _U64.pack(self.max_pending_blocks)

    @classmethod
    def from_bytes(cls, data: bytes) -> DurabilityMode:
        if len(data) < _U32.size:
            raise SerializationError("durability mode is missing its variant tag")
        variant = _U32.unpack(data[:_U32.size])[0]
        rest = data[_U32.size:]
        if variant == _SYNCHRONOUS_VARIANT:
            if rest:
                raise SerializationError("trailing bytes after synchronous durability mode")
            return cls.synchronous()
        if variant == _ASYNC_VARIANT:
            return cls.asynchronous(_decode_u64(rest, "async durability mode"))
        raise SerializationError(f"invalid durability mode variant {variant}")


class MetadataStore(abc.ABC):
    """Persistent record of the committed block height and journal offsets."""

    @abc.abstractmethod
    def current_block(self) -> int:
        """The last committed block height, 0 when nothing was committed."""

    @abc.abstractmethod
    def set_current_block(self, block: int) -> None:
        """Record ``block`` as the committed height."""

    @abc.abstractmethod
    def put_journal_offset(self, block: int, meta: JournalMeta) -> None:
        """Remember where ``block`` lives in the journal."""

    @abc.abstractmethod
    def get_journal_offsets(self, start: int, end: int) -> list[JournalMeta]:
        """Offsets for blocks in ``start..=end``, in ascending block order."""

    @abc.abstractmethod
    def last_journal_offset_at_or_before(self, block: int) -> JournalMeta | None:
        """The offset of the highest recorded block not above ``block``."""

    def remove_journal_offsets_after(self, block: int) -> None:
        """Forget offsets above ``block``; stores without pruning ignore this."""

    def record_block_commit(self, block: int, meta: JournalMeta) -> None:
        """Store the journal offset and advance the committed height."""
        self.put_journal_offset(block, meta)
        self.set_current_block(block)


class LmdbMetadataStore(MetadataStore):
    """Metadata kept in an LMDB environment with state, config and offset databases.

    Clones share one environment; closing any of them closes it for all.
    """

    def __init__(self, path: str | PathLike[str], map_size: int = DEFAULT_MAP_SIZE) -> None:
        root = Path(path)
        root.mkdir(parents=True, exist_ok=True)
        env = lmdb.open(str(root), map_size=map_size, max_dbs=_MAX_DBS, subdir=True)
        try:
            state_db = env.open_db(_STATE_DB)
            config_db = env.open_db(_CONFIG_DB)
            offsets_db = env.open_db(_OFFSETS_DB)
        except Exception:
            env.close()
            raise
        self._bind(env, root, state_db, config_db, offsets_db)
        self.ensure_lmdb_map_size(self.effective_map_size())

    @classmethod
    def open_read_only(
        cls, path: str | PathLike[str], map_size: int = DEFAULT_MAP_SIZE
    ) -> LmdbMetadataStore:
        """Open an existing metadata store without write access."""
        root = Path(path)
        if not root.exists():
            raise MissingMetadataError("metadata directory")
        env = lmdb.open(
            str(root), map_size=map_size, max_dbs=_MAX_DBS, subdir=True, readonly=True
        )
        handles = []
        try:
            with env.begin() as txn:
                for name, what in (
                    (_STATE_DB, "state database"),
                    (_CONFIG_DB, "config database"),
                    (_OFFSETS_DB, "journal_offsets database"),
                ):
                    try:
                        handles.append(env.open_db(name, txn=txn, create=False))
                    except lmdb.NotFoundError:
                        raise MissingMetadataError(what) from None
        except Exception:
            env.close()
            raise
        store = cls.__new__(cls)
        store._bind(env, root, *handles)
        return store

    def _bind(self, env, root: Path, state_db, config_db, offsets_db) -> None:
        self._env = env
        self._path = root
        self._state_db = state_db
        self._config_db = config_db
        self._offsets_db = offsets_db

    @property
    def env(self) -> lmdb.Environment:
        return self._env

    @property
    def path(self) -> Path:
        return self._path

    def effective_map_size(self) -> int:
        return self._env.info()["map_size"]

    def clone(self) -> LmdbMetadataStore:
        """Another handle on the same environment."""
        other = type(self).__new__(type(self))
        other._bind(self._env, self._path, self._state_db, self._config_db, self._offsets_db)
        return other

    def close(self) -> None:
        self._env.close()

    def __enter__(self) -> LmdbMetadataStore:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- configuration ---------------------------------------------------------

    def _get_config(self, key: bytes) -> bytes | None:
        with self._env.begin(db=self._config_db) as txn:
            return txn.get(key)

    def _put_config(self, key: bytes, value: bytes) -> None:
        with self._env.begin(write=True, db=self._config_db) as txn:
            txn.put(key, value)

    def load_shard_layout(self) -> ShardLayout | None:
        data = self._get_config(_SHARD_LAYOUT_KEY)
        return None if data is None else ShardLayout.from_bytes(data)

    def store_shard_layout(self, layout: ShardLayout) -> None:
        self._put_config(_SHARD_LAYOUT_KEY, layout.to_bytes())

    def load_durability_mode(self) -> DurabilityMode | None:
        data = self._get_config(_DURABILITY_MODE_KEY)
        return None if data is None else DurabilityMode.from_bytes(data)

    def store_durability_mode(self, mode: DurabilityMode) -> None:
        self._put_config(_DURABILITY_MODE_KEY, mode.to_bytes())

    def load_lmdb_map_size(self) -> int | None:
        data = self._get_config(_LMDB_MAP_SIZE_KEY)
        return None if data is None else _decode_u64(data, "lmdb map size")

    def store_lmdb_map_size(self, map_size: int) -> None:
        _check_u64("map_size", map_size)
        self._put_config(_LMDB_MAP_SIZE_KEY, _U64.pack(map_size))

    def ensure_lmdb_map_size(self, map_size: int) -> None:
        """Record ``map_size`` unless it is already the stored value."""
        if self.load_lmdb_map_size() == map_size:
            return
        self.store_lmdb_map_size(map_size)

    # --- block metadata --------------------------------------------------------

    def current_block(self) -> int:
        with self._env.begin(db=self._state_db) as txn:
            data = txn.get(_CURRENT_BLOCK_KEY)
        return 0 if data is None else _decode_u64(data, "current block")

    def set_current_block(self, block: int) -> None:
        _check_u64("block", block)
        with self._env.begin(write=True, db=self._state_db) as txn:
            txn.put(_CURRENT_BLOCK_KEY, _U64.pack(block))

    def put_journal_offset(self, block: int, meta: JournalMeta) -> None:
        key = _block_key(block)
        with self._env.begin(write=True, db=self._offsets_db) as txn:
            txn.put(key, meta.to_bytes())

    def get_journal_offsets(self, start: int, end: int) -> list[JournalMeta]:
        if start > end:
            raise InvalidBlockRangeError(start, end)
        start_key = _block_key(start)
        end_key = _block_key(end)
        metas: list[JournalMeta] = []
        with self._env.begin() as txn:
            cursor = txn.cursor(db=self._offsets_db)
            if not cursor.set_range(start_key):
                return metas
            for key, value in cursor.iternext():
                if key > end_key:
                    break
                metas.append(JournalMeta.from_bytes(value))
        return metas

    def last_journal_offset_at_or_before(self, block: int) -> JournalMeta | None:
        _check_u64("block", block)
        with self._env.begin() as txn:
            cursor = txn.cursor(db=self._offsets_db)
            if block == U64_MAX:
                found = cursor.last()
            elif cursor.set_range(_block_key(block + 1)):
                found = cursor.prev()
            else:
                found = cursor.last()
            if not found:
                return None
            return JournalMeta.from_bytes(cursor.value())

    def remove_journal_offsets_after(self, block: int) -> None:
        _check_u64("block", block)
        if block == U64_MAX:
            return
        with self._env.begin(write=True, db=self._offsets_db) as txn:
            cursor = txn.cursor()
            doomed = []
            if cursor.set_range(_block_key(block + 1)):
                doomed = [key for key, _ in cursor.iternext()]
            for key in doomed:
                txn.delete(key)

    def record_block_commit(self, block: int, meta: JournalMeta) -> None:
        key = _block_key(block)
        with self._env.begin(write=True) as txn:
            txn.put(key, meta.to_bytes(), db=self._offsets_db)
            txn.put(_CURRENT_BLOCK_KEY, _U64.pack(block), db=self._state_db)