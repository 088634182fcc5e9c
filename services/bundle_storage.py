"""
Bundle Metadata Cache
The commerce backend does not keep custom per-line bundle data, so the bundle
composition for each cart line is cached here, keyed by product id, for 7 days.

Losing or corrupting the store only costs bundle display detail: every public
operation degrades to empty-store behaviour instead of raising.
"""
from typing import Any, Callable, Dict, List, Optional
import dataclasses
import json
import logging
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from database import BundleCacheEntry, check_db_health, init_db, make_engine, make_session_factory
from schemas.bundle_schemas import (
    StoredBundleData,
    dump_store_map,
    normalize_stored_bundle_data,
)
from services.errors import CacheError, CacheCorrupt, CacheUnavailable
from services.obs.metrics import metrics_collector
from settings import (
    BUNDLE_CACHE_BACKEND,
    BUNDLE_CACHE_PATH,
    BUNDLE_CACHE_STORAGE_KEY,
    max_age_ms,
    session_storage_key,
)

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# STORES (persistence medium)
# =============================================================================

class CacheStore(ABC):
    """String key/value medium. Implementations raise CacheError subclasses."""

    @abstractmethod
    def read(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def write(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    def health(self) -> Dict[str, Any]:
        return {"status": "healthy"}


class MemoryCacheStore(CacheStore):
    """Process-local store, used in tests and as the default backend"""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def read(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def write(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class JsonFileCacheStore(CacheStore):
    """
    All keys in one JSON file ({key: value}). Writes go through a temp file
    and os.replace so readers never see a half-written file.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                content = fh.read()
        except FileNotFoundError:
            return {}
        except UnicodeDecodeError as e:
            raise CacheCorrupt(f"Cache file {self.path} is not UTF-8: {e}") from e
        except OSError as e:
            raise CacheUnavailable(f"Cannot read {self.path}: {e}") from e
        if not content.strip():
            return {}
        try:
            data = json.loads(content)
        except ValueError as e:
            raise CacheCorrupt(f"Unparsable cache file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise CacheCorrupt(f"Cache file {self.path} does not hold an object")
        return data

    def _dump(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".bundle_cache_", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise CacheUnavailable(f"Cannot write {self.path}: {e}") from e

    def read(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._load().get(key)
        if value is not None and not isinstance(value, str):
            raise CacheCorrupt(f"Cache value for {key} is not a string")
        return value

    def write(self, key: str, value: str) -> None:
        with self._lock:
            try:
                data = self._load()
            except CacheCorrupt:
                logger.warning(f"Resetting corrupt cache file {self.path}")
                data = {}
            data[key] = value
            self._dump(data)

    def delete(self, key: str) -> None:
        with self._lock:
            try:
                data = self._load()
            except CacheCorrupt:
                data = {}
            if data.pop(key, None) is not None:
                self._dump(data)


class SqlCacheStore(CacheStore):
    """
    Keys as rows of the bundle_cart_cache table. Given an engine, the table is
    created on first use, so an unreachable database surfaces as
    CacheUnavailable instead of failing at startup.
    """

    def __init__(self, session_factory, engine: Optional[Engine] = None):
        self.session_factory = session_factory
        self.engine = engine
        self._tables_ready = engine is None
        self._lock = threading.Lock()

    def _ensure_tables(self) -> None:
        if self._tables_ready:
            return
        with self._lock:
            if not self._tables_ready:
                init_db(self.engine)
                self._tables_ready = True

    def read(self, key: str) -> Optional[str]:
        try:
            self._ensure_tables()
            with self.session_factory() as session:
                row = session.get(BundleCacheEntry, key)
                return row.payload if row is not None else None
        except SQLAlchemyError as e:
            raise CacheUnavailable(f"Cache table read failed: {e}") from e

    def write(self, key: str, value: str) -> None:
        try:
            self._ensure_tables()
            with self.session_factory() as session:
                row = session.get(BundleCacheEntry, key)
                if row is None:
                    session.add(BundleCacheEntry(key=key, payload=value))
                else:
                    row.payload = value
                session.commit()
        except SQLAlchemyError as e:
            raise CacheUnavailable(f"Cache table write failed: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._ensure_tables()
            with self.session_factory() as session:
                row = session.get(BundleCacheEntry, key)
                if row is not None:
                    session.delete(row)
                    session.commit()
        except SQLAlchemyError as e:
            raise CacheUnavailable(f"Cache table delete failed: {e}") from e

    def health(self) -> Dict[str, Any]:
        with self.session_factory() as session:
            return check_db_health(session.get_bind())


# =============================================================================
# CACHE
# =============================================================================

class LocalMetadataCache:
    """
    save/get/remove/clear over one store key holding the whole
    product-id -> StoredBundleData map. Every read prunes expired entries and
    rewrites the map if it pruned anything.
    """

    def __init__(self, store: CacheStore, storage_key: str = BUNDLE_CACHE_STORAGE_KEY,
                 max_age: Optional[int] = None, clock: Callable[[], int] = now_ms):
        self.store = store
        self.storage_key = storage_key
        self.max_age_ms = max_age if max_age is not None else max_age_ms()
        self.clock = clock

    def _read_all(self) -> Dict[str, StoredBundleData]:
        try:
            raw = self.store.read(self.storage_key)
        except CacheCorrupt as e:
            logger.warning(f"Bundle cache corrupt ({self.storage_key}), treating as empty: {e}")
            metrics_collector.record_cache_event("corrupt")
            return {}
        except CacheError as e:
            logger.warning(f"Bundle cache unavailable ({self.storage_key}): {e}")
            metrics_collector.record_cache_event("unavailable")
            return {}
        if raw is None:
            return {}

        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Bundle cache corrupt ({self.storage_key}), treating as empty: {e}")
            metrics_collector.record_cache_event("corrupt")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Bundle cache corrupt ({self.storage_key}): not an object")
            metrics_collector.record_cache_event("corrupt")
            return {}

        now = self.clock()
        cleaned: Dict[str, StoredBundleData] = {}
        expired = 0
        dropped = 0
        for key, value in data.items():
            entry = normalize_stored_bundle_data(value)
            if entry is None:
                dropped += 1
            elif now - entry.timestamp < self.max_age_ms:
                cleaned[key] = entry
            else:
                expired += 1

        if expired or dropped:
            logger.info(
                f"Pruned bundle cache {self.storage_key}: expired={expired} malformed={dropped}"
            )
            if expired:
                metrics_collector.record_cache_event("expired", expired)
            if dropped:
                metrics_collector.record_cache_event("malformed", dropped)
            self._write_all(cleaned)
        return cleaned

    def _write_all(self, entries: Dict[str, StoredBundleData]) -> bool:
        try:
            self.store.write(self.storage_key, dump_store_map(entries))
            return True
        except CacheError as e:
            logger.warning(f"Failed to write bundle cache ({self.storage_key}): {e}")
            metrics_collector.record_cache_event("write_failed")
            return False

    def save(self, product_id: int, data: StoredBundleData) -> StoredBundleData:
        """Overwrite the entry for product_id with a freshly stamped copy."""
        entries = self._read_all()
        entry = dataclasses.replace(data, timestamp=self.clock())
        entries[str(product_id)] = entry
        self._write_all(entries)
        return entry

    def get(self, product_id: int) -> Optional[StoredBundleData]:
        return self._read_all().get(str(product_id))

    def remove(self, product_id: int) -> None:
        entries = self._read_all()
        if entries.pop(str(product_id), None) is not None:
            self._write_all(entries)

    def clear(self) -> None:
        try:
            self.store.delete(self.storage_key)
        except CacheError as e:
            logger.warning(f"Failed to clear bundle cache ({self.storage_key}): {e}")
            metrics_collector.record_cache_event("write_failed")

    def product_ids(self) -> List[int]:
        """Ids of the live (unexpired) entries."""
        ids = []
        for key in self._read_all():
            try:
                ids.append(int(key))
            except ValueError:
                continue
        return sorted(ids)


def build_store(backend: str, path: Optional[str] = None, database_url: Optional[str] = None) -> CacheStore:
    """Store for the configured backend ("memory" | "file" | "sql")."""
    if backend == "file":
        return JsonFileCacheStore(path or BUNDLE_CACHE_PATH)
    if backend == "sql":
        try:
            engine = make_engine(database_url)
        except (SQLAlchemyError, ImportError) as e:
            logger.error(f"Bundle cache database unusable, falling back to memory: {e}")
            return MemoryCacheStore()
        return SqlCacheStore(make_session_factory(engine), engine=engine)
    if backend != "memory":
        logger.warning(f"Unknown bundle cache backend {backend!r}, using memory")
    return MemoryCacheStore()


# Process-wide store: built on first access, written on every save
_store: Optional[CacheStore] = None
_store_lock = threading.Lock()


def get_store() -> CacheStore:
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                _store = build_store(BUNDLE_CACHE_BACKEND)
                logger.info(f"Bundle cache backend: {type(_store).__name__}")
    return _store


def set_store(store: Optional[CacheStore]) -> None:
    """Swap the process-wide store (tests, alternative backends)."""
    global _store
    with _store_lock:
        _store = store


def cache_for_session(session_id: Optional[str] = None) -> LocalMetadataCache:
    return LocalMetadataCache(get_store(), storage_key=session_storage_key(session_id))
