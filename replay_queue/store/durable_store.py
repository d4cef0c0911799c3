"""Async durable key/value store, opened lazily and cached per object store."""
import asyncio
import threading
from typing import Any, Dict, List, Optional, Tuple

from replay_queue import settings
from replay_queue.db import Database
from replay_queue.errors import StoreUnavailableError
from replay_queue.logging_conf import logger
from replay_queue.store.backends import PostgresBackend, SpoolBackend


class DurableStore:
    """Key/value persistence that survives process restarts.

    Backend calls block, so each one runs in a worker thread; every store
    operation is therefore a suspension point for the calling task. The
    backend is opened on first use. If it cannot be opened at all the call
    raises StoreUnavailableError.

    The store also hands out one asyncio.Lock per key, which callers use to
    serialize read-modify-write cycles on shared documents (a queue's order
    list, the queue registry).
    """

    def __init__(self, backend, label: str = "store"):
        self._backend = backend
        self.label = label
        self._opened = False
        self._open_lock = threading.Lock()
        self._locks: Dict[str, asyncio.Lock] = {}

    async def get(self, key: str) -> Optional[Any]:
        return await self._call(self._backend.get, key)

    async def put(self, key: str, value: Any) -> None:
        await self._call(self._backend.put, key, value)

    async def delete(self, key: str) -> None:
        await self._call(self._backend.delete, key)

    async def get_all_keys(self) -> List[str]:
        return await self._call(self._backend.get_all_keys)

    def lock_for(self, key: str) -> asyncio.Lock:
        """Return the in-process mutation lock for a key."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def close(self) -> None:
        with self._open_lock:
            if self._opened:
                self._backend.close()
                self._opened = False

    async def _call(self, fn, *args):
        return await asyncio.to_thread(self._run, fn, *args)

    def _run(self, fn, *args):
        self._ensure_open()
        return fn(*args)

    def _ensure_open(self) -> None:
        if self._opened:
            return
        with self._open_lock:
            if self._opened:
                return
            try:
                self._backend.open()
            except Exception as e:
                logger.error(f"Failed to open durable store {self.label}: {e}", exc_info=True)
                raise StoreUnavailableError(f"Cannot open durable store {self.label}: {e}") from e
            self._opened = True
            logger.debug(f"Opened durable store {self.label}")


_stores: Dict[Tuple[str, int, str], DurableStore] = {}
_database: Optional[Database] = None


def _make_backend(namespace: str, version: int, store_name: str):
    global _database
    if settings.DATABASE_URL:
        if _database is None:
            _database = Database(settings.DATABASE_URL)
        return PostgresBackend(_database, namespace, version, store_name)
    return SpoolBackend(settings.STORE_DIR, namespace, version, store_name)


def open_store(store_name: Optional[str] = None, namespace: Optional[str] = None,
               version: Optional[int] = None) -> DurableStore:
    """Return the cached store for (namespace, version, store_name), creating it on first use."""
    key = (
        namespace or settings.STORE_NAMESPACE,
        version if version is not None else settings.STORE_VERSION,
        store_name or settings.QUEUE_STORE_NAME,
    )
    store = _stores.get(key)
    if store is None:
        store = DurableStore(_make_backend(*key), label="/".join(str(part) for part in key))
        _stores[key] = store
    return store


def reset_stores() -> None:
    """Close and forget every cached store."""
    global _database
    for store in list(_stores.values()):
        try:
            store.close()
        except Exception as e:
            logger.warning(f"Failed to close store {store.label}: {e}")
    _stores.clear()
    _database = None
