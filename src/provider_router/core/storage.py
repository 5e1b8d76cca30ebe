"""
Pluggable get/set blob store for persisted router state.

Usage snapshots, the summary cache and API keys all persist as JSON
values under string keys. Two backends are provided:
    - MemoryStore: dict-backed, per process (default, tests)
    - JsonFileStore: one JSON document per key on disk

File Organization (JsonFileStore):
    {base_dir}/
        3f/
            3f9a...c1.json      # {"key": "usage:tracker", "value": {...}}
        a0/
            a04e...7d.json

    The file name is the SHA256 of the key; the first 2 characters pick
    the shard directory. Writes go to a temp file first and are then
    renamed, so a crash never leaves a half-written document.

Cooperative Locking:
    storage_lock(store, key) guards read-modify-write sequences on one key
    across processes sharing a store. The lock is itself a stored value
    under "lock:{key}" holding {"timestamp": <epoch ms>}.

        async with storage_lock(store, "usage:tracker"):
            snapshot = await store.get("usage:tracker")
            ...
            await store.set("usage:tracker", snapshot)

    A lock older than Defaults.STORAGE_LOCK_STALE_MS, or one whose value
    carries no usable timestamp, is presumed abandoned and removed.
"""
from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import threading
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from provider_router.core.config import Defaults, StorageConfig
from provider_router.core.errors import StorageLockError
from provider_router.core.logging import debug, get_logger, trace, warn
from provider_router.utils.timeit import timeit

_LOG = get_logger("provider-router.storage")

LOCK_PREFIX = "lock:"


class BlobStore:
    """
    Async key/value interface over JSON-serialisable values.

    Subclasses implement _read/_write/_remove; the async wrappers keep
    callers on the event loop contract even when the backend is local.
    """

    async def get(self, key: str, default: Any = None) -> Any:
        value = self._read(key)
        return default if value is None else value

    async def set(self, key: str, value: Any) -> None:
        self._write(key, value)

    async def delete(self, key: str) -> None:
        self._remove(key)

    def _read(self, key: str) -> Any:
        raise NotImplementedError

    def _write(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def _remove(self, key: str) -> None:
        raise NotImplementedError


class MemoryStore(BlobStore):
    """
    In-process store. Values are deep-copied on the way in and out so
    callers never share mutable state with the store.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._lock = threading.Lock()

    def _read(self, key: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._data.get(key))

    def _write(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def _remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data.keys())


def _key_to_path(base_dir: str, key: str) -> Path:
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
    return Path(base_dir) / digest[:2] / f"{digest}.json"


class JsonFileStore(BlobStore):
    """
    Directory-backed store, one JSON document per key.

    Unreadable or corrupt documents read as missing and are logged;
    write failures propagate, because losing a usage snapshot silently
    would let spend escape the budget.
    """

    def __init__(self, base_dir: str):
        self.base_dir = base_dir
        self._lock = threading.Lock()

    def _read(self, key: str) -> Any:
        path = _key_to_path(self.base_dir, key)
        if not path.exists():
            return None
        with timeit("storage_read") as t:
            try:
                with path.open("r", encoding="utf-8") as f:
                    document = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                warn(_LOG, "storage_read_error", key=key, error=str(e))
                return None
        trace(_LOG, "storage_read", key=key, seconds=round(t.elapsed, 4))
        if not isinstance(document, dict) or document.get("key") != key:
            return None
        return document.get("value")

    def _write(self, key: str, value: Any) -> None:
        path = _key_to_path(self.base_dir, key)
        payload = json.dumps({"key": key, "value": value}, ensure_ascii=False)
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            try:
                tmp.write_text(payload, encoding="utf-8")
                tmp.replace(path)
            finally:
                if tmp.exists():
                    tmp.unlink()
        trace(_LOG, "storage_write", key=key, bytes=len(payload))

    def _remove(self, key: str) -> None:
        path = _key_to_path(self.base_dir, key)
        with self._lock:
            if path.exists():
                path.unlink()


def create_store(config: StorageConfig) -> BlobStore:
    """Build the configured backend."""
    if config.backend == "file":
        return JsonFileStore(config.base_dir)
    return MemoryStore()


def _lock_timestamp(value: Any) -> Optional[float]:
    """Read an epoch-ms timestamp from a bare number or a {timestamp|time|ts} mapping."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, dict):
        for name in ("timestamp", "time", "ts"):
            stamp = value.get(name)
            if isinstance(stamp, (int, float)) and not isinstance(stamp, bool):
                return float(stamp)
    return None


def _now_ms() -> float:
    return time.time() * 1000.0


@asynccontextmanager
async def storage_lock(
    store: BlobStore,
    key: str,
    stale_ms: int = Defaults.STORAGE_LOCK_STALE_MS,
    max_attempts: int = Defaults.STORAGE_LOCK_MAX_ATTEMPTS,
    clock: Callable[[], float] = _now_ms,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> AsyncIterator[None]:
    """
    Hold the cooperative lock for `key` for the duration of the block.

    Each busy check counts as one attempt and waits 50 ms x attempt before
    the next. Clearing a stale or malformed lock does not use an attempt.
    The lock is always released when the block exits.

    Raises:
        StorageLockError: When the lock is still held after max_attempts.
    """
    lock_key = f"{LOCK_PREFIX}{key}"
    attempt = 0

    while attempt < max_attempts:
        current = await store.get(lock_key)
        stamp = _lock_timestamp(current)

        if stamp is not None and clock() - stamp > stale_ms:
            debug(_LOG, "storage_lock_stale", key=key, age_ms=int(clock() - stamp))
            await store.delete(lock_key)
            continue

        if stamp is None and current is not None:
            debug(_LOG, "storage_lock_malformed", key=key)
            await store.delete(lock_key)
            continue

        if current is None:
            await store.set(lock_key, {"timestamp": clock()})
            try:
                yield
            finally:
                await store.delete(lock_key)
            return

        attempt += 1
        if attempt < max_attempts:
            await sleep(0.05 * attempt)

    warn(_LOG, "storage_lock_failed", key=key, attempts=max_attempts)
    raise StorageLockError(key)
