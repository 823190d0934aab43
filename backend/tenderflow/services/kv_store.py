"""Key/value persistence used for batch progress.

Redis is the durable backend; the in-memory store serves tests and
single-process development. Both expose the same three operations over one
flat namespace.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol

import redis

from tenderflow.config import get_settings

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


# ──────── Redis (shared sync connection pool) ────────

_sync_pool: redis.ConnectionPool | None = None


def _get_sync_pool() -> redis.ConnectionPool:
    """Lazy-init a module-level sync Redis ConnectionPool."""
    global _sync_pool
    if _sync_pool is None:
        settings = get_settings()
        _sync_pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
        )
    return _sync_pool


class RedisKeyValueStore:
    """Redis-backed store. Errors propagate; ProgressStore decides what to swallow."""

    def __init__(self, client: redis.Redis | None = None, ttl_seconds: int = 0):
        self._client = client or redis.Redis(connection_pool=_get_sync_pool())
        self.ttl_seconds = ttl_seconds

    def get(self, key: str) -> str | None:
        value = self._client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        if self.ttl_seconds > 0:
            self._client.set(key, value, ex=self.ttl_seconds)
        else:
            self._client.set(key, value)

    def remove(self, key: str) -> None:
        self._client.delete(key)

    def ping(self) -> bool:
        return bool(self._client.ping())


# ──────── In-memory ────────

class MemoryKeyValueStore:
    """Process-local dict store."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


def build_kv_store(backend: str | None = None) -> KeyValueStore:
    """Build the store selected by PROGRESS_BACKEND."""
    settings = get_settings()
    backend = (backend or settings.PROGRESS_BACKEND).strip().lower()
    if backend == "memory":
        return MemoryKeyValueStore()
    if backend == "redis":
        return RedisKeyValueStore(ttl_seconds=settings.PROGRESS_TTL_SECONDS)
    raise ValueError(f"Unknown PROGRESS_BACKEND: '{backend}'. Expected 'redis' or 'memory'.")
