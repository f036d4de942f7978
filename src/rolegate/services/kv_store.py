"""Keyed storage with per-entry TTL for challenges and reply correlation."""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from collections.abc import Mapping
from threading import Lock
from typing import Any, Protocol

import redis

from rolegate.core.errors import StoreError
from rolegate.core.settings import settings

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Minimal get/set/delete interface with expiry."""

    def get(self, key: str) -> dict[str, Any] | None: ...

    def set(self, key: str, value: Mapping[str, Any], ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Bounded in-process store; the oldest entry is evicted once full."""

    def __init__(self, max_entries: int = 10_000, clock: Any = time.monotonic) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, dict[str, Any]]] = OrderedDict()
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> dict[str, Any] | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expiry, value = entry
            if expiry <= now:
                self._entries.pop(key, None)
                return None
            return dict(value)

    def set(self, key: str, value: Mapping[str, Any], ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        expiry = self._clock() + ttl_seconds
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (expiry, dict(value))
            self._evict(self._clock())

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def _evict(self, now: float) -> None:
        expired = [key for key, (expiry, _) in self._entries.items() if expiry <= now]
        for key in expired:
            del self._entries[key]
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)


class RedisKeyValueStore:
    """Redis-backed store; values are JSON encoded and expire via ``SET ... EX``."""

    def __init__(self, client: redis.Redis, prefix: str = "rolegate:") -> None:
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> RedisKeyValueStore:
        return cls(redis.Redis.from_url(url))

    def get(self, key: str) -> dict[str, Any] | None:
        try:
            raw = self._redis.get(self._prefix + key)
        except redis.RedisError as exc:
            raise StoreError(f"Redis read failed: {exc}") from exc
        if raw is None:
            return None
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            value = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StoreError(f"Redis value under {key!r} is not valid JSON: {exc}") from exc
        return value if isinstance(value, dict) else None

    def set(self, key: str, value: Mapping[str, Any], ttl_seconds: int) -> None:
        try:
            self._redis.set(self._prefix + key, json.dumps(dict(value)), ex=int(ttl_seconds))
        except redis.RedisError as exc:
            raise StoreError(f"Redis write failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._redis.delete(self._prefix + key)
        except redis.RedisError as exc:
            raise StoreError(f"Redis delete failed: {exc}") from exc


class _KeyValueStoreSingleton:
    _instance: KeyValueStore | None = None

    @classmethod
    def get_instance(cls) -> KeyValueStore:
        if cls._instance is None:
            backend = settings.kv_backend.lower()
            if backend == "redis":
                logger.info("Using Redis key-value store at %s", settings.redis_url)
                cls._instance = RedisKeyValueStore.from_url(settings.redis_url)
            elif backend == "memory":
                cls._instance = MemoryKeyValueStore(settings.kv_memory_max_entries)
            else:
                raise ValueError(f"Unknown KV_BACKEND {settings.kv_backend!r}")
        return cls._instance


def get_key_value_store() -> KeyValueStore:
    """Return the process-wide key-value store selected by ``KV_BACKEND``."""
    return _KeyValueStoreSingleton.get_instance()
