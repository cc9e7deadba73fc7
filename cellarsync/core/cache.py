"""
Time-boxed caches for computed per-tenant payloads.

- InMemoryTTLCache: process-local, clock injectable for tests.
- RedisTTLCache: shared across workers, JSON values with SETEX.

Instances are built by the app factory and live on app.state.
"""
from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from redis import Redis


def metrics_key(business_id: str) -> str:
    return f"metrics:{business_id}"


class TTLCache(Protocol):
    ttl_seconds: int

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def invalidate(self, key: str) -> None:
        ...


class InMemoryTTLCache:
    def __init__(self, ttl_seconds: int, time_fn: Callable[[], float] = time.monotonic):
        self.ttl_seconds = max(0, int(ttl_seconds))
        self.time_fn = time_fn
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self.time_fn() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[key] = (self.time_fn(), value)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisTTLCache:
    def __init__(self, client: Redis, ttl_seconds: int, prefix: str = "cellarsync:"):
        self.client = client
        self.ttl_seconds = max(0, int(ttl_seconds))
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        raw = self.client.get(self._key(key))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        self.client.setex(self._key(key), self.ttl_seconds, json.dumps(value, default=str))

    def invalidate(self, key: str) -> None:
        self.client.delete(self._key(key))


def build_cache(settings_obj) -> TTLCache:
    """Build the metrics cache selected by METRICS_CACHE_BACKEND."""
    ttl = int(getattr(settings_obj, "METRICS_CACHE_TTL_SECONDS", 300))
    backend = (getattr(settings_obj, "METRICS_CACHE_BACKEND", "memory") or "memory").lower()
    if backend == "redis":
        return RedisTTLCache(Redis.from_url(settings_obj.REDIS_URL), ttl_seconds=ttl)
    return InMemoryTTLCache(ttl_seconds=ttl)
