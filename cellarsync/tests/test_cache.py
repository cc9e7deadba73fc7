"""
Tests for the TTL caches and cache selection.
"""
import json
from types import SimpleNamespace
from unittest.mock import Mock, patch

from cellarsync.core.cache import InMemoryTTLCache, RedisTTLCache, build_cache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_in_memory_entry_expires_after_ttl():
    clock = FakeClock()
    cache = InMemoryTTLCache(ttl_seconds=300, time_fn=clock)
    cache.set("metrics:biz_1", {"mrr": 5000})

    clock.now += 299
    assert cache.get("metrics:biz_1") == {"mrr": 5000}

    clock.now += 1
    assert cache.get("metrics:biz_1") is None


def test_in_memory_keys_are_isolated_per_tenant():
    cache = InMemoryTTLCache(ttl_seconds=60, time_fn=FakeClock())
    cache.set("metrics:biz_1", {"mrr": 1})
    cache.set("metrics:biz_2", {"mrr": 2})

    cache.invalidate("metrics:biz_1")

    assert cache.get("metrics:biz_1") is None
    assert cache.get("metrics:biz_2") == {"mrr": 2}


def test_zero_ttl_disables_caching():
    cache = InMemoryTTLCache(ttl_seconds=0, time_fn=FakeClock())
    cache.set("metrics:biz_1", {"mrr": 1})

    assert cache.get("metrics:biz_1") is None


def test_redis_cache_uses_setex_with_prefix():
    client = Mock()
    cache = RedisTTLCache(client, ttl_seconds=120)

    cache.set("metrics:biz_1", {"mrr": 5000})

    client.setex.assert_called_once_with("cellarsync:metrics:biz_1", 120, json.dumps({"mrr": 5000}))


def test_redis_cache_decodes_stored_json():
    client = Mock()
    client.get.return_value = b'{"mrr": 5000}'
    cache = RedisTTLCache(client, ttl_seconds=120)

    assert cache.get("metrics:biz_1") == {"mrr": 5000}
    client.get.assert_called_once_with("cellarsync:metrics:biz_1")


def test_redis_cache_miss_returns_none():
    client = Mock()
    client.get.return_value = None

    assert RedisTTLCache(client, ttl_seconds=120).get("metrics:biz_1") is None


def test_build_cache_defaults_to_memory():
    cache = build_cache(SimpleNamespace(METRICS_CACHE_BACKEND="memory", METRICS_CACHE_TTL_SECONDS=42))

    assert isinstance(cache, InMemoryTTLCache)
    assert cache.ttl_seconds == 42


def test_build_cache_redis_backend():
    cfg = SimpleNamespace(
        METRICS_CACHE_BACKEND="redis",
        METRICS_CACHE_TTL_SECONDS=300,
        REDIS_URL="redis://cache:6379/1",
    )
    with patch("cellarsync.core.cache.Redis.from_url") as from_url:
        cache = build_cache(cfg)

    assert isinstance(cache, RedisTTLCache)
    from_url.assert_called_once_with("redis://cache:6379/1")
