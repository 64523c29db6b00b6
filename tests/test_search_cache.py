# tests/test_search_cache.py
from __future__ import annotations

import asyncio

import pytest
from fakeredis import aioredis

from leadsearch.config import CacheConfig
from leadsearch.exceptions import CacheError
from leadsearch.search import cache as cache_module
from leadsearch.search.backend import SearchResult
from leadsearch.search.cache import (
    COMPRESSED_MARKER,
    CacheCoordinator,
    CircuitBreaker,
    RedisCacheStore,
    derive_cache_key,
    deserialize_result,
    serialize_result,
)
from leadsearch.search.params import validate_search_params

from fakes import FakeCacheStore, make_leads


def _result(n: int = 2) -> SearchResult:
    data = [{**lead, "final_score": 28} for lead in make_leads(n)]
    return SearchResult(data=data, page=1, limit=10, total=n)


def test_cache_key_ignores_explicit_defaults() -> None:
    implicit = validate_search_params({"query": "director"})
    explicit = validate_search_params(
        {"query": "director", "page": 1, "limit": 20, "sortBy": "score", "sortOrder": "desc"}
    )
    assert derive_cache_key(implicit) == derive_cache_key(explicit)


def test_cache_key_differs_by_params() -> None:
    a = validate_search_params({"query": "director", "page": 1})
    b = validate_search_params({"query": "director", "page": 2})
    assert derive_cache_key(a) != derive_cache_key(b)


def test_cache_key_prefix() -> None:
    key = derive_cache_key(validate_search_params({}))
    assert key.startswith("lead_search:v1:")
    assert len(key.rsplit(":", 1)[1]) == 64


def test_small_payload_stored_as_plain_json() -> None:
    raw = serialize_result(_result())
    assert raw.startswith(b"{")
    assert deserialize_result(raw) == _result()


def test_large_payload_is_compressed() -> None:
    raw = serialize_result(_result(20), compress_threshold_bytes=64)
    assert raw.startswith(COMPRESSED_MARKER)
    assert deserialize_result(raw) == _result(20)


@pytest.mark.parametrize(
    "raw",
    [b"not json", b"[1, 2]", b'{"data": "x", "page": 1}', COMPRESSED_MARKER + b"AAAA"],
)
def test_corrupt_payload_raises_value_error(raw: bytes) -> None:
    with pytest.raises(ValueError):
        deserialize_result(raw)


@pytest.mark.asyncio
async def test_put_then_get_round_trip_with_ttl() -> None:
    store = FakeCacheStore()
    cache = CacheCoordinator(store, ttl_seconds=300)

    await cache.put("k", _result())
    assert store.set_calls[0][0] == "k"
    assert store.set_calls[0][2] == 300

    assert await cache.get("k") == _result()
    assert cache.stats.hits == 1


@pytest.mark.asyncio
async def test_put_uses_override_ttl() -> None:
    store = FakeCacheStore()
    cache = CacheCoordinator(store, ttl_seconds=300)
    await cache.put("k", _result(), ttl_seconds=30)
    assert store.set_calls[0][2] == 30


@pytest.mark.asyncio
async def test_compressed_entries_round_trip_through_coordinator() -> None:
    store = FakeCacheStore()
    cache = CacheCoordinator(store, compress_threshold_bytes=64)
    await cache.put("k", _result(10))
    assert store.data["k"].startswith(COMPRESSED_MARKER)
    assert await cache.get("k") == _result(10)


@pytest.mark.asyncio
async def test_missing_key_is_a_miss() -> None:
    cache = CacheCoordinator(FakeCacheStore())
    assert await cache.get("absent") is None
    assert cache.stats.misses == 1
    assert cache.stats.errors == 0


@pytest.mark.asyncio
async def test_read_failure_is_treated_as_miss() -> None:
    store = FakeCacheStore()
    store.fail_get = CacheError("connection refused")
    cache = CacheCoordinator(store)

    assert await cache.get("k") is None
    assert cache.stats.misses == 1
    assert cache.stats.errors == 1


@pytest.mark.asyncio
async def test_write_failure_is_swallowed() -> None:
    store = FakeCacheStore()
    store.fail_set = CacheError("read only replica")
    cache = CacheCoordinator(store)

    await cache.put("k", _result())
    assert store.data == {}
    assert cache.stats.errors == 1


@pytest.mark.asyncio
async def test_corrupt_entry_is_treated_as_miss() -> None:
    store = FakeCacheStore()
    store.data["k"] = b"\x00garbage"
    cache = CacheCoordinator(store)

    assert await cache.get("k") is None
    assert cache.stats.errors == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [{"enabled": False}, {"ttl_seconds": 0}],
)
async def test_disabled_cache_never_touches_store(kwargs: dict) -> None:
    store = FakeCacheStore()
    cache = CacheCoordinator(store, **kwargs)

    await cache.put("k", _result())
    assert await cache.get("k") is None
    assert cache.enabled is False
    assert store.get_calls == []
    assert store.set_calls == []


@pytest.mark.asyncio
async def test_no_store_means_disabled() -> None:
    cache = CacheCoordinator(None)
    assert cache.enabled is False
    assert await cache.get("k") is None
    await cache.put("k", _result())


@pytest.mark.asyncio
async def test_hit_ratio_tracks_lookups() -> None:
    store = FakeCacheStore()
    cache = CacheCoordinator(store)
    assert cache.hit_ratio() is None

    await cache.put("k", _result())
    await cache.get("k")
    await cache.get("k")
    await cache.get("other")
    await cache.get("other2")

    assert cache.hit_ratio() == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_redis_store_sets_ttl() -> None:
    client = aioredis.FakeRedis()
    cache = CacheCoordinator(RedisCacheStore(client), ttl_seconds=300)

    await cache.put("lead_search:v1:abc", _result())

    ttl = await client.ttl("lead_search:v1:abc")
    assert 0 < ttl <= 300
    assert await cache.get("lead_search:v1:abc") == _result()
    assert await RedisCacheStore(client).get("missing") is None


# ---------------------------------------------------------------------------
# Timeouts and breaker
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_hung_read_times_out_as_miss() -> None:
    store = FakeCacheStore(delay=3600)
    cache = CacheCoordinator(store, timeout_seconds=0.01)

    assert await asyncio.wait_for(cache.get("k"), timeout=2.0) is None
    assert cache.stats.misses == 1
    assert cache.stats.errors == 1


@pytest.mark.asyncio
async def test_hung_write_times_out_as_noop() -> None:
    store = FakeCacheStore(delay=3600)
    cache = CacheCoordinator(store, timeout_seconds=0.01)

    await asyncio.wait_for(cache.put("k", _result()), timeout=2.0)
    assert store.data == {}
    assert cache.stats.errors == 1


@pytest.mark.asyncio
async def test_breaker_opens_after_consecutive_failures() -> None:
    store = FakeCacheStore()
    store.fail_get = CacheError("down")
    breaker = CircuitBreaker(failure_threshold=3, reset_after_seconds=30, clock=FakeClock())
    cache = CacheCoordinator(store, breaker=breaker)

    for _ in range(3):
        assert await cache.get("k") is None
    assert breaker.state == "open"

    assert await cache.get("k") is None
    await cache.put("k", _result())

    assert len(store.get_calls) == 3
    assert store.set_calls == []
    assert cache.stats.skipped == 2
    assert cache.stats.misses == 4


@pytest.mark.asyncio
async def test_breaker_half_open_trial_closes_on_success() -> None:
    clock = FakeClock()
    store = FakeCacheStore()
    store.fail_get = CacheError("down")
    breaker = CircuitBreaker(failure_threshold=2, reset_after_seconds=30, clock=clock)
    cache = CacheCoordinator(store, breaker=breaker)

    await cache.get("k")
    await cache.get("k")
    assert breaker.state == "open"

    clock.now += 30
    assert breaker.state == "half_open"

    store.fail_get = None
    await cache.put("k", _result())
    assert breaker.state == "closed"
    assert breaker.consecutive_failures == 0
    assert await cache.get("k") == _result()


@pytest.mark.asyncio
async def test_breaker_half_open_failure_reopens() -> None:
    clock = FakeClock()
    store = FakeCacheStore()
    store.fail_get = CacheError("down")
    breaker = CircuitBreaker(failure_threshold=2, reset_after_seconds=30, clock=clock)
    cache = CacheCoordinator(store, breaker=breaker)

    await cache.get("k")
    await cache.get("k")
    clock.now += 30

    await cache.get("k")

    assert breaker.state == "open"
    assert breaker.opened_at == clock.now
    assert len(store.get_calls) == 3


@pytest.mark.asyncio
async def test_timeouts_count_toward_breaker() -> None:
    breaker = CircuitBreaker(failure_threshold=2, clock=FakeClock())
    cache = CacheCoordinator(FakeCacheStore(delay=3600), timeout_seconds=0.01, breaker=breaker)

    await cache.get("k")
    await cache.get("k")

    assert breaker.state == "open"


@pytest.mark.asyncio
async def test_success_resets_failure_count() -> None:
    store = FakeCacheStore()
    breaker = CircuitBreaker(failure_threshold=2, clock=FakeClock())
    cache = CacheCoordinator(store, breaker=breaker)

    store.fail_get = CacheError("blip")
    await cache.get("k")
    store.fail_get = None
    await cache.get("k")
    store.fail_get = CacheError("blip")
    await cache.get("k")

    assert breaker.state == "closed"
    assert breaker.consecutive_failures == 1


def test_breaker_disabled_with_zero_threshold() -> None:
    breaker = CircuitBreaker(failure_threshold=0, clock=FakeClock())
    for _ in range(10):
        breaker.record_failure()
    assert breaker.allow() is True
    assert breaker.state == "closed"


@pytest.mark.asyncio
async def test_corrupt_entry_does_not_trip_breaker() -> None:
    store = FakeCacheStore()
    store.data["k"] = b"\x00garbage"
    breaker = CircuitBreaker(failure_threshold=1, clock=FakeClock())
    cache = CacheCoordinator(store, breaker=breaker)

    assert await cache.get("k") is None
    assert await cache.get("k") is None

    assert breaker.state == "closed"
    assert len(store.get_calls) == 2


def test_coordinator_from_config_wires_timeout_and_breaker() -> None:
    cfg = CacheConfig(
        enabled=True,
        redis_url="redis://localhost:6379/0",
        ttl_seconds=300,
        compress_threshold_bytes=1024,
        warm_threshold=0.8,
        timeout_seconds=0.25,
        breaker_failures=7,
        breaker_reset_seconds=12.0,
    )
    cache = CacheCoordinator.from_config(FakeCacheStore(), cfg)

    assert cache.breaker.failure_threshold == 7
    assert cache.breaker.reset_after_seconds == 12.0
    assert cache._timeout_seconds == 0.25


def test_redis_store_from_url_sets_socket_timeouts(monkeypatch) -> None:
    seen: dict = {}

    def from_url(url, **kwargs):
        seen["url"] = url
        seen.update(kwargs)
        return aioredis.FakeRedis()

    monkeypatch.setattr(cache_module.Redis, "from_url", from_url)

    RedisCacheStore.from_url("redis://cache:6379/1", socket_timeout=1.5)

    assert seen["url"] == "redis://cache:6379/1"
    assert seen["socket_timeout"] == 1.5
    assert seen["socket_connect_timeout"] == 1.5
    assert seen["decode_responses"] is False
