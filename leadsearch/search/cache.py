# leadsearch/search/cache.py
from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import time
import zlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

from leadsearch.config import CacheConfig
from leadsearch.exceptions import CacheError

from .backend import SearchResult
from .params import SearchParams

log = logging.getLogger(__name__)

T = TypeVar("T")

# Cache key version. Bump when changing key construction or payload shape.
CACHE_KEY_VERSION = "v1"
CACHE_KEY_PREFIX = "lead_search"

DEFAULT_TTL_SECONDS = 300

# Per-call bound on cache store round trips.
DEFAULT_TIMEOUT_SECONDS = 0.5

DEFAULT_BREAKER_FAILURES = 5
DEFAULT_BREAKER_RESET_SECONDS = 30.0

# Payloads above the threshold are stored as marker + base64(zlib(json)).
COMPRESSED_MARKER = b"##compressed##"
DEFAULT_COMPRESS_THRESHOLD_BYTES = 1_048_576


class CacheStore(Protocol):
    """
    Minimal key/value store with TTL support.

    Implementations raise CacheError on transport failures; the coordinator
    turns those (and calls that outlive its timeout) into misses / no-ops.
    """

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None: ...


class RedisCacheStore:
    """CacheStore over redis.asyncio (SET key value EX ttl)."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float | None = 2.0) -> RedisCacheStore:
        # Raw bytes in and out; payload decoding happens in the coordinator.
        return cls(
            Redis.from_url(
                url,
                decode_responses=False,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        )

    async def get(self, key: str) -> bytes | None:
        try:
            value = await self._client.get(key)
        except RedisError as exc:
            raise CacheError(f"redis GET failed: {exc}") from exc
        if value is None:
            return None
        if isinstance(value, str):
            return value.encode("utf-8")
        return bytes(value)

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise CacheError(f"redis SET failed: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


# ---------------------------------------------------------------------------
# Keys and payloads
# ---------------------------------------------------------------------------


def derive_cache_key(params: SearchParams) -> str:
    """
    Build a deterministic cache key from *validated* SearchParams.

    Validation fills defaults first, so {"query": "x"} and
    {"query": "x", "page": 1, "limit": 20} produce the same key. The payload
    is serialized with sorted keys and compact separators before hashing.
    """
    key_payload = params.model_dump(mode="json", by_alias=False)
    raw = json.dumps(key_payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    digest = hashlib.sha256(raw).hexdigest()
    return f"{CACHE_KEY_PREFIX}:{CACHE_KEY_VERSION}:{digest}"


def serialize_result(
    result: SearchResult,
    compress_threshold_bytes: int = DEFAULT_COMPRESS_THRESHOLD_BYTES,
) -> bytes:
    payload = json.dumps(result.to_dict(), separators=(",", ":")).encode("utf-8")
    if compress_threshold_bytes > 0 and len(payload) > compress_threshold_bytes:
        return COMPRESSED_MARKER + base64.b64encode(zlib.compress(payload))
    return payload


def deserialize_result(raw: bytes) -> SearchResult:
    """
    Decode a cached payload (plain or compressed).

    Raises ValueError (or a zlib/json error subclass of it) on corrupt input.
    """
    if raw.startswith(COMPRESSED_MARKER):
        try:
            raw = zlib.decompress(base64.b64decode(raw[len(COMPRESSED_MARKER) :]))
        except zlib.error as exc:
            raise ValueError(f"corrupt compressed cache payload: {exc}") from exc
    data = json.loads(raw.decode("utf-8"))
    if not isinstance(data, dict):
        raise ValueError("cached payload is not a JSON object")
    return SearchResult.from_dict(data)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    errors: int = 0
    # lookups/writes not attempted because the breaker was open
    skipped: int = 0

    @property
    def lookups(self) -> int:
        return self.hits + self.misses

    @property
    def hit_ratio(self) -> float | None:
        """hits / lookups, or None before the first lookup."""
        if self.lookups == 0:
            return None
        return self.hits / self.lookups


@dataclass
class CircuitBreaker:
    """
    Consecutive-failure breaker for the cache store.

      closed:    calls go through; failure_threshold consecutive failures open it.
      open:      calls are skipped until reset_after_seconds have passed.
      half_open: calls go through again; one success closes it, one failure
                 re-opens it for another reset_after_seconds.

    failure_threshold <= 0 disables the breaker.
    """

    failure_threshold: int = DEFAULT_BREAKER_FAILURES
    reset_after_seconds: float = DEFAULT_BREAKER_RESET_SECONDS
    clock: Callable[[], float] = time.monotonic
    consecutive_failures: int = 0
    opened_at: float | None = None

    @property
    def state(self) -> str:
        if self.opened_at is None:
            return "closed"
        if self.clock() - self.opened_at >= self.reset_after_seconds:
            return "half_open"
        return "open"

    def allow(self) -> bool:
        return self.failure_threshold <= 0 or self.state != "open"

    def record_success(self) -> None:
        if self.opened_at is not None:
            log.info("Search cache breaker closed")
        self.consecutive_failures = 0
        self.opened_at = None

    def record_failure(self) -> None:
        if self.failure_threshold <= 0:
            return
        self.consecutive_failures += 1
        if self.state == "half_open" or self.consecutive_failures >= self.failure_threshold:
            self.opened_at = self.clock()
            log.warning(
                "Search cache breaker opened",
                extra={
                    "consecutive_failures": self.consecutive_failures,
                    "reset_after_seconds": self.reset_after_seconds,
                },
            )


class CacheCoordinator:
    """
    Search-result cache policy on top of a CacheStore.

      - get(): hit returns a SearchResult; store errors, timeouts and
        undecodable payloads count as misses.
      - put(): always writes with a TTL; store errors and timeouts are
        logged and dropped.
      - Every store call is bounded by timeout_seconds, and a CircuitBreaker
        skips the store entirely while it keeps failing.
      - Entries are never invalidated when lead data changes. ttl_seconds is
        the staleness bound.
      - No locking: two concurrent misses on one key both compute and write.
    """

    def __init__(
        self,
        store: CacheStore | None,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        enabled: bool = True,
        compress_threshold_bytes: int = DEFAULT_COMPRESS_THRESHOLD_BYTES,
        timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._enabled = enabled and store is not None and ttl_seconds > 0
        self._compress_threshold_bytes = compress_threshold_bytes
        self._timeout_seconds = timeout_seconds if timeout_seconds and timeout_seconds > 0 else None
        self.breaker = breaker or CircuitBreaker()
        self.stats = CacheStats()

    @classmethod
    def from_config(cls, store: CacheStore | None, cfg: CacheConfig) -> CacheCoordinator:
        return cls(
            store,
            ttl_seconds=cfg.ttl_seconds,
            enabled=cfg.enabled,
            compress_threshold_bytes=cfg.compress_threshold_bytes,
            timeout_seconds=cfg.timeout_seconds,
            breaker=CircuitBreaker(
                failure_threshold=cfg.breaker_failures,
                reset_after_seconds=cfg.breaker_reset_seconds,
            ),
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def derive_key(self, params: SearchParams) -> str:
        return derive_cache_key(params)

    def hit_ratio(self) -> float | None:
        return self.stats.hit_ratio

    async def aclose(self) -> None:
        close = getattr(self._store, "aclose", None)
        if callable(close):
            await close()

    async def _call_store(self, call: Awaitable[T]) -> T:
        try:
            async with asyncio.timeout(self._timeout_seconds):
                result = await call
        except TimeoutError as exc:
            self.breaker.record_failure()
            raise CacheError(f"cache store timed out after {self._timeout_seconds}s") from exc
        except Exception:
            self.breaker.record_failure()
            raise
        self.breaker.record_success()
        return result

    async def get(self, key: str) -> SearchResult | None:
        if not self._enabled or self._store is None:
            return None

        if not self.breaker.allow():
            self.stats.skipped += 1
            self.stats.misses += 1
            return None

        try:
            raw = await self._call_store(self._store.get(key))
        except Exception as exc:
            self.stats.errors += 1
            self.stats.misses += 1
            log.warning(
                "Search cache read failed; treating as miss",
                extra={"key": key, "exc": str(exc)},
            )
            return None

        if raw is None:
            self.stats.misses += 1
            return None

        try:
            result = deserialize_result(raw)
        except (ValueError, KeyError, TypeError) as exc:
            self.stats.errors += 1
            self.stats.misses += 1
            log.warning(
                "Undecodable search cache entry; treating as miss",
                extra={"key": key, "exc": str(exc)},
            )
            return None

        self.stats.hits += 1
        log.debug("Search cache hit", extra={"key": key})
        return result

    async def put(self, key: str, result: SearchResult, ttl_seconds: int | None = None) -> None:
        if not self._enabled or self._store is None:
            return

        if not self.breaker.allow():
            self.stats.skipped += 1
            return

        ttl = ttl_seconds if ttl_seconds is not None and ttl_seconds > 0 else self._ttl_seconds
        try:
            payload = serialize_result(result, self._compress_threshold_bytes)
            await self._call_store(self._store.set(key, payload, ttl))
        except Exception as exc:
            self.stats.errors += 1
            log.warning(
                "Search cache write failed; continuing without cache",
                extra={"key": key, "exc": str(exc)},
            )


__all__ = [
    "CACHE_KEY_VERSION",
    "COMPRESSED_MARKER",
    "DEFAULT_TTL_SECONDS",
    "CacheCoordinator",
    "CacheStats",
    "CacheStore",
    "CircuitBreaker",
    "RedisCacheStore",
    "derive_cache_key",
    "deserialize_result",
    "serialize_result",
]
