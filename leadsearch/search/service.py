# leadsearch/search/service.py
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from leadsearch.config import AppConfig, load_settings
from leadsearch.exceptions import QueryError, ValidationError
from leadsearch.scoring.engine import ScoringEngine
from leadsearch.scoring.inference import OpenAIInferenceClient

from .backend import PostgresRecordStore, RecordStore, SearchResult, normalize_row
from .cache import CacheCoordinator, RedisCacheStore
from .params import SearchParams, validate_search_params
from .query import QueryObject, build_count_query, build_search_query

log = logging.getLogger(__name__)

DEFAULT_WARM_THRESHOLD = 0.8

# Used when a warm-up strategy does not name its own popular searches.
DEFAULT_POPULAR_SEARCHES: tuple[dict[str, Any], ...] = (
    {"query": "director", "page": 1, "limit": 10},
    {"query": "software", "page": 1, "limit": 10},
)


class LeadSearchService:
    """
    Public entry point for lead search.

    search() runs: validate -> cache lookup -> (hit: return) |
    (miss: query -> score -> cache store -> return).

    Errors:
      - ValidationError: raised before any cache or store access.
      - QueryError: record-store failure, wrapped with the failing step.
      - asyncio.CancelledError: propagates; nothing is cached.
    Inference and cache failures are absorbed by ScoringEngine and
    CacheCoordinator respectively.
    """

    def __init__(
        self,
        record_store: RecordStore,
        scoring: ScoringEngine,
        cache: CacheCoordinator,
        *,
        exact_total: bool = False,
        warm_threshold: float = DEFAULT_WARM_THRESHOLD,
    ) -> None:
        self._store = record_store
        self._scoring = scoring
        self._cache = cache
        self._exact_total = exact_total
        self._warm_threshold = warm_threshold

    @property
    def cache(self) -> CacheCoordinator:
        return self._cache

    async def _run_query(self, operation: str, query: QueryObject) -> list[Mapping[str, Any]]:
        try:
            rows = await self._store.query(query.text, query.values)
        except Exception as exc:
            log.exception("Lead search store call failed", extra={"operation": operation})
            raise QueryError(operation, str(exc) or exc.__class__.__name__) from exc
        return list(rows or [])

    async def _count(self, params: SearchParams) -> int:
        rows = await self._run_query("search.count", build_count_query(params))
        if not rows:
            return 0
        first = rows[0]
        value = first.get("total")
        if value is None and first:
            value = next(iter(first.values()))
        return int(value or 0)

    async def search(self, params: SearchParams | Mapping[str, Any] | None) -> SearchResult:
        p = validate_search_params(params)

        key = self._cache.derive_key(p)
        cached = await self._cache.get(key)
        if cached is not None:
            return cached

        rows = await self._run_query("search.execute_query", build_search_query(p))
        leads = [normalize_row(row) for row in rows]
        scored = await self._scoring.score_many(leads)

        # total is the size of this page unless exact totals are enabled.
        total = len(scored)
        if self._exact_total:
            total = await self._count(p)

        result = SearchResult(data=scored, page=p.page, limit=p.limit, total=total)
        await self._cache.put(key, result)
        log.info(
            "Lead search completed",
            extra={"key": key, "rows": len(scored), "page": p.page, "limit": p.limit},
        )
        return result

    async def warm_cache(self, strategy: Mapping[str, Any] | None = None) -> int:
        """
        Re-run popular searches when the cache hit ratio is low.

        Strategy keys (all optional):
          popular:   list of raw search param mappings
                     (default: DEFAULT_POPULAR_SEARCHES)
          hit_ratio: observed ratio to use instead of this process's stats
          threshold: warm only when ratio < threshold (default 0.8)

        With no observed traffic the cache is treated as cold (ratio 0.0).
        Searches run one after another; a failing parameter set is logged
        and skipped. Returns the number of searches that completed.
        """
        strategy = strategy or {}
        popular = _strategy_popular(strategy)
        threshold = _strategy_number(strategy, "threshold", self._warm_threshold)

        ratio = _strategy_number(strategy, "hit_ratio", None)
        if ratio is None:
            observed = self._cache.hit_ratio()
            ratio = observed if observed is not None else 0.0

        if ratio >= threshold:
            log.info(
                "Cache warm-up skipped; hit ratio at or above threshold",
                extra={"hit_ratio": ratio, "threshold": threshold},
            )
            return 0

        completed = 0
        for raw_params in popular:
            try:
                await self.search(raw_params)
            except (ValidationError, QueryError) as exc:
                log.warning(
                    "Cache warm-up search failed; skipping",
                    extra={"params": dict(raw_params), "exc": str(exc)},
                )
                continue
            completed += 1

        log.info(
            "Cache warm-up finished",
            extra={"hit_ratio": ratio, "threshold": threshold, "searches": completed},
        )
        return completed

    async def aclose(self) -> None:
        await self._cache.aclose()


def _strategy_popular(strategy: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
    popular = strategy.get("popular")
    if popular is None:
        return DEFAULT_POPULAR_SEARCHES
    if isinstance(popular, (str, bytes)) or not isinstance(popular, Sequence):
        raise ValidationError("strategy.popular", "must be a list of search parameter objects")
    for idx, item in enumerate(popular):
        if not isinstance(item, Mapping):
            raise ValidationError(f"strategy.popular.{idx}", "must be an object")
    return popular


def _strategy_number(
    strategy: Mapping[str, Any],
    name: str,
    default: float | None,
) -> float | None:
    raw = strategy.get(name)
    if raw is None:
        return default
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValidationError(f"strategy.{name}", "must be a number")
    return float(raw)


def build_default_service(cfg: AppConfig | None = None) -> LeadSearchService:
    """Wire a LeadSearchService from environment configuration."""
    cfg = cfg or load_settings()

    store = PostgresRecordStore(cfg.store.database_url)
    scoring = ScoringEngine.from_config(OpenAIInferenceClient.from_config(cfg.scoring), cfg.scoring)
    cache_store = RedisCacheStore.from_url(cfg.cache.redis_url) if cfg.cache.enabled else None
    cache = CacheCoordinator.from_config(cache_store, cfg.cache)

    return LeadSearchService(
        store,
        scoring,
        cache,
        exact_total=cfg.query.exact_total,
        warm_threshold=cfg.cache.warm_threshold,
    )


__all__ = [
    "DEFAULT_POPULAR_SEARCHES",
    "LeadSearchService",
    "build_default_service",
]
