"""
Lead search: parameter validation, parameterized full-text query building,
the record-store seam and the search-result cache.

The orchestrating LeadSearchService lives in leadsearch.search.service and is
imported from there directly (it depends on leadsearch.scoring, which in turn
depends on the params defined here).
"""

from .backend import PostgresRecordStore, RecordStore, SearchResult
from .cache import CacheCoordinator, CacheStore, RedisCacheStore, derive_cache_key
from .params import ScoringCriteria, SearchParams, validate_search_params
from .query import QueryObject, build_count_query, build_search_query

__all__ = [
    "CacheCoordinator",
    "CacheStore",
    "PostgresRecordStore",
    "QueryObject",
    "RecordStore",
    "RedisCacheStore",
    "ScoringCriteria",
    "SearchParams",
    "SearchResult",
    "build_count_query",
    "build_search_query",
    "derive_cache_key",
    "validate_search_params",
]
