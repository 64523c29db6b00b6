# ruff: noqa: E402
# tests/conftest.py
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure project root importable
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fakes import FakeCacheStore, FakeInference, FakeRecordStore, make_leads

from leadsearch.scoring.engine import ScoringEngine
from leadsearch.search.cache import CacheCoordinator
from leadsearch.search.service import LeadSearchService


@pytest.fixture
def record_store() -> FakeRecordStore:
    return FakeRecordStore(rows=make_leads(3))


@pytest.fixture
def inference() -> FakeInference:
    return FakeInference("70")


@pytest.fixture
def cache_store() -> FakeCacheStore:
    return FakeCacheStore()


@pytest.fixture
def service(
    record_store: FakeRecordStore,
    inference: FakeInference,
    cache_store: FakeCacheStore,
) -> LeadSearchService:
    scoring = ScoringEngine(inference, max_concurrency=4, timeout_seconds=1.0)
    cache = CacheCoordinator(cache_store, ttl_seconds=300)
    return LeadSearchService(record_store, scoring, cache)
