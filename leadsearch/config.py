# leadsearch/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv


def _getenv_int(name: str, default: int) -> int:
    v = os.getenv(name, str(default)).strip()
    try:
        return int(v)
    except ValueError as err:
        raise ValueError(f"Environment variable {name} must be an integer; got {v!r}") from err


def _getenv_float(name: str, default: float) -> float:
    v = os.getenv(name, str(default)).strip()
    try:
        return float(v)
    except ValueError as err:
        raise ValueError(f"Environment variable {name} must be a number; got {v!r}") from err


def _getenv_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip()


def _getenv_bool(name: str, default: bool) -> bool:
    """
    Read a loosely-typed boolean from the environment.

    Treats "1", "true", "yes", "on" (case-insensitive) as True;
    "0", "false", "no", "off", "" as False. If unset, returns default.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off", ""}:
        return False
    # Fallback: any other non-empty value -> True
    return True


# Load .env from project root if present
ROOT = Path(__file__).resolve().parents[1]
load_dotenv(ROOT / ".env", override=False)

# Hard upper bound on page size; also bounds inference fan-out per request.
MAX_SEARCH_RESULTS = 100

DEFAULT_REDIS_URL = "redis://127.0.0.1:6379/0"


@dataclass(frozen=True)
class ScoringWeights:
    relevance: float = 0.4
    engagement: float = 0.3
    firmographic: float = 0.3


@dataclass(frozen=True)
class ScoringConfig:
    weights: ScoringWeights
    baseline: int
    max_concurrency: int
    timeout_seconds: float
    model: str
    openai_api_key: str | None
    openai_api_base: str | None


@dataclass(frozen=True)
class CacheConfig:
    """
    Search cache settings.

    ttl_seconds is the staleness bound for search results: entries are never
    invalidated when lead data changes, they simply expire.

    timeout_seconds bounds each cache round trip. After breaker_failures
    consecutive failures the cache is bypassed for breaker_reset_seconds.
    """

    enabled: bool
    ttl_seconds: int
    compress_threshold_bytes: int
    warm_threshold: float
    redis_url: str
    timeout_seconds: float
    breaker_failures: int
    breaker_reset_seconds: float


@dataclass(frozen=True)
class QueryConfig:
    exact_total: bool


@dataclass(frozen=True)
class StoreConfig:
    database_url: str


@dataclass(frozen=True)
class QueueConfig:
    maintenance_queue: str
    rq_redis_url: str


@dataclass(frozen=True)
class AppConfig:
    scoring: ScoringConfig
    cache: CacheConfig
    query: QueryConfig
    store: StoreConfig
    queue: QueueConfig


def load_scoring_weights(path: Path | None = None) -> dict[str, Any]:
    """
    Load optional scoring weight overrides from docs/scoring-weights.yaml.

    Returns an empty dict if the file does not exist.
    The expected shape is:

      weights:
        relevance: 0.4
        engagement: 0.3
        firmographic: 0.3

    Unknown keys are ignored.
    """
    path = path or ROOT / "docs" / "scoring-weights.yaml"
    if not path.exists():
        return {}

    text = path.read_text(encoding="utf-8")
    cfg = yaml.safe_load(text)
    if not isinstance(cfg, dict):
        return {}
    weights = cfg.get("weights")
    return weights if isinstance(weights, dict) else {}


def _load_weights() -> ScoringWeights:
    defaults = ScoringWeights()
    overrides = load_scoring_weights()

    def pick(name: str, env_var: str, default: float) -> float:
        # env beats YAML beats built-in default
        if os.getenv(env_var) is not None:
            return _getenv_float(env_var, default)
        raw = overrides.get(name)
        if raw is None:
            return default
        try:
            return float(raw)
        except (TypeError, ValueError) as err:
            raise ValueError(f"scoring-weights.yaml: {name} must be a number; got {raw!r}") from err

    return ScoringWeights(
        relevance=pick("relevance", "LEAD_SCORING_WEIGHT_RELEVANCE", defaults.relevance),
        engagement=pick("engagement", "LEAD_SCORING_WEIGHT_ENGAGEMENT", defaults.engagement),
        firmographic=pick(
            "firmographic",
            "LEAD_SCORING_WEIGHT_FIRMOGRAPHIC",
            defaults.firmographic,
        ),
    )


def load_settings() -> AppConfig:
    rq_redis_url = _getenv_str("RQ_REDIS_URL", DEFAULT_REDIS_URL)

    scoring = ScoringConfig(
        weights=_load_weights(),
        baseline=_getenv_int("LEAD_SCORING_BASELINE", 50),
        max_concurrency=max(1, _getenv_int("LEAD_SCORING_MAX_CONCURRENCY", 8)),
        timeout_seconds=_getenv_float("LEAD_SCORING_TIMEOUT_SECONDS", 10.0),
        model=_getenv_str("LEAD_SCORING_MODEL", "gpt-4"),
        openai_api_key=os.getenv("OPENAI_API_KEY", "").strip() or None,
        openai_api_base=os.getenv("OPENAI_API_BASE", "").strip() or None,
    )
    cache = CacheConfig(
        enabled=_getenv_bool("LEAD_SEARCH_CACHE_ENABLED", True),
        ttl_seconds=_getenv_int("LEAD_SEARCH_CACHE_TTL_SECONDS", 300),
        compress_threshold_bytes=_getenv_int("LEAD_SEARCH_CACHE_COMPRESS_BYTES", 1_048_576),
        warm_threshold=_getenv_float("LEAD_SEARCH_WARM_THRESHOLD", 0.8),
        redis_url=_getenv_str("LEAD_SEARCH_REDIS_URL", rq_redis_url),
        timeout_seconds=_getenv_float("LEAD_SEARCH_CACHE_TIMEOUT_SECONDS", 0.5),
        breaker_failures=_getenv_int("LEAD_SEARCH_CACHE_BREAKER_FAILURES", 5),
        breaker_reset_seconds=_getenv_float("LEAD_SEARCH_CACHE_BREAKER_RESET_SECONDS", 30.0),
    )
    query = QueryConfig(
        exact_total=_getenv_bool("LEAD_SEARCH_EXACT_TOTAL", False),
    )
    store = StoreConfig(
        database_url=_getenv_str(
            "LEAD_SEARCH_DATABASE_URL",
            "postgresql://localhost:5432/leads",
        ),
    )
    queue = QueueConfig(
        maintenance_queue=_getenv_str("LEAD_SEARCH_MAINTENANCE_QUEUE", "maintenance"),
        rq_redis_url=rq_redis_url,
    )
    return AppConfig(
        scoring=scoring,
        cache=cache,
        query=query,
        store=store,
        queue=queue,
    )


__all__ = [
    "MAX_SEARCH_RESULTS",
    "ScoringWeights",
    "ScoringConfig",
    "CacheConfig",
    "QueryConfig",
    "StoreConfig",
    "QueueConfig",
    "AppConfig",
    "load_settings",
    "load_scoring_weights",
]
