# leadsearch/queueing/tasks.py
from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from rq import Queue

from leadsearch.config import load_settings
from leadsearch.queueing.redis_conn import get_redis
from leadsearch.search.service import build_default_service

log = logging.getLogger(__name__)

# Warm-up runs a handful of sequential searches, each with up to `limit`
# inference calls; give it room.
WARMUP_JOB_TIMEOUT = 600


async def _warm(strategy: Mapping[str, Any]) -> int:
    service = build_default_service()
    try:
        return await service.warm_cache(strategy)
    finally:
        await service.aclose()


def warm_lead_search_cache(strategy: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """
    RQ job: run LeadSearchService.warm_cache() in a worker process.

    Runs in its own event loop, so it never competes with request handling.
    Returns {"searches": <number of searches performed>}.
    """
    searches = asyncio.run(_warm(dict(strategy or {})))
    log.info("lead search cache warm-up job done", extra={"searches": searches})
    return {"searches": searches}


def enqueue_cache_warmup(
    strategy: Mapping[str, Any] | None = None,
    *,
    queue: Queue | None = None,
) -> str | None:
    """
    Best-effort helper: enqueue the cache warm-up job on the maintenance queue.

    Returns the RQ job id, or None when enqueueing failed (logged, never raised).
    """
    try:
        q = queue or Queue(name=load_settings().queue.maintenance_queue, connection=get_redis())
        job = q.enqueue(
            warm_lead_search_cache,
            dict(strategy or {}),
            job_timeout=WARMUP_JOB_TIMEOUT,
            retry=None,
        )
    except Exception as exc:
        log.warning(
            "lead search cache warm-up enqueue failed",
            extra={"exc": str(exc)},
        )
        return None
    return job.id


__all__ = [
    "enqueue_cache_warmup",
    "warm_lead_search_cache",
]
