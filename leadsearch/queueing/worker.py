# leadsearch/queueing/worker.py
from __future__ import annotations

import importlib
import logging
import os

from rq import Queue
from rq import SimpleWorker as RQSimpleWorker
from rq import Worker as RQWorker

from leadsearch.config import load_settings
from leadsearch.queueing import tasks as _tasks  # noqa: F401  (ensure task module is imported)
from leadsearch.queueing.redis_conn import get_redis

log = logging.getLogger(__name__)


def _queue_names_from_env_or_cfg() -> list[str]:
    raw = os.getenv("RQ_QUEUE", "")
    if raw.strip():
        return [q.strip() for q in raw.split(",") if q.strip()]
    return [load_settings().queue.maintenance_queue]


def _select_worker_cls():
    """
    Platforms without os.fork: always SimpleWorker (the forking Worker needs it).
    Otherwise honor RQ_WORKER_CLASS if provided; else use Worker.
    """
    env_cls = os.getenv("RQ_WORKER_CLASS", "").strip()
    if not hasattr(os, "fork"):
        if env_cls and not env_cls.endswith("SimpleWorker"):
            log.warning(
                "Ignoring RQ_WORKER_CLASS=%s without os.fork; using rq.SimpleWorker",
                env_cls,
            )
        return RQSimpleWorker

    if env_cls:
        mod, name = env_cls.rsplit(".", 1)
        return getattr(importlib.import_module(mod), name)
    return RQWorker


def run():
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")

    r = get_redis()
    queue_names = _queue_names_from_env_or_cfg()
    queues = [Queue(name, connection=r) for name in queue_names]

    worker_cls = _select_worker_cls()
    log.info("Worker class: %s.%s", worker_cls.__module__, worker_cls.__name__)
    log.info("Queues: %s", ", ".join(queue_names))

    w = worker_cls(queues, connection=r)
    w.work()


if __name__ == "__main__":
    run()
