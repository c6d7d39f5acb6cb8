"""Background task processing via RQ with synchronous fallback.

When REDIS_URL is configured, tasks are enqueued for an `rq worker` process.
Otherwise, tasks execute synchronously in the request thread.

Usage:
    from tasks import enqueue
    enqueue(EmailService._do_send, to, subject, body, config)
"""

from __future__ import annotations

import logging

import redis
from rq import Queue

logger = logging.getLogger(__name__)

_queue: Queue | None = None


def init_tasks(app) -> None:
    """Connect the RQ queue if Redis is reachable. Call once from create_app()."""
    global _queue
    _queue = None

    redis_url = app.config.get("REDIS_URL", "")
    if not redis_url:
        app.logger.info("Task backend: synchronous (no REDIS_URL)")
        return

    try:
        conn = redis.Redis.from_url(redis_url)
        conn.ping()
    except redis.RedisError as e:
        app.logger.warning("Task backend: synchronous (Redis error: %s)", e)
        return
    _queue = Queue("typetech", connection=conn)
    app.logger.info("Task backend: RQ (%s)", redis_url)


def enqueue(func, *args, **kwargs):
    """Push a task to RQ if available, else call synchronously.

    Returns the RQ Job object or the function's return value.
    """
    if _queue is not None:
        try:
            job = _queue.enqueue(func, *args, **kwargs)
            logger.debug("Enqueued %s (job=%s)", func.__name__, job.id)
            return job
        except redis.RedisError as e:
            logger.warning("RQ enqueue failed (%s), running inline: %s", func.__name__, e)

    logger.debug("Running %s synchronously", func.__name__)
    return func(*args, **kwargs)


def is_async_available() -> bool:
    """Check if RQ background processing is available."""
    return _queue is not None
