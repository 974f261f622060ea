"""Celery beat entry point for vacancy-check cycles.

Architecture notes:
- Used when SCHEDULER_BACKEND=celery; the in-process loop in the API
  server is the default.
- Beat fires run_check_cycle every tick_interval.  A Redis cycle lock with
  the same TTL makes sure at most one cycle runs at a time across workers;
  a tick that finds the lock held is simply dropped.
- asyncio.run() gives every invocation a fresh event loop, so the task builds
  its own engine (get_task_session_factory) and its own Redis limiter client.
"""

import asyncio
import logging

from vacancy_notifier.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="vacancy_notifier.workers.check_tasks.run_check_cycle",
    soft_time_limit=1800,
    time_limit=1900,
)
def run_check_cycle() -> dict | None:
    """Beat task: run one vacancy-check cycle unless another one is in progress."""
    from vacancy_notifier.config import settings
    from vacancy_notifier.core.locks import cycle_lock

    with cycle_lock(ttl=max(settings.tick_interval, 60)) as lock:
        if lock is None:
            logger.info("Previous vacancy check cycle still running, skipping tick")
            return None
        return asyncio.run(_run_cycle())


async def _run_cycle() -> dict:
    from vacancy_notifier.core.rate_limit import RedisRateLimiter
    from vacancy_notifier.database import get_task_session_factory
    from vacancy_notifier.services.background import BackgroundWriter
    from vacancy_notifier.services.checker import create_checker

    limiter = RedisRateLimiter()
    writer = BackgroundWriter()
    try:
        async with get_task_session_factory() as session_factory:
            checker = create_checker(session_factory, limiter, writer=writer)
            report = await checker.run_cycle()
            await writer.close()
    finally:
        await limiter.aclose()

    return {
        "cycle_id": report.cycle_id,
        "eligible": report.eligible,
        "delivered": report.delivered_total,
        "outcomes": {r.outcome.value: report.count(r.outcome) for r in report.results},
        "write_failures": report.write_failures,
    }
