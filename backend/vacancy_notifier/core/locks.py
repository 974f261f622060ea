"""Redis-based lock that keeps vacancy-check cycles from overlapping.

Celery beat fires the cycle task every tick; a slow cycle (many subscribers,
API backoff) can outlive the tick, and a second worker must not start a
parallel cycle against the same subscribers.

Usage in Celery tasks (sync):
    from vacancy_notifier.core.locks import cycle_lock

    with cycle_lock(ttl=settings.tick_interval) as lock:
        if lock is None:
            return  # previous cycle still running
        asyncio.run(run_one_cycle())
"""

import logging
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from typing import Optional

import redis as sync_redis

from vacancy_notifier.config import settings

logger = logging.getLogger(__name__)

LOCK_PREFIX = "vacancy_notifier:lock:"
CHECK_CYCLE_LOCK = "check_cycle"
LOCK_TTL = 300  # seconds; callers pass the tick interval


def get_redis() -> sync_redis.Redis:
    """Get Redis client."""
    return sync_redis.from_url(settings.redis_url)


class CycleLock:
    """Owner-tagged Redis lock (SET NX EX, released only by its owner)."""

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        name: str = CHECK_CYCLE_LOCK,
        ttl: int = LOCK_TTL,
        redis_client: Optional[sync_redis.Redis] = None,
    ):
        self.name = name
        self.ttl = ttl
        self.lock_key = f"{LOCK_PREFIX}{name}"
        self._redis = redis_client
        self._lock_id = str(uuid.uuid4())
        self._acquired = False

    @property
    def redis(self) -> sync_redis.Redis:
        if self._redis is None:
            self._redis = get_redis()
        return self._redis

    @property
    def acquired(self) -> bool:
        return self._acquired

    def acquire(self) -> bool:
        """Try once to take the lock; never blocks."""
        result = self.redis.set(self.lock_key, self._lock_id, nx=True, ex=self.ttl)
        if result:
            self._acquired = True
            logger.debug(f"Acquired lock {self.lock_key}")
        return bool(result)

    def release(self) -> bool:
        """Release the lock if we still own it.

        Returns:
            True if lock was released, False if we didn't own it
        """
        if not self._acquired:
            return False

        try:
            result = self.redis.eval(self.RELEASE_SCRIPT, 1, self.lock_key, self._lock_id)
        except sync_redis.RedisError as e:
            logger.warning(f"Error releasing lock {self.lock_key}: {e}")
            return False

        self._acquired = not bool(result)
        if result:
            logger.debug(f"Released lock {self.lock_key}")
        return bool(result)


@contextmanager
def cycle_lock(
    name: str = CHECK_CYCLE_LOCK,
    ttl: int = LOCK_TTL,
    redis_client: Optional[sync_redis.Redis] = None,
) -> Generator[Optional[CycleLock], None, None]:
    """Yield the held lock, or None when another worker holds it."""
    lock = CycleLock(name, ttl=ttl, redis_client=redis_client)
    if not lock.acquire():
        yield None
        return

    try:
        yield lock
    finally:
        lock.release()
