"""Fixed-window request counters shared by the scheduler and the interactive API.

Two keys are in use:
    ratelimit:hhapi           every outbound HH API call, whatever the source
    ratelimit:user:<id>       every interaction of one subscriber (UI + background)

A window starts with the first increment of a key and is never extended by
later increments; when it expires the key disappears and the count restarts.

Usage:
    limiter = RedisRateLimiter()
    if not await acquire_api_permit(limiter):
        return  # defer to the next tick, do not queue or block
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from vacancy_notifier.config import (
    HH_API_MAX_REQUESTS_PER_WINDOW,
    RATE_LIMIT_WINDOW_SECONDS,
    USER_MAX_REQUESTS_PER_WINDOW,
    settings,
)
from vacancy_notifier.core.exceptions import StorageError

logger = logging.getLogger(__name__)

GLOBAL_API_KEY = "ratelimit:hhapi"
USER_KEY_PREFIX = "ratelimit:user:"


def user_key(subscriber_id: int) -> str:
    return f"{USER_KEY_PREFIX}{subscriber_id}"


class RateLimiter(ABC):
    """Atomic fixed-window counter."""

    def __init__(self, window_seconds: int = RATE_LIMIT_WINDOW_SECONDS):
        self.window_seconds = window_seconds

    @abstractmethod
    async def increment(self, key: str) -> int:
        """Add one to ``key`` and return the new count (creates the window if absent)."""

    @abstractmethod
    async def count(self, key: str) -> int:
        """Current count in the live window, 0 when none exists."""

    @abstractmethod
    async def acquire(self, key: str, ceiling: int) -> bool:
        """Increment only if the count is below ``ceiling``; True when a permit was taken."""

    async def check(self, key: str, ceiling: int) -> bool:
        return await self.count(key) < ceiling


class InMemoryRateLimiter(RateLimiter):
    """Process-local limiter for a single worker or tests.

    A threading lock guards the map so the same instance is safe from the
    event loop and from worker threads alike.
    """

    def __init__(
        self,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(window_seconds)
        self._clock = clock
        self._windows: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str, now: float) -> tuple[int, float] | None:
        window = self._windows.get(key)
        if window is None:
            return None
        if now >= window[1]:
            del self._windows[key]
            return None
        return window

    def _bump(self, key: str, now: float) -> int:
        window = self._live(key, now)
        if window is None:
            self._windows[key] = (1, now + self.window_seconds)
            return 1
        count, expires_at = window
        self._windows[key] = (count + 1, expires_at)
        return count + 1

    async def increment(self, key: str) -> int:
        with self._lock:
            return self._bump(key, self._clock())

    async def count(self, key: str) -> int:
        with self._lock:
            window = self._live(key, self._clock())
            return window[0] if window else 0

    async def acquire(self, key: str, ceiling: int) -> bool:
        with self._lock:
            now = self._clock()
            window = self._live(key, now)
            if window is not None and window[0] >= ceiling:
                return False
            self._bump(key, now)
            return True


class RedisRateLimiter(RateLimiter):
    """Redis-backed limiter shared across processes.

    Each operation is a single Lua script, so increments from the scheduler
    and the API never interleave.  When Redis is unreachable ``acquire`` and
    ``check`` fail open and log the error.
    """

    INCREMENT_SCRIPT = """
    local count = redis.call("INCR", KEYS[1])
    if count == 1 then
        redis.call("EXPIRE", KEYS[1], ARGV[1])
    end
    return count
    """

    ACQUIRE_SCRIPT = """
    local current = tonumber(redis.call("GET", KEYS[1]) or "0")
    if current >= tonumber(ARGV[2]) then
        return 0
    end
    local count = redis.call("INCR", KEYS[1])
    if count == 1 then
        redis.call("EXPIRE", KEYS[1], ARGV[1])
    end
    return count
    """

    def __init__(
        self,
        redis_client: aioredis.Redis | None = None,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
    ):
        super().__init__(window_seconds)
        self._redis = redis_client

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(settings.redis_url, decode_responses=True)
        return self._redis

    async def increment(self, key: str) -> int:
        try:
            return int(await self.redis.eval(self.INCREMENT_SCRIPT, 1, key, self.window_seconds))
        except RedisError as e:
            raise StorageError(f"increment {key}: {e}") from e

    async def count(self, key: str) -> int:
        try:
            value = await self.redis.get(key)
        except RedisError as e:
            raise StorageError(f"get {key}: {e}") from e
        return int(value) if value else 0

    async def check(self, key: str, ceiling: int) -> bool:
        try:
            return await super().check(key, ceiling)
        except StorageError as e:
            logger.error(f"Rate limit check failed for {key}, allowing: {e}")
            return True

    async def acquire(self, key: str, ceiling: int) -> bool:
        try:
            result = await self.redis.eval(
                self.ACQUIRE_SCRIPT, 1, key, self.window_seconds, ceiling
            )
        except RedisError as e:
            logger.error(f"Rate limit acquire failed for {key}, allowing: {e}")
            return True
        return int(result) > 0

    async def aclose(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


async def acquire_api_permit(
    limiter: RateLimiter, ceiling: int = HH_API_MAX_REQUESTS_PER_WINDOW
) -> bool:
    """Take one slot of the global HH API budget."""
    allowed = await limiter.acquire(GLOBAL_API_KEY, ceiling)
    if not allowed:
        logger.info(f"HH API budget exhausted ({ceiling} per {limiter.window_seconds}s)")
    return allowed


async def acquire_user_permit(
    limiter: RateLimiter, subscriber_id: int, ceiling: int = USER_MAX_REQUESTS_PER_WINDOW
) -> bool:
    """Take one slot of a subscriber's interaction budget."""
    allowed = await limiter.acquire(user_key(subscriber_id), ceiling)
    if not allowed:
        logger.info(
            f"Subscriber {subscriber_id} exceeded {ceiling} requests per window",
            extra={"subscriber_id": subscriber_id},
        )
    return allowed
