from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vacancy_notifier.core.rate_limit import RateLimiter, RedisRateLimiter, acquire_user_permit
from vacancy_notifier.database import async_session_factory
from vacancy_notifier.services.hh_client import HeadHunterClient
from vacancy_notifier.services.seen_store import SqlSeenStore, SqlVacancyCache
from vacancy_notifier.services.subscriptions import SqlFilterStore, SqlSubscriberStore

_rate_limiter: RateLimiter | None = None
_hh_client: HeadHunterClient | None = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RedisRateLimiter()
    return _rate_limiter


def get_hh_client() -> HeadHunterClient:
    global _hh_client
    if _hh_client is None:
        _hh_client = HeadHunterClient()
    return _hh_client


def get_subscriber_store(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SqlSubscriberStore:
    return SqlSubscriberStore(factory)


def get_filter_store(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SqlFilterStore:
    return SqlFilterStore(factory)


def get_seen_store(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SqlSeenStore:
    return SqlSeenStore(factory)


def get_vacancy_cache(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SqlVacancyCache:
    return SqlVacancyCache(factory)


async def enforce_user_quota(
    subscriber_id: int,
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> None:
    """Charge every per-subscriber request against that subscriber's budget."""
    if not await acquire_user_permit(limiter, subscriber_id):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests, please wait a minute",
        )
