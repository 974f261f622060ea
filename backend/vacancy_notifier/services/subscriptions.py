"""Subscriber schedule and search-filter persistence."""

import logging
from datetime import UTC, datetime

from sqlalchemy import ColumnElement, Interval, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vacancy_notifier.config import MIN_POLL_INTERVAL_MINUTES
from vacancy_notifier.core.exceptions import StorageError
from vacancy_notifier.database import dialect_insert
from vacancy_notifier.models.subscriber import FilterType, Subscriber, SubscriberFilter

logger = logging.getLogger(__name__)


def validate_poll_interval(minutes: int) -> int:
    if minutes < MIN_POLL_INTERVAL_MINUTES:
        raise ValueError(
            f"poll interval must be at least {MIN_POLL_INTERVAL_MINUTES} minutes, got {minutes}"
        )
    return minutes


def interval_elapsed(dialect: str, now: datetime) -> ColumnElement[bool]:
    """``last_checked_at + max(poll_interval, minimum) <= now`` for the given backend."""
    if dialect == "postgresql":
        minutes = func.greatest(Subscriber.poll_interval_minutes, MIN_POLL_INTERVAL_MINUTES)
        due_at = Subscriber.last_checked_at + func.make_interval(0, 0, 0, 0, 0, minutes, type_=Interval)
        return due_at <= now
    if dialect == "sqlite":
        # stored as naive UTC text, "YYYY-MM-DD HH:MM:SS.ffffff"
        minutes = func.max(Subscriber.poll_interval_minutes, MIN_POLL_INTERVAL_MINUTES)
        due_at = func.strftime(
            "%Y-%m-%d %H:%M:%f",
            Subscriber.last_checked_at,
            func.printf("+%d minutes", minutes),
        )
        return due_at <= now.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S.%f")
    raise NotImplementedError(f"Eligibility query is not supported on {dialect}")


class SqlSubscriberStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, subscriber_id: int) -> Subscriber | None:
        try:
            async with self._session_factory() as db:
                return await db.get(Subscriber, subscriber_id)
        except SQLAlchemyError as e:
            raise StorageError(f"get subscriber {subscriber_id}: {e}") from e

    async def upsert(
        self,
        subscriber_id: int,
        *,
        username: str | None = None,
        enabled: bool | None = None,
        poll_interval_minutes: int | None = None,
    ) -> Subscriber:
        """Create the subscriber if needed and apply the given settings."""
        if poll_interval_minutes is not None:
            validate_poll_interval(poll_interval_minutes)

        try:
            async with self._session_factory() as db:
                subscriber = await db.get(Subscriber, subscriber_id)
                if subscriber is None:
                    subscriber = Subscriber(id=subscriber_id, enabled=True)
                    db.add(subscriber)
                    logger.info(f"Subscriber {subscriber_id} created")
                if username is not None:
                    subscriber.username = username
                if enabled is not None:
                    subscriber.enabled = enabled
                if poll_interval_minutes is not None:
                    subscriber.poll_interval_minutes = poll_interval_minutes
                await db.commit()
                await db.refresh(subscriber)
                return subscriber
        except SQLAlchemyError as e:
            raise StorageError(f"upsert subscriber {subscriber_id}: {e}") from e

    async def get_eligible(self, now: datetime) -> list[Subscriber]:
        """Enabled subscribers whose poll interval has elapsed (or never checked)."""
        try:
            async with self._session_factory() as db:
                dialect = db.get_bind().dialect.name
                result = await db.execute(
                    select(Subscriber)
                    .where(
                        Subscriber.enabled.is_(True),
                        or_(Subscriber.last_checked_at.is_(None), interval_elapsed(dialect, now)),
                    )
                    .order_by(Subscriber.id)
                )
                eligible = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageError(f"load eligible subscribers: {e}") from e

        logger.debug(f"{len(eligible)} subscribers due for a check")
        return eligible

    async def update_last_checked(self, subscriber_id: int, checked_at: datetime) -> None:
        try:
            async with self._session_factory() as db:
                await db.execute(
                    update(Subscriber)
                    .where(Subscriber.id == subscriber_id)
                    .values(last_checked_at=checked_at)
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"update last check for {subscriber_id}: {e}") from e


class SqlFilterStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_filters(self, subscriber_id: int) -> dict[str, str]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(SubscriberFilter.filter_type, SubscriberFilter.filter_value)
                    .where(SubscriberFilter.subscriber_id == subscriber_id)
                    .order_by(SubscriberFilter.filter_type)
                )
                return {filter_type: value for filter_type, value in result.all()}
        except SQLAlchemyError as e:
            raise StorageError(f"get filters for {subscriber_id}: {e}") from e

    async def save_filter(self, subscriber_id: int, filter_type: FilterType, value: str) -> None:
        try:
            async with self._session_factory() as db:
                stmt = dialect_insert(db, SubscriberFilter).values(
                    subscriber_id=subscriber_id,
                    filter_type=filter_type.value,
                    filter_value=value,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["subscriber_id", "filter_type"],
                    set_={"filter_value": stmt.excluded.filter_value, "created_at": func.now()},
                )
                await db.execute(stmt)
                await db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"save {filter_type.value} filter for {subscriber_id}: {e}") from e

        logger.info(
            f"Filter {filter_type.value}={value!r} saved for subscriber {subscriber_id}",
            extra={"subscriber_id": subscriber_id},
        )

    async def delete_filter(self, subscriber_id: int, filter_type: FilterType) -> bool:
        """Returns False when the subscriber had no such filter."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    delete(SubscriberFilter).where(
                        SubscriberFilter.subscriber_id == subscriber_id,
                        SubscriberFilter.filter_type == filter_type.value,
                    )
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"delete {filter_type.value} filter for {subscriber_id}: {e}") from e
        return result.rowcount > 0

    async def clear_filters(self, subscriber_id: int) -> int:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    delete(SubscriberFilter).where(SubscriberFilter.subscriber_id == subscriber_id)
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"clear filters for {subscriber_id}: {e}") from e

        logger.info(f"Cleared {result.rowcount} filters for subscriber {subscriber_id}")
        return result.rowcount
