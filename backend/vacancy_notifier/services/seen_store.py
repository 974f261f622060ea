"""Seen-set and vacancy metadata cache backed by SQLAlchemy.

A ``seen_vacancies`` row is the only proof that a vacancy reached a
subscriber.  Rows are inserted with ON CONFLICT DO NOTHING, so concurrent
markers of the same (subscriber, vacancy) pair never error.
"""

import logging
from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vacancy_notifier.core.exceptions import StorageError
from vacancy_notifier.database import dialect_insert
from vacancy_notifier.models.vacancy import CachedVacancy, SeenVacancy
from vacancy_notifier.schemas.vacancy import VacancyItem

logger = logging.getLogger(__name__)


class SqlSeenStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_unseen(self, subscriber_id: int, vacancy_ids: list[str]) -> list[str]:
        """Return the ids in ``vacancy_ids`` with no seen record, in input order."""
        if not vacancy_ids:
            return []

        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(SeenVacancy.vacancy_id).where(
                        SeenVacancy.subscriber_id == subscriber_id,
                        SeenVacancy.vacancy_id.in_(vacancy_ids),
                    )
                )
                seen = set(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageError(f"get unseen vacancies for {subscriber_id}: {e}") from e

        unseen = list(dict.fromkeys(vid for vid in vacancy_ids if vid not in seen))
        logger.debug(
            f"Subscriber {subscriber_id}: {len(unseen)} unseen of {len(vacancy_ids)}",
            extra={"subscriber_id": subscriber_id},
        )
        return unseen

    async def mark_seen(self, subscriber_id: int, vacancy_id: str) -> None:
        try:
            async with self._session_factory() as db:
                stmt = (
                    dialect_insert(db, SeenVacancy)
                    .values(
                        subscriber_id=subscriber_id,
                        vacancy_id=vacancy_id,
                        seen_at=datetime.now(UTC),
                    )
                    .on_conflict_do_nothing(index_elements=["subscriber_id", "vacancy_id"])
                )
                await db.execute(stmt)
                await db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"mark {vacancy_id} seen for {subscriber_id}: {e}") from e

    async def is_seen(self, subscriber_id: int, vacancy_id: str) -> bool:
        return not await self.get_unseen(subscriber_id, [vacancy_id])

    async def count_seen(self, subscriber_id: int) -> int:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(func.count())
                    .select_from(SeenVacancy)
                    .where(SeenVacancy.subscriber_id == subscriber_id)
                )
                return result.scalar_one()
        except SQLAlchemyError as e:
            raise StorageError(f"count seen vacancies for {subscriber_id}: {e}") from e


def vacancy_to_row(item: VacancyItem) -> dict:
    salary = item.salary
    return {
        "id": item.id,
        "title": item.name,
        "company": item.employer.name or None,
        "salary_from": salary.from_ if salary else None,
        "salary_to": salary.to if salary else None,
        "currency": salary.currency if salary else None,
        "area": item.area.name,
        "area_id": item.area.id,
        "url": item.alternate_url,
        "published_at": item.published_at,
        "experience": item.experience.name if item.experience else None,
        "schedule": item.schedule.name if item.schedule else None,
        "employment": item.employment.name if item.employment else None,
        "raw_data": item.model_dump(mode="json", by_alias=True),
    }


class SqlVacancyCache:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def upsert(self, item: VacancyItem) -> None:
        row = vacancy_to_row(item)
        try:
            async with self._session_factory() as db:
                stmt = dialect_insert(db, CachedVacancy).values(**row, cached_at=datetime.now(UTC))
                stmt = stmt.on_conflict_do_update(
                    index_elements=["id"],
                    set_={
                        **{column: stmt.excluded[column] for column in row if column != "id"},
                        "cached_at": stmt.excluded.cached_at,
                    },
                )
                await db.execute(stmt)
                await db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"cache vacancy {item.id}: {e}") from e

    async def get(self, vacancy_id: str) -> CachedVacancy | None:
        try:
            async with self._session_factory() as db:
                return await db.get(CachedVacancy, vacancy_id)
        except SQLAlchemyError as e:
            raise StorageError(f"get cached vacancy {vacancy_id}: {e}") from e
