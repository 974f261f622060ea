"""Collaborator contracts the vacancy checker depends on.

The SQLAlchemy stores and the Telegram sink implement these; tests and
alternative deployments can swap in anything with the same methods.
"""

from datetime import datetime
from typing import Protocol

from vacancy_notifier.models.subscriber import Subscriber
from vacancy_notifier.schemas.vacancy import SearchParams, VacancyItem, VacancySearchResponse


class VacancySearch(Protocol):
    async def search(self, params: SearchParams, page: int = 0) -> VacancySearchResponse: ...


class SubscriberStore(Protocol):
    async def get_eligible(self, now: datetime) -> list[Subscriber]: ...

    async def update_last_checked(self, subscriber_id: int, checked_at: datetime) -> None: ...


class FilterStore(Protocol):
    async def get_filters(self, subscriber_id: int) -> dict[str, str]: ...


class SeenStore(Protocol):
    async def get_unseen(self, subscriber_id: int, vacancy_ids: list[str]) -> list[str]: ...

    async def mark_seen(self, subscriber_id: int, vacancy_id: str) -> None: ...


class VacancyCache(Protocol):
    async def upsert(self, item: VacancyItem) -> None: ...


class DeliverySink(Protocol):
    async def send(self, subscriber_id: int, content: str) -> int: ...
