from datetime import datetime

from pydantic import BaseModel, Field

from vacancy_notifier.config import MIN_POLL_INTERVAL_MINUTES
from vacancy_notifier.schemas.vacancy import VacancyItem


class SubscriberUpdate(BaseModel):
    username: str | None = None
    enabled: bool | None = None
    poll_interval_minutes: int | None = Field(default=None, ge=MIN_POLL_INTERVAL_MINUTES)


class SubscriberResponse(BaseModel):
    id: int
    username: str | None
    enabled: bool
    poll_interval_minutes: int
    last_checked_at: datetime | None

    model_config = {"from_attributes": True}


class FilterUpdate(BaseModel):
    value: str = Field(min_length=1, max_length=500)


class SubscriberStats(BaseModel):
    subscriber_id: int
    filter_count: int
    seen_vacancies_count: int


class VacancyPage(BaseModel):
    items: list[VacancyItem]
    new_ids: list[str]
    found: int
    page: int
    pages: int
