"""Translate a subscriber's stored filters into an HH search query."""

import logging
from datetime import UTC, datetime, timedelta

from vacancy_notifier.config import (
    DEFAULT_PUBLISHED_WITHIN_DAYS,
    MAX_PUBLISHED_WITHIN_DAYS,
    MIN_PUBLISHED_WITHIN_DAYS,
)
from vacancy_notifier.models.subscriber import FilterType
from vacancy_notifier.schemas.vacancy import SearchParams

logger = logging.getLogger(__name__)


def published_within_days(raw: str | None) -> int:
    """Parse the ``published_within`` filter, clamped to the supported range."""
    if raw is None:
        return DEFAULT_PUBLISHED_WITHIN_DAYS
    try:
        days = int(raw)
    except ValueError:
        return DEFAULT_PUBLISHED_WITHIN_DAYS
    return min(max(days, MIN_PUBLISHED_WITHIN_DAYS), MAX_PUBLISHED_WITHIN_DAYS)


def build_search_params(
    filters: dict[str, str], per_page: int = 20, now: datetime | None = None
) -> SearchParams:
    now = now or datetime.now(UTC)
    params = SearchParams(
        text=filters.get(FilterType.TEXT.value, ""),
        area=filters.get(FilterType.AREA.value, ""),
        experience=filters.get(FilterType.EXPERIENCE.value, ""),
        schedule=filters.get(FilterType.SCHEDULE.value, ""),
        per_page=per_page,
    )

    salary = filters.get(FilterType.SALARY.value)
    if salary:
        try:
            params.salary = int(salary)
        except ValueError:
            logger.debug(f"Ignoring non-numeric salary filter {salary!r}")

    days = published_within_days(filters.get(FilterType.PUBLISHED_WITHIN.value))
    params.date_from = now - timedelta(days=days)
    params.date_to = now
    return params
