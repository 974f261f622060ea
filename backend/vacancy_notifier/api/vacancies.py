"""On-demand vacancy search: the interactive path next to the scheduler.

Shares the HH client and rate limiter with the background checker: every
request takes a slot from the subscriber's own budget (router dependency)
and from the global HH API budget.  New vacancies are flagged in the
response, then the shown ones (up to max_items_per_check) are marked seen
and cached so the scheduler does not push them again.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from vacancy_notifier.api.dependencies import (
    enforce_user_quota,
    get_filter_store,
    get_hh_client,
    get_rate_limiter,
    get_seen_store,
    get_vacancy_cache,
)
from vacancy_notifier.config import settings
from vacancy_notifier.core.exceptions import StorageError, TerminalAPIError, TransientAPIError
from vacancy_notifier.core.rate_limit import RateLimiter, acquire_api_permit
from vacancy_notifier.schemas.subscriber import VacancyPage
from vacancy_notifier.schemas.vacancy import VacancyItem, extract_vacancy_ids
from vacancy_notifier.services.hh_client import HeadHunterClient
from vacancy_notifier.services.search_params import build_search_params
from vacancy_notifier.services.seen_store import SqlSeenStore, SqlVacancyCache
from vacancy_notifier.services.subscriptions import SqlFilterStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/subscribers",
    tags=["vacancies"],
    dependencies=[Depends(enforce_user_quota)],
)


async def _remember_shown(
    subscriber_id: int,
    shown: list[VacancyItem],
    new_ids: list[str],
    seen: SqlSeenStore,
    cache: SqlVacancyCache,
) -> None:
    fresh = set(new_ids)
    for item in shown:
        if item.id not in fresh:
            continue
        fresh.discard(item.id)
        try:
            await seen.mark_seen(subscriber_id, item.id)
            await cache.upsert(item)
        except StorageError as e:
            logger.error(
                f"Failed to record shown vacancy {item.id} for {subscriber_id}: {e}",
                extra={"subscriber_id": subscriber_id, "vacancy_id": item.id},
            )


@router.get("/{subscriber_id}/vacancies", response_model=VacancyPage, summary="Search Vacancies")
async def search_vacancies(
    subscriber_id: int,
    page: int = Query(default=0, ge=0, le=99),
    limiter: RateLimiter = Depends(get_rate_limiter),
    client: HeadHunterClient = Depends(get_hh_client),
    filters: SqlFilterStore = Depends(get_filter_store),
    seen: SqlSeenStore = Depends(get_seen_store),
    cache: SqlVacancyCache = Depends(get_vacancy_cache),
):
    filters_map = await filters.get_filters(subscriber_id)
    if not filters_map:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Set at least one search filter first",
        )

    if not await acquire_api_permit(limiter):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Vacancy search is busy, try again in a minute",
        )

    params = build_search_params(filters_map, per_page=settings.max_items_per_check)
    try:
        response = await client.search(params, page=page)
    except TransientAPIError as e:
        logger.warning(
            f"Interactive search failed for {subscriber_id}: {e}",
            extra={"subscriber_id": subscriber_id},
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Vacancy search is unavailable"
        ) from e
    except TerminalAPIError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    try:
        new_ids = await seen.get_unseen(subscriber_id, extract_vacancy_ids(response))
    except StorageError as e:
        logger.error(
            f"Seen lookup failed for {subscriber_id}, flagging all as new: {e}",
            extra={"subscriber_id": subscriber_id},
        )
        new_ids = extract_vacancy_ids(response)

    await _remember_shown(
        subscriber_id, response.items[: settings.max_items_per_check], new_ids, seen, cache
    )

    return VacancyPage(
        items=response.items,
        new_ids=new_ids,
        found=response.found,
        page=response.page,
        pages=response.pages,
    )
