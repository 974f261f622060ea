import logging

from fastapi import APIRouter, Depends, HTTPException, status

from vacancy_notifier.api.dependencies import (
    enforce_user_quota,
    get_filter_store,
    get_seen_store,
    get_subscriber_store,
)
from vacancy_notifier.models.subscriber import FilterType
from vacancy_notifier.schemas.subscriber import (
    FilterUpdate,
    SubscriberResponse,
    SubscriberStats,
    SubscriberUpdate,
)
from vacancy_notifier.services.seen_store import SqlSeenStore
from vacancy_notifier.services.subscriptions import SqlFilterStore, SqlSubscriberStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/subscribers",
    tags=["subscribers"],
    dependencies=[Depends(enforce_user_quota)],
)

NUMERIC_FILTERS = {FilterType.SALARY, FilterType.PUBLISHED_WITHIN}


async def _require_subscriber(store: SqlSubscriberStore, subscriber_id: int):
    subscriber = await store.get(subscriber_id)
    if subscriber is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscriber not found")
    return subscriber


@router.get("/{subscriber_id}", response_model=SubscriberResponse, summary="Get Subscriber")
async def get_subscriber(
    subscriber_id: int,
    store: SqlSubscriberStore = Depends(get_subscriber_store),
):
    return await _require_subscriber(store, subscriber_id)


@router.put("/{subscriber_id}", response_model=SubscriberResponse, summary="Create Or Update Subscriber")
async def put_subscriber(
    subscriber_id: int,
    request: SubscriberUpdate,
    store: SqlSubscriberStore = Depends(get_subscriber_store),
):
    """Register a subscriber or change its notification settings."""
    return await store.upsert(
        subscriber_id,
        username=request.username,
        enabled=request.enabled,
        poll_interval_minutes=request.poll_interval_minutes,
    )


@router.get("/{subscriber_id}/filters", response_model=dict[str, str], summary="List Filters")
async def list_filters(
    subscriber_id: int,
    subscribers: SqlSubscriberStore = Depends(get_subscriber_store),
    filters: SqlFilterStore = Depends(get_filter_store),
):
    await _require_subscriber(subscribers, subscriber_id)
    return await filters.get_filters(subscriber_id)


@router.put(
    "/{subscriber_id}/filters/{filter_type}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Set Filter",
)
async def set_filter(
    subscriber_id: int,
    filter_type: FilterType,
    request: FilterUpdate,
    subscribers: SqlSubscriberStore = Depends(get_subscriber_store),
    filters: SqlFilterStore = Depends(get_filter_store),
):
    await _require_subscriber(subscribers, subscriber_id)
    value = request.value.strip()
    if filter_type in NUMERIC_FILTERS and not value.isdigit():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{filter_type.value} filter must be a positive integer",
        )
    await filters.save_filter(subscriber_id, filter_type, value)


@router.delete(
    "/{subscriber_id}/filters/{filter_type}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Filter",
)
async def delete_filter(
    subscriber_id: int,
    filter_type: FilterType,
    filters: SqlFilterStore = Depends(get_filter_store),
):
    if not await filters.delete_filter(subscriber_id, filter_type):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Filter not found")


@router.delete(
    "/{subscriber_id}/filters",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Clear Filters",
)
async def clear_filters(
    subscriber_id: int,
    filters: SqlFilterStore = Depends(get_filter_store),
):
    await filters.clear_filters(subscriber_id)


@router.get("/{subscriber_id}/stats", response_model=SubscriberStats, summary="Subscriber Stats")
async def subscriber_stats(
    subscriber_id: int,
    subscribers: SqlSubscriberStore = Depends(get_subscriber_store),
    filters: SqlFilterStore = Depends(get_filter_store),
    seen: SqlSeenStore = Depends(get_seen_store),
):
    await _require_subscriber(subscribers, subscriber_id)
    return SubscriberStats(
        subscriber_id=subscriber_id,
        filter_count=len(await filters.get_filters(subscriber_id)),
        seen_vacancies_count=await seen.count_seen(subscriber_id),
    )
