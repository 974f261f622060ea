"""Vacancy checker: the periodic notification scheduler.

Architecture notes:
- One cooperative loop (``start``) waits on either the next tick or the stop
  event; each tick runs ``run_cycle`` to completion.  The stop event is only
  looked at between cycles and between subscribers, never mid-delivery.
- Subscribers within a cycle are processed strictly one after another, so
  this path never has more than one HH request in flight.  The interactive
  API shares the same limiter and client and may call concurrently.
- Schedule state: ``last_checked_at`` is advanced only when a check
  completes (including "nothing new").  Quota refusals, API failures and
  seen-store read failures leave it untouched so the subscriber is retried
  on the next tick.
- Delivery is at-most-once: only vacancies that actually reached the
  subscriber are marked seen, and a failed send is never retried.  Seen and
  cache writes go through a BackgroundWriter and are drained before the
  cycle returns.
"""

import asyncio
import enum
import functools
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vacancy_notifier.config import (
    HH_API_MAX_REQUESTS_PER_WINDOW,
    INTER_SUBSCRIBER_DELAY,
    ITEM_SEND_DELAY,
    settings,
)
from vacancy_notifier.core.exceptions import APIError, DeliveryError, StorageError
from vacancy_notifier.core.rate_limit import RateLimiter, acquire_api_permit, user_key
from vacancy_notifier.models.subscriber import Subscriber
from vacancy_notifier.schemas.vacancy import VacancyItem, extract_vacancy_ids
from vacancy_notifier.services.background import BackgroundWriter
from vacancy_notifier.services.delivery import TelegramSink, render_summary, render_vacancy
from vacancy_notifier.services.hh_client import HeadHunterClient
from vacancy_notifier.services.interfaces import (
    DeliverySink,
    FilterStore,
    SeenStore,
    SubscriberStore,
    VacancyCache,
    VacancySearch,
)
from vacancy_notifier.services.search_params import build_search_params
from vacancy_notifier.services.seen_store import SqlSeenStore, SqlVacancyCache
from vacancy_notifier.services.subscriptions import SqlFilterStore, SqlSubscriberStore

logger = logging.getLogger(__name__)


class CheckerState(str, enum.Enum):
    IDLE = "idle"
    LOADING_ELIGIBLE = "loading_eligible"
    CHECKING = "checking"
    DELIVERING = "delivering"
    UPDATING_STATE = "updating_state"


class CheckOutcome(str, enum.Enum):
    SKIPPED_NO_FILTERS = "skipped_no_filters"
    SKIPPED_QUOTA = "skipped_quota"
    FAILED = "failed"
    NO_NEW = "no_new"
    DELIVERED = "delivered"


@dataclass
class SubscriberResult:
    subscriber_id: int
    outcome: CheckOutcome
    delivered: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class CycleReport:
    cycle_id: str
    started_at: datetime
    eligible: int = 0
    results: list[SubscriberResult] = field(default_factory=list)
    write_failures: int = 0
    interrupted: bool = False

    def count(self, outcome: CheckOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def delivered_total(self) -> int:
        return sum(len(r.delivered) for r in self.results)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class VacancyChecker:
    def __init__(
        self,
        client: VacancySearch,
        limiter: RateLimiter,
        subscribers: SubscriberStore,
        filters: FilterStore,
        seen: SeenStore,
        cache: VacancyCache,
        sink: DeliverySink,
        *,
        writer: BackgroundWriter | None = None,
        tick_interval: float | None = None,
        max_items_per_check: int | None = None,
        startup_delay: float | None = None,
        inter_subscriber_delay: float = INTER_SUBSCRIBER_DELAY,
        item_send_delay: float = ITEM_SEND_DELAY,
        api_ceiling: int = HH_API_MAX_REQUESTS_PER_WINDOW,
        render_item: Callable[[VacancyItem], str] = render_vacancy,
        render_header: Callable[[int], str] = render_summary,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._client = client
        self._limiter = limiter
        self._subscribers = subscribers
        self._filters = filters
        self._seen = seen
        self._cache = cache
        self._sink = sink
        self._writer = writer or BackgroundWriter()
        self.tick_interval = tick_interval if tick_interval is not None else settings.tick_interval
        self.max_items_per_check = max_items_per_check or settings.max_items_per_check
        self.startup_delay = (
            startup_delay if startup_delay is not None else settings.scheduler_startup_delay
        )
        self.inter_subscriber_delay = inter_subscriber_delay
        self.item_send_delay = item_send_delay
        self.api_ceiling = api_ceiling
        self._render_item = render_item
        self._render_header = render_header
        self._sleep = sleep
        self._clock = clock

        self.state = CheckerState.IDLE
        self._stop_event = asyncio.Event()
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run cycles every ``tick_interval`` seconds until ``stop()`` is called."""
        if self._running:
            raise RuntimeError("vacancy checker is already running")
        self._running = True
        logger.info(
            f"Vacancy checker started (tick={self.tick_interval}s, "
            f"max_items_per_check={self.max_items_per_check})"
        )

        loop = asyncio.get_running_loop()
        try:
            if await self._wait_for_stop(self.startup_delay):
                return
            while not self.stopping:
                next_tick = loop.time() + self.tick_interval
                await self.run_cycle()
                if await self._wait_for_stop(next_tick - loop.time()):
                    break
        finally:
            await self._writer.close()
            self.state = CheckerState.IDLE
            self._running = False
            logger.info("Vacancy checker stopped")

    def stop(self) -> None:
        """Ask the loop to exit at the next cycle or subscriber boundary."""
        self._stop_event.set()

    async def _wait_for_stop(self, timeout: float) -> bool:
        if timeout <= 0:
            return self.stopping
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout)
        except TimeoutError:
            return False
        return True

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleReport:
        report = CycleReport(cycle_id=uuid.uuid4().hex[:8], started_at=self._clock())
        log_extra = {"cycle_id": report.cycle_id}

        self.state = CheckerState.LOADING_ELIGIBLE
        try:
            subscribers = await self._subscribers.get_eligible(report.started_at)
        except StorageError as e:
            logger.error(f"Failed to load subscribers to check: {e}", extra=log_extra)
            self.state = CheckerState.IDLE
            return report

        report.eligible = len(subscribers)
        if not subscribers:
            logger.debug("No subscribers due for a vacancy check", extra=log_extra)
            self.state = CheckerState.IDLE
            return report

        logger.info(f"Checking vacancies for {len(subscribers)} subscribers", extra=log_extra)

        for index, subscriber in enumerate(subscribers):
            if index > 0:
                await self._sleep(self.inter_subscriber_delay)
            if self.stopping:
                report.interrupted = True
                logger.info(
                    f"Stop requested, {len(subscribers) - index} subscribers left unchecked",
                    extra=log_extra,
                )
                break

            try:
                result = await self.check_subscriber(subscriber)
            except Exception as e:
                logger.exception(
                    f"Unexpected error checking subscriber {subscriber.id}: {e}",
                    extra={**log_extra, "subscriber_id": subscriber.id},
                )
                result = SubscriberResult(subscriber.id, CheckOutcome.FAILED, error=str(e))
            report.results.append(result)

        await self._writer.drain()
        report.write_failures = len(self._writer.take_failures())
        self.state = CheckerState.IDLE

        logger.info(
            f"Finished vacancy check: {report.delivered_total} vacancies delivered, "
            f"{report.count(CheckOutcome.FAILED)} failed, "
            f"{report.count(CheckOutcome.SKIPPED_QUOTA)} deferred by quota",
            extra=log_extra,
        )
        return report

    async def check_subscriber(self, subscriber: Subscriber) -> SubscriberResult:
        sid = subscriber.id
        log_extra = {"subscriber_id": sid}
        self.state = CheckerState.CHECKING

        try:
            filters = await self._filters.get_filters(sid)
        except StorageError as e:
            logger.error(f"Failed to load filters for subscriber {sid}: {e}", extra=log_extra)
            return SubscriberResult(sid, CheckOutcome.FAILED, error=str(e))

        if not filters:
            logger.debug(f"Subscriber {sid} has no filters", extra=log_extra)
            await self._mark_checked(sid)
            return SubscriberResult(sid, CheckOutcome.SKIPPED_NO_FILTERS)

        if not await acquire_api_permit(self._limiter, self.api_ceiling):
            logger.info(f"HH API budget exhausted, deferring subscriber {sid}", extra=log_extra)
            return SubscriberResult(sid, CheckOutcome.SKIPPED_QUOTA)
        await self._record_interaction(sid)

        params = build_search_params(filters, per_page=self.max_items_per_check, now=self._clock())
        try:
            response = await self._client.search(params)
        except APIError as e:
            logger.warning(f"Vacancy search failed for subscriber {sid}: {e}", extra=log_extra)
            return SubscriberResult(sid, CheckOutcome.FAILED, error=str(e))

        if not response.items:
            logger.debug(f"No vacancies found for subscriber {sid}", extra=log_extra)
            await self._mark_checked(sid)
            return SubscriberResult(sid, CheckOutcome.NO_NEW)

        try:
            unseen_ids = set(await self._seen.get_unseen(sid, extract_vacancy_ids(response)))
        except StorageError as e:
            logger.error(f"Failed to diff seen vacancies for {sid}: {e}", extra=log_extra)
            return SubscriberResult(sid, CheckOutcome.FAILED, error=str(e))

        fresh: list[VacancyItem] = []
        for item in response.items:
            if item.id in unseen_ids:
                fresh.append(item)
                unseen_ids.discard(item.id)

        if not fresh:
            logger.debug(f"No new vacancies for subscriber {sid}", extra=log_extra)
            await self._mark_checked(sid)
            return SubscriberResult(sid, CheckOutcome.NO_NEW)

        batch = fresh[: self.max_items_per_check]

        self.state = CheckerState.DELIVERING
        try:
            delivered = await self._deliver(sid, batch)
        except DeliveryError as e:
            logger.error(f"Failed to notify subscriber {sid}: {e}", extra=log_extra)
            return SubscriberResult(sid, CheckOutcome.FAILED, error=str(e))

        self.state = CheckerState.UPDATING_STATE
        for item in delivered:
            await self._writer.submit(
                f"seen:{sid}:{item.id}", functools.partial(self._seen.mark_seen, sid, item.id)
            )
            await self._writer.submit(f"cache:{item.id}", functools.partial(self._cache.upsert, item))
        await self._mark_checked(sid)

        logger.info(
            f"Sent {len(delivered)}/{len(batch)} new vacancies to subscriber {sid} "
            f"({len(fresh) - len(batch)} held back by the per-check cap)",
            extra=log_extra,
        )
        return SubscriberResult(sid, CheckOutcome.DELIVERED, delivered=[i.id for i in delivered])

    async def _deliver(self, subscriber_id: int, batch: list[VacancyItem]) -> list[VacancyItem]:
        """Send the summary, then each vacancy; return the ones that went through.

        Raises DeliveryError only when the summary itself cannot be sent.  A
        failed item is skipped and never resent; the items already delivered
        are still returned so they get marked seen.
        """
        await self._sink.send(subscriber_id, self._render_header(len(batch)))

        delivered: list[VacancyItem] = []
        for index, item in enumerate(batch):
            if index > 0:
                await self._sleep(self.item_send_delay)
            try:
                await self._sink.send(subscriber_id, self._render_item(item))
            except Exception as e:
                logger.error(
                    f"Failed to send vacancy {item.id} to subscriber {subscriber_id}: {e}",
                    extra={"subscriber_id": subscriber_id, "vacancy_id": item.id},
                )
                continue
            delivered.append(item)
        return delivered

    async def _mark_checked(self, subscriber_id: int) -> None:
        try:
            await self._subscribers.update_last_checked(subscriber_id, self._clock())
        except StorageError as e:
            logger.error(
                f"Failed to update last check for subscriber {subscriber_id}: {e}",
                extra={"subscriber_id": subscriber_id},
            )

    async def _record_interaction(self, subscriber_id: int) -> None:
        try:
            await self._limiter.increment(user_key(subscriber_id))
        except StorageError as e:
            logger.warning(
                f"Failed to count interaction for {subscriber_id}: {e}",
                extra={"subscriber_id": subscriber_id},
            )


def create_checker(
    session_factory: async_sessionmaker[AsyncSession],
    limiter: RateLimiter,
    *,
    client: VacancySearch | None = None,
    sink: DeliverySink | None = None,
    **kwargs,
) -> VacancyChecker:
    """Wire a checker against the SQL stores, the HH API and Telegram."""
    return VacancyChecker(
        client=client or HeadHunterClient(),
        limiter=limiter,
        subscribers=SqlSubscriberStore(session_factory),
        filters=SqlFilterStore(session_factory),
        seen=SqlSeenStore(session_factory),
        cache=SqlVacancyCache(session_factory),
        sink=sink or TelegramSink(),
        **kwargs,
    )
