"""HeadHunter API client: vacancy search with bounded retries.

Retry policy per attempt (HH_MAX_ATTEMPTS in total):
  - transport errors and 5xx: sleep attempt * HH_BACKOFF_STEP, then retry
  - 429: sleep HH_THROTTLE_COOLDOWN, then retry
  - any other 4xx: fail immediately with TerminalAPIError
Retries run on tenacity; no sleep happens after the final attempt.  The
client builds a fresh httpx.AsyncClient per call, so one instance can be
shared by the scheduler and the interactive API.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
)

from vacancy_notifier.config import (
    HH_BACKOFF_STEP,
    HH_MAX_ATTEMPTS,
    HH_THROTTLE_COOLDOWN,
    settings,
)
from vacancy_notifier.core.exceptions import APIError, TerminalAPIError, TransientAPIError
from vacancy_notifier.schemas.vacancy import HHErrorResponse, SearchParams, VacancySearchResponse

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class HeadHunterClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        user_agent: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        max_attempts: int = HH_MAX_ATTEMPTS,
        backoff_step: float = HH_BACKOFF_STEP,
        throttle_cooldown: float = HH_THROTTLE_COOLDOWN,
    ):
        self.base_url = (base_url or settings.hh_api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.hh_api_timeout
        self.user_agent = user_agent or settings.hh_user_agent
        self.max_attempts = max_attempts
        self.backoff_step = backoff_step
        self.throttle_cooldown = throttle_cooldown
        self._transport = transport
        self._sleep = sleep

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent, "Accept": "application/json"},
            transport=self._transport,
        )

    async def search(self, params: SearchParams, page: int = 0) -> VacancySearchResponse:
        """Run one ``GET /vacancies`` call.

        Raises:
            TransientAPIError: network/5xx/429 failures persisted through every attempt
            TerminalAPIError: the API rejected the query or returned an unparseable body
        """
        response = await self._get("/vacancies", params.to_query(page))
        try:
            result = VacancySearchResponse.model_validate(response.json())
        except ValueError as exc:
            logger.error(f"Failed to parse HH search response: {exc}")
            raise TerminalAPIError(f"invalid search response: {exc}") from exc

        logger.debug(
            f"HH search returned {len(result.items)} of {result.found} vacancies "
            f"(page {result.page + 1}/{max(result.pages, 1)}, text={params.text!r})"
        )
        return result

    def _retry_delay(self, retry_state: RetryCallState) -> float:
        """429 waits out the throttle cooldown; everything else backs off linearly."""
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, APIError) and exc.status_code == 429:
            return self.throttle_cooldown
        return retry_state.attempt_number * self.backoff_step

    async def _get(self, path: str, query: dict[str, str]) -> httpx.Response:
        async with self._client() as client:
            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self.max_attempts),
                    wait=self._retry_delay,
                    retry=retry_if_exception_type(TransientAPIError),
                    before_sleep=before_sleep_log(logger, logging.DEBUG),
                    sleep=self._sleep,
                    reraise=True,
                ):
                    with attempt:
                        return await self._get_once(client, path, query)
            except TransientAPIError as exc:
                raise TransientAPIError(
                    f"request failed after {self.max_attempts} attempts: {exc}",
                    exc.status_code,
                ) from exc
        raise AssertionError("unreachable")

    async def _get_once(
        self, client: httpx.AsyncClient, path: str, query: dict[str, str]
    ) -> httpx.Response:
        try:
            resp = await client.get(path, params=query)
        except httpx.TransportError as exc:
            logger.warning(f"HH request {path} network error: {exc}")
            raise TransientAPIError(f"network error: {exc}") from exc

        if resp.is_success:
            return resp

        status = resp.status_code
        logger.warning(
            f"HH API error on {path}: HTTP {status}: {resp.text[:300]}",
            extra={"status_code": status},
        )
        if status == 429:
            raise TransientAPIError("rate limit exceeded", status)
        if 400 <= status < 500:
            raise TerminalAPIError(_describe_rejection(resp), status)
        raise TransientAPIError(f"unexpected status code: {status}", status)


def _describe_rejection(resp: httpx.Response) -> str:
    status = resp.status_code
    if status == 400:
        try:
            detail = HHErrorResponse.model_validate(resp.json()).description
        except ValueError:
            detail = ""
        return f"bad request: {detail or resp.text[:200]}"
    if status == 403:
        return "forbidden"
    if status == 404:
        return "not found"
    return f"client error: HTTP {status}"
