"""Tests for the HeadHunter API client retry policy."""

import httpx
import pytest

from conftest import HHStub, search_json
from vacancy_notifier.core.exceptions import TerminalAPIError, TransientAPIError
from vacancy_notifier.schemas.vacancy import SearchParams
from vacancy_notifier.services.hh_client import HeadHunterClient


class SleepRecorder:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_client(stub: HHStub, sleep: SleepRecorder) -> HeadHunterClient:
    return HeadHunterClient(
        base_url="https://api.hh.test",
        user_agent="test-agent/1.0",
        transport=httpx.MockTransport(stub.handler),
        sleep=sleep,
    )


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


class TestSearchSuccess:
    @pytest.mark.asyncio
    async def test_parses_items(self, hh_stub: HHStub, sleep: SleepRecorder):
        hh_stub.queue(httpx.Response(200, json=search_json("101", "102")))
        client = make_client(hh_stub, sleep)

        result = await client.search(SearchParams(text="python"))

        assert [item.id for item in result.items] == ["101", "102"]
        assert result.items[0].salary.from_ == 150000
        assert result.items[0].published_at.utcoffset().total_seconds() == 3 * 3600
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_sends_query_and_headers(self, hh_stub: HHStub, sleep: SleepRecorder):
        client = make_client(hh_stub, sleep)

        await client.search(SearchParams(text="python", area="1", salary=200000, per_page=10), page=2)

        request = hh_stub.requests[0]
        assert request.url.path == "/vacancies"
        assert request.url.params["text"] == "python"
        assert request.url.params["area"] == "1"
        assert request.url.params["salary"] == "200000"
        assert request.url.params["only_with_salary"] == "true"
        assert request.url.params["per_page"] == "10"
        assert request.url.params["page"] == "2"
        assert request.headers["User-Agent"] == "test-agent/1.0"

    @pytest.mark.asyncio
    async def test_unparseable_body_is_terminal(self, hh_stub: HHStub, sleep: SleepRecorder):
        hh_stub.queue(httpx.Response(200, text="<html>maintenance</html>"))
        client = make_client(hh_stub, sleep)

        with pytest.raises(TerminalAPIError, match="invalid search response"):
            await client.search(SearchParams(text="python"))
        assert len(hh_stub.requests) == 1


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_throttled_twice_then_ok(self, hh_stub: HHStub, sleep: SleepRecorder):
        hh_stub.queue(
            httpx.Response(429),
            httpx.Response(429),
            httpx.Response(200, json=search_json("1")),
        )
        client = make_client(hh_stub, sleep)

        result = await client.search(SearchParams(text="go"))

        assert [item.id for item in result.items] == ["1"]
        assert len(hh_stub.requests) == 3
        assert sleep.calls == [5.0, 5.0]

    @pytest.mark.asyncio
    async def test_server_errors_back_off_linearly(self, hh_stub: HHStub, sleep: SleepRecorder):
        hh_stub.queue(httpx.Response(500), httpx.Response(502), httpx.Response(503))
        client = make_client(hh_stub, sleep)

        with pytest.raises(TransientAPIError, match="after 3 attempts") as exc_info:
            await client.search(SearchParams(text="go"))

        assert exc_info.value.status_code == 503
        assert len(hh_stub.requests) == 3
        # no sleep after the final attempt
        assert sleep.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_network_error_then_ok(self, hh_stub: HHStub, sleep: SleepRecorder):
        hh_stub.queue(
            httpx.ConnectError("connection refused"),
            httpx.Response(200, json=search_json("7")),
        )
        client = make_client(hh_stub, sleep)

        result = await client.search(SearchParams(text="go"))

        assert [item.id for item in result.items] == ["7"]
        assert sleep.calls == [1.0]

    @pytest.mark.asyncio
    async def test_network_errors_exhaust_attempts(self, hh_stub: HHStub, sleep: SleepRecorder):
        hh_stub.queue(*(httpx.ReadTimeout("timed out") for _ in range(3)))
        client = make_client(hh_stub, sleep)

        with pytest.raises(TransientAPIError, match="network error") as exc_info:
            await client.search(SearchParams(text="go"))

        assert exc_info.value.status_code is None
        assert len(hh_stub.requests) == 3

    @pytest.mark.asyncio
    async def test_bad_request_is_not_retried(self, hh_stub: HHStub, sleep: SleepRecorder):
        hh_stub.queue(httpx.Response(400, json={"description": "Bad argument: area"}))
        client = make_client(hh_stub, sleep)

        with pytest.raises(TerminalAPIError, match="bad request: Bad argument: area") as exc_info:
            await client.search(SearchParams(text="go", area="nowhere"))

        assert exc_info.value.status_code == 400
        assert len(hh_stub.requests) == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_forbidden_and_not_found(self, hh_stub: HHStub, sleep: SleepRecorder):
        hh_stub.queue(httpx.Response(403), httpx.Response(404))
        client = make_client(hh_stub, sleep)

        with pytest.raises(TerminalAPIError, match="forbidden"):
            await client.search(SearchParams(text="go"))
        with pytest.raises(TerminalAPIError, match="not found"):
            await client.search(SearchParams(text="go"))
        assert len(hh_stub.requests) == 2

    @pytest.mark.asyncio
    async def test_throttle_after_server_error_uses_cooldown(
        self, hh_stub: HHStub, sleep: SleepRecorder
    ):
        hh_stub.queue(httpx.Response(503), httpx.Response(429), httpx.Response(429))
        client = make_client(hh_stub, sleep)

        with pytest.raises(TransientAPIError, match="rate limit exceeded") as exc_info:
            await client.search(SearchParams(text="go"))

        assert exc_info.value.status_code == 429
        assert sleep.calls == [1.0, 5.0]

    @pytest.mark.asyncio
    async def test_attempts_and_backoff_are_configurable(
        self, hh_stub: HHStub, sleep: SleepRecorder
    ):
        hh_stub.queue(*(httpx.Response(500) for _ in range(5)))
        client = HeadHunterClient(
            base_url="https://api.hh.test",
            transport=httpx.MockTransport(hh_stub.handler),
            sleep=sleep,
            max_attempts=5,
            backoff_step=0.5,
        )

        with pytest.raises(TransientAPIError, match="after 5 attempts"):
            await client.search(SearchParams(text="go"))

        assert len(hh_stub.requests) == 5
        assert sleep.calls == [0.5, 1.0, 1.5, 2.0]
