"""Tests for the subscriber and vacancy endpoints."""

import httpx
import pytest
from httpx import AsyncClient

from conftest import HHStub, no_sleep, search_json
from vacancy_notifier.core.rate_limit import GLOBAL_API_KEY, InMemoryRateLimiter, user_key
from vacancy_notifier.services.background import BackgroundWriter
from vacancy_notifier.services.checker import CheckOutcome, create_checker
from vacancy_notifier.services.seen_store import SqlSeenStore, SqlVacancyCache


async def create_subscriber(client: AsyncClient, subscriber_id: int = 1, **body) -> dict:
    response = await client.put(f"/api/subscribers/{subscriber_id}", json=body)
    assert response.status_code == 200
    return response.json()


class RecordingSink:
    def __init__(self):
        self.sent: list[tuple[int, str]] = []

    async def send(self, subscriber_id: int, content: str) -> int:
        self.sent.append((subscriber_id, content))
        return len(self.sent)


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestSubscribers:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client: AsyncClient):
        data = await create_subscriber(client, 10, username="alice")
        assert data["id"] == 10
        assert data["enabled"] is True
        assert data["poll_interval_minutes"] == 60

        response = await client.get("/api/subscribers/10")
        assert response.status_code == 200
        assert response.json()["username"] == "alice"

    @pytest.mark.asyncio
    async def test_unknown_subscriber(self, client: AsyncClient):
        response = await client.get("/api/subscribers/404")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_update_interval(self, client: AsyncClient):
        await create_subscriber(client, 10)

        data = await create_subscriber(client, 10, poll_interval_minutes=15, enabled=False)

        assert data["poll_interval_minutes"] == 15
        assert data["enabled"] is False

    @pytest.mark.asyncio
    async def test_interval_below_minimum_rejected(self, client: AsyncClient):
        response = await client.put("/api/subscribers/10", json={"poll_interval_minutes": 2})
        assert response.status_code == 422


class TestFilters:
    @pytest.mark.asyncio
    async def test_set_list_delete(self, client: AsyncClient):
        await create_subscriber(client, 1)

        response = await client.put("/api/subscribers/1/filters/text", json={"value": "python"})
        assert response.status_code == 204
        await client.put("/api/subscribers/1/filters/salary", json={"value": "150000"})

        response = await client.get("/api/subscribers/1/filters")
        assert response.json() == {"salary": "150000", "text": "python"}

        response = await client.delete("/api/subscribers/1/filters/salary")
        assert response.status_code == 204
        response = await client.delete("/api/subscribers/1/filters/salary")
        assert response.status_code == 404

        response = await client.delete("/api/subscribers/1/filters")
        assert response.status_code == 204
        response = await client.get("/api/subscribers/1/filters")
        assert response.json() == {}

    @pytest.mark.asyncio
    async def test_unknown_filter_type(self, client: AsyncClient):
        await create_subscriber(client, 1)
        response = await client.put("/api/subscribers/1/filters/color", json={"value": "red"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_numeric_filter_validated(self, client: AsyncClient):
        await create_subscriber(client, 1)
        response = await client.put("/api/subscribers/1/filters/salary", json={"value": "lots"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_filter_for_unknown_subscriber(self, client: AsyncClient):
        response = await client.put("/api/subscribers/9/filters/text", json={"value": "go"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_filters_rate_limited(
        self, client: AsyncClient, limiter: InMemoryRateLimiter
    ):
        await create_subscriber(client, 1)
        for _ in range(50):
            await limiter.increment(user_key(1))

        response = await client.get("/api/subscribers/1/filters")
        assert response.status_code == 429
        response = await client.put("/api/subscribers/1/filters/text", json={"value": "go"})
        assert response.status_code == 429
        response = await client.get("/api/subscribers/2/filters")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_stats(self, client: AsyncClient, session_factory):
        await create_subscriber(client, 1)
        await client.put("/api/subscribers/1/filters/text", json={"value": "python"})
        await SqlSeenStore(session_factory).mark_seen(1, "A")

        response = await client.get("/api/subscribers/1/stats")

        assert response.json() == {
            "subscriber_id": 1,
            "filter_count": 1,
            "seen_vacancies_count": 1,
        }


class TestVacancySearch:
    @pytest.mark.asyncio
    async def test_requires_filters(self, client: AsyncClient, hh_stub: HHStub):
        await create_subscriber(client, 1)

        response = await client.get("/api/subscribers/1/vacancies")

        assert response.status_code == 400
        assert hh_stub.requests == []

    @pytest.mark.asyncio
    async def test_flags_new_and_marks_shown_seen(
        self, client: AsyncClient, hh_stub: HHStub, session_factory
    ):
        await create_subscriber(client, 1)
        await client.put("/api/subscribers/1/filters/text", json={"value": "python"})
        seen = SqlSeenStore(session_factory)
        await seen.mark_seen(1, "A")
        hh_stub.queue(httpx.Response(200, json=search_json("A", "B", "C")))

        response = await client.get("/api/subscribers/1/vacancies")

        assert response.status_code == 200
        data = response.json()
        assert [item["id"] for item in data["items"]] == ["A", "B", "C"]
        assert data["new_ids"] == ["B", "C"]
        assert await seen.count_seen(1) == 3
        assert hh_stub.requests[0].url.params["text"] == "python"

    @pytest.mark.asyncio
    async def test_upstream_failure(self, client: AsyncClient, hh_stub: HHStub):
        await create_subscriber(client, 1)
        await client.put("/api/subscribers/1/filters/text", json={"value": "python"})
        hh_stub.queue(httpx.Response(503), httpx.Response(503), httpx.Response(503))

        response = await client.get("/api/subscribers/1/vacancies")

        assert response.status_code == 502
        assert len(hh_stub.requests) == 3

    @pytest.mark.asyncio
    async def test_rejected_query(self, client: AsyncClient, hh_stub: HHStub):
        await create_subscriber(client, 1)
        await client.put("/api/subscribers/1/filters/area", json={"value": "mars"})
        hh_stub.queue(httpx.Response(400, json={"description": "Bad argument: area"}))

        response = await client.get("/api/subscribers/1/vacancies")

        assert response.status_code == 400
        assert "Bad argument" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_subscriber_rate_limited(
        self, client: AsyncClient, hh_stub: HHStub, limiter: InMemoryRateLimiter
    ):
        await create_subscriber(client, 1)
        await client.put("/api/subscribers/1/filters/text", json={"value": "python"})
        for _ in range(50):
            await limiter.increment(user_key(1))

        response = await client.get("/api/subscribers/1/vacancies")

        assert response.status_code == 429
        assert hh_stub.requests == []

    @pytest.mark.asyncio
    async def test_global_budget_exhausted(
        self, client: AsyncClient, hh_stub: HHStub, limiter: InMemoryRateLimiter
    ):
        await create_subscriber(client, 1)
        await client.put("/api/subscribers/1/filters/text", json={"value": "python"})
        for _ in range(50):
            await limiter.increment(GLOBAL_API_KEY)

        response = await client.get("/api/subscribers/1/vacancies")

        assert response.status_code == 429
        assert hh_stub.requests == []

    @pytest.mark.asyncio
    async def test_scheduler_skips_vacancies_already_shown(
        self,
        client: AsyncClient,
        hh_stub: HHStub,
        hh_client,
        limiter: InMemoryRateLimiter,
        session_factory,
    ):
        await create_subscriber(client, 1)
        await client.put("/api/subscribers/1/filters/text", json={"value": "python"})
        hh_stub.queue(
            httpx.Response(200, json=search_json("A", "B")),
            httpx.Response(200, json=search_json("A", "B")),
        )

        response = await client.get("/api/subscribers/1/vacancies")
        assert response.json()["new_ids"] == ["A", "B"]
        assert await SqlVacancyCache(session_factory).get("A") is not None

        sink = RecordingSink()
        writer = BackgroundWriter()
        checker = create_checker(
            session_factory,
            limiter,
            client=hh_client,
            sink=sink,
            writer=writer,
            startup_delay=0,
            sleep=no_sleep,
        )
        report = await checker.run_cycle()
        await writer.close()

        assert report.results[0].outcome == CheckOutcome.NO_NEW
        assert sink.sent == []
        assert len(hh_stub.requests) == 2
