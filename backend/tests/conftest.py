"""Test fixtures for the vacancy notifier backend tests."""

import os

# Settings are read at import time; point them at test values first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "test-token")
os.environ.setdefault("SCHEDULER_BACKEND", "celery")

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from vacancy_notifier.api.dependencies import get_hh_client, get_rate_limiter, get_session_factory
from vacancy_notifier.core.rate_limit import InMemoryRateLimiter
from vacancy_notifier.database import Base
from vacancy_notifier.main import app
from vacancy_notifier.services.hh_client import HeadHunterClient

# Use SQLite for tests by default (no external DB needed).
# Override with TEST_DATABASE_URL env var for PostgreSQL integration tests.
TEST_DATABASE_URL = os.getenv(
    "TEST_DATABASE_URL",
    "sqlite+aiosqlite:///./test.db",
)

_connect_args = {}
if "sqlite" in TEST_DATABASE_URL:
    _connect_args["check_same_thread"] = False

# NullPool: every test runs on its own event loop, pooled connections would outlive it
engine = create_async_engine(
    TEST_DATABASE_URL, echo=False, connect_args=_connect_args, poolclass=NullPool
)
TestSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def vacancy_json(vacancy_id: str, name: str | None = None, **overrides) -> dict:
    """A trimmed HH ``/vacancies`` item."""
    item = {
        "id": vacancy_id,
        "name": name or f"Vacancy {vacancy_id}",
        "area": {"id": "1", "name": "Moscow", "url": "https://api.hh.ru/areas/1"},
        "salary": {"from": 150000, "to": 250000, "currency": "RUR", "gross": False},
        "employer": {"id": "42", "name": "Acme", "trusted": True},
        "published_at": "2026-10-18T09:30:00+0300",
        "archived": False,
        "alternate_url": f"https://hh.ru/vacancy/{vacancy_id}",
        "snippet": {"requirement": "Python, <highlighttext>asyncio</highlighttext>"},
        "schedule": {"id": "remote", "name": "Remote"},
        "experience": {"id": "between1And3", "name": "1-3 years"},
    }
    item.update(overrides)
    return item


def search_json(*vacancy_ids: str) -> dict:
    return {
        "items": [vacancy_json(vid) for vid in vacancy_ids],
        "found": len(vacancy_ids),
        "pages": 1,
        "page": 0,
        "per_page": 20,
    }


class HHStub:
    """Scripted HH API: pops one queued response (or exception) per request."""

    def __init__(self):
        self.responses: list[httpx.Response | Exception] = []
        self.requests: list[httpx.Request] = []

    def queue(self, *responses: httpx.Response | Exception) -> None:
        self.responses.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            return httpx.Response(200, json=search_json())
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture(autouse=True)
async def setup_db():
    """Create tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    return TestSessionLocal


@pytest.fixture
def limiter() -> InMemoryRateLimiter:
    return InMemoryRateLimiter()


@pytest.fixture
def hh_stub() -> HHStub:
    return HHStub()


@pytest.fixture
def hh_client(hh_stub: HHStub) -> HeadHunterClient:
    return HeadHunterClient(
        base_url="https://api.hh.test",
        transport=httpx.MockTransport(hh_stub.handler),
        sleep=no_sleep,
    )


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    limiter: InMemoryRateLimiter,
    hh_client: HeadHunterClient,
) -> AsyncClient:
    """Get an HTTP client with the test DB, limiter and HH stub injected."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_hh_client] = lambda: hh_client
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
