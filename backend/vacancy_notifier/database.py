from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from vacancy_notifier.config import settings


def _engine_kwargs(database_url: str, pool_size: int, max_overflow: int) -> dict:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_size": pool_size, "max_overflow": max_overflow}


engine = create_async_engine(
    settings.database_url,
    echo=False,
    **_engine_kwargs(settings.database_url, pool_size=10, max_overflow=20),
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def dialect_insert(session: AsyncSession, model):
    """``INSERT`` construct with ``on_conflict_*`` support for the session's backend."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upserts are not supported on {dialect}")
    return insert(model)


async def init_models(bind: AsyncEngine | None = None) -> None:
    """Create any missing tables."""
    import vacancy_notifier.models  # noqa: F401 (register mappers on Base.metadata)

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_task_session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create a fresh engine + session factory for Celery tasks.

    Celery tasks use asyncio.run() which creates a new event loop each time.
    The global engine is bound to the web server's loop, so we need a fresh
    engine per task to avoid 'attached to a different loop' errors.
    """
    task_engine = create_async_engine(
        settings.database_url,
        echo=False,
        **_engine_kwargs(settings.database_url, pool_size=2, max_overflow=5),
    )
    try:
        yield async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await task_engine.dispose()
