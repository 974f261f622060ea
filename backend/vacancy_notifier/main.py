import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from vacancy_notifier.api import api_router
from vacancy_notifier.api.dependencies import get_rate_limiter
from vacancy_notifier.config import settings
from vacancy_notifier.core.exceptions import StorageError
from vacancy_notifier.database import async_session_factory, init_models
from vacancy_notifier.logging_config import setup_logging
from vacancy_notifier.services.checker import create_checker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()

    checker = None
    task = None
    if settings.scheduler_backend == "inprocess":
        checker = create_checker(async_session_factory, get_rate_limiter())
        task = asyncio.create_task(checker.start())
        app.state.checker = checker
    else:
        logger.info("Scheduler runs under Celery beat, in-process checker disabled")

    try:
        yield
    finally:
        if checker is not None:
            checker.stop()
            try:
                await task
            except Exception:
                logger.exception("Vacancy checker exited with an error")


def create_app() -> FastAPI:
    # Configure logging first
    setup_logging(
        app_env=settings.app_env,
        log_level=settings.log_level,
        secrets=[settings.telegram_bot_token],
    )

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        lifespan=lifespan,
    )

    app.include_router(api_router)

    @app.exception_handler(StorageError)
    async def storage_exception_handler(request: Request, exc: StorageError):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content={"detail": "Storage temporarily unavailable"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": exc.errors()},
        )

    @app.get("/health")
    async def health_check():
        checker = getattr(app.state, "checker", None)
        return {
            "status": "healthy",
            "app": settings.app_name,
            "version": "0.1.0",
            "scheduler": settings.scheduler_backend,
            "checker_running": bool(checker and checker.running),
        }

    logger.info(f"VacancyNotifier started (env={settings.app_env})")
    return app


app = create_app()
