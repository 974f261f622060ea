from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "VacancyNotifier"
    app_env: str = "development"

    # Database
    database_url: str = "sqlite+aiosqlite:///./vacancy_notifier.db"

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # HeadHunter API
    hh_api_base_url: str = "https://api.hh.ru"
    hh_api_timeout: float = 30.0
    hh_user_agent: str = "Vacancy-Notifier/1.0"

    # Telegram Bot API (delivery sink)
    telegram_bot_token: str = ""
    telegram_api_base_url: str = "https://api.telegram.org"

    # Scheduler
    tick_interval: int = 300  # seconds
    max_items_per_check: int = 10
    scheduler_backend: Literal["inprocess", "celery"] = "inprocess"
    scheduler_startup_delay: float = 30.0  # seconds before the first cycle

    @field_validator("tick_interval")
    @classmethod
    def _tick_interval_at_least_a_minute(cls, value: int) -> int:
        if value < 60:
            raise ValueError(f"tick_interval too small: {value}s (minimum 60s)")
        return value

    @field_validator("max_items_per_check")
    @classmethod
    def _max_items_in_range(cls, value: int) -> int:
        if not 1 <= value <= 100:
            raise ValueError("max_items_per_check must be between 1 and 100")
        return value

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def log_level(self) -> str:
        return "INFO" if self.is_production else "DEBUG"


settings = Settings()

# ---------------------------------------------------------------------------
# Application constants (not env-configurable, change in code)
# ---------------------------------------------------------------------------

# Subscriber poll intervals (minutes)
MIN_POLL_INTERVAL_MINUTES = 5
DEFAULT_POLL_INTERVAL_MINUTES = 60

# Rate windows
RATE_LIMIT_WINDOW_SECONDS = 60
HH_API_MAX_REQUESTS_PER_WINDOW = 50  # shared by scheduler + interactive API
USER_MAX_REQUESTS_PER_WINDOW = 50

# HH API retry policy
HH_MAX_ATTEMPTS = 3
HH_BACKOFF_STEP = 1.0  # seconds, multiplied by the attempt number
HH_THROTTLE_COOLDOWN = 5.0  # seconds after a 429

# Delivery pacing (seconds)
INTER_SUBSCRIBER_DELAY = 2.0
ITEM_SEND_DELAY = 0.5

# Published-within filter (days)
DEFAULT_PUBLISHED_WITHIN_DAYS = 7
MIN_PUBLISHED_WITHIN_DAYS = 1
MAX_PUBLISHED_WITHIN_DAYS = 30

# Background writes (seen records, vacancy cache)
BACKGROUND_QUEUE_SIZE = 200

# HTTP timeouts (seconds)
HTTP_TIMEOUT = 15.0  # Telegram Bot API
