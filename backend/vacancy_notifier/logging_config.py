"""Logging setup for the API process and the Celery workers.

Production emits one JSON object per line; development prints a compact
console line with the context fields appended as ``key=value``.  Both paths
run every record through ``SecretRedactingFilter`` because httpx logs
Telegram request URLs, which embed the bot token.
"""

import json
import logging
import sys
from datetime import UTC, datetime

SERVICE_NAME = "vacancy-notifier"

# Attached by callers via ``extra={...}``
CONTEXT_FIELDS = ("cycle_id", "subscriber_id", "vacancy_id", "task_id", "status_code")

# logger name -> level outside development
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "celery.beat": logging.INFO,
}


def record_context(record: logging.LogRecord) -> dict:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)}


class SecretRedactingFilter(logging.Filter):
    """Replace configured secrets in the rendered message with ``***``."""

    def __init__(self, secrets: list[str] | None = None):
        super().__init__()
        self.secrets = [s for s in (secrets or []) if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        redacted = message
        for secret in self.secrets:
            redacted = redacted.replace(secret, "***")
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
            **record_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-8s %(name)s: %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        head, sep, tail = line.partition("\n")
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        return f"{head} [{pairs}]{sep}{tail}"


def setup_logging(
    app_env: str = "development",
    log_level: str = "INFO",
    secrets: list[str] | None = None,
) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if app_env == "production" else ConsoleFormatter())
    handler.addFilter(SecretRedactingFilter(secrets))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    if app_env != "development":
        for name, level in QUIET_LOGGERS.items():
            logging.getLogger(name).setLevel(level)
