"""Tests for log formatting and secret redaction."""

import json
import logging
import sys

from vacancy_notifier.logging_config import (
    ConsoleFormatter,
    JSONFormatter,
    SecretRedactingFilter,
)


def make_record(msg: str, *args, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="vacancy_notifier.services.checker",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=args,
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_includes_context_fields(self):
        record = make_record("Sent %d vacancies", 2, subscriber_id=7, cycle_id="ab12")

        entry = json.loads(JSONFormatter().format(record))

        assert entry["msg"] == "Sent 2 vacancies"
        assert entry["service"] == "vacancy-notifier"
        assert entry["subscriber_id"] == 7
        assert entry["cycle_id"] == "ab12"
        assert "vacancy_id" not in entry

    def test_exception_is_rendered(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = make_record("failed")
            record.exc_info = sys.exc_info()

        entry = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: boom" in entry["exception"]


class TestConsoleFormatter:
    def test_appends_context_pairs(self):
        line = ConsoleFormatter().format(make_record("hello", subscriber_id=7, vacancy_id="93"))
        assert line.endswith("hello [subscriber_id=7 vacancy_id=93]")

    def test_plain_message_without_context(self):
        line = ConsoleFormatter().format(make_record("hello"))
        assert line.endswith("vacancy_notifier.services.checker: hello")


class TestSecretRedactingFilter:
    def test_token_is_masked(self):
        record = make_record("POST https://api.telegram.org/bot%s/sendMessage", "123:abc")

        assert SecretRedactingFilter(["123:abc"]).filter(record)

        assert record.getMessage() == "POST https://api.telegram.org/bot***/sendMessage"

    def test_no_secrets_leaves_record_alone(self):
        record = make_record("value %s", "x")

        SecretRedactingFilter([""]).filter(record)

        assert record.args == ("x",)
