"""Tests for logging utilities."""

from __future__ import annotations

import asyncio
import logging

from inbox_sync.core.config import LoggingSettings
from inbox_sync.core.logging import TaskNameFilter, configure_logging


def test_configure_logging_sets_root_level() -> None:
    """configure_logging should set the root logger level according to settings."""

    settings = LoggingSettings(level="DEBUG", structured=False)
    configure_logging(settings)
    assert logging.getLogger().level == logging.DEBUG


def test_third_party_loggers_are_quieted() -> None:
    """IMAP and HTTP client chatter stays at WARNING unless debugging."""

    configure_logging(LoggingSettings(level="INFO", structured=True))

    assert logging.getLogger("imapclient").level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger().level == logging.INFO


def test_records_are_tagged_with_the_current_task() -> None:
    """Log records carry the asyncio task name, or '-' outside a loop."""

    task_filter = TaskNameFilter()

    def make_record() -> logging.LogRecord:
        record = logging.LogRecord("inbox_sync", logging.INFO, __file__, 1, "hi", (), None)
        task_filter.filter(record)
        return record

    async def inside() -> str:
        return make_record().task

    async def scenario() -> str:
        return await asyncio.create_task(inside(), name="watch:account-1:INBOX")

    assert make_record().task == "-"
    assert asyncio.run(scenario()) == "watch:account-1:INBOX"
