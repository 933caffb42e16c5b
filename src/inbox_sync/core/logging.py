"""Logging configuration helpers."""

from __future__ import annotations

import asyncio
import logging
import logging.config
from typing import Any

from .config import LoggingSettings

# Chatty at DEBUG; raised to WARNING unless the root level is DEBUG.
_QUIET_LOGGERS = ("imapclient", "imapclient.imaplib", "httpx", "httpcore")


class TaskNameFilter(logging.Filter):
    """Tag records with the asyncio task that emitted them.

    Account workers and folder watchers run as named tasks, so the tag tells
    concurrent sessions apart in the output.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            task = asyncio.current_task()
        except RuntimeError:
            task = None
        record.task = task.get_name() if task is not None else "-"
        return True


def build_logging_config(settings: LoggingSettings) -> dict[str, Any]:
    """Return the ``dictConfig`` mapping for ``settings``."""
    if settings.structured:
        formatter: dict[str, Any] = {
            "format": "{asctime} level={levelname} logger={name} task={task} {message}",
            "style": "{",
        }
    else:
        formatter = {"format": "%(asctime)s %(levelname)s %(name)s [%(task)s] %(message)s"}
    level = settings.level.upper()
    quiet_level = "INFO" if level == "DEBUG" else "WARNING"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"task": {"()": TaskNameFilter}},
        "formatters": {"default": formatter},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "filters": ["task"],
                "level": level,
            },
        },
        "loggers": {name: {"level": quiet_level} for name in _QUIET_LOGGERS},
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(settings: LoggingSettings) -> None:
    """Configure application logging according to provided settings."""
    logging.config.dictConfig(build_logging_config(settings))


__all__ = ["TaskNameFilter", "build_logging_config", "configure_logging"]
