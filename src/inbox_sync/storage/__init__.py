"""Persistence backends."""

from .sqlite import SqliteMessageIndex

__all__ = ["SqliteMessageIndex"]
