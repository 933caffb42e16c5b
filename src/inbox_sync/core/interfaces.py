"""Protocol interfaces for the collaborators of the ingestion pipeline."""

from __future__ import annotations

from typing import Protocol

from .models import Category, MailMessage, SearchFilters, SearchPage


class SearchIndexError(RuntimeError):
    """Raised when the search index rejects a read or write."""


class SearchIndex(Protocol):
    """Full-text store for normalized messages."""

    def index_message(self, message: MailMessage) -> None:
        """Insert or replace ``message``, keyed by its id."""
        raise NotImplementedError

    def update_category(self, message_id: str, category: Category) -> bool:
        """Set the label of a stored message. Returns ``False`` if unknown."""
        raise NotImplementedError

    def get_by_id(self, message_id: str) -> MailMessage | None:
        """Return the stored message or ``None``."""
        raise NotImplementedError

    def search(self, filters: SearchFilters) -> SearchPage:
        """Return one page of messages matching ``filters``, newest first."""
        raise NotImplementedError

    def counts_by_category(self) -> dict[Category, int]:
        """Return the number of stored messages per label."""
        raise NotImplementedError

    def delete_message(self, message_id: str) -> bool:
        """Remove a stored message. Returns ``True`` if a row was deleted."""
        raise NotImplementedError

    def close(self) -> None:
        """Release storage resources."""
        raise NotImplementedError


class ClassificationService(Protocol):
    """Labels messages and drafts replies."""

    def classify(self, subject: str, body: str) -> Category:
        """Return a label for the message. Never raises."""
        raise NotImplementedError

    def retrieve_context(self, query: str) -> str:
        """Return the reference text most relevant to ``query``."""
        raise NotImplementedError

    def generate_reply(self, message: MailMessage, context: str) -> str:
        """Return a suggested reply for ``message``."""
        raise NotImplementedError


class NotificationService(Protocol):
    """Outbound alerts for high-value messages."""

    def notify_slack(self, message: MailMessage) -> bool:
        """Post an alert to Slack. Returns ``True`` when delivered."""
        raise NotImplementedError

    def notify_webhook(self, message: MailMessage) -> bool:
        """Post the message event to the external webhook."""
        raise NotImplementedError


__all__ = [
    "ClassificationService",
    "NotificationService",
    "SearchIndex",
    "SearchIndexError",
]
