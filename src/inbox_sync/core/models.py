"""Core domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class Category(str, Enum):
    """Classification labels a message can carry."""

    INTERESTED = "Interested"
    MEETING_BOOKED = "Meeting Booked"
    NOT_INTERESTED = "Not Interested"
    SPAM = "Spam"
    OUT_OF_OFFICE = "Out of Office"
    UNCATEGORIZED = "Uncategorized"

    @classmethod
    def parse(cls, value: str) -> Category:
        """Return the category whose label equals ``value`` (case-insensitive)."""
        lowered = value.strip().lower()
        for category in cls:
            if category.value.lower() == lowered:
                return category
        raise ValueError(f"Unknown category '{value}'")


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True, slots=True)
class Account:
    """Configured IMAP account; immutable after startup."""

    id: str
    host: str
    port: int
    username: str
    password: str = field(repr=False)
    use_ssl: bool = True
    lookback_days: int = 30
    watch_folders: tuple[str, ...] = ()


@dataclass(slots=True)
class Folder:
    """Mailbox discovered on the server."""

    path: str
    delimiter: str | None
    flags: tuple[str, ...] = ()
    selectable: bool = True
    children: list[str] = field(default_factory=list)

    @property
    def may_have_children(self) -> bool:
        """Whether the server allows or reports child mailboxes."""
        lowered = {flag.lower() for flag in self.flags}
        return not lowered & {"\\hasnochildren", "\\noinferiors"}


@dataclass(slots=True)
class SyncCursor:
    """Last synchronized point for one folder of one account."""

    account_id: str
    folder: str
    since: date
    uidvalidity: int | None = None
    last_uid: int | None = None

    def advance(self, uid: int) -> None:
        """Move the cursor forward to ``uid`` if it is newer."""
        if self.last_uid is None or uid > self.last_uid:
            self.last_uid = uid

    def reset(self, uidvalidity: int | None) -> None:
        """Forget the UID position after the folder's UIDVALIDITY changed."""
        self.uidvalidity = uidvalidity
        self.last_uid = None


@dataclass(slots=True)
class RawMessage:
    """Message payload and metadata as returned by an IMAP fetch."""

    uid: int
    payload: bytes
    flags: tuple[str, ...] = ()
    internal_date: datetime | None = None
    uidvalidity: int | None = None


@dataclass(slots=True)
class AttachmentMeta:
    """Metadata describing an email attachment."""

    filename: str | None
    content_type: str | None
    size: int | None
    content: bytes | None = field(default=None, repr=False)


@dataclass(slots=True)
class EmailBody:
    """Container for textual representations of an email."""

    text: str | None
    html: str | None


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class MailMessage:
    """Normalized email representation handed to the ingestion pipeline."""

    id: str
    account_id: str
    folder: str
    uid: int | None
    message_id: str | None
    subject: str | None
    sender: str | None
    to: tuple[str, ...]
    cc: tuple[str, ...]
    bcc: tuple[str, ...]
    sent_at: datetime | None
    body: EmailBody
    attachments: tuple[AttachmentMeta, ...]
    is_read: bool
    is_flagged: bool
    received_at: datetime
    synced_at: datetime
    category: Category = Category.UNCATEGORIZED


@dataclass(slots=True)
class SearchFilters:
    """Query accepted by the search index."""

    query: str | None = None
    account_id: str | None = None
    folder: str | None = None
    category: Category | None = None
    sender: str | None = None
    recipient: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    page: int = 1
    size: int = 20


@dataclass(slots=True)
class SearchPage:
    """One page of search hits plus the total hit count."""

    total: int
    messages: list[MailMessage]


class SessionState(str, Enum):
    """Connection health of an account."""

    CONNECTING = "connecting"
    HEALTHY = "healthy"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


@dataclass(slots=True)
class AccountHealth:
    """Health snapshot exposed for operators."""

    account_id: str
    state: SessionState = SessionState.CONNECTING
    consecutive_failures: int = 0
    last_error: str | None = None
    connected_at: datetime | None = None
    open_sessions: int = 0


__all__ = [
    "Account",
    "AccountHealth",
    "AttachmentMeta",
    "Category",
    "EmailBody",
    "Folder",
    "MailMessage",
    "RawMessage",
    "SearchFilters",
    "SearchPage",
    "SessionState",
    "SyncCursor",
]
