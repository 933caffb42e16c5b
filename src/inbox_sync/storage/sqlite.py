"""SQLite-backed search index for normalized messages."""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from types import TracebackType
from typing import Any

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime, utc_now
from ..core.interfaces import SearchIndex, SearchIndexError
from ..core.models import (
    AttachmentMeta,
    Category,
    EmailBody,
    MailMessage,
    SearchFilters,
    SearchPage,
)

LOGGER = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

_MESSAGE_COLUMNS = """
    id,
    account_id,
    folder,
    uid,
    message_id,
    subject,
    sender,
    to_recipients,
    cc_recipients,
    bcc_recipients,
    sent_at,
    received_at,
    synced_at,
    body_text,
    body_html,
    is_read,
    is_flagged,
    category
"""


class SqliteMessageIndex(SearchIndex):
    """Store messages in SQLite and answer filtered, paged queries."""

    def __init__(self, settings: StorageSettings) -> None:
        """Open the database and apply migrations."""
        self._settings = settings
        db_path = Path(settings.db_path)
        if str(db_path) != ":memory:":
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._connection.execute("PRAGMA foreign_keys = ON")
        self._apply_migrations()

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteMessageIndex:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    # SearchIndex API ---------------------------------------------------------
    def index_message(self, message: MailMessage) -> None:
        """Insert or update the stored record for ``message``."""
        LOGGER.debug("Indexing message %s", message.id)
        try:
            with self._lock, self._connection:
                self._connection.execute(
                    f"""
                    INSERT INTO messages ({_MESSAGE_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        account_id=excluded.account_id,
                        folder=excluded.folder,
                        uid=excluded.uid,
                        message_id=excluded.message_id,
                        subject=excluded.subject,
                        sender=excluded.sender,
                        to_recipients=excluded.to_recipients,
                        cc_recipients=excluded.cc_recipients,
                        bcc_recipients=excluded.bcc_recipients,
                        sent_at=excluded.sent_at,
                        received_at=excluded.received_at,
                        synced_at=excluded.synced_at,
                        body_text=excluded.body_text,
                        body_html=excluded.body_html,
                        is_read=excluded.is_read,
                        is_flagged=excluded.is_flagged,
                        category=excluded.category
                    """,
                    (
                        message.id,
                        message.account_id,
                        message.folder,
                        message.uid,
                        message.message_id,
                        message.subject,
                        message.sender,
                        ",".join(message.to),
                        ",".join(message.cc),
                        ",".join(message.bcc),
                        serialize_datetime(message.sent_at),
                        serialize_datetime(message.received_at),
                        serialize_datetime(message.synced_at),
                        message.body.text,
                        message.body.html,
                        1 if message.is_read else 0,
                        1 if message.is_flagged else 0,
                        message.category.value,
                    ),
                )
                self._connection.execute(
                    "DELETE FROM attachments WHERE message_id = ?", (message.id,)
                )
                self._connection.executemany(
                    """
                    INSERT INTO attachments (message_id, filename, content_type, size)
                    VALUES (?, ?, ?, ?)
                    """,
                    [
                        (message.id, item.filename, item.content_type, item.size)
                        for item in message.attachments
                    ],
                )
        except sqlite3.Error as exc:
            raise SearchIndexError(f"Failed to index message {message.id}: {exc}") from exc

    def update_category(self, message_id: str, category: Category) -> bool:
        """Set the label of a stored message."""
        try:
            with self._lock, self._connection:
                cur = self._connection.execute(
                    "UPDATE messages SET category = ? WHERE id = ?",
                    (category.value, message_id),
                )
        except sqlite3.Error as exc:
            raise SearchIndexError(
                f"Failed to update category of {message_id}: {exc}"
            ) from exc
        return cur.rowcount > 0

    def get_by_id(self, message_id: str) -> MailMessage | None:
        """Retrieve a stored message."""
        rows = self._query(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", (message_id,)
        )
        if not rows:
            return None
        return self._row_to_message(rows[0])

    def search(self, filters: SearchFilters) -> SearchPage:
        """Return one page of matches ordered by received date, newest first."""
        clauses: list[str] = []
        params: list[Any] = []

        if filters.query:
            like = f"%{_escape_like(filters.query)}%"
            clauses.append(
                "(subject LIKE ? ESCAPE '\\' OR sender LIKE ? ESCAPE '\\'"
                " OR to_recipients LIKE ? ESCAPE '\\' OR body_text LIKE ? ESCAPE '\\')"
            )
            params.extend([like] * 4)
        if filters.account_id:
            clauses.append("account_id = ?")
            params.append(filters.account_id)
        if filters.folder:
            clauses.append("folder = ?")
            params.append(filters.folder)
        if filters.category is not None:
            clauses.append("category = ?")
            params.append(filters.category.value)
        if filters.sender:
            clauses.append("sender LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(filters.sender)}%")
        if filters.recipient:
            clauses.append("to_recipients LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(filters.recipient)}%")
        if filters.start is not None:
            clauses.append("received_at >= ?")
            params.append(serialize_datetime(filters.start))
        if filters.end is not None:
            clauses.append("received_at <= ?")
            params.append(serialize_datetime(filters.end))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        page = max(filters.page, 1)
        size = min(max(filters.size, 1), MAX_PAGE_SIZE)

        total_rows = self._query(f"SELECT COUNT(*) AS total FROM messages {where}", params)
        rows = self._query(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages
            {where}
            ORDER BY received_at DESC, id
            LIMIT ? OFFSET ?
            """,
            [*params, size, (page - 1) * size],
        )
        return SearchPage(
            total=int(total_rows[0]["total"]),
            messages=[self._row_to_message(row) for row in rows],
        )

    def counts_by_category(self) -> dict[Category, int]:
        """Return stored message counts for every label, including zeros."""
        counts = {category: 0 for category in Category}
        rows = self._query(
            "SELECT category, COUNT(*) AS total FROM messages GROUP BY category"
        )
        for row in rows:
            try:
                counts[Category(row["category"])] = int(row["total"])
            except ValueError:
                LOGGER.warning("Ignoring unknown stored category %r", row["category"])
        return counts

    def delete_message(self, message_id: str) -> bool:
        """Delete the stored message and its attachments."""
        LOGGER.debug("Deleting message %s", message_id)
        try:
            with self._lock, self._connection:
                cur = self._connection.execute(
                    "DELETE FROM messages WHERE id = ?", (message_id,)
                )
        except sqlite3.Error as exc:
            raise SearchIndexError(f"Failed to delete {message_id}: {exc}") from exc
        return cur.rowcount > 0

    def count_messages(self) -> int:
        """Return the number of stored messages."""
        rows = self._query("SELECT COUNT(*) AS total FROM messages")
        return int(rows[0]["total"])

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._connection.close()

    # Internal helpers ---------------------------------------------------------
    def _query(self, sql: str, params: Any = ()) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self._connection.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise SearchIndexError(f"Query failed: {exc}") from exc

    def _row_to_message(self, row: sqlite3.Row) -> MailMessage:
        attachments = tuple(
            AttachmentMeta(
                filename=item["filename"],
                content_type=item["content_type"],
                size=item["size"],
            )
            for item in self._query(
                """
                SELECT filename, content_type, size
                FROM attachments
                WHERE message_id = ?
                ORDER BY id
                """,
                (row["id"],),
            )
        )
        try:
            category = Category(row["category"])
        except ValueError:
            category = Category.UNCATEGORIZED
        return MailMessage(
            id=row["id"],
            account_id=row["account_id"],
            folder=row["folder"],
            uid=row["uid"],
            message_id=row["message_id"],
            subject=row["subject"],
            sender=row["sender"],
            to=_split_recipients(row["to_recipients"]),
            cc=_split_recipients(row["cc_recipients"]),
            bcc=_split_recipients(row["bcc_recipients"]),
            sent_at=parse_datetime(row["sent_at"]),
            body=EmailBody(text=row["body_text"], html=row["body_html"]),
            attachments=attachments,
            is_read=bool(row["is_read"]),
            is_flagged=bool(row["is_flagged"]),
            received_at=parse_datetime(row["received_at"]) or utc_now(),
            synced_at=parse_datetime(row["synced_at"]) or utc_now(),
            category=category,
        )

    def _apply_migrations(self) -> None:
        schema_dir = Path(__file__).resolve().parent / "schema"
        for migration in sorted(schema_dir.glob("*.sql")):
            LOGGER.debug("Applying migration %s", migration.name)
            script = migration.read_text(encoding="utf-8")
            with self._lock, self._connection:
                self._connection.executescript(script)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _split_recipients(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(
        part for part in (segment.strip() for segment in value.split(",")) if part
    )


__all__ = ["MAX_PAGE_SIZE", "SqliteMessageIndex"]
