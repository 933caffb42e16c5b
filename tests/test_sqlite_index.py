"""Tests for the SQLite search index."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from helpers import make_message
from inbox_sync.core.config import StorageSettings
from inbox_sync.core.interfaces import SearchIndexError
from inbox_sync.core.models import AttachmentMeta, Category, SearchFilters
from inbox_sync.storage import SqliteMessageIndex
from inbox_sync.storage.sqlite import MAX_PAGE_SIZE

BASE = datetime(2025, 10, 1, 9, 0, tzinfo=UTC)


@pytest.fixture
def index(tmp_path: Path):
    with SqliteMessageIndex(StorageSettings(db_path=tmp_path / "index.db")) as store:
        yield store


def test_index_message_round_trips_fields(index: SqliteMessageIndex) -> None:
    message = make_message("Quarterly update", "Numbers inside", to=("a@x.test", "b@x.test"))
    message.attachments = (AttachmentMeta("report.pdf", "application/pdf", 12),)
    message.is_read = True

    index.index_message(message)
    stored = index.get_by_id(message.id)

    assert stored is not None
    assert stored.subject == "Quarterly update"
    assert stored.to == ("a@x.test", "b@x.test")
    assert stored.body.text == "Numbers inside"
    assert stored.received_at == message.received_at
    assert stored.is_read is True
    assert stored.attachments == (AttachmentMeta("report.pdf", "application/pdf", 12),)
    assert stored.category is Category.UNCATEGORIZED


def test_reindex_is_an_upsert(index: SqliteMessageIndex) -> None:
    message = make_message("Hello")
    message.attachments = (AttachmentMeta("a.txt", "text/plain", 1),)
    index.index_message(message)

    message.is_flagged = True
    message.attachments = ()
    index.index_message(message)

    assert index.count_messages() == 1
    stored = index.get_by_id(message.id)
    assert stored is not None
    assert stored.is_flagged is True
    assert stored.attachments == ()


def test_update_category(index: SqliteMessageIndex) -> None:
    message = make_message("Lead")
    index.index_message(message)

    assert index.update_category(message.id, Category.INTERESTED) is True
    assert index.update_category("missing", Category.SPAM) is False
    stored = index.get_by_id(message.id)
    assert stored is not None and stored.category is Category.INTERESTED


def test_search_filters_and_orders_newest_first(index: SqliteMessageIndex) -> None:
    older = make_message("Pricing request", uid=1, received_at=BASE)
    newer = make_message(
        "Pricing follow-up",
        uid=2,
        folder="Archive",
        sender="carol@example.com",
        received_at=BASE + timedelta(days=2),
    )
    other = make_message(
        "Lunch", uid=3, account_id="account-2", received_at=BASE + timedelta(days=1)
    )
    for message in (older, newer, other):
        index.index_message(message)
    index.update_category(newer.id, Category.INTERESTED)

    by_text = index.search(SearchFilters(query="pricing"))
    assert by_text.total == 2
    assert [m.id for m in by_text.messages] == [newer.id, older.id]

    assert [m.id for m in index.search(SearchFilters(account_id="account-2")).messages] == [
        other.id
    ]
    assert [m.id for m in index.search(SearchFilters(folder="Archive")).messages] == [
        newer.id
    ]
    assert [
        m.id for m in index.search(SearchFilters(category=Category.INTERESTED)).messages
    ] == [newer.id]
    assert [m.id for m in index.search(SearchFilters(sender="carol")).messages] == [
        newer.id
    ]
    window = index.search(
        SearchFilters(start=BASE + timedelta(hours=1), end=BASE + timedelta(days=1))
    )
    assert [m.id for m in window.messages] == [other.id]


def test_search_escapes_like_wildcards(index: SqliteMessageIndex) -> None:
    index.index_message(make_message("100% off", uid=1))
    index.index_message(make_message("1000 units", uid=2))

    page = index.search(SearchFilters(query="100%"))

    assert [m.subject for m in page.messages] == ["100% off"]


def test_search_pages_results(index: SqliteMessageIndex) -> None:
    for uid in range(1, 6):
        index.index_message(
            make_message(f"Message {uid}", uid=uid, received_at=BASE + timedelta(hours=uid))
        )

    first = index.search(SearchFilters(page=1, size=2))
    third = index.search(SearchFilters(page=3, size=2))
    clamped = index.search(SearchFilters(size=MAX_PAGE_SIZE * 10))

    assert first.total == 5
    assert [m.subject for m in first.messages] == ["Message 5", "Message 4"]
    assert [m.subject for m in third.messages] == ["Message 1"]
    assert len(clamped.messages) == 5


def test_counts_by_category_include_zeros(index: SqliteMessageIndex) -> None:
    first = make_message("One", uid=1)
    second = make_message("Two", uid=2)
    index.index_message(first)
    index.index_message(second)
    index.update_category(first.id, Category.SPAM)

    counts = index.counts_by_category()

    assert set(counts) == set(Category)
    assert counts[Category.SPAM] == 1
    assert counts[Category.UNCATEGORIZED] == 1
    assert counts[Category.INTERESTED] == 0


def test_delete_message_removes_row(index: SqliteMessageIndex) -> None:
    message = make_message("Bye")
    message.attachments = (AttachmentMeta("a.txt", "text/plain", 1),)
    index.index_message(message)

    assert index.delete_message(message.id) is True
    assert index.delete_message(message.id) is False
    assert index.get_by_id(message.id) is None
    assert index.count_messages() == 0


def test_closed_index_raises_search_index_error(tmp_path: Path) -> None:
    store = SqliteMessageIndex(StorageSettings(db_path=tmp_path / "closed.db"))
    store.close()

    with pytest.raises(SearchIndexError):
        store.search(SearchFilters())
