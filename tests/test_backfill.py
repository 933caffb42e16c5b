"""Tests for historical and incremental folder sync."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from helpers import ACCOUNT, FakeImap, FakeMailbox, make_payload
from inbox_sync.core.models import MailMessage, SyncCursor
from inbox_sync.ingestion import MessageNormalizer
from inbox_sync.sync.backfill import BackfillSync
from inbox_sync.sync.session import AsyncSession
from inbox_sync.transport.imap_client import FetchError

SINCE = date(2025, 9, 6)


def _cursor(folder: str = "INBOX") -> SyncCursor:
    return SyncCursor(account_id=ACCOUNT.id, folder=folder, since=SINCE)


def _collect(stream) -> list[MailMessage]:
    async def consume() -> list[MailMessage]:
        return [message async for message in stream]

    return asyncio.run(consume())


def _fake_with(count: int, uidvalidity: int = 1) -> tuple[FakeImap, FakeMailbox]:
    mailbox = FakeMailbox(uidvalidity=uidvalidity)
    for index in range(count):
        mailbox.add(make_payload(f"Message {index}"))
    return FakeImap(ACCOUNT, {"INBOX": mailbox}), mailbox


def test_backfill_yields_every_message_in_batches() -> None:
    fake, _ = _fake_with(5)
    cursor = _cursor()
    sync = BackfillSync(MessageNormalizer(), batch_size=2)

    messages = _collect(sync.backfill(AsyncSession(fake), "INBOX", cursor))

    assert [message.subject for message in messages] == [
        f"Message {index}" for index in range(5)
    ]
    assert len({message.id for message in messages}) == 5
    fetches = [call for call in fake.calls if call[0] == "fetch"]
    assert [call[2] for call in fetches] == [(1, 2), (3, 4), (5,)]
    assert ("search_since", "INBOX", SINCE) in fake.calls
    assert cursor.last_uid == 5
    assert cursor.uidvalidity == 1


def test_unparseable_message_is_skipped() -> None:
    fake, mailbox = _fake_with(1)
    mailbox.add(b"")
    mailbox.add(make_payload("After the broken one"))
    sync = BackfillSync(MessageNormalizer())

    messages = _collect(sync.backfill(AsyncSession(fake), "INBOX", _cursor()))

    assert [message.subject for message in messages] == [
        "Message 0",
        "After the broken one",
    ]


def test_empty_folder_yields_nothing() -> None:
    fake, _ = _fake_with(0)
    cursor = _cursor()

    messages = _collect(
        BackfillSync(MessageNormalizer()).backfill(AsyncSession(fake), "INBOX", cursor)
    )

    assert messages == []
    assert not [call for call in fake.calls if call[0] == "fetch"]
    assert cursor.last_uid is None


def test_fetch_error_propagates() -> None:
    fake, _ = _fake_with(2)
    fake.fail_fetch.add("INBOX")

    with pytest.raises(FetchError):
        _collect(
            BackfillSync(MessageNormalizer()).backfill(
                AsyncSession(fake), "INBOX", _cursor()
            )
        )


def test_backfill_new_only_fetches_after_cursor() -> None:
    fake, mailbox = _fake_with(3)
    cursor = _cursor()
    sync = BackfillSync(MessageNormalizer())
    session = AsyncSession(fake)
    _collect(sync.backfill(session, "INBOX", cursor))
    mailbox.add(make_payload("Fresh arrival"))

    messages = _collect(sync.backfill_new(session, "INBOX", cursor))

    assert [message.subject for message in messages] == ["Fresh arrival"]
    assert ("search_after_uid", "INBOX", 3) in fake.calls
    assert cursor.last_uid == 4


def test_uidvalidity_change_restarts_from_window() -> None:
    fake, mailbox = _fake_with(2, uidvalidity=1)
    cursor = _cursor()
    sync = BackfillSync(MessageNormalizer())
    session = AsyncSession(fake)
    _collect(sync.backfill(session, "INBOX", cursor))
    mailbox.uidvalidity = 2

    messages = _collect(sync.backfill_new(session, "INBOX", cursor))

    assert len(messages) == 2
    assert cursor.uidvalidity == 2
    assert not [call for call in fake.calls if call[0] == "search_after_uid"]


def test_batch_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        BackfillSync(MessageNormalizer(), batch_size=0)
