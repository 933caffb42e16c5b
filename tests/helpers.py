"""In-memory IMAP fakes and message factories shared by the tests."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, date, datetime
from typing import Any

from inbox_sync.core.models import Account, EmailBody, Folder, MailMessage, RawMessage
from inbox_sync.ingestion.normalizer import message_id_for
from inbox_sync.transport.imap_client import (
    FetchError,
    FolderStatus,
    ImapConnectError,
    ImapError,
    SessionLostError,
)

ACCOUNT = Account(
    id="account-1",
    host="imap.test",
    port=993,
    username="user@test",
    password="secret",
)


def make_payload(
    subject: str,
    body: str = "Hello there",
    *,
    sender: str = "alice@example.com",
    date_header: str = "Mon, 06 Oct 2025 10:00:00 +0000",
) -> bytes:
    return (
        f"From: Alice <{sender}>\r\n"
        "To: bob@example.com\r\n"
        f"Subject: {subject}\r\n"
        f"Date: {date_header}\r\n"
        f"Message-ID: <{abs(hash(subject))}@example.com>\r\n"
        "Content-Type: text/plain; charset=utf-8\r\n"
        "\r\n"
        f"{body}\r\n"
    ).encode()


def make_message(
    subject: str,
    body: str = "Hello there",
    *,
    uid: int = 1,
    folder: str = "INBOX",
    account_id: str = ACCOUNT.id,
    sender: str = "alice@example.com",
    to: tuple[str, ...] = ("bob@example.com",),
    received_at: datetime | None = None,
) -> MailMessage:
    received = received_at or datetime(2025, 10, 6, 10, 0, tzinfo=UTC)
    return MailMessage(
        id=message_id_for(account_id, folder, 1, uid),
        account_id=account_id,
        folder=folder,
        uid=uid,
        message_id=f"<{uid}@example.com>",
        subject=subject,
        sender=sender,
        to=to,
        cc=(),
        bcc=(),
        sent_at=received,
        body=EmailBody(text=body, html=None),
        attachments=(),
        is_read=False,
        is_flagged=False,
        received_at=received,
        synced_at=received,
    )


class FakeMailbox:
    """One folder holding messages keyed by UID."""

    def __init__(self, uidvalidity: int = 1) -> None:
        self.uidvalidity = uidvalidity
        self.messages: dict[int, RawMessage] = {}
        self._next_uid = 1

    def add(self, payload: bytes, flags: Sequence[str] = ()) -> int:
        uid = self._next_uid
        self._next_uid += 1
        self.messages[uid] = RawMessage(
            uid=uid,
            payload=payload,
            flags=tuple(flags),
            internal_date=datetime(2025, 10, 6, 10, 0, tzinfo=UTC),
        )
        return uid


class FakeImap:
    """Blocking stand-in for ``ImapSession`` driven by scripted state."""

    def __init__(
        self,
        account: Account,
        mailboxes: dict[str, FakeMailbox],
        *,
        listing: dict[str, Any] | None = None,
        capabilities: Sequence[str] = ("IDLE",),
        idle_script: list[Any] | None = None,
    ) -> None:
        self.account = account
        self.mailboxes = mailboxes
        self.listing = listing or {
            "%": [
                Folder(path=name, delimiter="/", flags=("\\HasNoChildren",))
                for name in mailboxes
            ]
        }
        self.capabilities = {item.upper() for item in capabilities}
        self.idle_script = list(idle_script or [])
        self.calls: list[tuple[Any, ...]] = []
        self.fail_fetch: set[str] = set()
        self.fail_search_after: int = 0
        self.idling = False
        self.idle_starts = 0
        self.connected = False
        self.closed = False

    def connect(self) -> None:
        self.calls.append(("connect",))
        self.connected = True

    def has_capability(self, name: str) -> bool:
        return name.upper() in self.capabilities

    def list_folders(self, directory: str = "", pattern: str = "%") -> list[Folder]:
        self.calls.append(("list", pattern))
        entry = self.listing.get(pattern, [])
        if isinstance(entry, Exception):
            raise entry
        return [
            Folder(path=f.path, delimiter=f.delimiter, flags=f.flags, selectable=f.selectable)
            for f in entry
        ]

    def select(self, folder: str) -> FolderStatus:
        self._check_not_idling()
        self.calls.append(("select", folder))
        mailbox = self._mailbox(folder)
        return FolderStatus(exists=len(mailbox.messages), uidvalidity=mailbox.uidvalidity)

    def search_since(self, folder: str, since: date) -> list[int]:
        self._check_not_idling()
        self.calls.append(("search_since", folder, since))
        return sorted(self._mailbox(folder).messages)

    def search_after_uid(self, folder: str, last_uid: int) -> list[int]:
        self._check_not_idling()
        self.calls.append(("search_after_uid", folder, last_uid))
        if self.fail_search_after:
            self.fail_search_after -= 1
            raise FetchError("search rejected")
        return sorted(uid for uid in self._mailbox(folder).messages if uid > last_uid)

    def fetch(
        self, folder: str, uids: Sequence[int], uidvalidity: int | None = None
    ) -> list[RawMessage]:
        self._check_not_idling()
        self.calls.append(("fetch", folder, tuple(uids)))
        if folder in self.fail_fetch:
            raise FetchError(f"FETCH failed in {folder}")
        mailbox = self._mailbox(folder)
        return [
            RawMessage(
                uid=uid,
                payload=mailbox.messages[uid].payload,
                flags=mailbox.messages[uid].flags,
                internal_date=mailbox.messages[uid].internal_date,
                uidvalidity=uidvalidity,
            )
            for uid in uids
            if uid in mailbox.messages
        ]

    def idle_start(self, folder: str) -> None:
        if self.idling:
            raise ImapError("IDLE is already active on this session")
        self.calls.append(("idle_start", folder))
        self.idle_starts += 1
        self.idling = True

    def idle_check(self, timeout: float) -> list[tuple[Any, ...]]:
        if not self.idling:
            raise ImapError("idle_check called outside IDLE")
        if not self.idle_script:
            raise SessionLostError("connection reset by peer")
        step = self.idle_script.pop(0)
        if callable(step):
            step = step(self)
        return list(step)

    def idle_done(self) -> list[Any]:
        if self.idling:
            self.calls.append(("idle_done",))
        self.idling = False
        return []

    def close(self) -> None:
        self.calls.append(("close",))
        self.idling = False
        self.closed = True

    def _mailbox(self, folder: str) -> FakeMailbox:
        try:
            return self.mailboxes[folder]
        except KeyError as exc:
            raise FetchError(f"No such folder {folder}") from exc

    def _check_not_idling(self) -> None:
        if self.idling:
            raise ImapError("Cannot issue commands while IDLE is active")


class FlakyConnect:
    """Session factory whose first ``failures`` connects are refused."""

    def __init__(self, build: Any, failures: int) -> None:
        self._build = build
        self.failures = failures
        self.created: list[Any] = []

    def __call__(self, account: Account) -> Any:
        session = self._build(account)
        if self.failures > 0:
            self.failures -= 1

            def refuse() -> None:
                raise ImapConnectError("connection refused")

            session.connect = refuse
        self.created.append(session)
        return session
