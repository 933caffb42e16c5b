"""IMAP transport adapter providing folder, fetch and IDLE access."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, date, datetime
from types import TracebackType
from typing import Any

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError, LoginError

from ..core.models import Account, Folder, RawMessage

LOGGER = logging.getLogger(__name__)

FETCH_ITEMS = ["BODY.PEEK[]", "FLAGS", "INTERNALDATE"]
_BODY_KEY = b"BODY[]"

ClientFactory = Callable[..., Any]


class ImapError(RuntimeError):
    """Wrap low level IMAP errors with additional context."""


class ImapConnectError(ImapError):
    """Raised when a session cannot be established or authenticated."""


class SessionLostError(ImapError):
    """Raised when the connection dropped and the session is unusable."""


class DiscoveryError(ImapError):
    """Raised when the server rejects a folder listing."""


class FetchError(ImapError):
    """Raised when a select, search or fetch command fails."""


@dataclass(slots=True)
class FolderStatus:
    """Counters reported by the server when a folder is selected."""

    exists: int
    uidvalidity: int | None


class ImapSession:
    """Blocking wrapper around :class:`imapclient.IMAPClient` for one account.

    Every folder-scoped command selects its folder read-only first, so the
    session never alters server-side flags. Only one IDLE may be active at a
    time; :meth:`idle_start` refuses to nest.
    """

    def __init__(
        self,
        account: Account,
        *,
        timeout: float = 30.0,
        client_factory: ClientFactory = IMAPClient,
    ) -> None:
        """Initialise the session for ``account`` without connecting."""
        self._account = account
        self._timeout = timeout
        self._client_factory = client_factory
        self._client: Any | None = None
        self._selected: str | None = None
        self._idling = False

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> ImapSession:
        """Connect on entering a context manager scope."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure resources are released on context exit."""
        self.close()

    # Public API ---------------------------------------------------------------
    @property
    def account(self) -> Account:
        """Account this session authenticates as."""
        return self._account

    @property
    def connected(self) -> bool:
        """Whether a server connection is currently held."""
        return self._client is not None

    @property
    def idling(self) -> bool:
        """Whether an IDLE command is outstanding."""
        return self._idling

    def connect(self) -> None:
        """Open the connection and authenticate."""
        if self._client is not None:
            return

        account = self._account
        LOGGER.debug(
            "Connecting to IMAP host %s:%s (ssl=%s)",
            account.host,
            account.port,
            account.use_ssl,
        )
        client: Any | None = None
        try:
            client = self._client_factory(
                account.host,
                port=account.port,
                ssl=account.use_ssl,
                timeout=self._timeout,
                use_uid=True,
            )
            LOGGER.debug("Authenticating as %s", account.username)
            client.login(account.username, account.password)
        except LoginError as exc:
            _quiet_logout(client)
            raise ImapConnectError(
                f"Authentication failed for {account.username}@{account.host}"
            ) from exc
        except (IMAPClientError, OSError) as exc:
            _quiet_logout(client)
            raise ImapConnectError(
                f"Failed to connect to {account.host}:{account.port}"
            ) from exc
        self._client = client
        self._selected = None
        self._idling = False

    def has_capability(self, name: str) -> bool:
        """Return whether the server advertises capability ``name``."""
        client = self._require_connection()
        with self._guard(ImapError, f"CAPABILITY {name}"):
            return bool(client.has_capability(name))

    def list_folders(self, directory: str = "", pattern: str = "%") -> list[Folder]:
        """Run LIST for one hierarchy level and return the matching folders."""
        client = self._require_connection()
        with self._guard(DiscoveryError, f"LIST {directory!r} {pattern!r}"):
            entries = client.list_folders(directory, pattern)
        return [_to_folder(flags, delimiter, name) for flags, delimiter, name in entries]

    def select(self, folder: str) -> FolderStatus:
        """Select ``folder`` read-only and return its current counters."""
        client = self._require_connection()
        self._require_not_idling()
        with self._guard(FetchError, f"EXAMINE {folder}"):
            response = client.select_folder(folder, readonly=True)
        self._selected = folder
        return FolderStatus(
            exists=int(response.get(b"EXISTS", 0)),
            uidvalidity=_optional_int(response.get(b"UIDVALIDITY")),
        )

    def search_since(self, folder: str, since: date) -> list[int]:
        """Return UIDs of messages with an internal date on or after ``since``."""
        client = self._ensure_selected(folder)
        with self._guard(FetchError, f"SEARCH SINCE {since} in {folder}"):
            uids = client.search(["SINCE", since])
        return sorted(int(uid) for uid in uids)

    def search_after_uid(self, folder: str, last_uid: int) -> list[int]:
        """Return UIDs strictly greater than ``last_uid``."""
        client = self._ensure_selected(folder)
        with self._guard(FetchError, f"SEARCH UID {last_uid + 1}:* in {folder}"):
            uids = client.search(["UID", f"{last_uid + 1}:*"])
        # ``n:*`` always matches the highest UID, even when it is below ``n``.
        return sorted(int(uid) for uid in uids if int(uid) > last_uid)

    def fetch(
        self, folder: str, uids: Sequence[int], uidvalidity: int | None = None
    ) -> list[RawMessage]:
        """Fetch full payloads without setting ``\\Seen``."""
        if not uids:
            return []
        client = self._ensure_selected(folder)
        with self._guard(FetchError, f"FETCH {len(uids)} message(s) in {folder}"):
            response = client.fetch(list(uids), FETCH_ITEMS)

        messages: list[RawMessage] = []
        for uid in sorted(response):
            data = response[uid]
            payload = data.get(_BODY_KEY)
            if payload is None:
                LOGGER.warning("No body returned for UID %s in %s", uid, folder)
                continue
            messages.append(
                RawMessage(
                    uid=int(uid),
                    payload=bytes(payload),
                    flags=tuple(_decode(flag) for flag in data.get(b"FLAGS", ())),
                    internal_date=_as_utc(data.get(b"INTERNALDATE")),
                    uidvalidity=uidvalidity,
                )
            )
        return messages

    def idle_start(self, folder: str) -> None:
        """Enter IDLE on ``folder``."""
        if self._idling:
            raise ImapError("IDLE is already active on this session")
        client = self._ensure_selected(folder)
        with self._guard(ImapError, f"IDLE on {folder}"):
            client.idle()
        self._idling = True

    def idle_check(self, timeout: float) -> list[tuple[Any, ...]]:
        """Wait up to ``timeout`` seconds for untagged IDLE responses."""
        client = self._require_connection()
        if not self._idling:
            raise ImapError("idle_check called outside IDLE")
        with self._guard(ImapError, "IDLE wait"):
            return list(client.idle_check(timeout=timeout))

    def idle_done(self) -> list[Any]:
        """Leave IDLE. A no-op when no IDLE is outstanding."""
        if not self._idling or self._client is None:
            self._idling = False
            return []
        try:
            with self._guard(ImapError, "IDLE DONE"):
                _, responses = self._client.idle_done()
        finally:
            self._idling = False
        return list(responses or [])

    def close(self) -> None:
        """Terminate the IMAP session cleanly."""
        if self._client is None:
            return
        client = self._client
        try:
            if self._idling:
                LOGGER.debug("Leaving IDLE before logout")
                client.idle_done()
        except (IMAPClientError, OSError):  # pragma: no cover - depends on server state
            LOGGER.debug("IDLE DONE raised; continuing with logout")
        finally:
            self._idling = False
            _quiet_logout(client)
            self._client = None
            self._selected = None

    # Internal helpers ---------------------------------------------------------
    def _require_connection(self) -> Any:
        if self._client is None:
            raise ImapError("IMAP connection has not been established")
        return self._client

    def _require_not_idling(self) -> None:
        if self._idling:
            raise ImapError("Cannot issue commands while IDLE is active")

    def _ensure_selected(self, folder: str) -> Any:
        client = self._require_connection()
        self._require_not_idling()
        if self._selected != folder:
            self.select(folder)
        return client

    @contextmanager
    def _guard(self, error_cls: type[ImapError], action: str) -> Iterator[None]:
        """Translate library errors; connection-level failures mean session loss."""
        try:
            yield
        except IMAPClientAbortError as exc:
            raise SessionLostError(f"{action} aborted: {exc}") from exc
        except OSError as exc:
            raise SessionLostError(f"{action} failed on socket: {exc}") from exc
        except IMAPClientError as exc:
            raise error_cls(f"{action} failed: {exc}") from exc


def _to_folder(flags: Sequence[Any], delimiter: Any, name: Any) -> Folder:
    decoded_flags = tuple(_decode(flag) for flag in flags)
    lowered = {flag.lower() for flag in decoded_flags}
    return Folder(
        path=_decode(name),
        delimiter=_decode(delimiter) if delimiter else None,
        flags=decoded_flags,
        selectable=not lowered & {"\\noselect", "\\nonexistent"},
    )


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
        if value is None:
            return None
    return int(value)


def _as_utc(value: Any) -> datetime | None:
    """``imapclient`` returns naive local times for INTERNALDATE."""
    if not isinstance(value, datetime):
        return None
    return value.astimezone(UTC)


def _quiet_logout(client: Any | None) -> None:
    if client is None:
        return
    try:
        client.logout()
    except (IMAPClientError, OSError):  # pragma: no cover
        LOGGER.debug("IMAP logout raised; suppressing during shutdown")


__all__ = [
    "DiscoveryError",
    "FETCH_ITEMS",
    "FetchError",
    "FolderStatus",
    "ImapConnectError",
    "ImapError",
    "ImapSession",
    "SessionLostError",
]
