"""Session ownership, disconnect detection and reconnect backoff."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import date
from typing import Any, TypeVar

from ..core.config import SyncSettings
from ..core.datetime_utils import utc_now
from ..core.models import Account, AccountHealth, Folder, RawMessage, SessionState
from ..transport.imap_client import (
    FolderStatus,
    ImapConnectError,
    ImapSession,
    SessionLostError,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
SessionFactory = Callable[[Account], ImapSession]
DisconnectCallback = Callable[["AsyncSession", BaseException], None]
Sleep = Callable[[float], Awaitable[Any]]

_SESSION_IDS = itertools.count(1)


async def run_blocking(func: Callable[..., T], *args: Any) -> T:
    """Run ``func`` in a worker thread and wait for it even when cancelled.

    The socket behind a session must never be touched by two threads, so a
    cancelled caller still waits for the running command to return before
    the cancellation propagates.
    """
    task = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        while not task.done():
            try:
                await asyncio.wait({task})
            except asyncio.CancelledError:
                continue
        if not task.cancelled() and task.exception() is not None:
            LOGGER.debug("Command finished with %r after cancellation", task.exception())
        raise


class ReconnectPolicy:
    """Capped exponential backoff, reset once a connection proves stable."""

    def __init__(
        self,
        initial_delay: float = 10.0,
        max_delay: float = 300.0,
        multiplier: float = 2.0,
    ) -> None:
        self.initial_delay = initial_delay
        self.max_delay = max(max_delay, initial_delay)
        self.multiplier = multiplier
        self._attempts = 0

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> ReconnectPolicy:
        return cls(
            initial_delay=settings.reconnect_initial_delay,
            max_delay=settings.reconnect_max_delay,
            multiplier=settings.reconnect_multiplier,
        )

    @property
    def attempts(self) -> int:
        return self._attempts

    def next_delay(self) -> float:
        """Return the delay before the next attempt and count the attempt."""
        delay = self.initial_delay * (self.multiplier**self._attempts)
        self._attempts += 1
        return min(delay, self.max_delay)

    def reset(self) -> None:
        self._attempts = 0


class AsyncSession:
    """Async facade over one :class:`ImapSession`.

    Commands are serialized with a lock so at most one logical command is in
    flight. The first :class:`SessionLostError` marks the session invalid and
    fires the registered disconnect callbacks exactly once.
    """

    def __init__(self, imap: ImapSession, *, session_id: int | None = None) -> None:
        self._imap = imap
        self._lock = asyncio.Lock()
        self._lost = False
        self._closed = False
        self._callbacks: list[DisconnectCallback] = []
        self.session_id = session_id if session_id is not None else next(_SESSION_IDS)

    @property
    def account(self) -> Account:
        return self._imap.account

    @property
    def usable(self) -> bool:
        """Whether commands may still be issued on this session."""
        return not (self._lost or self._closed)

    def add_disconnect_callback(self, callback: DisconnectCallback) -> None:
        self._callbacks.append(callback)

    async def has_capability(self, name: str) -> bool:
        return await self._call(self._imap.has_capability, name)

    async def list_folders(self, directory: str = "", pattern: str = "%") -> list[Folder]:
        return await self._call(self._imap.list_folders, directory, pattern)

    async def select(self, folder: str) -> FolderStatus:
        return await self._call(self._imap.select, folder)

    async def search_since(self, folder: str, since: date) -> list[int]:
        return await self._call(self._imap.search_since, folder, since)

    async def search_after_uid(self, folder: str, last_uid: int) -> list[int]:
        return await self._call(self._imap.search_after_uid, folder, last_uid)

    async def fetch(
        self, folder: str, uids: Sequence[int], uidvalidity: int | None = None
    ) -> list[RawMessage]:
        return await self._call(self._imap.fetch, folder, uids, uidvalidity)

    async def idle_start(self, folder: str) -> None:
        await self._call(self._imap.idle_start, folder)

    async def idle_check(self, timeout: float) -> list[tuple[Any, ...]]:
        return await self._call(self._imap.idle_check, timeout)

    async def idle_done(self) -> list[Any]:
        """Leave IDLE; silently skipped once the session is unusable."""
        if not self.usable:
            return []
        return await self._call(self._imap.idle_done)

    async def close(self) -> None:
        """Log out. Waits for any in-flight command first."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            await run_blocking(self._imap.close)

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        async with self._lock:
            if not self.usable:
                raise SessionLostError(
                    f"Session {self.session_id} for {self.account.id} is no longer usable"
                )
            try:
                return await run_blocking(func, *args)
            except SessionLostError as exc:
                self._mark_lost(exc)
                raise

    def _mark_lost(self, exc: BaseException) -> None:
        if self._lost:
            return
        self._lost = True
        for callback in self._callbacks:
            try:
                callback(self, exc)
            except Exception:  # pylint: disable=broad-except
                LOGGER.error("Disconnect callback failed", exc_info=True)


class SessionManager:
    """Owns the sessions of one account and reconnects with backoff."""

    def __init__(
        self,
        account: Account,
        policy: ReconnectPolicy | None = None,
        *,
        timeout: float = 30.0,
        session_factory: SessionFactory | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._account = account
        self._policy = policy or ReconnectPolicy()
        self._timeout = timeout
        self._session_factory = session_factory or self._default_factory
        self._sleep = sleep
        self._sessions: list[AsyncSession] = []
        self._health = AccountHealth(account_id=account.id)

    @property
    def account(self) -> Account:
        return self._account

    @property
    def policy(self) -> ReconnectPolicy:
        return self._policy

    def health(self) -> AccountHealth:
        """Return a snapshot of the account's connection health."""
        return AccountHealth(
            account_id=self._health.account_id,
            state=self._health.state,
            consecutive_failures=self._health.consecutive_failures,
            last_error=self._health.last_error,
            connected_at=self._health.connected_at,
            open_sessions=len(self._sessions),
        )

    async def connect(self) -> AsyncSession:
        """Open a new session, retrying forever on connection failures."""
        while True:
            imap = self._session_factory(self._account)
            try:
                await run_blocking(imap.connect)
            except ImapConnectError as exc:
                self._health.state = SessionState.RECONNECTING
                self._health.consecutive_failures += 1
                self._health.last_error = str(exc)
                delay = self._policy.next_delay()
                LOGGER.warning(
                    "Connection for account %s failed (%s attempt(s)): %s; retrying in %.1fs",
                    self._account.id,
                    self._health.consecutive_failures,
                    exc,
                    delay,
                )
                await self._sleep(delay)
                continue
            except asyncio.CancelledError:
                await run_blocking(imap.close)
                raise

            self._health.state = SessionState.HEALTHY
            self._health.consecutive_failures = 0
            self._health.last_error = None
            self._health.connected_at = utc_now()
            session = AsyncSession(imap)
            session.add_disconnect_callback(self._handle_disconnect)
            self._sessions.append(session)
            LOGGER.info(
                "Connected session %s for account %s (%s@%s)",
                session.session_id,
                self._account.id,
                self._account.username,
                self._account.host,
            )
            return session

    def reset_backoff(self) -> None:
        """Start the next reconnect from the initial delay again.

        Connecting alone does not reset the backoff, so a server that accepts
        and then drops connections still sees growing delays.
        """
        self._policy.reset()

    def on_disconnected(self, session: AsyncSession, callback: DisconnectCallback) -> None:
        """Register ``callback`` to run once when ``session`` is lost."""
        session.add_disconnect_callback(callback)

    async def close(self, session: AsyncSession) -> None:
        """Release ``session`` and stop tracking it."""
        if session in self._sessions:
            self._sessions.remove(session)
        await session.close()
        LOGGER.debug(
            "Closed session %s for account %s", session.session_id, self._account.id
        )

    async def close_all(self, *, final: bool = False) -> None:
        """Close every tracked session; ``final`` marks the account stopped."""
        sessions = list(self._sessions)
        for session in sessions:
            try:
                await self.close(session)
            except Exception:  # pylint: disable=broad-except
                LOGGER.warning(
                    "Failed to close session %s for account %s",
                    session.session_id,
                    self._account.id,
                    exc_info=True,
                )
        if final:
            self._health.state = SessionState.STOPPED
            LOGGER.info("All sessions closed for account %s", self._account.id)

    async def wait_before_reconnect(self) -> float:
        """Sleep for the next backoff delay and return it."""
        delay = self._policy.next_delay()
        self._health.state = SessionState.RECONNECTING
        LOGGER.info("Reconnecting account %s in %.1fs", self._account.id, delay)
        await self._sleep(delay)
        return delay

    def _handle_disconnect(self, session: AsyncSession, exc: BaseException) -> None:
        self._health.state = SessionState.RECONNECTING
        self._health.last_error = str(exc)
        LOGGER.warning(
            "Session %s for account %s lost: %s",
            session.session_id,
            self._account.id,
            exc,
        )

    def _default_factory(self, account: Account) -> ImapSession:
        return ImapSession(account, timeout=self._timeout)


__all__ = [
    "AsyncSession",
    "ReconnectPolicy",
    "SessionManager",
    "run_blocking",
]
