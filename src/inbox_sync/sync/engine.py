"""Per-account sync workers and the engine that runs them."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from contextlib import aclosing
from datetime import date

from ..core.config import SyncSettings
from ..core.datetime_utils import window_start
from ..core.models import Account, AccountHealth, Folder, MailMessage, SyncCursor
from ..ingestion.normalizer import MessageNormalizer
from ..transport.imap_client import FetchError, ImapError, SessionLostError
from .backfill import BackfillSync
from .discovery import FolderDiscovery
from .session import AsyncSession, ReconnectPolicy, SessionFactory, SessionManager
from .watcher import LiveWatcher

LOGGER = logging.getLogger(__name__)

MessageQueue = asyncio.Queue[MailMessage]


class AccountWorker:
    """Drive one account through discovery, backfill and live watching.

    Every cycle starts from a fresh connection: folders are rediscovered and
    backfilled on one primary session, then each watched folder gets its own
    session. When any session is lost, every watcher of the account stops,
    all sessions close and a new cycle starts after the backoff delay.
    """

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        account: Account,
        settings: SyncSettings,
        queue: MessageQueue,
        *,
        manager: SessionManager | None = None,
        discovery: FolderDiscovery | None = None,
        backfill: BackfillSync | None = None,
        watcher: LiveWatcher | None = None,
        session_factory: SessionFactory | None = None,
        today: date | None = None,
    ) -> None:
        self._account = account
        self._settings = settings
        self._queue = queue
        self._manager = manager or SessionManager(
            account,
            ReconnectPolicy.from_settings(settings),
            timeout=settings.connect_timeout_seconds,
            session_factory=session_factory,
        )
        self._discovery = discovery or FolderDiscovery()
        self._backfill = backfill or BackfillSync(
            MessageNormalizer(
                include_attachment_content=settings.include_attachment_content
            ),
            batch_size=settings.batch_size,
        )
        self._watcher = watcher or LiveWatcher(
            self._backfill,
            refresh_seconds=settings.idle_refresh_seconds,
            check_seconds=settings.idle_check_seconds,
        )
        self._since = window_start(account.lookback_days, today=today)
        self.cycles = 0

    @property
    def account(self) -> Account:
        return self._account

    @property
    def since(self) -> date:
        """First day of the historical window, fixed when the worker starts."""
        return self._since

    def health(self) -> AccountHealth:
        return self._manager.health()

    async def run(self) -> None:
        """Run sync cycles until cancelled."""
        try:
            while True:
                try:
                    await self.run_cycle()
                except ImapError as exc:
                    LOGGER.warning(
                        "Sync cycle for account %s ended: %s", self._account.id, exc
                    )
                except Exception:  # pylint: disable=broad-except
                    LOGGER.error(
                        "Unexpected failure syncing account %s",
                        self._account.id,
                        exc_info=True,
                    )
                await self._manager.close_all()
                await self._manager.wait_before_reconnect()
        finally:
            await self._manager.close_all(final=True)

    async def run_cycle(self) -> None:
        """Discover, backfill, then watch until a session is lost."""
        self.cycles += 1
        cursors: dict[str, SyncCursor] = {}
        primary = await self._manager.connect()
        try:
            folders = await self._discovery.list_folders(primary)
            await self._backfill_all(primary, folders, cursors)
        finally:
            await self._manager.close(primary)
        # A cycle that got through backfill counts as a stable connection.
        self._manager.reset_backoff()

        watched = self._select_watched(folders)
        if not watched:
            LOGGER.info("No folders to watch for account %s", self._account.id)
            await asyncio.Event().wait()
        await self._watch_all(watched, cursors)

    async def _backfill_all(
        self,
        session: AsyncSession,
        folders: Sequence[Folder],
        cursors: dict[str, SyncCursor],
    ) -> None:
        for folder in folders:
            if not folder.selectable:
                continue
            cursor = SyncCursor(
                account_id=self._account.id, folder=folder.path, since=self._since
            )
            cursors[folder.path] = cursor
            emitted = 0
            try:
                stream = self._backfill.backfill(session, folder.path, cursor)
                async with aclosing(stream) as messages:
                    async for message in messages:
                        await self._queue.put(message)
                        emitted += 1
            except FetchError as exc:
                LOGGER.error(
                    "Backfill of %s for account %s failed: %s",
                    folder.path,
                    self._account.id,
                    exc,
                )
                continue
            LOGGER.info(
                "Backfilled %s message(s) from %s for account %s",
                emitted,
                folder.path,
                self._account.id,
            )

    def _select_watched(self, folders: Sequence[Folder]) -> list[str]:
        selectable = [folder.path for folder in folders if folder.selectable]
        wanted = self._account.watch_folders
        if not wanted:
            watched = selectable
        else:
            watched = []
            for name in wanted:
                match = next(
                    (path for path in selectable if _same_folder(path, name)), None
                )
                if match is not None:
                    watched.append(match)
                else:
                    LOGGER.warning(
                        "Folder %s not found for account %s; not watching it",
                        name,
                        self._account.id,
                    )
        limit = self._settings.max_sessions_per_account
        if len(watched) > limit:
            for path in watched[limit:]:
                LOGGER.warning(
                    "Session cap of %s reached for account %s; not watching %s",
                    limit,
                    self._account.id,
                    path,
                )
            watched = watched[:limit]
        return watched

    async def _watch_all(
        self, folders: Sequence[str], cursors: dict[str, SyncCursor]
    ) -> None:
        lost = asyncio.Event()
        tasks: list[asyncio.Task[None]] = []
        try:
            for path in folders:
                session = await self._manager.connect()
                self._manager.on_disconnected(session, lambda _s, _e: lost.set())
                cursor = cursors.get(path) or SyncCursor(
                    account_id=self._account.id, folder=path, since=self._since
                )
                tasks.append(
                    asyncio.create_task(
                        self._watch_folder(session, path, cursor, lost),
                        name=f"watch:{self._account.id}:{path}",
                    )
                )
            await lost.wait()
            raise SessionLostError(
                f"Live watching interrupted for account {self._account.id}"
            )
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _watch_folder(
        self,
        session: AsyncSession,
        folder: str,
        cursor: SyncCursor,
        lost: asyncio.Event,
    ) -> None:
        try:
            await self._watcher.watch(session, folder, cursor, self._queue.put)
        except SessionLostError:
            LOGGER.info(
                "Watcher for %s on account %s stopped: session lost",
                folder,
                self._account.id,
            )
            return
        except ImapError as exc:
            LOGGER.error(
                "Watcher for %s on account %s failed: %s",
                folder,
                self._account.id,
                exc,
            )
        except Exception:  # pylint: disable=broad-except
            LOGGER.error(
                "Watcher for %s on account %s crashed; restarting the account",
                folder,
                self._account.id,
                exc_info=True,
            )
            lost.set()
            return
        # The watcher returned without a lost session; release its connection.
        await self._manager.close(session)


def _same_folder(path: str, name: str) -> bool:
    # INBOX is case-insensitive in IMAP; every other name is not.
    if path.upper() == "INBOX" and name.upper() == "INBOX":
        return True
    return path == name


class SyncEngine:
    """Run one :class:`AccountWorker` per account, all feeding one queue."""

    def __init__(
        self,
        accounts: Sequence[Account],
        settings: SyncSettings,
        queue: MessageQueue,
        *,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self._queue = queue
        self._workers = [
            AccountWorker(account, settings, queue, session_factory=session_factory)
            for account in accounts
        ]
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def queue(self) -> MessageQueue:
        return self._queue

    @property
    def workers(self) -> list[AccountWorker]:
        return list(self._workers)

    def health(self) -> list[AccountHealth]:
        """Return the health of every account."""
        return [worker.health() for worker in self._workers]

    async def run(self) -> None:
        """Start every worker and wait until they are cancelled."""
        if not self._workers:
            LOGGER.warning("No accounts configured; sync engine is idle")
        self._tasks = [
            asyncio.create_task(worker.run(), name=f"account:{worker.account.id}")
            for worker in self._workers
        ]
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Cancel all workers and wait for their sessions to close."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            LOGGER.info("Sync engine stopped")


__all__ = ["AccountWorker", "MessageQueue", "SyncEngine"]
