"""Live watching of one folder with IMAP IDLE."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from contextlib import aclosing
from typing import Any

from ..core.models import MailMessage, SyncCursor
from ..transport.imap_client import FetchError
from .backfill import BackfillSync
from .session import AsyncSession

LOGGER = logging.getLogger(__name__)

Emit = Callable[[MailMessage], Awaitable[None]]


class LiveWatcher:
    """Keep a folder in IDLE and fetch new mail when the server reports it.

    The watcher runs until cancelled or until the session is lost, in which
    case :class:`~inbox_sync.transport.imap_client.SessionLostError`
    propagates to the caller. Fetch failures never end the watch.
    """

    def __init__(
        self,
        backfill: BackfillSync,
        *,
        refresh_seconds: float = 29 * 60,
        check_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backfill = backfill
        self._refresh_seconds = refresh_seconds
        self._check_seconds = check_seconds
        self._clock = clock

    async def watch(
        self,
        session: AsyncSession,
        folder: str,
        cursor: SyncCursor,
        emit: Emit,
    ) -> None:
        """Watch ``folder`` and pass every new message to ``emit``."""
        if not await session.has_capability("IDLE"):
            LOGGER.warning(
                "Server for account %s does not support IDLE; live updates disabled for %s",
                session.account.id,
                folder,
            )
            return

        # Pick up anything that arrived between backfill and now.
        known = await self._catch_up(session, folder, cursor, emit)
        if known is None:
            LOGGER.warning(
                "Cannot select %s for account %s; not watching it",
                folder,
                session.account.id,
            )
            return

        LOGGER.info("Watching %s for account %s", folder, session.account.id)
        while True:
            arrived = await self._wait_for_arrival(session, folder, known)
            if arrived is None:
                LOGGER.debug("Refreshing IDLE on %s", folder)
                continue
            LOGGER.info(
                "New mail in %s for account %s (%s message(s) now)",
                folder,
                session.account.id,
                arrived,
            )
            caught_up = await self._catch_up(session, folder, cursor, emit)
            known = caught_up if caught_up is not None else arrived

    async def _wait_for_arrival(
        self, session: AsyncSession, folder: str, known: int
    ) -> int | None:
        """IDLE until EXISTS grows past ``known``; ``None`` means refresh."""
        await session.idle_start(folder)
        deadline = self._clock() + self._refresh_seconds
        count = known
        try:
            while (remaining := deadline - self._clock()) > 0:
                responses = await session.idle_check(min(self._check_seconds, remaining))
                count, arrived = _apply_responses(count, responses)
                if arrived:
                    return count
            return None
        finally:
            await session.idle_done()

    async def _catch_up(
        self,
        session: AsyncSession,
        folder: str,
        cursor: SyncCursor,
        emit: Emit,
    ) -> int | None:
        """Fetch everything after the cursor until the folder stops growing."""
        try:
            status = await session.select(folder)
        except FetchError as exc:
            LOGGER.error("Selecting %s failed: %s", folder, exc)
            return None

        while True:
            try:
                stream = self._backfill.backfill_new(
                    session, folder, cursor, status=status
                )
                async with aclosing(stream) as messages:
                    async for message in messages:
                        await emit(message)
            except FetchError as exc:
                LOGGER.error(
                    "Incremental fetch of %s for account %s failed: %s",
                    folder,
                    cursor.account_id,
                    exc,
                )
                return status.exists

            try:
                latest = await session.select(folder)
            except FetchError as exc:
                LOGGER.error("Re-selecting %s failed: %s", folder, exc)
                return status.exists
            if latest.exists <= status.exists:
                return latest.exists
            status = latest


def _apply_responses(
    count: int, responses: Sequence[tuple[Any, ...]]
) -> tuple[int, bool]:
    """Fold untagged IDLE responses into the message count."""
    arrived = False
    for response in responses:
        if len(response) < 2 or not isinstance(response[0], int):
            continue
        kind = response[1]
        if kind == b"EXISTS":
            if response[0] > count:
                arrived = True
            count = response[0]
        elif kind == b"EXPUNGE":
            count = max(count - 1, 0)
    return count, arrived


__all__ = ["LiveWatcher"]
