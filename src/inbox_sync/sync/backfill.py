"""Bounded-window historical sync and cursor-scoped incremental fetches."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence

from ..core.models import MailMessage, SyncCursor
from ..ingestion.normalizer import MessageNormalizer, NormalizationError
from ..transport.imap_client import FolderStatus
from .session import AsyncSession

LOGGER = logging.getLogger(__name__)


class BackfillSync:
    """Fetch messages from one folder in batches and normalize them.

    Fetch errors propagate so the caller can skip the folder; a message that
    fails to parse is logged and skipped. The cursor advances after every
    batch, so calling again with the same cursor only re-reads the current
    batch.
    """

    def __init__(self, normalizer: MessageNormalizer, *, batch_size: int = 50) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._normalizer = normalizer
        self._batch_size = batch_size

    async def backfill(
        self, session: AsyncSession, folder: str, cursor: SyncCursor
    ) -> AsyncIterator[MailMessage]:
        """Yield every message received since ``cursor.since``."""
        status = await session.select(folder)
        self._check_uidvalidity(folder, cursor, status)
        uids = await session.search_since(folder, cursor.since)
        if cursor.last_uid is not None:
            uids = [uid for uid in uids if uid > cursor.last_uid]
        LOGGER.info(
            "Backfilling %s message(s) from %s for account %s since %s",
            len(uids),
            folder,
            cursor.account_id,
            cursor.since,
        )
        async for message in self._fetch_batches(session, folder, uids, cursor):
            yield message

    async def backfill_new(
        self,
        session: AsyncSession,
        folder: str,
        cursor: SyncCursor,
        *,
        status: FolderStatus | None = None,
    ) -> AsyncIterator[MailMessage]:
        """Yield messages that arrived after the cursor's last UID."""
        if status is None:
            status = await session.select(folder)
        reset = self._check_uidvalidity(folder, cursor, status)
        if cursor.last_uid is None or reset:
            uids = await session.search_since(folder, cursor.since)
        else:
            uids = await session.search_after_uid(folder, cursor.last_uid)
        LOGGER.debug(
            "Incremental fetch of %s message(s) from %s for account %s",
            len(uids),
            folder,
            cursor.account_id,
        )
        async for message in self._fetch_batches(session, folder, uids, cursor):
            yield message

    async def _fetch_batches(
        self,
        session: AsyncSession,
        folder: str,
        uids: Sequence[int],
        cursor: SyncCursor,
    ) -> AsyncIterator[MailMessage]:
        for start in range(0, len(uids), self._batch_size):
            batch = uids[start : start + self._batch_size]
            raw_messages = await session.fetch(folder, batch, cursor.uidvalidity)
            for raw in raw_messages:
                try:
                    message = self._normalizer.normalize(raw, cursor.account_id, folder)
                except NormalizationError as exc:
                    LOGGER.warning("Dropping unparseable message: %s", exc)
                    continue
                yield message
            cursor.advance(max(batch))

    @staticmethod
    def _check_uidvalidity(
        folder: str, cursor: SyncCursor, status: FolderStatus
    ) -> bool:
        """Record UIDVALIDITY; return ``True`` when the cursor had to reset."""
        if cursor.uidvalidity is None:
            cursor.uidvalidity = status.uidvalidity
            return False
        if status.uidvalidity != cursor.uidvalidity:
            LOGGER.warning(
                "UIDVALIDITY of %s changed (%s -> %s); restarting from %s",
                folder,
                cursor.uidvalidity,
                status.uidvalidity,
                cursor.since,
            )
            cursor.reset(status.uidvalidity)
            return True
        return False


__all__ = ["BackfillSync"]
