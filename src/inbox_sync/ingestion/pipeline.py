"""Ingestion pipeline: index, classify and alert on each synchronized message."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from ..core.interfaces import ClassificationService, NotificationService, SearchIndex
from ..core.models import Category, MailMessage

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class IngestionPipeline:
    """Run each message through independent, fault-tolerant steps.

    A failing step is logged and never rolls back earlier steps or stops the
    remaining ones. Collaborators are synchronous and run in worker threads
    so that IMAP workers keep being served while they block.
    """

    def __init__(
        self,
        index: SearchIndex,
        classifier: ClassificationService,
        notifier: NotificationService,
        *,
        body_chars: int = 1000,
    ) -> None:
        self._index = index
        self._classifier = classifier
        self._notifier = notifier
        self._body_chars = body_chars
        self.processed = 0

    async def ingest(self, message: MailMessage) -> Category:
        """Process one message and return the label it ended up with."""
        existing = await self._step("lookup", message, self._index.get_by_id, message.id)
        if existing is not None:
            # Seen before (e.g. re-fetched after a reconnect): refresh flags only.
            message.category = existing.category
            await self._step("index", message, self._index.index_message, message)
            LOGGER.debug("Message %s already ingested; refreshed", message.id)
            self.processed += 1
            return message.category

        await self._step("index", message, self._index.index_message, message)

        label = await self._classify(message)
        message.category = label
        await self._step(
            "update_category", message, self._index.update_category, message.id, label
        )

        if label is Category.INTERESTED:
            await self._step("notify_slack", message, self._notifier.notify_slack, message)
            await self._step(
                "notify_webhook", message, self._notifier.notify_webhook, message
            )

        self.processed += 1
        LOGGER.info(
            "Ingested message %s from %s/%s as %s",
            message.id,
            message.account_id,
            message.folder,
            label.value,
        )
        return label

    async def run(self, queue: asyncio.Queue[MailMessage]) -> None:
        """Consume ``queue`` forever; cancel to stop."""
        while True:
            message = await queue.get()
            try:
                await self.ingest(message)
            except Exception:  # pylint: disable=broad-except
                LOGGER.error("Ingestion of message %s failed", message.id, exc_info=True)
            finally:
                queue.task_done()

    async def _classify(self, message: MailMessage) -> Category:
        body = message.body.text or message.body.html or ""
        try:
            label = await asyncio.to_thread(
                self._classifier.classify,
                message.subject or "",
                body[: self._body_chars],
            )
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error(
                "Classification of message %s failed: %s", message.id, exc, exc_info=True
            )
            return Category.UNCATEGORIZED
        return label if isinstance(label, Category) else Category.UNCATEGORIZED

    async def _step(
        self,
        name: str,
        message: MailMessage,
        func: Callable[..., T],
        *args: Any,
    ) -> T | None:
        try:
            return await asyncio.to_thread(func, *args)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error(
                "Pipeline step %s failed for message %s: %s",
                name,
                message.id,
                exc,
                exc_info=True,
            )
            return None


__all__ = ["IngestionPipeline"]
