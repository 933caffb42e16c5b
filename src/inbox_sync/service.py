"""Wire configuration into a running sync engine and ingestion pipeline."""

from __future__ import annotations

import asyncio
import logging

from .core.config import AppSettings
from .core.interfaces import NotificationService
from .core.models import AccountHealth, MailMessage
from .ingestion.pipeline import IngestionPipeline
from .intelligence import LLMClassificationService, OllamaClient
from .notifications import HttpNotificationService
from .storage import SqliteMessageIndex
from .sync.engine import SyncEngine
from .sync.session import SessionFactory

LOGGER = logging.getLogger(__name__)


def build_classifier(settings: AppSettings) -> LLMClassificationService:
    """Create the classification service described by ``settings.llm``."""
    llm_client = (
        OllamaClient(settings.llm)
        if settings.llm.base_url and settings.llm.model
        else None
    )
    return LLMClassificationService(
        llm_client,
        fallback_enabled=settings.llm.fallback_enabled,
        classify_temperature=settings.llm.temperature,
        reply_temperature=settings.llm.reply_temperature,
        reply_max_tokens=settings.llm.max_output_tokens,
    )


class InboxSyncService:
    """Own the engine, the ingestion queue and the pipeline consumer."""

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        settings: AppSettings,
        *,
        index: SqliteMessageIndex | None = None,
        classifier: LLMClassificationService | None = None,
        notifier: NotificationService | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.settings = settings
        self.index = index or SqliteMessageIndex(settings.storage)
        self.classifier = classifier or build_classifier(settings)
        self.notifier = notifier or HttpNotificationService(settings.notifications)
        self.queue: asyncio.Queue[MailMessage] = asyncio.Queue(
            maxsize=settings.sync.queue_maxsize
        )
        self.engine = SyncEngine(
            settings.build_accounts(),
            settings.sync,
            self.queue,
            session_factory=session_factory,
        )
        self.pipeline = IngestionPipeline(
            self.index,
            self.classifier,
            self.notifier,
            body_chars=settings.sync.classify_body_chars,
        )
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def health(self) -> list[AccountHealth]:
        return self.engine.health()

    async def start(self) -> None:
        """Start the pipeline consumer and the account workers."""
        if self.running:
            return
        LOGGER.info(
            "Starting sync for %s account(s)", len(self.settings.accounts)
        )
        self._tasks = [
            asyncio.create_task(self.pipeline.run(self.queue), name="pipeline"),
            asyncio.create_task(self.engine.run(), name="engine"),
        ]

    async def stop(self) -> None:
        """Stop the workers, closing every IMAP session, then the pipeline."""
        await self.engine.stop()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        LOGGER.info(
            "Sync stopped; %s message(s) ingested", self.pipeline.processed
        )

    async def run(self) -> None:
        """Run until cancelled."""
        await self.start()
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.stop()

    def close(self) -> None:
        self.index.close()


__all__ = ["InboxSyncService", "build_classifier"]
