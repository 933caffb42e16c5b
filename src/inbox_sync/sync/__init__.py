"""Mail synchronization engine: sessions, discovery, backfill and live watching."""

from .backfill import BackfillSync
from .discovery import FolderDiscovery
from .engine import AccountWorker, SyncEngine
from .session import AsyncSession, ReconnectPolicy, SessionManager
from .watcher import LiveWatcher

__all__ = [
    "AccountWorker",
    "AsyncSession",
    "BackfillSync",
    "FolderDiscovery",
    "LiveWatcher",
    "ReconnectPolicy",
    "SessionManager",
    "SyncEngine",
]
