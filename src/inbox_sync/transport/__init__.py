"""Transport adapters for IMAP mail servers."""

from .imap_client import (
    DiscoveryError,
    FetchError,
    FolderStatus,
    ImapConnectError,
    ImapError,
    ImapSession,
    SessionLostError,
)

__all__ = [
    "DiscoveryError",
    "FetchError",
    "FolderStatus",
    "ImapConnectError",
    "ImapError",
    "ImapSession",
    "SessionLostError",
]
