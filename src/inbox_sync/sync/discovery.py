"""Recursive folder discovery."""

from __future__ import annotations

import logging

from ..core.models import Folder
from ..transport.imap_client import DiscoveryError
from .session import AsyncSession

LOGGER = logging.getLogger(__name__)


class FolderDiscovery:
    """Walk the folder tree one LIST level at a time, depth-first.

    Each call returns a fresh snapshot in server order. A failure listing a
    subtree is logged and the walk continues with the next sibling; only a
    failure at the root is raised.
    """

    def __init__(self, *, max_depth: int = 32) -> None:
        self._max_depth = max_depth

    async def list_folders(self, session: AsyncSession) -> list[Folder]:
        """Return every folder of the account behind ``session``."""
        roots = await session.list_folders("", "%")
        discovered: list[Folder] = []
        seen: set[str] = set()
        for folder in roots:
            await self._walk(session, folder, discovered, seen, depth=0)
        LOGGER.info(
            "Discovered %s folder(s) for account %s",
            len(discovered),
            session.account.id,
        )
        return discovered

    async def _walk(
        self,
        session: AsyncSession,
        folder: Folder,
        discovered: list[Folder],
        seen: set[str],
        *,
        depth: int,
    ) -> None:
        if folder.path in seen:
            return
        seen.add(folder.path)
        discovered.append(folder)

        if (
            not folder.may_have_children
            or not folder.delimiter
            or depth >= self._max_depth
        ):
            return

        pattern = f"{folder.path}{folder.delimiter}%"
        try:
            children = await session.list_folders("", pattern)
        except DiscoveryError as exc:
            LOGGER.warning(
                "Skipping subtree %s for account %s: %s",
                folder.path,
                session.account.id,
                exc,
            )
            return

        for child in children:
            if child.path == folder.path:
                continue
            folder.children.append(child.path)
            await self._walk(session, child, discovered, seen, depth=depth + 1)


__all__ = ["FolderDiscovery"]
