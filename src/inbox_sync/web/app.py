"""FastAPI application exposing synchronized messages."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Query, status as http_status
from pydantic import BaseModel

from inbox_sync.core import AppSettings, load_app_settings
from inbox_sync.core.datetime_utils import serialize_datetime
from inbox_sync.core.interfaces import SearchIndexError
from inbox_sync.core.models import AccountHealth, Category, MailMessage, SearchFilters
from inbox_sync.intelligence import LLMClassificationService
from inbox_sync.service import InboxSyncService, build_classifier
from inbox_sync.storage import SqliteMessageIndex
from inbox_sync.storage.sqlite import MAX_PAGE_SIZE

DEFAULT_PAGE_SIZE = 20
SUGGESTION_QUERY_CHARS = 500

LOGGER = logging.getLogger(__name__)


class CategoryUpdate(BaseModel):
    """Body of ``PUT /api/emails/{id}/category``."""

    category: str | None = None


class ReferenceInfo(BaseModel):
    """Body of ``POST /api/product-info``."""

    id: str | None = None
    content: str | None = None


def serialize_message(message: MailMessage) -> dict[str, Any]:
    """Return the JSON representation of ``message``."""
    return {
        "id": message.id,
        "account_id": message.account_id,
        "folder": message.folder,
        "uid": message.uid,
        "message_id": message.message_id,
        "subject": message.subject,
        "from": message.sender,
        "to": list(message.to),
        "cc": list(message.cc),
        "bcc": list(message.bcc),
        "sent_at": serialize_datetime(message.sent_at),
        "received_at": serialize_datetime(message.received_at),
        "synced_at": serialize_datetime(message.synced_at),
        "body": {"text": message.body.text, "html": message.body.html},
        "attachments": [
            {
                "filename": item.filename,
                "content_type": item.content_type,
                "size": item.size,
            }
            for item in message.attachments
        ],
        "is_read": message.is_read,
        "is_flagged": message.is_flagged,
        "category": message.category.value,
    }


def _serialize_health(health: AccountHealth) -> dict[str, Any]:
    return {
        "account_id": health.account_id,
        "state": health.state.value,
        "consecutive_failures": health.consecutive_failures,
        "last_error": health.last_error,
        "connected_at": serialize_datetime(health.connected_at),
        "open_sessions": health.open_sessions,
    }


def _server_error(action: str) -> HTTPException:
    LOGGER.error("Failed to %s", action, exc_info=True)
    return HTTPException(
        status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


def create_app(
    settings: AppSettings | None = None,
    *,
    index: SqliteMessageIndex | None = None,
    classifier: LLMClassificationService | None = None,
    service: InboxSyncService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    When ``service`` is given, its sync engine starts and stops with the
    server and the app shares its index and classifier.
    """
    app_settings = settings or (service.settings if service else load_app_settings())
    message_index = index or (
        service.index if service else SqliteMessageIndex(app_settings.storage)
    )
    classification = classifier or (
        service.classifier if service else build_classifier(app_settings)
    )
    app = FastAPI(title="Inbox Sync")

    @app.on_event("startup")
    async def startup_event() -> None:
        """Start background synchronization when a service is attached."""
        if service is not None:
            await service.start()

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        """Stop sync and close storage on app shutdown."""
        if service is not None:
            await service.stop()
        message_index.close()
        LOGGER.info("Message index closed")

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        """Report per-account session health."""
        accounts = [_serialize_health(item) for item in (service.health() if service else [])]
        degraded = any(item["state"] != "healthy" for item in accounts)
        return {"status": "degraded" if degraded else "ok", "accounts": accounts}

    @app.get("/api/emails")
    async def search_emails(
        query: str | None = None,
        account_id: str | None = None,
        folder: str | None = None,
        category: str | None = None,
        sender: str | None = Query(default=None, alias="from"),
        recipient: str | None = Query(default=None, alias="to"),
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        page: int = Query(default=1, ge=1),
        size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    ) -> dict[str, Any]:
        """Search stored messages, newest first."""
        # pylint: disable=too-many-arguments
        label: Category | None = None
        if category:
            try:
                label = Category.parse(category)
            except ValueError as exc:
                raise HTTPException(
                    status_code=http_status.HTTP_400_BAD_REQUEST,
                    detail=f"Invalid category '{category}'",
                ) from exc
        filters = SearchFilters(
            query=query,
            account_id=account_id,
            folder=folder,
            category=label,
            sender=sender,
            recipient=recipient,
            start=start_date,
            end=end_date,
            page=page,
            size=size,
        )
        try:
            result = await asyncio.to_thread(message_index.search, filters)
        except SearchIndexError as exc:
            raise _server_error("search emails") from exc
        return {
            "total": result.total,
            "page": page,
            "size": size,
            "emails": [serialize_message(item) for item in result.messages],
        }

    @app.get("/api/emails/counts")
    async def email_counts() -> dict[str, int]:
        """Return message counts per category."""
        try:
            counts = await asyncio.to_thread(message_index.counts_by_category)
        except SearchIndexError as exc:
            raise _server_error("count emails") from exc
        return {category.value: total for category, total in counts.items()}

    @app.get("/api/emails/{email_id}")
    async def get_email(email_id: str) -> dict[str, Any]:
        """Return one stored message."""
        message = await _load(email_id)
        return serialize_message(message)

    @app.delete("/api/emails/{email_id}")
    async def delete_email(email_id: str) -> dict[str, Any]:
        """Remove a message from the index."""
        try:
            deleted = await asyncio.to_thread(message_index.delete_message, email_id)
        except SearchIndexError as exc:
            raise _server_error("delete email") from exc
        if not deleted:
            raise HTTPException(
                status_code=http_status.HTTP_404_NOT_FOUND, detail="Email not found"
            )
        return {"success": True, "id": email_id}

    @app.put("/api/emails/{email_id}/category")
    async def update_category(email_id: str, payload: CategoryUpdate) -> dict[str, Any]:
        """Manually relabel a message."""
        if not payload.category:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail="Category is required",
            )
        try:
            label = Category.parse(payload.category)
        except ValueError as exc:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid category '{payload.category}'",
            ) from exc
        try:
            updated = await asyncio.to_thread(
                message_index.update_category, email_id, label
            )
        except SearchIndexError as exc:
            raise _server_error("update category") from exc
        if not updated:
            raise HTTPException(
                status_code=http_status.HTTP_404_NOT_FOUND, detail="Email not found"
            )
        return {"success": True, "id": email_id, "category": label.value}

    @app.get("/api/emails/{email_id}/suggest-reply")
    async def suggest_reply(email_id: str) -> dict[str, str]:
        """Draft a reply grounded in the stored reference information."""
        message = await _load(email_id)
        query_text = f"{message.subject or ''} {message.body.text or ''}"
        context = await asyncio.to_thread(
            classification.retrieve_context, query_text[:SUGGESTION_QUERY_CHARS]
        )
        reply = await asyncio.to_thread(classification.generate_reply, message, context)
        return {"suggested_reply": reply}

    @app.get("/api/product-info")
    async def list_reference_info() -> dict[str, list[str]]:
        """Return all stored reference content."""
        return {"product_info": classification.list_context()}

    @app.post("/api/product-info")
    async def add_reference_info(payload: ReferenceInfo) -> dict[str, Any]:
        """Store or replace one reference document."""
        if not payload.id or not payload.content:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail="Both id and content are required",
            )
        stored = await asyncio.to_thread(
            classification.add_context, payload.id, payload.content
        )
        if not stored:
            raise HTTPException(
                status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to store product info",
            )
        return {"success": True, "id": payload.id}

    async def _load(email_id: str) -> MailMessage:
        try:
            message = await asyncio.to_thread(message_index.get_by_id, email_id)
        except SearchIndexError as exc:
            raise _server_error("load email") from exc
        if message is None:
            raise HTTPException(
                status_code=http_status.HTTP_404_NOT_FOUND, detail="Email not found"
            )
        return message

    return app


__all__ = ["create_app", "serialize_message"]
