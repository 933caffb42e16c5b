"""Slack and webhook delivery for messages classified as leads."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from inbox_sync.core.config import NotificationSettings
from inbox_sync.core.datetime_utils import serialize_datetime
from inbox_sync.core.interfaces import NotificationService
from inbox_sync.core.models import MailMessage

LOGGER = logging.getLogger(__name__)

_PREVIEW_CHARS = 200


class HttpNotificationService(NotificationService):
    """Post alerts with ``httpx``; unconfigured destinations are skipped."""

    def __init__(self, settings: NotificationSettings) -> None:
        self._settings = settings

    def notify_slack(self, message: MailMessage) -> bool:
        """Send a Slack block message. Returns ``True`` on HTTP 200."""
        url = self._settings.slack_webhook_url
        if not url:
            LOGGER.warning("Slack webhook URL not configured; skipping alert")
            return False
        response = httpx.post(
            url,
            json=build_slack_payload(message, self._settings.dashboard_url),
            timeout=self._settings.timeout_seconds,
        )
        if response.status_code != 200:
            LOGGER.warning(
                "Slack rejected alert for %s with status %s",
                message.id,
                response.status_code,
            )
            return False
        LOGGER.info("Slack alert sent for message %s", message.id)
        return True

    def notify_webhook(self, message: MailMessage) -> bool:
        """Send the lead event to the external webhook. ``True`` on 2xx."""
        url = self._settings.webhook_url
        if not url:
            LOGGER.warning("External webhook URL not configured; skipping event")
            return False
        response = httpx.post(
            url,
            json=build_webhook_payload(message),
            timeout=self._settings.timeout_seconds,
        )
        if not response.is_success:
            LOGGER.warning(
                "Webhook rejected event for %s with status %s",
                message.id,
                response.status_code,
            )
            return False
        LOGGER.info("Webhook event sent for message %s", message.id)
        return True


def _preview(message: MailMessage) -> str:
    text = message.body.text or message.body.html or ""
    if len(text) <= _PREVIEW_CHARS:
        return text
    return text[:_PREVIEW_CHARS] + "..."


def build_slack_payload(message: MailMessage, dashboard_url: str) -> dict[str, Any]:
    """Return the Slack Block Kit body for ``message``."""
    received = serialize_datetime(message.received_at) or "unknown"
    details_url = f"{dashboard_url.rstrip('/')}/api/emails/{message.id}"
    return {
        "text": f"Interested lead from {message.sender or 'unknown sender'}",
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "Interested Lead Detected"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*From:*\n{message.sender or 'unknown'}"},
                    {"type": "mrkdwn", "text": f"*Category:*\n{message.category.value}"},
                    {
                        "type": "mrkdwn",
                        "text": f"*Subject:*\n{message.subject or '(no subject)'}",
                    },
                    {"type": "mrkdwn", "text": f"*Received:*\n{received}"},
                ],
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Preview:*\n{_preview(message)}"},
            },
            {
                "type": "actions",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "View Details"},
                        "url": details_url,
                    }
                ],
            },
        ],
    }


def build_webhook_payload(message: MailMessage) -> dict[str, Any]:
    """Return the JSON event posted to the external webhook."""
    return {
        "id": message.id,
        "from": message.sender,
        "subject": message.subject,
        "category": message.category.value,
        "receivedDate": serialize_datetime(message.received_at),
        "messagePreview": _preview(message),
        "accountInfo": {
            "accountId": message.account_id,
            "folder": message.folder,
        },
    }


__all__ = ["HttpNotificationService", "build_slack_payload", "build_webhook_payload"]
