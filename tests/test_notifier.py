"""Tests for Slack and webhook delivery."""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest

from helpers import make_message
from inbox_sync.core.config import NotificationSettings
from inbox_sync.core.models import Category
from inbox_sync.notifications import (
    HttpNotificationService,
    build_slack_payload,
    build_webhook_payload,
)


@pytest.fixture
def lead():
    message = make_message("Pricing question", "Could you share pricing? " * 20)
    message.category = Category.INTERESTED
    return message


def _capture(monkeypatch: pytest.MonkeyPatch, status_code: int = 200) -> MagicMock:
    post = MagicMock(return_value=httpx.Response(status_code))
    monkeypatch.setattr(httpx, "post", post)
    return post


def test_unconfigured_destinations_are_skipped(monkeypatch, lead) -> None:
    post = _capture(monkeypatch)
    service = HttpNotificationService(NotificationSettings())

    assert service.notify_slack(lead) is False
    assert service.notify_webhook(lead) is False
    post.assert_not_called()


def test_slack_alert_posts_block_payload(monkeypatch, lead) -> None:
    post = _capture(monkeypatch)
    settings = NotificationSettings(
        slack_webhook_url="https://hooks.slack.test/T000",
        dashboard_url="http://dash.test/",
        timeout_seconds=3,
    )

    assert HttpNotificationService(settings).notify_slack(lead) is True

    post.assert_called_once()
    args, kwargs = post.call_args
    assert args == ("https://hooks.slack.test/T000",)
    assert kwargs["timeout"] == 3
    assert kwargs["json"] == build_slack_payload(lead, "http://dash.test/")


def test_slack_non_200_is_reported_as_failure(monkeypatch, lead) -> None:
    _capture(monkeypatch, status_code=500)
    settings = NotificationSettings(slack_webhook_url="https://hooks.slack.test/T000")

    assert HttpNotificationService(settings).notify_slack(lead) is False


def test_webhook_accepts_any_2xx(monkeypatch, lead) -> None:
    post = _capture(monkeypatch, status_code=202)
    settings = NotificationSettings(webhook_url="https://hooks.test/lead")

    assert HttpNotificationService(settings).notify_webhook(lead) is True
    assert post.call_args.kwargs["json"]["id"] == lead.id


def test_transport_errors_propagate(monkeypatch, lead) -> None:
    monkeypatch.setattr(
        httpx, "post", MagicMock(side_effect=httpx.ConnectError("refused"))
    )
    settings = NotificationSettings(webhook_url="https://hooks.test/lead")

    with pytest.raises(httpx.HTTPError):
        HttpNotificationService(settings).notify_webhook(lead)


def test_slack_payload_shape(lead) -> None:
    payload = build_slack_payload(lead, "http://dash.test")

    blocks = payload["blocks"]
    assert blocks[0]["text"]["text"] == "Interested Lead Detected"
    fields = [field["text"] for field in blocks[1]["fields"]]
    assert fields[0] == "*From:*\nalice@example.com"
    assert fields[1] == "*Category:*\nInterested"
    assert fields[2] == "*Subject:*\nPricing question"
    assert fields[3] == "*Received:*\n2025-10-06T10:00:00+00:00"
    preview = blocks[2]["text"]["text"].removeprefix("*Preview:*\n")
    assert len(preview) == 203
    assert preview.endswith("...")
    button = blocks[3]["elements"][0]
    assert button["text"]["text"] == "View Details"
    assert button["url"] == f"http://dash.test/api/emails/{lead.id}"


def test_webhook_payload_shape(lead) -> None:
    payload = build_webhook_payload(lead)

    assert payload == {
        "id": lead.id,
        "from": "alice@example.com",
        "subject": "Pricing question",
        "category": "Interested",
        "receivedDate": "2025-10-06T10:00:00+00:00",
        "messagePreview": payload["messagePreview"],
        "accountInfo": {"accountId": "account-1", "folder": "INBOX"},
    }
    assert payload["messagePreview"].startswith("Could you share pricing?")
