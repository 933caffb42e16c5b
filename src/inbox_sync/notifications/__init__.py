"""Outbound alert delivery."""

from .notifier import HttpNotificationService, build_slack_payload, build_webhook_payload

__all__ = ["HttpNotificationService", "build_slack_payload", "build_webhook_payload"]
