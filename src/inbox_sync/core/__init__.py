"""Core utilities for configuration, logging, and domain models."""

from .config import AccountSettings, AppSettings, SyncSettings, load_app_settings
from .logging import configure_logging
from .models import Account, Category, MailMessage

__all__ = [
    "Account",
    "AccountSettings",
    "AppSettings",
    "Category",
    "MailMessage",
    "SyncSettings",
    "configure_logging",
    "load_app_settings",
]
