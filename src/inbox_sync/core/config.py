"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator

from .models import Account


class AccountSettings(BaseModel):
    """Connection details for one IMAP account."""

    id: str | None = Field(default=None, description="Stable account identifier")
    host: str = Field(description="IMAP hostname")
    port: int = Field(default=993, description="IMAP port, typically 993 for SSL")
    username: str = Field(description="Account username")
    password: str = Field(description="Account password or app password")
    use_ssl: bool = Field(default=True, description="Whether to enforce SSL")
    lookback_days: int = Field(
        default=30, ge=1, description="Size of the historical backfill window"
    )
    watch_folders: list[str] | None = Field(
        default_factory=list,
        description="Folders kept under live watch; empty or '*' watches all",
    )

    @field_validator("watch_folders", mode="before")
    @classmethod
    def _split_folders(cls, value: Any) -> Any:
        if isinstance(value, str):
            folders = [item.strip() for item in value.split(",") if item.strip()]
            return [] if folders == ["*"] else folders
        return value

    def to_account(self) -> Account:
        """Build the immutable runtime account record."""
        return Account(
            id=self.id or self.username,
            host=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            use_ssl=self.use_ssl,
            lookback_days=self.lookback_days,
            watch_folders=tuple(self.watch_folders or ()),
        )


class SyncSettings(BaseModel):
    """Settings controlling fetch cadence, reconnects and live watching."""

    batch_size: int = Field(
        default=50, ge=1, description="Messages fetched per IMAP batch"
    )
    connect_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Socket timeout for IMAP connections"
    )
    reconnect_initial_delay: float = Field(
        default=10.0, ge=0, description="First delay before reconnecting"
    )
    reconnect_max_delay: float = Field(
        default=300.0, ge=0, description="Ceiling for the reconnect backoff"
    )
    reconnect_multiplier: float = Field(
        default=2.0, ge=1.0, description="Backoff growth factor between attempts"
    )
    idle_refresh_seconds: float = Field(
        default=29 * 60,
        gt=0,
        description="Re-issue IDLE before the server's 30 minute limit",
    )
    idle_check_seconds: float = Field(
        default=5.0, gt=0, description="Longest single wait on the IDLE socket"
    )
    max_sessions_per_account: int = Field(
        default=5, ge=1, description="Cap on concurrent watcher sessions per account"
    )
    queue_maxsize: int = Field(
        default=1000, ge=0, description="Bound of the ingestion queue (0 = unbounded)"
    )
    classify_body_chars: int = Field(
        default=1000, ge=0, description="Body characters sent to the classifier"
    )
    include_attachment_content: bool = Field(
        default=False, description="Keep attachment bytes on normalized messages"
    )


class StorageSettings(BaseModel):
    """Settings for local persistence."""

    db_path: Path = Field(
        default=Path("./inbox_sync.db"), description="SQLite database path"
    )


class LlmSettings(BaseModel):
    """Settings for the local LLM provider."""

    base_url: str = Field(
        default="http://localhost:11434", description="Ollama server URL"
    )
    model: str = Field(default="llama3.1:8b", description="Model identifier")
    embedding_model: str = Field(
        default="nomic-embed-text", description="Model used for embeddings"
    )
    api_key: str | None = Field(
        default=None, description="Bearer token for hosted providers"
    )
    timeout_seconds: int = Field(
        default=30, description="Request timeout for LLM calls"
    )
    temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Sampling temperature for classification prompts",
    )
    reply_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Sampling temperature for suggested replies",
    )
    max_output_tokens: int | None = Field(
        default=300,
        ge=8,
        description="Maximum tokens to request for replies",
    )
    fallback_enabled: bool = Field(
        default=True, description="Classify by keywords when no LLM is configured"
    )


class NotificationSettings(BaseModel):
    """Outbound alert destinations."""

    slack_webhook_url: str | None = Field(
        default=None, description="Slack incoming webhook URL"
    )
    webhook_url: str | None = Field(
        default=None, description="Generic webhook receiving lead events"
    )
    timeout_seconds: float = Field(default=10.0, gt=0)
    dashboard_url: str = Field(
        default="http://localhost:3000",
        description="Base URL used for 'View Details' links",
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )


class ApiSettings(BaseModel):
    """HTTP server binding."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3000)


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    accounts: list[AccountSettings] = Field(default_factory=list)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    llm: LlmSettings = Field(default_factory=LlmSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    @field_validator("accounts", mode="before")
    @classmethod
    def _number_accounts(cls, value: Any) -> Any:
        """Turn ``ACCOUNTS__<n>__*`` trees into an ordered account list."""
        if not isinstance(value, dict):
            return value
        ordered: list[dict[str, Any]] = []
        for key in sorted(value, key=_account_sort_key):
            entry = dict(cast(dict[str, Any], value[key]))
            entry.setdefault("id", f"account-{key}")
            ordered.append(entry)
        return ordered

    def build_accounts(self) -> list[Account]:
        """Return runtime account records in configuration order."""
        return [account.to_account() for account in self.accounts]


ENV_PREFIX = "INBOX_SYNC_"


def _account_sort_key(key: str) -> tuple[int, str]:
    return (int(key), key) if key.isdigit() else (10**9, key)


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _collect_env_values(
    env_file: Path | str | None, include_environment: bool = True
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values = (
        {key: value for key, value in os.environ.items() if key.startswith(ENV_PREFIX)}
        if include_environment
        else {}
    )

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        normalized_value: Any = value
        if isinstance(value, str) and value == "":
            normalized_value = None
        elif isinstance(value, str):
            lowercase_value = value.lower()
            if lowercase_value == "true":
                normalized_value = True
            elif lowercase_value == "false":
                normalized_value = False
        _merge_into_tree(collected, path, normalized_value)

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AccountSettings",
    "ApiSettings",
    "AppSettings",
    "LlmSettings",
    "LoggingSettings",
    "NotificationSettings",
    "StorageSettings",
    "SyncSettings",
    "load_app_settings",
]
