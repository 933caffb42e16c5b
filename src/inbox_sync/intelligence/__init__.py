"""LLM-powered classification and reply services."""

from .classifier import (
    REPLY_FALLBACK,
    KeywordClassifier,
    LLMClassificationService,
    parse_label,
)
from .context import ReferenceContextStore
from .llm import LLMClient, LLMError, OllamaClient

__all__ = [
    "KeywordClassifier",
    "LLMClassificationService",
    "LLMClient",
    "LLMError",
    "OllamaClient",
    "REPLY_FALLBACK",
    "ReferenceContextStore",
    "parse_label",
]
