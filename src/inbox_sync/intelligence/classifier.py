"""Message classification and reply suggestions."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from inbox_sync.core.interfaces import ClassificationService
from inbox_sync.core.models import Category, MailMessage

from .context import ReferenceContextStore
from .llm import LLMClient, LLMError
from .prompts import build_classification_prompt, build_reply_prompt

LOGGER = logging.getLogger(__name__)

REPLY_FALLBACK = "Sorry, I was unable to generate a reply at this time."

# "Not Interested" contains "Interested", so longer labels are matched first.
_LABEL_PRECEDENCE: tuple[Category, ...] = (
    Category.MEETING_BOOKED,
    Category.NOT_INTERESTED,
    Category.OUT_OF_OFFICE,
    Category.SPAM,
    Category.INTERESTED,
)


def parse_label(raw: str) -> Category:
    """Map free-form model output to a label; first recognized phrase wins."""
    lowered = raw.lower()
    for category in _LABEL_PRECEDENCE:
        if category.value.lower() in lowered:
            return category
    return Category.UNCATEGORIZED


@dataclass(frozen=True)
class _CategoryRule:
    category: Category
    keywords: tuple[str, ...] = ()


_DEFAULT_RULES: tuple[_CategoryRule, ...] = (
    _CategoryRule(
        category=Category.OUT_OF_OFFICE,
        keywords=(
            "out of office",
            "out of the office",
            "automatic reply",
            "auto-reply",
            "on vacation",
            "on leave",
            "limited access to email",
        ),
    ),
    _CategoryRule(
        category=Category.MEETING_BOOKED,
        keywords=(
            "meeting booked",
            "meeting confirmed",
            "invitation:",
            "accepted:",
            "calendar invite",
            "see you on",
        ),
    ),
    _CategoryRule(
        category=Category.NOT_INTERESTED,
        keywords=(
            "not interested",
            "no thanks",
            "no thank you",
            "unsubscribe me",
            "remove me",
            "please stop",
            "not a fit",
        ),
    ),
    _CategoryRule(
        category=Category.SPAM,
        keywords=(
            "click here",
            "limited time",
            "congratulations",
            "winner",
            "claim your",
            "act now",
        ),
    ),
    _CategoryRule(
        category=Category.INTERESTED,
        keywords=(
            "interested",
            "sounds good",
            "let's talk",
            "schedule a call",
            "tell me more",
            "pricing",
            "demo",
        ),
    ),
)


class KeywordClassifier:
    """Assign a label from simple keyword heuristics."""

    def __init__(self, rules: Sequence[_CategoryRule] | None = None) -> None:
        self._rules = tuple(rules) if rules is not None else _DEFAULT_RULES

    def classify(self, subject: str, body: str) -> Category:
        haystack = f"{subject} {body}".lower()
        for rule in self._rules:
            if any(keyword in haystack for keyword in rule.keywords):
                return rule.category
        return Category.UNCATEGORIZED


class LLMClassificationService(ClassificationService):
    """Classify messages and draft replies using an LLM.

    Without an LLM client, labels come from :class:`KeywordClassifier` when
    ``fallback_enabled`` is set. Errors never reach the caller: classification
    degrades to ``Uncategorized`` and replies to a fixed apology.
    """

    def __init__(
        self,
        llm_client: LLMClient | None,
        context_store: ReferenceContextStore | None = None,
        *,
        fallback_enabled: bool = True,
        classify_max_tokens: int = 10,
        classify_temperature: float = 0.3,
        reply_max_tokens: int | None = 300,
        reply_temperature: float = 0.7,
    ) -> None:
        # pylint: disable=too-many-arguments
        self._llm_client = llm_client
        self._context_store = context_store or ReferenceContextStore(
            llm_client.embed if llm_client is not None else None
        )
        self._keywords = KeywordClassifier() if fallback_enabled else None
        self._classify_max_tokens = classify_max_tokens
        self._classify_temperature = classify_temperature
        self._reply_max_tokens = reply_max_tokens
        self._reply_temperature = reply_temperature

    def classify(self, subject: str, body: str) -> Category:
        """Return one of the six labels; never raises."""
        if self._llm_client is None:
            if self._keywords is None:
                return Category.UNCATEGORIZED
            return self._keywords.classify(subject, body)

        prompt = build_classification_prompt(subject, body)
        try:
            raw = self._llm_client.generate(
                prompt,
                temperature=self._classify_temperature,
                max_tokens=self._classify_max_tokens,
            )
        except (LLMError, ValueError) as exc:
            LOGGER.warning("LLM classification failed: %s", exc)
            return Category.UNCATEGORIZED
        label = parse_label(raw)
        LOGGER.debug("Classifier answered %r -> %s", raw.strip(), label.value)
        return label

    def retrieve_context(self, query: str) -> str:
        """Return the reference text closest to ``query``."""
        try:
            return self._context_store.retrieve(query)
        except Exception:  # pylint: disable=broad-except
            LOGGER.error("Reference lookup failed", exc_info=True)
            return ""

    def generate_reply(self, message: MailMessage, context: str) -> str:
        """Return a suggested reply, or a fixed apology on failure."""
        if self._llm_client is None:
            return REPLY_FALLBACK
        prompt = build_reply_prompt(message, context)
        try:
            reply = self._llm_client.generate(
                prompt,
                temperature=self._reply_temperature,
                max_tokens=self._reply_max_tokens,
            )
        except (LLMError, ValueError) as exc:
            LOGGER.warning("Reply generation for %s failed: %s", message.id, exc)
            return REPLY_FALLBACK
        return reply.strip() or REPLY_FALLBACK

    def add_context(self, doc_id: str, content: str) -> bool:
        """Store or replace a reference document."""
        return self._context_store.add(doc_id, content)

    def list_context(self) -> list[str]:
        """Return all stored reference content."""
        return self._context_store.contents()


__all__ = [
    "KeywordClassifier",
    "LLMClassificationService",
    "REPLY_FALLBACK",
    "parse_label",
]
