"""In-memory reference store used to ground suggested replies."""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from .llm import LLMError

LOGGER = logging.getLogger(__name__)

Embedder = Callable[[str], list[float]]


@dataclass(slots=True)
class ReferenceDocument:
    """One piece of reference content and its embedding."""

    id: str
    content: str
    embedding: list[float] | None


class ReferenceContextStore:
    """Keep reference documents and return the one closest to a query."""

    def __init__(self, embedder: Embedder | None = None) -> None:
        self._embedder = embedder
        self._documents: list[ReferenceDocument] = []
        self._lock = threading.Lock()

    def add(self, doc_id: str, content: str) -> bool:
        """Insert or replace document ``doc_id``. Returns ``False`` on failure."""
        embedding = self._embed(content)
        if self._embedder is not None and embedding is None:
            return False
        document = ReferenceDocument(id=doc_id, content=content, embedding=embedding)
        with self._lock:
            for index, existing in enumerate(self._documents):
                if existing.id == doc_id:
                    self._documents[index] = document
                    break
            else:
                self._documents.append(document)
        LOGGER.info("Stored reference document %s", doc_id)
        return True

    def contents(self) -> list[str]:
        """Return the content of every stored document in insertion order."""
        with self._lock:
            return [document.content for document in self._documents]

    def retrieve(self, query: str) -> str:
        """Return the best matching content, or ``""`` when empty."""
        with self._lock:
            documents = list(self._documents)
        if not documents:
            return ""

        query_vector = self._embed(query)
        if query_vector is None:
            return documents[0].content

        best: ReferenceDocument | None = None
        best_score = -math.inf
        for document in documents:
            if document.embedding is None:
                continue
            score = cosine_similarity(query_vector, document.embedding)
            if score > best_score:
                best, best_score = document, score
        return (best or documents[0]).content

    def _embed(self, text: str) -> list[float] | None:
        if self._embedder is None:
            return None
        try:
            return self._embedder(text)
        except (LLMError, ValueError) as exc:
            LOGGER.warning("Embedding request failed: %s", exc)
            return None


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    """Return the cosine similarity of two vectors; 0.0 when undefined."""
    if len(left) != len(right) or not left:
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if norm == 0:
        return 0.0
    return dot / norm


__all__ = ["ReferenceContextStore", "ReferenceDocument", "cosine_similarity"]
