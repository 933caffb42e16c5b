"""Tests for the reference context store."""

from __future__ import annotations

import pytest

from inbox_sync.intelligence import LLMError, ReferenceContextStore
from inbox_sync.intelligence.context import cosine_similarity

VECTORS = {
    "We offer a free trial": [1.0, 0.0],
    "Book a meeting at https://cal.example/me": [0.0, 1.0],
    "Can we schedule a call?": [0.1, 0.9],
    "Is there a trial?": [0.9, 0.2],
}


def embed(text: str) -> list[float]:
    return VECTORS[text]


def test_retrieve_returns_most_similar_document() -> None:
    store = ReferenceContextStore(embed)
    store.add("trial", "We offer a free trial")
    store.add("meeting", "Book a meeting at https://cal.example/me")

    assert store.retrieve("Can we schedule a call?") == (
        "Book a meeting at https://cal.example/me"
    )
    assert store.retrieve("Is there a trial?") == "We offer a free trial"


def test_empty_store_returns_empty_string() -> None:
    assert ReferenceContextStore(embed).retrieve("Is there a trial?") == ""


def test_add_fails_when_embedding_fails() -> None:
    def broken(_text: str) -> list[float]:
        raise LLMError("embedding model missing")

    store = ReferenceContextStore(broken)

    assert store.add("doc", "content") is False
    assert store.contents() == []


def test_query_embedding_failure_returns_first_document() -> None:
    calls = {"count": 0}

    def flaky(text: str) -> list[float]:
        calls["count"] += 1
        if calls["count"] > 2:
            raise LLMError("embedding model went away")
        return VECTORS[text]

    store = ReferenceContextStore(flaky)
    store.add("trial", "We offer a free trial")
    store.add("meeting", "Book a meeting at https://cal.example/me")

    assert store.retrieve("Can we schedule a call?") == "We offer a free trial"


def test_add_replaces_existing_id_in_place() -> None:
    store = ReferenceContextStore()
    store.add("a", "first")
    store.add("b", "second")
    store.add("a", "updated")

    assert store.contents() == ["updated", "second"]


@pytest.mark.parametrize(
    ("left", "right", "expected"),
    [
        ([1.0, 0.0], [1.0, 0.0], 1.0),
        ([1.0, 0.0], [0.0, 1.0], 0.0),
        ([1.0, 0.0], [-1.0, 0.0], -1.0),
        ([0.0, 0.0], [1.0, 0.0], 0.0),
        ([1.0], [1.0, 0.0], 0.0),
    ],
)
def test_cosine_similarity(left, right, expected) -> None:
    assert cosine_similarity(left, right) == pytest.approx(expected)
