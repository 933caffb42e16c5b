"""LLM client abstractions used by classification and reply drafting."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urljoin

import httpx

from inbox_sync.core.config import LlmSettings

_ATTEMPTS = 3


class LLMError(RuntimeError):
    """Raised when the LLM provider fails to respond as expected."""


class LLMClient(Protocol):
    """Protocol describing the minimal LLM client behaviour."""

    @property
    def provider_id(self) -> str:
        """Identifier describing the backing model/provider."""
        raise NotImplementedError

    def generate(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Return the raw text completion for ``prompt``."""
        raise NotImplementedError

    def embed(self, text: str) -> list[float]:
        """Return an embedding vector for ``text``."""
        raise NotImplementedError


@dataclass(slots=True)
class OllamaClient:
    """Thin synchronous client for the Ollama HTTP API."""

    settings: LlmSettings

    def generate(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Send a completion request to the Ollama server."""
        options: dict[str, object] = {
            "temperature": (
                self.settings.temperature if temperature is None else temperature
            ),
        }
        limit = max_tokens if max_tokens is not None else self.settings.max_output_tokens
        if limit is not None:
            options["num_predict"] = limit
        payload: dict[str, object] = {
            "model": self.settings.model,
            "prompt": prompt,
            "stream": False,
            "options": options,
        }
        data = self._post("api/generate", payload)
        result = data.get("response")
        if not isinstance(result, str):
            raise LLMError("LLM response missing 'response' field")
        return result

    def embed(self, text: str) -> list[float]:
        """Request an embedding vector from the configured embedding model."""
        payload: dict[str, object] = {
            "model": self.settings.embedding_model,
            "prompt": text,
        }
        data = self._post("api/embeddings", payload)
        vector = data.get("embedding")
        if not isinstance(vector, list) or not vector:
            raise LLMError("LLM response missing 'embedding' field")
        return [float(value) for value in vector]

    @property
    def provider_id(self) -> str:
        """Return a human readable identifier for the configured model."""
        return f"ollama:{self.settings.model}"

    def _post(self, path: str, payload: dict[str, object]) -> dict[str, Any]:
        endpoint = _resolve_endpoint(self.settings.base_url, path)
        headers = {}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        data: dict[str, Any] | None = None
        last_error: Exception | None = None
        for attempt in range(1, _ATTEMPTS + 1):
            try:
                response = httpx.post(
                    endpoint,
                    json=payload,
                    headers=headers,
                    timeout=self.settings.timeout_seconds,
                )
                response.raise_for_status()
                data = response.json()
                break
            except httpx.HTTPError as exc:  # pragma: no cover - network dependent
                last_error = exc
            except json.JSONDecodeError as exc:
                raise LLMError("LLM returned invalid JSON") from exc

            if attempt < _ATTEMPTS:
                delay = min(2**attempt, 8)
                time.sleep(delay)

        if data is None:
            raise LLMError("LLM request failed after retries") from last_error
        if not isinstance(data, dict):
            raise LLMError("LLM returned an unexpected payload")
        return data


def _resolve_endpoint(base_url: str, path: str) -> str:
    trimmed = base_url.rstrip("/") + "/"
    return urljoin(trimmed, path)


__all__ = ["LLMClient", "LLMError", "OllamaClient"]
