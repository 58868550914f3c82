"""Ollama HTTP client for text generation and embeddings."""
from __future__ import annotations

import logging
from typing import Optional

import requests

from qa.errors import LLMError, LLMRateLimitError, LLMTimeoutError

DEFAULT_MODEL = "llama3:8b"
DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"
DEFAULT_EMBEDDING_DIMENSION = 768
GENERATION_TIMEOUT_MS = 30000

logger = logging.getLogger(__name__)


class LLMClient:
    def __init__(
        self,
        model=DEFAULT_MODEL,
        base_url=DEFAULT_BASE_URL,
        embedding_model=DEFAULT_EMBEDDING_MODEL,
        dimension=DEFAULT_EMBEDDING_DIMENSION
    ):
        self.model = model
        self.embedding_model = embedding_model
        self.dimension = dimension
        self.url = f"{base_url}/api/generate"
        self.embeddings_url = f"{base_url}/api/embeddings"

    def _post(self, url: str, payload: dict, timeout_ms: Optional[int]) -> dict:
        timeout = timeout_ms / 1000 if timeout_ms else None
        try:
            response = requests.post(url, json=payload, timeout=timeout)
        except requests.Timeout as e:
            raise LLMTimeoutError(f"LLM request timed out after {timeout_ms}ms") from e
        except requests.RequestException as e:
            raise LLMError(f"LLM request failed: {e}") from e

        if response.status_code == 429:
            raise LLMRateLimitError("LLM request was rate limited", status_code=429)
        if response.status_code != 200:
            raise LLMError(f"LLM request failed: {response.text}", status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise LLMError(f"LLM returned a non-JSON body: {response.text[:200]}") from e

    def generate(self, prompt: str, timeout_ms: Optional[int] = GENERATION_TIMEOUT_MS) -> str:
        body = self._post(
            self.url,
            {
                "model": self.model,
                "prompt": prompt,
                "stream": False
            },
            timeout_ms
        )
        return body["response"]

    def generate_embedding(
        self,
        text: str,
        model_id: Optional[str] = None,
        timeout_ms: Optional[int] = None
    ) -> list[float]:
        body = self._post(
            self.embeddings_url,
            {
                "model": model_id or self.embedding_model,
                "prompt": text
            },
            timeout_ms
        )
        embedding = body.get("embedding")
        if not embedding:
            raise LLMError("LLM returned an empty embedding")
        return embedding
