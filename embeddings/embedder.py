"""
Embedder module with throttled batch processing.

Chunks are embedded one at a time inside fixed-size batches, with a pause
between batches to stay under the provider's rate limit. A chunk that fails
to embed is replaced by a zero vector so one bad input never aborts a report.
"""
from __future__ import annotations

import time
import logging
from typing import Callable, Optional

import numpy as np
from sentence_transformers import SentenceTransformer

from qa.errors import EmbeddingError

# Configuration constants
DEFAULT_MODEL = "all-mpnet-base-v2"
DEFAULT_DIMENSION = 768
DEFAULT_BATCH_SIZE = 10
BATCH_DELAY_SECONDS = 0.5
EMBEDDING_TIMEOUT_MS = 30000

logger = logging.getLogger(__name__)


class SentenceTransformerProvider:
    """
    Local embedding provider backed by a sentence-transformers model.

    The model is loaded on first use so constructing the provider is cheap.
    """

    def __init__(self, model_name: str = DEFAULT_MODEL):
        self.model_name = model_name
        self._model: Optional[SentenceTransformer] = None

    @property
    def model(self) -> SentenceTransformer:
        if self._model is None:
            logger.info(f"Loading embedding model {self.model_name}")
            self._model = SentenceTransformer(self.model_name)
        return self._model

    @property
    def dimension(self) -> int:
        return self.model.get_sentence_embedding_dimension()

    def generate_embedding(
        self,
        text: str,
        model_id: Optional[str] = None,
        timeout_ms: Optional[int] = None
    ) -> list[float]:
        # Runs in-process; model_id and timeout_ms only matter for remote providers.
        if not text or not text.strip():
            raise EmbeddingError("generate_embedding expects a non-empty input string")

        vector = self.model.encode(
            [text],
            show_progress_bar=False,
            normalize_embeddings=True
        )[0]
        return vector.tolist()


class Embedder:
    """
    Embedding pipeline over any provider exposing generate_embedding/dimension.
    """

    def __init__(
        self,
        provider,
        model_id: Optional[str] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay_seconds: float = BATCH_DELAY_SECONDS,
        timeout_ms: int = EMBEDDING_TIMEOUT_MS,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the embedder.

        Args:
            provider: Embedding capability (SentenceTransformerProvider, LLMClient, ...).
            model_id: Model passed through to the provider, if it supports several.
            batch_size: Number of chunks per batch.
            batch_delay_seconds: Pause between batches.
            timeout_ms: Per-call timeout handed to the provider.
            sleep: Sleep function, replaceable in tests.
        """
        self.provider = provider
        self.model_id = model_id
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self.timeout_ms = timeout_ms
        self._sleep = sleep

    @property
    def embedding_dim(self) -> int:
        return self.provider.dimension

    def zero_vector(self) -> np.ndarray:
        return np.zeros(self.embedding_dim, dtype="float32")

    def embed_single(self, text: str) -> np.ndarray:
        """
        Embed a single text string.

        Args:
            text: Text string to embed.

        Returns:
            Numpy array of shape (embedding_dim,).

        Raises:
            EmbeddingError: If the provider fails or returns a malformed vector.
        """
        try:
            values = self.provider.generate_embedding(
                text,
                model_id=self.model_id,
                timeout_ms=self.timeout_ms
            )
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding failed: {e}") from e

        vector = np.asarray(values, dtype="float32").flatten()
        if vector.shape[0] != self.embedding_dim:
            raise EmbeddingError(
                f"Embedding has {vector.shape[0]} dimensions, expected {self.embedding_dim}"
            )
        return vector

    def embed_chunks(self, texts: list[str]) -> list[np.ndarray]:
        """
        Embed chunk texts in throttled batches.

        Processing is sequential inside each batch. Failed items become zero
        vectors; use is_zero_vector() to detect them.

        Args:
            texts: Chunk texts to embed.

        Returns:
            One vector per input text, in input order.
        """
        if not texts:
            return []

        embeddings: list[np.ndarray] = []
        failures = 0
        total_batches = (len(texts) + self.batch_size - 1) // self.batch_size

        logger.info(f"Starting batch embedding: {len(texts)} texts in {total_batches} batches")

        for batch_idx in range(0, len(texts), self.batch_size):
            batch = texts[batch_idx:batch_idx + self.batch_size]
            batch_num = batch_idx // self.batch_size + 1

            for text in batch:
                try:
                    embeddings.append(self.embed_single(text))
                except EmbeddingError as e:
                    failures += 1
                    logger.error(
                        f"Batch {batch_num}/{total_batches}: embedding failed for chunk "
                        f"starting with {text[:50]!r}: {e}. Using zero vector."
                    )
                    embeddings.append(self.zero_vector())

            if batch_idx + self.batch_size < len(texts):
                self._sleep(self.batch_delay_seconds)

        logger.info(
            f"Batch embedding complete: {len(embeddings) - failures} embedded, "
            f"{failures} replaced by zero vectors"
        )
        return embeddings


def is_zero_vector(vector) -> bool:
    """True for the placeholder produced when embedding a chunk failed."""
    if vector is None:
        return False
    return not np.any(np.asarray(vector))


def normalize(vector: np.ndarray) -> np.ndarray:
    """
    L2-normalise a vector so inner product equals cosine similarity.

    Zero vectors are returned unchanged.
    """
    vector = np.asarray(vector, dtype="float32").flatten()
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector
    return vector / norm
