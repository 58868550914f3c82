"""
Retriever: embed the question, search the chunk store, sanitise the rows.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from numbers import Real
from typing import Iterable, Optional, Union

from embeddings.embedder import Embedder
from qa.errors import EmbeddingError, RetrievalError

# Configuration constants
TOP_K = 5
CROSS_REPORT_TOP_K = 10
SIMILARITY_THRESHOLD = 0.5
DEFAULT_SIMILARITY = 0.5  # used when a row carries no usable score

logger = logging.getLogger(__name__)

ChunkId = Union[int, str]


@dataclass
class ContextChunk:
    id: ChunkId
    content: str
    similarity: float
    metadata: dict = field(default_factory=dict)
    report_id: Optional[str] = None

    @property
    def section(self) -> Optional[str]:
        return self.metadata.get("section")

    def to_citation(self) -> dict:
        return {
            "chunk_id": self.id,
            "content": self.content,
            "section": self.section,
            "similarity": self.similarity,
        }

    def to_source(self) -> dict:
        return {"chunk_id": self.id, "similarity": self.similarity}


def _usable_id(value) -> Optional[ChunkId]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        return value
    return None


def validate_search_results(rows) -> list[ContextChunk]:
    """
    Turn raw search rows into ContextChunks, dropping anything malformed.

    Rows need a mapping shape, an id (chunk_id or id) and non-empty string
    content. A missing or non-numeric similarity becomes DEFAULT_SIMILARITY.

    Returns:
        Valid chunks sorted by similarity, highest first. Never raises.
    """
    if not isinstance(rows, list):
        return []

    chunks = []
    for row in rows:
        if not isinstance(row, dict):
            continue

        chunk_id = _usable_id(row.get("chunk_id"))
        if chunk_id is None:
            chunk_id = _usable_id(row.get("id"))
        if chunk_id is None:
            continue

        content = row.get("content")
        if not isinstance(content, str) or not content.strip():
            continue

        similarity = row.get("similarity")
        if isinstance(similarity, bool) or not isinstance(similarity, Real):
            similarity = DEFAULT_SIMILARITY

        metadata = row.get("metadata")
        chunks.append(ContextChunk(
            id=chunk_id,
            content=content,
            similarity=float(similarity),
            metadata=metadata if isinstance(metadata, dict) else {},
            report_id=row.get("report_id"),
        ))

    chunks.sort(key=lambda c: c.similarity, reverse=True)
    return chunks


def format_citations(chunks) -> list[ChunkId]:
    """
    Unique chunk ids in first-seen order.

    Accepts ContextChunks or dicts with an "id"/"chunk_id" key; entries
    without an id are skipped.
    """
    seen = []
    for chunk in chunks:
        if isinstance(chunk, dict):
            chunk_id = _usable_id(chunk.get("id", chunk.get("chunk_id")))
        else:
            chunk_id = _usable_id(getattr(chunk, "id", None))
        if chunk_id is not None and chunk_id not in seen:
            seen.append(chunk_id)
    return seen


class Retriever:
    def __init__(self, embedder: Embedder, store, threshold: float = SIMILARITY_THRESHOLD):
        """
        Args:
            embedder: Embeds questions.
            store: Anything with search(report_ids, query_embedding, threshold, k).
            threshold: Minimum similarity for a chunk to be considered.
        """
        self.embedder = embedder
        self.store = store
        self.threshold = threshold

    def _search(self, report_ids, question: str, k: int) -> list[ContextChunk]:
        try:
            query_embedding = self.embedder.embed_single(question)
        except EmbeddingError as e:
            raise RetrievalError(f"Could not embed question: {e}") from e

        try:
            rows = self.store.search(report_ids, query_embedding, self.threshold, k)
        except Exception as e:
            raise RetrievalError(f"Similarity search failed: {e}") from e

        chunks = validate_search_results(rows)[:k]
        logger.info(
            f"Retrieved {len(chunks)} chunks"
            + (f" (top similarity {chunks[0].similarity:.3f})" if chunks else "")
        )
        return chunks

    def search(self, report_id: str, question: str, k: int = TOP_K) -> list[ContextChunk]:
        """
        Most similar chunks of one report for a question.

        Raises:
            RetrievalError: If the question cannot be embedded or the search fails.
        """
        return self._search(report_id, question, k)

    def search_across_reports(
        self,
        report_ids: Iterable[str],
        question: str,
        k: int = CROSS_REPORT_TOP_K
    ) -> list[ContextChunk]:
        return self._search(list(report_ids), question, k)
