"""
Chunk store with per-report FAISS similarity search.

Each report gets its own inner-product index over L2-normalised vectors,
so scores are cosine similarities. Rows are the source of truth; indexes are
rebuilt from them on load.
"""
from __future__ import annotations

import os
import pickle
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

import faiss
import numpy as np

from embeddings.embedder import is_zero_vector, normalize
from loader.chunker import ContentChunk
from qa.errors import ChunkStorageError

METADATA_FILENAME = "chunks.pkl"

logger = logging.getLogger(__name__)


@dataclass
class ChunkRecord:
    id: int
    report_id: str
    chunk_index: int
    content: str
    embedding: Optional[np.ndarray]
    section: str
    start_char: int
    end_char: int
    word_count: int

    @property
    def metadata(self) -> dict:
        return {
            "section": self.section,
            "start_char": self.start_char,
            "end_char": self.end_char,
            "word_count": self.word_count,
        }


@dataclass
class _ReportIndex:
    index: faiss.IndexFlatIP
    chunk_ids: list[int] = field(default_factory=list)


class FAISSChunkStore:
    def __init__(self, dim: int):
        self.dim = dim
        self.records: dict[int, ChunkRecord] = {}
        self._by_report: dict[str, list[int]] = {}
        self._indexes: dict[str, _ReportIndex] = {}
        self._next_id = 1

    def insert_chunks(
        self,
        report_id: str,
        chunks: list[ContentChunk],
        embeddings: list[Optional[np.ndarray]]
    ) -> list[ChunkRecord]:
        """
        Persist the chunks of one report together with their embeddings.

        The whole batch is validated before anything is stored, so a failure
        leaves the store untouched.

        Raises:
            ChunkStorageError: On a length mismatch, a duplicate chunk_index
                or a vector of the wrong dimension.
        """
        if len(chunks) != len(embeddings):
            raise ChunkStorageError(
                f"Got {len(chunks)} chunks but {len(embeddings)} embeddings for report {report_id}"
            )

        existing = {self.records[cid].chunk_index for cid in self._by_report.get(report_id, [])}
        seen = set()
        for chunk, embedding in zip(chunks, embeddings):
            if chunk.chunk_index in existing or chunk.chunk_index in seen:
                raise ChunkStorageError(
                    f"Chunk {chunk.chunk_index} already stored for report {report_id}"
                )
            seen.add(chunk.chunk_index)
            if embedding is not None and np.asarray(embedding).size != self.dim:
                raise ChunkStorageError(
                    f"Embedding for chunk {chunk.chunk_index} has {np.asarray(embedding).size} "
                    f"dimensions, expected {self.dim}"
                )

        stored = []
        for chunk, embedding in zip(chunks, embeddings):
            record = ChunkRecord(
                id=self._next_id,
                report_id=report_id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                embedding=None if embedding is None else np.asarray(embedding, dtype="float32").flatten(),
                section=chunk.section,
                start_char=chunk.start_char,
                end_char=chunk.end_char,
                word_count=chunk.word_count,
            )
            self._next_id += 1
            self._add(record)
            stored.append(record)

        logger.info(f"Stored {len(stored)} chunks for report {report_id}")
        return stored

    def _add(self, record: ChunkRecord) -> None:
        self.records[record.id] = record
        self._by_report.setdefault(record.report_id, []).append(record.id)

        if record.embedding is None or is_zero_vector(record.embedding):
            return

        report_index = self._indexes.get(record.report_id)
        if report_index is None:
            report_index = _ReportIndex(faiss.IndexFlatIP(self.dim))
            self._indexes[record.report_id] = report_index

        vector = normalize(record.embedding).reshape(1, -1)
        report_index.index.add(vector)
        report_index.chunk_ids.append(record.id)

    def get_chunks(self, report_id: str) -> list[ChunkRecord]:
        records = [self.records[cid] for cid in self._by_report.get(report_id, [])]
        return sorted(records, key=lambda r: r.chunk_index)

    def get_chunks_by_section(self, report_id: str, section: str) -> list[ChunkRecord]:
        return [r for r in self.get_chunks(report_id) if r.section == section]

    def delete_report(self, report_id: str) -> int:
        chunk_ids = self._by_report.pop(report_id, [])
        for cid in chunk_ids:
            del self.records[cid]
        self._indexes.pop(report_id, None)
        return len(chunk_ids)

    def search(
        self,
        report_ids: Union[str, Iterable[str]],
        query_embedding,
        threshold: float,
        k: int
    ) -> list[dict]:
        """
        Rank stored chunks of one or more reports by cosine similarity.

        Args:
            report_ids: A report id or an iterable of report ids.
            query_embedding: Query vector.
            threshold: Only chunks with similarity strictly above it are returned.
            k: Maximum number of rows.

        Returns:
            Rows of {chunk_id, report_id, chunk_index, content, similarity, metadata},
            most similar first.
        """
        if isinstance(report_ids, str):
            report_ids = [report_ids]

        query = normalize(query_embedding).reshape(1, -1)
        if query.shape[1] != self.dim:
            raise ValueError(f"Query has {query.shape[1]} dimensions, expected {self.dim}")

        results = []
        for report_id in report_ids:
            report_index = self._indexes.get(report_id)
            if report_index is None or report_index.index.ntotal == 0:
                continue

            scores, positions = report_index.index.search(
                query.astype("float32"), min(k, report_index.index.ntotal)
            )
            for score, position in zip(scores[0], positions[0]):
                if position == -1 or score <= threshold:
                    continue
                record = self.records[report_index.chunk_ids[position]]
                results.append({
                    "chunk_id": record.id,
                    "report_id": record.report_id,
                    "chunk_index": record.chunk_index,
                    "content": record.content,
                    "similarity": float(score),
                    "metadata": record.metadata,
                })

        results.sort(key=lambda row: row["similarity"], reverse=True)
        return results[:k]

    def save(self, index_dir: str) -> None:
        os.makedirs(index_dir, exist_ok=True)
        with open(os.path.join(index_dir, METADATA_FILENAME), "wb") as f:
            pickle.dump({"dim": self.dim, "next_id": self._next_id, "records": list(self.records.values())}, f)

    def load(self, index_dir: str) -> bool:
        """Load rows saved by save(). Returns False when nothing is saved yet."""
        metadata_path = os.path.join(index_dir, METADATA_FILENAME)
        if not os.path.exists(metadata_path):
            return False

        with open(metadata_path, "rb") as f:
            saved = pickle.load(f)

        if saved["dim"] != self.dim:
            raise ChunkStorageError(
                f"Saved chunks have {saved['dim']} dimensions, store expects {self.dim}"
            )

        self.records = {}
        self._by_report = {}
        self._indexes = {}
        for record in saved["records"]:
            self._add(record)
        self._next_id = saved["next_id"]

        logger.info(f"Loaded {len(self.records)} chunks for {len(self._by_report)} reports")
        return True
