"""
Report Q&A System - Main Entry Point

Wires the pipeline together:
- Report chunking and throttled embedding at post-processing time
- Per-report FAISS similarity search
- Conversation history and tier quotas in SQL
- Structured JSON answers with retry on transient model failures
- Per-question audit logging
"""
from __future__ import annotations

import os
import json
import time
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from embeddings.embedder import Embedder, SentenceTransformerProvider
from index.faiss_index import FAISSChunkStore
from loader.chunker import build_content_chunks
from qa.answer_generator import AnswerGenerator
from qa.conversation import ConversationManager
from qa.errors import ChunkStorageError
from qa.llm_client import LLMClient
from qa.quota import QuotaTracker
from qa.retriever import Retriever
from qa.service import QAService
from qa.storage import create_session_factory

# =============================================================
# CONFIGURATION CONSTANTS
# =============================================================

# Storage
DATABASE_URL = os.environ.get("QA_DATABASE_URL", "sqlite:///data/qa.db")
INDEX_DIR = os.environ.get("QA_INDEX_DIR", "index/data")

# Model endpoints
LLM_BASE_URL = os.environ.get("QA_LLM_BASE_URL", "http://localhost:11434")
LLM_MODEL = os.environ.get("QA_LLM_MODEL", "llama3:8b")
EMBEDDING_MODEL = os.environ.get("QA_EMBEDDING_MODEL", "all-mpnet-base-v2")

# Logs
LOG_DIR = os.environ.get("QA_LOG_DIR", "logs")
LOG_FILE = f"{LOG_DIR}/query_log.json"

logger = logging.getLogger("report_qa")


# =============================================================
# LOGGING SETUP
# =============================================================

def setup_logging(log_dir: str = LOG_DIR, level: int = logging.INFO) -> None:
    os.makedirs(log_dir, exist_ok=True)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(f"{log_dir}/system.log")
        ]
    )


def log_query(
    report_id: str,
    tier: str,
    question: str,
    outcome: str,
    num_chunks: int,
    top_similarity: float,
    attempts: int,
    answer: str,
    log_file: str = LOG_FILE
) -> None:
    """
    Append one question to the JSON audit trail.

    Args:
        report_id: Report asked about
        tier: Requester's subscription tier
        question: User's question
        outcome: answered/quota_exceeded/retryable_failure/invalid_response/rejected
        num_chunks: Number of chunks retrieved
        top_similarity: Highest similarity score
        attempts: Model calls made
        answer: Answer text (empty when not answered)
        log_file: Audit file path
    """
    log_entry = {
        "timestamp": datetime.now().isoformat(),
        "report_id": report_id,
        "tier": tier,
        "question": question,
        "outcome": outcome,
        "num_chunks_retrieved": num_chunks,
        "top_similarity_score": round(top_similarity, 4),
        "attempts": attempts,
        "answer_length": len(answer)
    }

    try:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        if log_path.exists():
            with open(log_path, "r") as f:
                logs = json.load(f)
        else:
            logs = []

        logs.append(log_entry)

        with open(log_path, "w") as f:
            json.dump(logs, f, indent=2, ensure_ascii=False)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to write query log: {e}")


# =============================================================
# INITIALIZATION
# =============================================================

@dataclass
class QASystem:
    embedder: Embedder
    store: FAISSChunkStore
    conversations: ConversationManager
    quota: QuotaTracker
    service: QAService
    retriever: Retriever
    index_dir: Optional[str] = None
    log_file: str = LOG_FILE


def initialize_system(
    database_url: str = DATABASE_URL,
    index_dir: Optional[str] = INDEX_DIR,
    embedding_provider=None,
    llm=None,
    log_file: str = LOG_FILE,
    sleep: Callable[[float], None] = time.sleep
) -> QASystem:
    """
    Initialize all system components.

    Args:
        database_url: SQLAlchemy URL for conversations and usage.
        index_dir: Where chunks are saved; None keeps them in memory only.
        embedding_provider: Defaults to a local sentence-transformers model.
        llm: Defaults to the Ollama client.
        log_file: Audit file path.
        sleep: Sleep used for embedding throttling and retry backoff.
    """
    embedder = Embedder(embedding_provider or SentenceTransformerProvider(EMBEDDING_MODEL), sleep=sleep)
    logger.info(f"Embedder initialized: {embedder.embedding_dim} dimensions")

    store = FAISSChunkStore(embedder.embedding_dim)
    if index_dir and store.load(index_dir):
        logger.info(f"Chunk store loaded from {index_dir}")

    session_factory = create_session_factory(database_url)
    conversations = ConversationManager(session_factory)
    quota = QuotaTracker(session_factory)

    llm = llm or LLMClient(model=LLM_MODEL, base_url=LLM_BASE_URL)
    logger.info("LLM client initialized")

    retriever = Retriever(embedder, store)
    generator = AnswerGenerator(retriever, conversations, llm, sleep=sleep)
    service = QAService(generator, conversations, quota)

    return QASystem(
        embedder=embedder,
        store=store,
        conversations=conversations,
        quota=quota,
        service=service,
        retriever=retriever,
        index_dir=index_dir,
        log_file=log_file,
    )


# =============================================================
# REPORT POST-PROCESSING
# =============================================================

def process_report_chunks(system: QASystem, report_id: str, report_text: str) -> int:
    """
    Chunk, embed and store a generated report.

    Chunks already stored for the report are replaced. The in-memory store is
    updated before the save to index_dir, so a failed save leaves the new
    chunks in memory and the previous set on disk until the next save.

    Returns:
        Number of chunks stored.

    Raises:
        ChunkStorageError: If the chunks could not be stored. The report itself
            is unaffected; callers decide whether to retry.
    """
    chunks = build_content_chunks(report_id, report_text)
    if not chunks:
        logger.info(f"Report {report_id} produced no chunks")
        return 0

    embeddings = system.embedder.embed_chunks([chunk.content for chunk in chunks])

    previous = system.store.delete_report(report_id)
    if previous:
        logger.info(f"Replacing {previous} existing chunks for report {report_id}")

    try:
        system.store.insert_chunks(report_id, chunks, embeddings)
        if system.index_dir:
            system.store.save(system.index_dir)
    except ChunkStorageError:
        raise
    except (OSError, ValueError) as e:
        raise ChunkStorageError(f"Failed to store chunks for report {report_id}: {e}") from e

    logger.info(f"Processed report {report_id}: {len(chunks)} chunks")
    return len(chunks)


# =============================================================
# QUESTION HANDLING
# =============================================================

def outcome_label(result: dict) -> str:
    if result.get("ok"):
        return "answered"
    if result.get("quota_exceeded"):
        return "quota_exceeded"
    if result.get("retryable"):
        return "retryable_failure"
    if "schema validation" in result.get("message", "") or "could not be read" in result.get("message", ""):
        return "invalid_response"
    return "rejected"


def handle_question(
    system: QASystem,
    report_id: str,
    question: str,
    requester_id: Optional[str] = None,
    tier: str = "basic",
    topic_hints: Optional[list[str]] = None
) -> dict:
    """Answer a question and record it in the audit trail."""
    result = system.service.answer_question(report_id, requester_id, tier, question, topic_hints)

    outcome = system.service.last_outcome
    context = outcome.context if outcome else []
    log_query(
        report_id=report_id,
        tier=tier,
        question=question,
        outcome=outcome_label(result),
        num_chunks=len(context),
        top_similarity=context[0].similarity if context else 0.0,
        attempts=outcome.attempts if outcome else 0,
        answer=result.get("answer", ""),
        log_file=system.log_file
    )
    return result


# =============================================================
# MAIN ENTRY POINT
# =============================================================

def main():
    """Interactive loop: ingest reports and ask questions."""
    setup_logging()

    print("\n=== Report Q&A System ===\n")
    system = initialize_system()

    print("\nSystem ready. Commands:")
    print("  ingest <report_id> <file>")
    print("  ask <report_id> <question>")
    print("  exit\n")

    while True:
        try:
            line = input("\n> ").strip()

            if not line:
                continue

            if line.lower() == "exit":
                print("Exiting system.")
                break

            command, _, rest = line.partition(" ")
            report_id, _, argument = rest.strip().partition(" ")
            argument = argument.strip()

            if command == "ingest" and report_id and argument:
                with open(argument, "r", encoding="utf-8") as f:
                    count = process_report_chunks(system, report_id, f.read())
                print(f"Stored {count} chunks for report {report_id}.")
                continue

            if command == "ask" and report_id and argument:
                result = handle_question(system, report_id, argument, tier="vip")
                if not result["ok"]:
                    print(f"\n{result['message']}")
                    continue

                print("\n=== ANSWER ===\n")
                print(result["answer"])
                if result["citations"]:
                    print("\nSources: " + ", ".join(f"#{c['chunk_id']}" for c in result["citations"]))
                for follow_up in result["followUps"]:
                    print(f"  - {follow_up}")
                continue

            print("Unknown command.")

        except KeyboardInterrupt:
            print("\n\nInterrupted. Exiting.")
            break
        except (OSError, ChunkStorageError) as e:
            logger.error(f"Error handling command: {e}")
            print(f"\nError: {e}")


if __name__ == "__main__":
    main()
