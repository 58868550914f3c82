"""
FastAPI REST API for the Report Q&A System

Exposes question answering, conversation history and report post-processing
over HTTP.
"""
import logging
from typing import Optional, Union

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from main import QASystem, handle_question, initialize_system, process_report_chunks, setup_logging
from qa.errors import ChunkStorageError, RetrievalError

logger = logging.getLogger(__name__)

# =============================================================
# FASTAPI APP INITIALIZATION
# =============================================================

app = FastAPI(
    title="Report Q&A API",
    description="Retrieval-augmented questions and answers over generated reports",
    version="1.0.0"
)

# Global state - initialized once at startup
system: Optional[QASystem] = None


@app.on_event("startup")
async def startup_event():
    """Initialize all system components once at startup."""
    global system

    setup_logging()
    logger.info("Starting Report Q&A API...")

    system = initialize_system()

    logger.info("API startup complete. Ready to handle requests.")


def get_system() -> QASystem:
    if system is None:
        logger.error("System not initialized - components are None")
        raise HTTPException(
            status_code=503,
            detail="System not initialized. Please wait for startup to complete."
        )
    return system


# =============================================================
# REQUEST/RESPONSE MODELS
# =============================================================

class AskRequest(BaseModel):
    """Request model for the ask endpoint."""
    report_id: str = Field(..., min_length=1, description="Report the question is about")
    question: str = Field(..., description="The user's question", examples=["我的事业发展如何？"])
    requester_id: Optional[str] = Field(None, description="Requester id; omitted for anonymous users")
    tier: str = Field("free", description="Subscription tier: free, basic, premium or vip")
    topic_hints: Optional[list[str]] = Field(None, description="Topics to steer follow-up suggestions")


class Citation(BaseModel):
    chunk_id: Union[int, str] = Field(..., description="Cited chunk id")
    content: str = Field(..., description="Chunk text")
    section: Optional[str] = Field(None, description="Report section of the chunk")
    similarity: float = Field(..., description="Cosine similarity to the question")


class AskResponse(BaseModel):
    """Response model for a successful answer."""
    ok: bool = Field(True, description="Always true for an answer")
    answer: str = Field(..., description="Answer text")
    citations: list[Citation] = Field(..., description="Chunks the answer relies on")
    followUps: list[str] = Field(..., description="Suggested follow-up questions")
    remaining_quota: int = Field(..., description="Questions left this period; -1 means unlimited")


class HistoryMessage(BaseModel):
    role: str
    content: str
    timestamp: str
    sources: Optional[list[dict]] = None


class Conversation(BaseModel):
    id: int
    report_id: str
    total_questions: int
    messages: list[HistoryMessage]


class HistoryResponse(BaseModel):
    report_id: str = Field(..., description="Report id")
    conversations: list[Conversation] = Field(..., description="Retained conversations, newest first")


class ChunkRequest(BaseModel):
    report_text: str = Field(..., description="Full generated report text")


class ChunkResponse(BaseModel):
    report_id: str = Field(..., description="Report id")
    chunks: int = Field(..., description="Number of chunks stored or removed")


class ChunkInfo(BaseModel):
    id: int
    chunk_index: int
    content: str
    section: str
    word_count: int


class ChunkListResponse(BaseModel):
    report_id: str = Field(..., description="Report id")
    chunks: list[ChunkInfo] = Field(..., description="Stored chunks in report order")


class SearchRequest(BaseModel):
    report_ids: list[str] = Field(..., min_length=1, description="Reports to search")
    question: str = Field(..., min_length=1, description="Text to match against the chunks")
    k: int = Field(10, ge=1, le=50, description="Maximum number of chunks returned")


class SearchHit(Citation):
    report_id: Optional[str] = Field(None, description="Report the chunk belongs to")


class SearchResponse(BaseModel):
    results: list[SearchHit] = Field(..., description="Matching chunks, most similar first")


class CleanupResponse(BaseModel):
    deleted: int = Field(..., description="Expired conversations removed")


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""
    status: str = Field(..., description="Health status of the API")


# =============================================================
# API ENDPOINTS
# =============================================================

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    return {"status": "ok"}


@app.post("/qa/ask", response_model=AskResponse, tags=["Q&A"])
def ask_endpoint(request: AskRequest):
    """
    Answer a question about a report.

    Raises:
        HTTPException: 400 for invalid input, 429 when the quota is used up,
            503 when the model is temporarily unavailable, 502 when the model
            returned an unusable answer.
    """
    qa_system = get_system()

    logger.info(f"Received question for report {request.report_id} (tier {request.tier})")

    result = handle_question(
        qa_system,
        report_id=request.report_id,
        question=request.question,
        requester_id=request.requester_id,
        tier=request.tier,
        topic_hints=request.topic_hints
    )

    if result["ok"]:
        return result

    if result.get("quota_exceeded"):
        raise HTTPException(status_code=429, detail=result)
    if result.get("retryable"):
        raise HTTPException(status_code=503, detail=result)
    if qa_system.service.last_outcome is not None:
        raise HTTPException(status_code=502, detail=result)
    raise HTTPException(status_code=400, detail=result)


@app.get("/qa/history/{report_id}", response_model=HistoryResponse, tags=["Q&A"])
def history_endpoint(report_id: str, requester_id: Optional[str] = None):
    qa_system = get_system()
    conversations = qa_system.conversations.list_for_report(report_id, requester_id)

    return {
        "report_id": report_id,
        "conversations": [
            {
                "id": conversation.id,
                "report_id": conversation.report_id,
                "total_questions": conversation.total_questions,
                "messages": [message.to_dict() for message in conversation.messages],
            }
            for conversation in conversations
        ],
    }


@app.post("/reports/{report_id}/chunks", response_model=ChunkResponse, tags=["Reports"])
def chunk_report_endpoint(report_id: str, request: ChunkRequest):
    """Chunk and embed a generated report so it can be questioned."""
    qa_system = get_system()

    try:
        count = process_report_chunks(qa_system, report_id, request.report_text)
    except ChunkStorageError as e:
        logger.error(f"Chunk processing failed for report {report_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Chunk processing failed: {e}")

    return ChunkResponse(report_id=report_id, chunks=count)


@app.delete("/reports/{report_id}/chunks", response_model=ChunkResponse, tags=["Reports"])
def delete_chunks_endpoint(report_id: str):
    qa_system = get_system()
    count = qa_system.store.delete_report(report_id)
    if qa_system.index_dir:
        qa_system.store.save(qa_system.index_dir)
    return ChunkResponse(report_id=report_id, chunks=count)


@app.get("/reports/{report_id}/chunks", response_model=ChunkListResponse, tags=["Reports"])
def list_chunks_endpoint(report_id: str, section: Optional[str] = None):
    """List a report's stored chunks, optionally restricted to one section."""
    qa_system = get_system()

    if section:
        records = qa_system.store.get_chunks_by_section(report_id, section)
    else:
        records = qa_system.store.get_chunks(report_id)

    return {
        "report_id": report_id,
        "chunks": [
            {
                "id": record.id,
                "chunk_index": record.chunk_index,
                "content": record.content,
                "section": record.section,
                "word_count": record.word_count,
            }
            for record in records
        ],
    }


@app.post("/qa/search", response_model=SearchResponse, tags=["Q&A"])
def search_endpoint(request: SearchRequest):
    """Search several reports at once. Does not count against any quota."""
    qa_system = get_system()

    try:
        chunks = qa_system.retriever.search_across_reports(request.report_ids, request.question, request.k)
    except RetrievalError as e:
        logger.error(f"Cross-report search failed: {e}")
        raise HTTPException(status_code=503, detail=f"Search failed: {e}")

    return {"results": [{**chunk.to_citation(), "report_id": chunk.report_id} for chunk in chunks]}


@app.post("/admin/conversations/cleanup", response_model=CleanupResponse, tags=["Admin"])
def cleanup_endpoint():
    """Delete conversations past their retention date."""
    qa_system = get_system()
    return {"deleted": qa_system.conversations.cleanup_expired()}


# =============================================================
# RUN INSTRUCTIONS
# =============================================================

if __name__ == "__main__":
    import uvicorn

    print("\n=== Report Q&A API ===")
    print("\nStarting FastAPI server...")
    print("API will be available at: http://localhost:8000")
    print("Interactive docs: http://localhost:8000/docs")
    print("\nPress CTRL+C to stop\n")

    uvicorn.run(
        "api:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level="info"
    )
