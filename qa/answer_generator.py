"""
Answer generation for one question.

A run moves through BUILDING_CONTEXT -> AWAITING_MODEL -> PARSING and ends in
DONE or FAILED. Every state entered is recorded on the outcome so callers and
the audit log can see how far a run got.
"""
from __future__ import annotations

import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from qa.conversation import DEFAULT_CONTEXT_LIMIT, ConversationManager, trim_messages
from qa.errors import (
    InvalidModelResponseError,
    LLMError,
    RetrievalError,
    TransientModelError,
)
from qa.followups import complete_follow_ups
from qa.output_cleaner import cited_ids, clean_output
from qa.prompt_builder import build_prompt
from qa.response_parser import parse_answer
from qa.retriever import TOP_K, ContextChunk, Retriever, format_citations
from qa.retry import DEFAULT_MAX_ATTEMPTS, exponential_backoff, with_retry

# Configuration constants
GENERATION_TIMEOUT_MS = 30000
BACKOFF_BASE_SECONDS = 1.0

logger = logging.getLogger(__name__)


class GenerationState(str, Enum):
    BUILDING_CONTEXT = "BUILDING_CONTEXT"
    AWAITING_MODEL = "AWAITING_MODEL"
    PARSING = "PARSING"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass
class GenerationOutcome:
    states: list[GenerationState] = field(default_factory=list)
    answer: str = ""
    citations: list[ContextChunk] = field(default_factory=list)
    follow_ups: list[str] = field(default_factory=list)
    context: list[ContextChunk] = field(default_factory=list)
    attempts: int = 0
    prompt_version: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def state(self) -> Optional[GenerationState]:
        return self.states[-1] if self.states else None

    @property
    def ok(self) -> bool:
        return self.state == GenerationState.DONE

    def enter(self, state: GenerationState) -> None:
        logger.debug(f"Generation state -> {state.value}")
        self.states.append(state)


def resolve_citations(model_citations, context: list[ContextChunk]) -> list[ContextChunk]:
    """
    Map model citations onto retrieved chunks.

    Citations that match a retrieved chunk id are kept, de-duplicated in
    first-seen order. When none match, every retrieved chunk is cited once,
    in first-seen order.
    """
    by_id = {str(chunk.id): chunk for chunk in context}

    resolved = []
    for citation in model_citations:
        chunk = by_id.get(str(citation))
        if chunk is not None and chunk not in resolved:
            resolved.append(chunk)

    if resolved:
        return resolved

    first_seen = {}
    for chunk in context:
        first_seen.setdefault(str(chunk.id), chunk)
    return [first_seen[str(chunk_id)] for chunk_id in format_citations(context)]


class AnswerGenerator:
    def __init__(
        self,
        retriever: Retriever,
        conversations: ConversationManager,
        llm,
        top_k: int = TOP_K,
        context_limit: int = DEFAULT_CONTEXT_LIMIT,
        timeout_ms: int = GENERATION_TIMEOUT_MS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_fn: Optional[Callable[[int], float]] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Args:
            retriever: Context retrieval.
            conversations: Source of the conversation history.
            llm: Anything with generate(prompt, timeout_ms) -> str.
            top_k: Chunks retrieved per question.
            context_limit: Conversation messages included in the prompt.
            timeout_ms: Per-call model timeout.
            max_attempts: Model calls per question, including the first.
            backoff_fn: Delay between attempts; exponential from 1 s by default.
            sleep: Sleep function, replaceable in tests.
        """
        self.retriever = retriever
        self.conversations = conversations
        self.llm = llm
        self.top_k = top_k
        self.context_limit = context_limit
        self.timeout_ms = timeout_ms
        self.max_attempts = max_attempts
        self.backoff_fn = backoff_fn or exponential_backoff(BACKOFF_BASE_SECONDS)
        self.sleep = sleep

    def run(
        self,
        report_id: str,
        conversation_id: int,
        question: str,
        topic_hints: Optional[list[str]] = None
    ) -> GenerationOutcome:
        """
        Answer one question. Model failures end the run in FAILED with the
        error set on the outcome instead of raising.
        """
        outcome = GenerationOutcome()

        # BUILDING_CONTEXT
        outcome.enter(GenerationState.BUILDING_CONTEXT)
        try:
            outcome.context = self.retriever.search(report_id, question, k=self.top_k)
        except RetrievalError as e:
            logger.warning(f"Retrieval failed for report {report_id}, answering without context: {e}")
            outcome.context = []

        history = trim_messages(
            self.conversations.get(conversation_id).messages,
            self.context_limit
        )

        # AWAITING_MODEL
        outcome.enter(GenerationState.AWAITING_MODEL)
        prompt = build_prompt(outcome.context, history, question)
        result = with_retry(
            lambda: self.llm.generate(prompt, timeout_ms=self.timeout_ms),
            max_attempts=self.max_attempts,
            backoff_fn=self.backoff_fn,
            is_retryable=lambda e: isinstance(e, LLMError) and e.retryable,
            sleep=self.sleep
        )
        outcome.attempts = result.attempts

        if not result.ok:
            outcome.enter(GenerationState.FAILED)
            outcome.error = TransientModelError(
                f"Model call failed after {result.attempts} attempt(s): {result.error}",
                attempts=result.attempts
            )
            logger.error(str(outcome.error))
            return outcome

        # PARSING
        outcome.enter(GenerationState.PARSING)
        try:
            payload = parse_answer(result.value)
        except InvalidModelResponseError as e:
            outcome.enter(GenerationState.FAILED)
            outcome.error = e
            logger.error(f"Rejected model response for report {report_id}: {e}")
            return outcome

        # DONE
        answer = clean_output(payload.answer)
        if outcome.context:
            outcome.citations = resolve_citations(
                [*payload.citations, *cited_ids(payload.answer)],
                outcome.context
            )
        outcome.answer = answer
        outcome.prompt_version = payload.prompt_version
        outcome.follow_ups = complete_follow_ups(payload.follow_ups, question, answer, topic_hints)
        outcome.enter(GenerationState.DONE)

        logger.info(
            f"Answered question on report {report_id} in {outcome.attempts} attempt(s) "
            f"with {len(outcome.citations)} citation(s)"
        )
        return outcome

    def generate(
        self,
        report_id: str,
        conversation_id: int,
        question: str,
        topic_hints: Optional[list[str]] = None
    ) -> GenerationOutcome:
        """
        Like run(), but raises on failure.

        Raises:
            TransientModelError: The model could not be reached; retryable.
            InvalidModelResponseError: The model answered with unusable output.
        """
        outcome = self.run(report_id, conversation_id, question, topic_hints)
        if outcome.error is not None:
            raise outcome.error
        return outcome
