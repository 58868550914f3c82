"""
Q&A service: quota, conversation and answer generation for one question.
"""
from __future__ import annotations

import logging
from typing import Optional

from qa.answer_generator import AnswerGenerator, GenerationOutcome
from qa.conversation import ConversationManager, ConversationTurn
from qa.errors import SchemaValidationError, TransientModelError, UnknownTierError
from qa.quota import QuotaTracker

QUOTA_EXCEEDED_MESSAGE = "You have used all questions for this period. Upgrade your plan to ask more."
TRANSIENT_FAILURE_MESSAGE = "The answer service is temporarily unavailable. Please try again shortly."
INVALID_RESPONSE_MESSAGE = "The model response failed schema validation. Please try again."
UNPARSEABLE_RESPONSE_MESSAGE = "The model response could not be read. Please try again."
MAX_QUESTION_CHARS = 2000

logger = logging.getLogger(__name__)


class QAService:
    def __init__(
        self,
        generator: AnswerGenerator,
        conversations: ConversationManager,
        quota: QuotaTracker
    ):
        self.generator = generator
        self.conversations = conversations
        self.quota = quota
        self.last_outcome: Optional[GenerationOutcome] = None

    def answer_question(
        self,
        report_id: str,
        requester_id: Optional[str],
        tier: str,
        question: str,
        topic_hints: Optional[list[str]] = None
    ) -> dict:
        """
        Answer a question about a report.

        Returns:
            On success {ok: True, answer, citations, followUps, remaining_quota}
            (remaining_quota is -1 for unlimited tiers), otherwise
            {ok: False, message, ...}.
        """
        self.last_outcome = None
        question = (question or "").strip()
        if not question:
            return {"ok": False, "message": "Question must not be empty."}
        if len(question) > MAX_QUESTION_CHARS:
            return {"ok": False, "message": f"Question must be at most {MAX_QUESTION_CHARS} characters."}

        try:
            status = self.quota.check(requester_id, report_id, tier)
        except UnknownTierError as e:
            return {"ok": False, "message": str(e)}

        if not status.has_quota:
            logger.info(f"Quota exhausted for report {report_id} on tier {tier}")
            return {
                "ok": False,
                "message": QUOTA_EXCEEDED_MESSAGE,
                "remaining_quota": 0,
                "quota_exceeded": True,
            }

        conversation = self.conversations.get_or_create(report_id, requester_id, tier)
        outcome = self.generator.run(report_id, conversation.id, question, topic_hints)
        self.last_outcome = outcome

        if isinstance(outcome.error, TransientModelError):
            return {"ok": False, "message": TRANSIENT_FAILURE_MESSAGE, "retryable": True}
        if isinstance(outcome.error, SchemaValidationError):
            return {"ok": False, "message": f"{INVALID_RESPONSE_MESSAGE} ({outcome.error})"}
        if outcome.error is not None:
            return {"ok": False, "message": f"{UNPARSEABLE_RESPONSE_MESSAGE} ({outcome.error})"}

        citations = [chunk.to_citation() for chunk in outcome.citations]
        sources = [chunk.to_source() for chunk in outcome.citations]
        self.conversations.append(conversation.id, ConversationTurn.now("user", question))
        self.conversations.append(
            conversation.id,
            ConversationTurn.now("assistant", outcome.answer, sources=sources)
        )

        status = self.quota.increment(requester_id, report_id, tier)

        return {
            "ok": True,
            "answer": outcome.answer,
            "citations": citations,
            "followUps": outcome.follow_ups,
            "remaining_quota": status.remaining,
        }
