"""
Conversation management for report Q&A.

One conversation per (report, requester). The stored message log only grows;
trim_messages() is a read-side projection used when building prompts.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from qa.errors import ConversationNotFoundError
from qa.storage import ConversationRow, requester_key, utcnow

# Configuration constants
DEFAULT_CONTEXT_LIMIT = 10  # messages kept when building a prompt

# Days a conversation is kept per tier; None keeps it forever.
RETENTION_DAYS = {
    "free": 30,
    "basic": 90,
    "premium": 365,
    "vip": None,
}

logger = logging.getLogger(__name__)


@dataclass
class ConversationTurn:
    role: str  # "user" or "assistant"
    content: str
    timestamp: str
    sources: Optional[list[dict]] = None

    @classmethod
    def now(cls, role: str, content: str, sources: Optional[list[dict]] = None) -> "ConversationTurn":
        return cls(role=role, content=content, timestamp=utcnow().isoformat(), sources=sources)

    def to_dict(self) -> dict:
        data = {"role": self.role, "content": self.content, "timestamp": self.timestamp}
        if self.sources is not None:
            data["sources"] = self.sources
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationTurn":
        return cls(
            role=data["role"],
            content=data["content"],
            timestamp=data["timestamp"],
            sources=data.get("sources"),
        )


@dataclass
class Conversation:
    id: int
    report_id: str
    requester_id: Optional[str]
    subscription_tier: str
    messages: list[ConversationTurn] = field(default_factory=list)
    last_message_at: Optional[datetime] = None
    retention_until: Optional[datetime] = None
    total_questions: int = 0

    @classmethod
    def from_row(cls, row: ConversationRow) -> "Conversation":
        return cls(
            id=row.id,
            report_id=row.report_id,
            requester_id=row.requester_id,
            subscription_tier=row.subscription_tier,
            messages=[ConversationTurn.from_dict(m) for m in row.messages or []],
            last_message_at=row.last_message_at,
            retention_until=row.retention_until,
            total_questions=row.total_questions,
        )


def retention_until(tier: str, now: Optional[datetime] = None) -> Optional[datetime]:
    days = RETENTION_DAYS.get(tier, RETENTION_DAYS["free"])
    if days is None:
        return None
    return (now or utcnow()) + timedelta(days=days)


def trim_messages(
    messages: list[ConversationTurn],
    max_len: int = DEFAULT_CONTEXT_LIMIT
) -> list[ConversationTurn]:
    """
    Project a message log onto at most max_len messages.

    Keeps the most recent max_len - 1 messages and, when the conversation was
    opened by the user, puts that opening question back in front.

    Args:
        messages: Full, timestamp-ordered message log.
        max_len: Maximum messages to return.

    Returns:
        A new list; the input is never modified.
    """
    if len(messages) <= max_len:
        return list(messages)

    recent = messages[len(messages) - (max_len - 1):] if max_len > 1 else []
    first = messages[0]
    if first.role == "user":
        return [first, *recent]
    return list(recent)


class ConversationManager:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_or_create(
        self,
        report_id: str,
        requester_id: Optional[str],
        tier: str
    ) -> Conversation:
        key = requester_key(requester_id)
        query = select(ConversationRow).where(
            ConversationRow.report_id == report_id,
            ConversationRow.requester_key == key,
        )
        with self.session_factory() as session:
            row = session.scalars(query).first()

            if row is None:
                now = utcnow()
                row = ConversationRow(
                    report_id=report_id,
                    requester_id=requester_id,
                    requester_key=key,
                    subscription_tier=tier,
                    messages=[],
                    total_questions=0,
                    last_message_at=now,
                    retention_until=retention_until(tier, now),
                )
                session.add(row)
                try:
                    session.commit()
                    logger.info(f"Created conversation {row.id} for report {report_id} ({key})")
                except IntegrityError:
                    # Another request created it first.
                    session.rollback()
                    row = session.scalars(query).one()

            return Conversation.from_row(row)

    def get(self, conversation_id: int) -> Conversation:
        with self.session_factory() as session:
            row = session.get(ConversationRow, conversation_id)
            if row is None:
                raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
            return Conversation.from_row(row)

    def append(self, conversation_id: int, message: ConversationTurn) -> list[ConversationTurn]:
        """
        Append one message to the stored log.

        Returns:
            The full, updated message list.

        Raises:
            ConversationNotFoundError: If no conversation has this id.
        """
        with self.session_factory() as session:
            row = session.get(ConversationRow, conversation_id)
            if row is None:
                raise ConversationNotFoundError(f"Conversation {conversation_id} not found")

            # Reassign rather than mutate so the JSON column is flagged dirty.
            messages = [*(row.messages or []), message.to_dict()]
            row.messages = messages
            row.last_message_at = utcnow()
            row.total_questions = sum(1 for m in messages if m["role"] == "user")
            session.commit()

            return [ConversationTurn.from_dict(m) for m in messages]

    def list_for_report(
        self,
        report_id: str,
        requester_id: Optional[str],
        now: Optional[datetime] = None
    ) -> list[Conversation]:
        """Conversations for a report and requester that are still retained, newest first."""
        now = now or utcnow()
        with self.session_factory() as session:
            rows = session.scalars(
                select(ConversationRow)
                .where(
                    ConversationRow.report_id == report_id,
                    ConversationRow.requester_key == requester_key(requester_id),
                )
                .order_by(ConversationRow.last_message_at.desc())
            ).all()

        return [
            Conversation.from_row(row)
            for row in rows
            if row.retention_until is None or row.retention_until >= now
        ]

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        with self.session_factory() as session:
            result = session.execute(
                delete(ConversationRow).where(
                    ConversationRow.retention_until.is_not(None),
                    ConversationRow.retention_until < now,
                )
            )
            session.commit()

        deleted = result.rowcount or 0
        if deleted:
            logger.info(f"Cleaned up {deleted} expired conversations")
        return deleted
