"""SQLAlchemy models and session factory for conversation and usage rows."""
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

DEFAULT_DATABASE_URL = "sqlite:///data/qa.db"

# Key used for requesters without an account; unique constraints ignore NULLs.
ANONYMOUS_REQUESTER = "anonymous"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def requester_key(requester_id: Optional[str]) -> str:
    return requester_id if requester_id else ANONYMOUS_REQUESTER


class Base(DeclarativeBase):
    pass


class ConversationRow(Base):
    """One Q&A conversation per (report, requester)."""

    __tablename__ = "qa_conversations"
    __table_args__ = (
        UniqueConstraint("report_id", "requester_key", name="uq_conversation_report_requester"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    requester_id: Mapped[str | None] = mapped_column(String, nullable=True)
    requester_key: Mapped[str] = mapped_column(String, nullable=False)
    subscription_tier: Mapped[str] = mapped_column(String, nullable=False)
    messages: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_message_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    retention_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class UsageRow(Base):
    """Question usage for one (requester, report, billing period)."""

    __tablename__ = "qa_usage_tracking"
    __table_args__ = (
        UniqueConstraint(
            "requester_key", "report_id", "period_start", name="uq_usage_requester_report_period"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    requester_key: Mapped[str] = mapped_column(String, nullable=False)
    report_id: Mapped[str] = mapped_column(String, nullable=False)
    plan_tier: Mapped[str] = mapped_column(String, nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    questions_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    extra_questions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


def create_session_factory(database_url: str = DEFAULT_DATABASE_URL) -> sessionmaker:
    """
    Create the engine, ensure tables exist and return a session factory.

    In-memory SQLite URLs share one connection so every session sees the
    same database.
    """
    engine_kwargs = {}
    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool
        else:
            db_dir = os.path.dirname(database_url[len("sqlite:///"):])
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

    engine = create_engine(database_url, **engine_kwargs)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
