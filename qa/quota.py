"""
Tier-based question quota.

Usage is counted per (requester, report, billing period). A new period is a
new row, so counters reset implicitly at the period boundary. Increments are
a single upsert so concurrent increments never lose a count; the check and
the increment are separate calls, which leaves a small over-admission window
for simultaneous questions from one requester.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import sessionmaker

from qa.errors import UnknownTierError
from qa.storage import UsageRow, requester_key, utcnow

QA_FEATURE = "qa"
UNLIMITED_TIER = "vip"

# feature -> {limit: int | None (unlimited), period: "monthly" | "yearly" | None}
TIER_FEATURES = {
    "free": {QA_FEATURE: {"limit": 0, "period": "monthly"}},
    "basic": {QA_FEATURE: {"limit": 20, "period": "monthly"}},
    "premium": {QA_FEATURE: {"limit": 100, "period": "monthly"}},
    "vip": {QA_FEATURE: {"limit": None, "period": None}},
}

# Window used when a feature has no period.
LIFETIME_START = datetime(1970, 1, 1)
LIFETIME_END = datetime(9999, 12, 31)

logger = logging.getLogger(__name__)


@dataclass
class UsageRecord:
    requester_id: str
    report_id: str
    tier: str
    period_start: datetime
    period_end: datetime
    questions_used: int
    extra_questions: int

    @classmethod
    def from_row(cls, row: UsageRow) -> "UsageRecord":
        return cls(
            requester_id=row.requester_key,
            report_id=row.report_id,
            tier=row.plan_tier,
            period_start=row.period_start,
            period_end=row.period_end,
            questions_used=row.questions_used,
            extra_questions=row.extra_questions,
        )


@dataclass
class QuotaStatus:
    has_quota: bool
    questions_used: int
    questions_limit: Optional[int]
    can_purchase: bool
    extra_questions: int = 0

    @property
    def remaining(self) -> int:
        """-1 for an unlimited tier."""
        if self.questions_limit is None:
            return -1
        return max(0, self.questions_limit - self.questions_used - self.extra_questions)

    def to_dict(self) -> dict:
        return {
            "hasQuota": self.has_quota,
            "questionsUsed": self.questions_used,
            "questionsLimit": self.questions_limit,
            "canPurchase": self.can_purchase,
        }


def period_window(period: Optional[str], now: datetime) -> tuple[datetime, datetime]:
    """
    Billing window containing *now*, as [start, end).

    Args:
        period: "monthly", "yearly" or None (one lifetime window).
        now: Reference time.
    """
    if period == "monthly":
        start = datetime(now.year, now.month, 1)
        if now.month == 12:
            return start, datetime(now.year + 1, 1, 1)
        return start, datetime(now.year, now.month + 1, 1)

    if period == "yearly":
        return datetime(now.year, 1, 1), datetime(now.year + 1, 1, 1)

    if period is None:
        return LIFETIME_START, LIFETIME_END

    raise ValueError(f"Unknown quota period: {period}")


def _insert_for(session):
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


class QuotaTracker:
    def __init__(
        self,
        session_factory: sessionmaker,
        tier_features: Optional[dict] = None,
        feature: str = QA_FEATURE,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session_factory = session_factory
        self.tier_features = tier_features if tier_features is not None else TIER_FEATURES
        self.feature = feature
        self.clock = clock

    def feature_config(self, tier: str) -> dict:
        try:
            return self.tier_features[tier][self.feature]
        except KeyError:
            raise UnknownTierError(f"No {self.feature} quota configured for tier {tier!r}") from None

    def _window(self, tier: str, now: Optional[datetime]) -> tuple[datetime, datetime]:
        return period_window(self.feature_config(tier)["period"], now or self.clock())

    def get_or_create_usage(
        self,
        requester_id: Optional[str],
        report_id: str,
        tier: str,
        now: Optional[datetime] = None
    ) -> UsageRecord:
        period_start, period_end = self._window(tier, now)
        key = requester_key(requester_id)

        with self.session_factory() as session:
            insert = _insert_for(session)
            session.execute(
                insert(UsageRow)
                .values(
                    requester_key=key,
                    report_id=report_id,
                    plan_tier=tier,
                    period_start=period_start,
                    period_end=period_end,
                    questions_used=0,
                    extra_questions=0,
                    updated_at=utcnow(),
                )
                .on_conflict_do_nothing(index_elements=["requester_key", "report_id", "period_start"])
            )
            session.commit()

            row = session.scalars(
                select(UsageRow).where(
                    UsageRow.requester_key == key,
                    UsageRow.report_id == report_id,
                    UsageRow.period_start == period_start,
                )
            ).one()
            return UsageRecord.from_row(row)

    def check(
        self,
        requester_id: Optional[str],
        report_id: str,
        tier: str,
        now: Optional[datetime] = None
    ) -> QuotaStatus:
        """
        Check whether the requester may ask another question this period.

        Returns:
            QuotaStatus; has_quota is False once used + extra reaches the limit.
        """
        limit = self.feature_config(tier)["limit"]
        usage = self.get_or_create_usage(requester_id, report_id, tier, now)

        if limit is None:
            has_quota = True
        else:
            has_quota = usage.questions_used + usage.extra_questions < limit

        return QuotaStatus(
            has_quota=has_quota,
            questions_used=usage.questions_used,
            questions_limit=limit,
            can_purchase=tier != UNLIMITED_TIER,
            extra_questions=usage.extra_questions,
        )

    def increment(
        self,
        requester_id: Optional[str],
        report_id: str,
        tier: str,
        now: Optional[datetime] = None
    ) -> QuotaStatus:
        """
        Record one asked question for the active period.

        Returns:
            The quota status after the increment.
        """
        limit = self.feature_config(tier)["limit"]
        period_start, period_end = self._window(tier, now)
        key = requester_key(requester_id)

        with self.session_factory() as session:
            insert = _insert_for(session)
            stmt = insert(UsageRow).values(
                requester_key=key,
                report_id=report_id,
                plan_tier=tier,
                period_start=period_start,
                period_end=period_end,
                questions_used=1,
                extra_questions=0,
                updated_at=utcnow(),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["requester_key", "report_id", "period_start"],
                set_={
                    "questions_used": UsageRow.questions_used + 1,
                    "updated_at": utcnow(),
                },
            )
            session.execute(stmt)
            session.commit()

            row = session.scalars(
                select(UsageRow).where(
                    UsageRow.requester_key == key,
                    UsageRow.report_id == report_id,
                    UsageRow.period_start == period_start,
                )
            ).one()
            usage = UsageRecord.from_row(row)

        logger.info(
            f"Usage for {key} on report {report_id}: {usage.questions_used} question(s) "
            f"in period starting {period_start.date()}"
        )
        return QuotaStatus(
            has_quota=limit is None or usage.questions_used + usage.extra_questions < limit,
            questions_used=usage.questions_used,
            questions_limit=limit,
            can_purchase=tier != UNLIMITED_TIER,
            extra_questions=usage.extra_questions,
        )

    def remaining(
        self,
        requester_id: Optional[str],
        report_id: str,
        tier: str,
        now: Optional[datetime] = None
    ) -> int:
        """Questions left this period; -1 for an unlimited tier."""
        return self.check(requester_id, report_id, tier, now).remaining
