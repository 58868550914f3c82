"""Tests for tier quotas and usage tracking."""

from datetime import datetime

import pytest

from qa.errors import UnknownTierError
from qa.quota import LIFETIME_END, LIFETIME_START, QuotaTracker, period_window

JAN = datetime(2026, 1, 15, 12, 0)
FEB = datetime(2026, 2, 1, 0, 0)


@pytest.fixture
def tracker(session_factory):
    return QuotaTracker(session_factory)


class TestPeriodWindow:

    def test_monthly(self):
        assert period_window("monthly", JAN) == (datetime(2026, 1, 1), datetime(2026, 2, 1))

    def test_monthly_december_rolls_year(self):
        assert period_window("monthly", datetime(2026, 12, 31, 23, 59)) == (
            datetime(2026, 12, 1),
            datetime(2027, 1, 1),
        )

    def test_yearly(self):
        assert period_window("yearly", JAN) == (datetime(2026, 1, 1), datetime(2027, 1, 1))

    def test_no_period_is_lifetime(self):
        assert period_window(None, JAN) == (LIFETIME_START, LIFETIME_END)

    def test_unknown_period(self):
        with pytest.raises(ValueError):
            period_window("weekly", JAN)


class TestQuotaTracker:

    def test_fresh_basic_requester_has_quota(self, tracker):
        status = tracker.check("user-1", "report-1", "basic", now=JAN)

        assert status.has_quota is True
        assert status.questions_used == 0
        assert status.questions_limit == 20
        assert status.can_purchase is True
        assert status.remaining == 20

    def test_free_tier_has_no_questions(self, tracker):
        status = tracker.check("user-1", "report-1", "free", now=JAN)

        assert status.has_quota is False
        assert status.remaining == 0

    def test_vip_is_unlimited(self, tracker):
        for _ in range(3):
            tracker.increment("user-1", "report-1", "vip", now=JAN)

        status = tracker.check("user-1", "report-1", "vip", now=JAN)

        assert status.has_quota is True
        assert status.questions_limit is None
        assert status.can_purchase is False
        assert status.remaining == -1

    def test_usage_never_decreases_within_period(self, tracker):
        used = []
        for _ in range(5):
            tracker.increment("user-1", "report-1", "basic", now=JAN)
            used.append(tracker.check("user-1", "report-1", "basic", now=JAN).questions_used)

        assert used == [1, 2, 3, 4, 5]

    def test_exhausted_at_limit(self, tracker):
        for _ in range(20):
            status = tracker.increment("user-1", "report-1", "basic", now=JAN)

        assert status.questions_used == 20
        assert status.remaining == 0
        assert tracker.check("user-1", "report-1", "basic", now=JAN).has_quota is False

    def test_new_period_resets_usage(self, tracker):
        for _ in range(20):
            tracker.increment("user-1", "report-1", "basic", now=JAN)

        status = tracker.check("user-1", "report-1", "basic", now=FEB)

        assert status.has_quota is True
        assert status.questions_used == 0

    def test_usage_is_per_report_and_requester(self, tracker):
        tracker.increment("user-1", "report-1", "basic", now=JAN)

        assert tracker.check("user-1", "report-2", "basic", now=JAN).questions_used == 0
        assert tracker.check("user-2", "report-1", "basic", now=JAN).questions_used == 0
        assert tracker.check(None, "report-1", "basic", now=JAN).questions_used == 0

    def test_check_then_increment_can_over_admit(self, tracker):
        """Test that two checks racing ahead of their increments both pass."""
        for _ in range(19):
            tracker.increment("user-1", "report-1", "basic", now=JAN)

        first = tracker.check("user-1", "report-1", "basic", now=JAN)
        second = tracker.check("user-1", "report-1", "basic", now=JAN)
        tracker.increment("user-1", "report-1", "basic", now=JAN)
        final = tracker.increment("user-1", "report-1", "basic", now=JAN)

        assert first.has_quota and second.has_quota
        assert final.questions_used == 21
        assert final.remaining == 0

    def test_unknown_tier(self, tracker):
        with pytest.raises(UnknownTierError):
            tracker.check("user-1", "report-1", "platinum", now=JAN)

    def test_status_dict_uses_public_field_names(self, tracker):
        assert tracker.check("user-1", "report-1", "premium", now=JAN).to_dict() == {
            "hasQuota": True,
            "questionsUsed": 0,
            "questionsLimit": 100,
            "canPurchase": True,
        }

    def test_remaining(self, tracker):
        tracker.increment("user-1", "report-1", "premium", now=JAN)

        assert tracker.remaining("user-1", "report-1", "premium", now=JAN) == 99
        assert tracker.remaining("user-1", "report-1", "vip", now=JAN) == -1
