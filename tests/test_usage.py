"""
Unit tests for usage statistics and alerts.
"""

from planner_guard.core.usage import AlertLevel, calculate_usage_statistics, generate_usage_alert
from planner_guard.storage.models import SubscriptionStatus, UsageRecord


def _stats(free=0, paid=0, status=SubscriptionStatus.FREE):
    record = UsageRecord(
        user_id="u1",
        free_conversations_used=free,
        paid_conversations_used=paid,
        subscription_status=status,
    )
    return calculate_usage_statistics(record, free_limit=10, paid_limit=50)


class TestCalculateUsageStatistics:
    """Test derived usage statistics."""

    def test_new_free_user(self):
        stats = _stats()

        assert stats.free_remaining == 10
        assert stats.paid_remaining == 0
        assert stats.total_available == 10
        assert stats.total_percentage == 0
        assert stats.needs_upgrade is False
        assert stats.can_continue is True

    def test_half_used(self):
        stats = _stats(free=5)

        assert stats.free_remaining == 5
        assert stats.free_percentage == 50
        assert stats.total_remaining == 5

    def test_free_exhausted(self):
        stats = _stats(free=10)

        assert stats.free_remaining == 0
        assert stats.needs_upgrade is True
        assert stats.can_continue is False

    def test_overuse_clamps_remaining(self):
        stats = _stats(free=12)

        assert stats.free_remaining == 0
        assert stats.free_percentage == 120

    def test_paid_plan_adds_allowance(self):
        stats = _stats(free=10, paid=5, status=SubscriptionStatus.PAID)

        assert stats.paid_remaining == 45
        assert stats.total_available == 60
        assert stats.total_used == 15
        assert stats.total_percentage == 25
        assert stats.needs_upgrade is False
        assert stats.can_continue is True

    def test_cancelled_plan_has_no_paid_allowance(self):
        stats = _stats(free=10, paid=5, status=SubscriptionStatus.CANCELLED)

        assert stats.paid_remaining == 0
        assert stats.paid_percentage == 0
        assert stats.can_continue is False
        assert stats.needs_upgrade is False


class TestGenerateUsageAlert:
    """Test alert thresholds."""

    def test_no_alert(self):
        assert generate_usage_alert(_stats(free=2)) is None

    def test_info_at_half(self):
        alert = generate_usage_alert(_stats(free=5))

        assert alert.level == AlertLevel.INFO
        assert alert.threshold == 50
        assert alert.action_required is False
        assert "5 of 10" in alert.message

    def test_warning_at_eighty_percent(self):
        alert = generate_usage_alert(_stats(free=8))

        assert alert.level == AlertLevel.WARNING
        assert alert.message == "You have 2 conversations remaining (20% left)."

    def test_warning_singular(self):
        alert = generate_usage_alert(_stats(free=9))
        assert "1 conversation remaining" in alert.message

    def test_critical_when_exhausted(self):
        alert = generate_usage_alert(_stats(free=10))

        assert alert.level == AlertLevel.CRITICAL
        assert alert.action_required is True
        assert "Upgrade to continue" in alert.message

    def test_paid_user_past_free_allowance_gets_no_info(self):
        stats = _stats(free=6, paid=1, status=SubscriptionStatus.PAID)
        assert generate_usage_alert(stats, SubscriptionStatus.PAID) is None
