"""
Conversation usage statistics and alerts.

Pure computations over a UsageRecord; nothing here touches storage.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..storage.models import SubscriptionStatus, UsageRecord


class AlertLevel(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class UsageStatistics:
    """Derived view of a user's conversation allowance."""
    free_used: int
    free_remaining: int
    free_percentage: int
    paid_used: int
    paid_remaining: int
    paid_percentage: int
    total_used: int
    total_available: int
    total_percentage: int
    needs_upgrade: bool
    can_continue: bool

    @property
    def total_remaining(self) -> int:
        return self.free_remaining + self.paid_remaining


@dataclass(frozen=True)
class UsageAlert:
    level: AlertLevel
    message: str
    threshold: int
    current_usage: int
    action_required: bool


def _percentage(used: int, available: int) -> int:
    if available <= 0:
        return 0
    return round(used / available * 100)


def calculate_usage_statistics(record: UsageRecord, free_limit: int, paid_limit: int) -> UsageStatistics:
    """Compute remaining allowance and upgrade flags for a usage record.

    The paid allowance only counts while the user is on a paid plan.

    Args:
        record: Stored usage counters
        free_limit: Free conversation allowance
        paid_limit: Paid conversation allowance

    Returns:
        UsageStatistics for the record
    """
    effective_paid_limit = paid_limit if record.has_paid_plan else 0

    free_remaining = max(0, free_limit - record.free_conversations_used)
    paid_remaining = max(0, effective_paid_limit - record.paid_conversations_used)
    total_used = record.free_conversations_used + record.paid_conversations_used
    total_available = free_limit + effective_paid_limit

    return UsageStatistics(
        free_used=record.free_conversations_used,
        free_remaining=free_remaining,
        free_percentage=_percentage(record.free_conversations_used, free_limit),
        paid_used=record.paid_conversations_used,
        paid_remaining=paid_remaining,
        paid_percentage=_percentage(record.paid_conversations_used, effective_paid_limit),
        total_used=total_used,
        total_available=total_available,
        total_percentage=_percentage(total_used, total_available),
        needs_upgrade=free_remaining <= 0 and record.subscription_status == SubscriptionStatus.FREE,
        can_continue=free_remaining + paid_remaining > 0,
    )


def generate_usage_alert(
    stats: UsageStatistics,
    subscription_status: SubscriptionStatus = SubscriptionStatus.FREE,
) -> Optional[UsageAlert]:
    """Pick the most severe applicable alert, or None.

    Critical when nothing remains, warning at 80% of the total allowance,
    info at the halfway point of the free allowance for free users.
    """
    if not stats.can_continue:
        message = (
            "You have used all your free conversations. Upgrade to continue."
            if stats.needs_upgrade
            else "You have used all your conversations. Please purchase more to continue."
        )
        return UsageAlert(
            level=AlertLevel.CRITICAL,
            message=message,
            threshold=100,
            current_usage=stats.total_percentage,
            action_required=True,
        )

    if stats.total_percentage >= 80:
        remaining = stats.total_available - stats.total_used
        plural = "" if remaining == 1 else "s"
        return UsageAlert(
            level=AlertLevel.WARNING,
            message=f"You have {remaining} conversation{plural} remaining "
                    f"({100 - stats.total_percentage}% left).",
            threshold=80,
            current_usage=stats.total_percentage,
            action_required=stats.needs_upgrade,
        )

    if subscription_status == SubscriptionStatus.FREE and 50 <= stats.free_percentage < 80:
        return UsageAlert(
            level=AlertLevel.INFO,
            message=f"You have used {stats.free_used} of {stats.free_used + stats.free_remaining} "
                    "free conversations. Consider upgrading for more conversations.",
            threshold=50,
            current_usage=stats.free_percentage,
            action_required=False,
        )

    return None
