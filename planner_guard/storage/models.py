"""
Data models for storage layer.

Defines persisted rate limit and usage records.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class RateLimitRecord:
    """Per (user, IP) rate limit state.

    request_count never decreases within a window; it is reset only when
    the window rolls over or by an administrative reset.
    """
    user_id: str
    ip_address: Optional[str]
    request_count: int
    window_start: datetime
    blocked_until: Optional[datetime]
    suspicious_activity_count: int

    def __post_init__(self):
        """Validate counters are non-negative."""
        if self.request_count < 0:
            raise ValueError("request_count must be >= 0")
        if self.suspicious_activity_count < 0:
            raise ValueError("suspicious_activity_count must be >= 0")

    def is_blocked_at(self, now: datetime) -> bool:
        return self.blocked_until is not None and self.blocked_until > now


class SubscriptionStatus(Enum):
    """Billing plan of a user."""
    FREE = "free"
    PAID = "paid"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class UsageRecord:
    """Conversation and token consumption of one user."""
    user_id: str
    free_conversations_used: int = 0
    paid_conversations_used: int = 0
    total_tokens_used: int = 0
    subscription_status: SubscriptionStatus = SubscriptionStatus.FREE

    @property
    def has_paid_plan(self) -> bool:
        return self.subscription_status == SubscriptionStatus.PAID
