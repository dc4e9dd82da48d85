"""
Rate limiting and abuse escalation.

Per (user, IP) fixed window quota plus an independent suspicion counter
that promotes a key to a timed block once it reaches a threshold.

Rules:
1. A block in the future denies regardless of the window
2. An expired window is treated as fresh (count 0)
3. A full window denies until it expires
4. Store failures deny (fail closed)
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from ..config.loader import RateLimitConfig
from ..storage.models import RateLimitRecord
from ..storage.repository import RateLimitRepository
from .errors import ErrorCode, PlannerError
from .threat_patterns import ThreatFamily, classify

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Timezone-aware current time; clocks must return aware datetimes."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RateLimitResult:
    """Quota state for one key as seen by a check or an update."""
    allowed: bool
    current_count: int
    remaining_requests: int
    window_reset: datetime
    is_blocked: bool
    blocked_until: Optional[datetime] = None


@dataclass(frozen=True)
class BlockStatus:
    """Whether a key is currently blocked."""
    blocked: bool
    blocked_until: Optional[datetime] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class SuspiciousActivityResult:
    """Outcome of suspicious activity heuristics for one request."""
    is_suspicious: bool
    suspicious_count: int
    should_block: bool
    reasons: List[str] = field(default_factory=list)


def detect_suspicious_activity(
    record: Optional[RateLimitRecord],
    user_agent: Optional[str],
    now: datetime,
    config: RateLimitConfig,
) -> SuspiciousActivityResult:
    """Flag bot-like clients and unusually fast request rates.

    Pure function over the record as it was before the current request.

    Args:
        record: Current rate limit record, or None for a new key
        user_agent: Client user agent
        now: Current time
        config: Rate limit policy

    Returns:
        SuspiciousActivityResult; should_block is True when one more
        suspicious flag would reach the threshold
    """
    reasons = []

    if user_agent and classify(user_agent, ThreatFamily.BOT_USER_AGENT):
        reasons.append("Bot-like user agent detected")

    suspicious_count = 0
    if record is not None:
        suspicious_count = record.suspicious_activity_count
        elapsed = (now - record.window_start).total_seconds()
        if record.request_count > 0 and elapsed < config.window_seconds:
            # Sub-second windows are measured as one second.
            rate = record.request_count / max(elapsed, 1.0)
            if rate > config.max_request_rate_per_second:
                reasons.append("Unusually high request rate")

    return SuspiciousActivityResult(
        is_suspicious=bool(reasons),
        suspicious_count=suspicious_count,
        should_block=suspicious_count >= config.suspicion_threshold - 1,
        reasons=reasons,
    )


class RateLimiter:
    """Enforces the request window and suspicion-driven blocks.

    check() is read-only; update(), flag_suspicious() and reset() are the
    only mutating operations and each is a single atomic store update.
    """

    def __init__(
        self,
        repository: RateLimitRepository,
        config: RateLimitConfig,
        clock: Clock = utc_now,
    ):
        self.repository = repository
        self.config = config
        self.clock = clock

    def check(self, user_id: str, ip_address: Optional[str] = None) -> RateLimitResult:
        """Report whether a request would be allowed, without mutating state.

        Raises:
            PlannerError: DATABASE_ERROR when the store is unavailable
        """
        now = self.clock()
        record = self._run("check", lambda: self.repository.get(user_id, ip_address))
        window = timedelta(seconds=self.config.window_seconds)

        if record is None:
            return self._fresh_window(now)

        if record.is_blocked_at(now):
            return RateLimitResult(
                allowed=False,
                current_count=record.request_count,
                remaining_requests=0,
                window_reset=record.window_start + window,
                is_blocked=True,
                blocked_until=record.blocked_until,
            )

        if now - record.window_start >= window:
            return self._fresh_window(now)

        remaining = max(0, self.config.max_requests - record.request_count)
        return RateLimitResult(
            allowed=record.request_count < self.config.max_requests,
            current_count=record.request_count,
            remaining_requests=remaining,
            window_reset=record.window_start + window,
            is_blocked=False,
        )

    def update(
        self,
        user_id: str,
        ip_address: Optional[str] = None,
        increment_suspicious: bool = False,
        reset_window: bool = False,
    ) -> RateLimitResult:
        """Count one request against the window, optionally flagging it.

        Raises:
            PlannerError: DATABASE_ERROR when the store is unavailable
        """
        now = self.clock()
        record = self._run(
            "update",
            lambda: self.repository.apply_update(
                user_id,
                ip_address,
                now,
                window_seconds=self.config.window_seconds,
                suspicion_threshold=self.config.suspicion_threshold,
                block_seconds=self.config.block_seconds,
                increment_request=True,
                increment_suspicious=increment_suspicious,
                reset_window=reset_window,
            ),
        )
        self._log_block(record, now, increment_suspicious)
        return self._result_from_record(record, now)

    def flag_suspicious(self, user_id: str, ip_address: Optional[str] = None) -> RateLimitResult:
        """Increment the suspicion counter without consuming request quota."""
        now = self.clock()
        record = self._run(
            "flag_suspicious",
            lambda: self.repository.apply_update(
                user_id,
                ip_address,
                now,
                window_seconds=self.config.window_seconds,
                suspicion_threshold=self.config.suspicion_threshold,
                block_seconds=self.config.block_seconds,
                increment_request=False,
                increment_suspicious=True,
            ),
        )
        self._log_block(record, now, True)
        return self._result_from_record(record, now)

    def reset(self, user_id: str, ip_address: Optional[str] = None) -> RateLimitResult:
        """Administrative reset: zero all counters and clear the block."""
        now = self.clock()
        record = self._run("reset", lambda: self.repository.reset(user_id, ip_address, now))
        logger.info("Rate limit reset for user %s (ip=%s)", user_id, ip_address)
        return self._result_from_record(record, now)

    def is_blocked(self, user_id: str, ip_address: Optional[str] = None) -> BlockStatus:
        now = self.clock()
        record = self._run("is_blocked", lambda: self.repository.get(user_id, ip_address))
        if record is None or not record.is_blocked_at(now):
            return BlockStatus(blocked=False)
        return BlockStatus(
            blocked=True,
            blocked_until=record.blocked_until,
            reason="Temporary block due to suspicious activity",
        )

    def get_record(self, user_id: str, ip_address: Optional[str] = None) -> Optional[RateLimitRecord]:
        """Raw stored record, for suspicious activity detection and reporting."""
        return self._run("get_record", lambda: self.repository.get(user_id, ip_address))

    def _fresh_window(self, now: datetime) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            current_count=0,
            remaining_requests=self.config.max_requests,
            window_reset=now + timedelta(seconds=self.config.window_seconds),
            is_blocked=False,
        )

    def _result_from_record(self, record: RateLimitRecord, now: datetime) -> RateLimitResult:
        blocked = record.is_blocked_at(now)
        return RateLimitResult(
            allowed=not blocked and record.request_count <= self.config.max_requests,
            current_count=record.request_count,
            remaining_requests=max(0, self.config.max_requests - record.request_count),
            window_reset=record.window_start + timedelta(seconds=self.config.window_seconds),
            is_blocked=blocked,
            blocked_until=record.blocked_until if blocked else None,
        )

    def _log_block(self, record: RateLimitRecord, now: datetime, flagged: bool) -> None:
        if flagged and record.is_blocked_at(now):
            logger.info(
                "Blocked user %s (ip=%s) until %s after %d suspicious requests",
                record.user_id,
                record.ip_address,
                record.blocked_until.isoformat(),
                record.suspicious_activity_count,
            )

    def _run(self, operation: str, action):
        try:
            return action()
        except sqlite3.Error as e:
            logger.error("Rate limit store failure during %s: %s", operation, e)
            raise PlannerError(
                ErrorCode.DATABASE_ERROR,
                "Rate limit store unavailable",
                details={"operation": operation},
            ) from e
