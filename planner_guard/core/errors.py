"""
Error taxonomy for the planner guard.

Every failure surfaced to callers carries one of a closed set of codes,
a human-readable message and a retryable flag.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Closed set of error codes surfaced to callers."""
    INVALID_INPUT = "INVALID_INPUT"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    USER_BLOCKED = "USER_BLOCKED"
    MESSAGE_LIMIT_EXCEEDED = "MESSAGE_LIMIT_EXCEEDED"
    AI_QUOTA_EXCEEDED = "AI_QUOTA_EXCEEDED"
    AI_SERVICE_ERROR = "AI_SERVICE_ERROR"
    AI_TIMEOUT = "AI_TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Default retryability per code. Quota errors can be overridden per
# instance: throttling is transient, an exhausted quota is not.
RETRYABLE_CODES = frozenset({
    ErrorCode.AI_QUOTA_EXCEEDED,
    ErrorCode.AI_SERVICE_ERROR,
    ErrorCode.AI_TIMEOUT,
    ErrorCode.NETWORK_ERROR,
})


class PlannerError(Exception):
    """Base error carrying a stable code for callers."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        retryable: Optional[bool] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = code in RETRYABLE_CODES if retryable is None else retryable
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Render the caller-facing error shape."""
        return {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "details": dict(self.details),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.value!r}, {self.message!r}, retryable={self.retryable})"


class GatewayError(PlannerError):
    """Raised by the completion gateway on every failure path."""
