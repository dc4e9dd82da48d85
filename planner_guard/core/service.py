"""
Caller-facing chat entry point.

Sequences validation, rate limiting, token budgeting and completion for
one user message, and charges quota and usage exactly once per request.
"""

import logging
import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Optional, Sequence

from ..config.loader import PlannerConfig
from ..storage.models import UsageRecord
from ..storage.repository import UsageRepository
from .errors import ErrorCode, GatewayError, PlannerError
from .gateway import ChatCompletionRequest, ChatCompletionResponse, CompletionGateway
from .prompts import BusinessContext
from .rate_limiter import RateLimiter, RateLimitResult, detect_suspicious_activity
from .security import validate_message
from .token_counter import Message
from .usage import UsageAlert, UsageStatistics, calculate_usage_statistics, generate_usage_alert

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatRequest:
    """One inbound chat message from a user."""
    user_id: str
    message: str
    context: BusinessContext
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    conversation_history: Sequence[Message] = field(default_factory=tuple)


@dataclass(frozen=True)
class ChatResult:
    response: ChatCompletionResponse
    usage: UsageStatistics
    rate_limit: RateLimitResult
    alert: Optional[UsageAlert] = None


class PlannerChatService:
    """Guards and answers business planner chat messages.

    Every failure is raised as a PlannerError with a stable code.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        gateway: CompletionGateway,
        usage_repository: UsageRepository,
        config: PlannerConfig,
    ):
        self.rate_limiter = rate_limiter
        self.gateway = gateway
        self.usage_repository = usage_repository
        self.config = config

    async def handle(self, request: ChatRequest) -> ChatResult:
        """Validate, rate limit and answer one message.

        Args:
            request: The inbound chat request

        Returns:
            ChatResult with the completion, usage statistics and quota state

        Raises:
            PlannerError: With one of the closed error codes. Denials also
                carry the user's current usage statistics in details["usage"]
        """
        try:
            return await self._handle(request)
        except PlannerError as e:
            self._attach_usage(e, request.user_id)
            raise
        except Exception as e:
            logger.exception("Unexpected failure handling chat request for user %s", request.user_id)
            raise PlannerError(ErrorCode.INTERNAL_ERROR, "Internal server error") from e

    async def _handle(self, request: ChatRequest) -> ChatResult:
        validation = self.config.validation
        verdict = validate_message(
            request.message,
            validation.min_message_length,
            validation.max_message_length,
        )
        if not verdict.is_valid:
            if not verdict.has_security_findings:
                raise PlannerError(
                    ErrorCode.INVALID_INPUT,
                    verdict.issues[0],
                    details={"risk_level": verdict.risk_level.label},
                )
            logger.warning(
                "Rejected %s-risk input from user %s: %s",
                verdict.risk_level.label,
                request.user_id,
                "; ".join(verdict.issues),
            )
            self.rate_limiter.flag_suspicious(request.user_id, request.ip_address)
            # Matcher names stay in the log
            raise PlannerError(
                ErrorCode.INVALID_INPUT,
                "Message contains potentially harmful content",
                details={"risk_level": verdict.risk_level.label},
            )

        quota = self.rate_limiter.check(request.user_id, request.ip_address)
        if quota.is_blocked:
            raise PlannerError(
                ErrorCode.USER_BLOCKED,
                "Access temporarily blocked due to suspicious activity",
                details={"blocked_until": quota.blocked_until.isoformat()},
            )
        if not quota.allowed:
            raise PlannerError(
                ErrorCode.RATE_LIMIT_EXCEEDED,
                "Too many requests. Please try again later.",
                details={"window_reset": quota.window_reset.isoformat()},
            )

        activity = detect_suspicious_activity(
            self.rate_limiter.get_record(request.user_id, request.ip_address),
            request.user_agent,
            self.rate_limiter.clock(),
            self.config.rate_limit,
        )
        if activity.is_suspicious and activity.should_block:
            logger.warning(
                "User %s (ip=%s) reaches the suspicion threshold with this request: %s",
                request.user_id,
                request.ip_address,
                "; ".join(activity.reasons),
            )

        completion_request = ChatCompletionRequest(
            message=verdict.sanitized_input,
            context=request.context,
            conversation_history=tuple(request.conversation_history),
        )
        try:
            response = await self.gateway.complete_with_retry(completion_request)
        except GatewayError:
            self.rate_limiter.update(
                request.user_id,
                request.ip_address,
                increment_suspicious=activity.is_suspicious,
            )
            raise

        quota = self.rate_limiter.update(
            request.user_id,
            request.ip_address,
            increment_suspicious=activity.is_suspicious,
        )
        record = self._run_usage(
            lambda: self.usage_repository.record_conversation(
                request.user_id, response.tokens_used, self.config.usage.paid_conversations
            )
        )
        usage = self._statistics(record)
        return ChatResult(
            response=response,
            usage=usage,
            rate_limit=quota,
            alert=generate_usage_alert(usage, record.subscription_status),
        )

    def usage_statistics(self, user_id: str) -> UsageStatistics:
        """Current usage statistics for a user."""
        return self._statistics(self._run_usage(lambda: self.usage_repository.get_or_create(user_id)))

    def _attach_usage(self, error: PlannerError, user_id: str) -> None:
        if error.code in (ErrorCode.DATABASE_ERROR, ErrorCode.INTERNAL_ERROR):
            return
        try:
            stats = self.usage_statistics(user_id)
        except PlannerError as usage_error:
            logger.warning(
                "Usage statistics unavailable for %s denial of user %s: %s",
                error.code.value,
                user_id,
                usage_error.message,
            )
            return
        error.details["usage"] = asdict(stats)

    def _statistics(self, record: UsageRecord) -> UsageStatistics:
        return calculate_usage_statistics(
            record, self.config.usage.free_conversations, self.config.usage.paid_conversations
        )

    def _run_usage(self, action):
        try:
            return action()
        except sqlite3.Error as e:
            logger.error("Usage store failure: %s", e)
            raise PlannerError(ErrorCode.DATABASE_ERROR, "Usage store unavailable") from e
