"""
AI completion gateway.

Builds the conversation, enforces the token budget, calls the primary
model with a single fallback attempt, and retries retryable failures
with exponential backoff.

Contract:
- complete() surfaces only GatewayError
- used_fallback implies model == fallback model
- cancellation is never swallowed; it stops the call or the backoff sleep
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..config.loader import AIConfig, TokenConfig
from .errors import ErrorCode, GatewayError
from .prompts import BusinessContext, format_system_prompt
from .token_counter import Message, TokenBudget

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class ChatCompletionRequest:
    """A user message plus the context needed to answer it."""
    message: str
    context: BusinessContext
    conversation_history: Sequence[Message] = field(default_factory=tuple)
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


@dataclass(frozen=True)
class ResponseMetadata:
    timestamp: datetime
    response_time_ms: int
    finish_reason: Optional[str] = None


@dataclass(frozen=True)
class ChatCompletionResponse:
    """Successful completion."""
    message: str
    tokens_used: int
    model: str
    used_fallback: bool
    metadata: ResponseMetadata


class CompletionGateway:
    """Orchestrates completion calls against a chat provider.

    The provider must expose an async
    create_chat_completion(messages, model, max_tokens, temperature)
    returning an object with text, finish_reason and total_tokens.
    """

    def __init__(
        self,
        provider,
        ai_config: AIConfig,
        token_config: TokenConfig,
        sleep: Sleep = asyncio.sleep,
    ):
        self.provider = provider
        self.ai_config = ai_config
        self.token_budget = TokenBudget(token_config)
        self._sleep = sleep

    def build_messages(self, request: ChatCompletionRequest) -> List[Message]:
        """System prompt, then prior turns in order, then the new message."""
        messages = [{"role": "system", "content": format_system_prompt(request.context)}]
        for turn in request.conversation_history:
            messages.append({"role": turn["role"], "content": turn["content"]})
        messages.append({"role": "user", "content": request.message})
        return messages

    def backoff_delay_ms(self, attempt: int) -> int:
        """Delay before the retry that follows a failed attempt (1-based)."""
        delay = self.ai_config.backoff_base_ms * 2 ** (attempt - 1)
        return min(delay, self.ai_config.backoff_max_ms)

    async def complete(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        """Run one primary-then-fallback completion.

        Args:
            request: The chat completion request

        Returns:
            ChatCompletionResponse from whichever model answered

        Raises:
            GatewayError: MESSAGE_LIMIT_EXCEEDED when over budget, otherwise
                the fallback model's classified failure
        """
        messages = self.build_messages(request)
        estimate = self.token_budget.estimate_conversation_tokens(messages)
        if not self.token_budget.within_budget(messages):
            raise GatewayError(
                ErrorCode.MESSAGE_LIMIT_EXCEEDED,
                "Conversation is too long. Please start a new conversation.",
                retryable=False,
                details={"estimated_tokens": estimate.count, "limit": self.token_budget.ceiling},
            )

        max_tokens = request.max_tokens or self.token_budget.config.max_response_tokens
        temperature = self.ai_config.temperature if request.temperature is None else request.temperature

        started = time.monotonic()
        model = self.ai_config.primary_model
        used_fallback = False
        try:
            completion = await self._call(messages, model, max_tokens, temperature)
        except GatewayError as primary_error:
            logger.warning(
                "Primary model %s failed (%s), trying fallback %s",
                model,
                primary_error.code.value,
                self.ai_config.fallback_model,
            )
            model = self.ai_config.fallback_model
            used_fallback = True
            completion = await self._call(messages, model, max_tokens, temperature)

        tokens_used = completion.total_tokens or (
            estimate.count + self.token_budget.estimate_tokens(completion.text)
        )
        return ChatCompletionResponse(
            message=completion.text,
            tokens_used=tokens_used,
            model=model,
            used_fallback=used_fallback,
            metadata=ResponseMetadata(
                timestamp=datetime.now(timezone.utc),
                response_time_ms=int((time.monotonic() - started) * 1000),
                finish_reason=completion.finish_reason,
            ),
        )

    async def complete_with_retry(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        """complete() with up to max_retries attempts and exponential backoff.

        Only retryable errors are retried. The final attempt's error is
        raised unchanged.
        """
        max_attempts = self.ai_config.max_retries
        attempt = 1
        while True:
            try:
                return await self.complete(request)
            except GatewayError as e:
                if not e.retryable or attempt >= max_attempts:
                    if e.retryable:
                        logger.error("Completion failed after %d attempts: %s", attempt, e.code.value)
                    raise
                delay_ms = self.backoff_delay_ms(attempt)
                logger.warning(
                    "Attempt %d/%d failed (%s), retrying in %d ms",
                    attempt,
                    max_attempts,
                    e.code.value,
                    delay_ms,
                )
            await self._sleep(delay_ms / 1000)
            attempt += 1

    def model_info(self) -> Dict[str, Any]:
        """Configured models and limits."""
        return {
            "primary_model": self.ai_config.primary_model,
            "fallback_model": self.ai_config.fallback_model,
            "max_tokens": self.token_budget.config.max_response_tokens,
            "max_conversation_tokens": self.token_budget.ceiling,
            "temperature": self.ai_config.temperature,
            "timeout_seconds": self.ai_config.timeout_seconds,
            "max_retries": self.ai_config.max_retries,
        }

    async def check_connection(self) -> bool:
        """Issue a minimal completion against the primary model."""
        try:
            await self._call(
                [{"role": "user", "content": "Hello"}],
                self.ai_config.primary_model,
                5,
                0.0,
            )
        except GatewayError as e:
            logger.warning("Connection check failed: %s", e.code.value)
            return False
        return True

    async def _call(self, messages, model: str, max_tokens: int, temperature: float):
        try:
            return await self.provider.create_chat_completion(messages, model, max_tokens, temperature)
        except GatewayError:
            raise
        except Exception as e:
            logger.exception("Provider raised an unclassified error")
            raise GatewayError(
                ErrorCode.AI_SERVICE_ERROR,
                "Unexpected AI service failure",
                retryable=True,
            ) from e
