"""
OpenAI chat completion provider.

Wraps an injected AsyncOpenAI client and translates every provider
failure into a GatewayError. This is the only module that knows about
OpenAI exception types.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from ..config.loader import AIConfig
from ..core.errors import ErrorCode, GatewayError

logger = logging.getLogger(__name__)

# Model families that reject max_tokens in favour of max_completion_tokens.
MAX_COMPLETION_TOKENS_MODELS = (
    "gpt-5-mini",
    "gpt-5",
    "o1-preview",
    "o1-mini",
    "o1",
    "gpt-4o-mini-2024",
    "gpt-4o-2024",
    "chatgpt-4o-latest",
)

# Model families that only accept the default temperature.
DEFAULT_TEMPERATURE_ONLY_MODELS = ("gpt-5-mini", "o1-preview", "o1-mini", "o1")


@dataclass(frozen=True)
class ProviderCompletion:
    """Normalized result of one chat completion call."""
    text: str
    model: str
    finish_reason: Optional[str] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    request_id: Optional[str] = None


def requires_max_completion_tokens(model: str) -> bool:
    return any(name in model for name in MAX_COMPLETION_TOKENS_MODELS) or "2025" in model


def supports_custom_temperature(model: str) -> bool:
    return not any(name in model for name in DEFAULT_TEMPERATURE_ONLY_MODELS)


def classify_provider_error(exc: BaseException) -> GatewayError:
    """Map any provider exception onto the closed error taxonomy.

    Args:
        exc: Exception raised while calling the provider

    Returns:
        GatewayError with code, retryable flag and upstream status
    """
    if isinstance(exc, GatewayError):
        return exc

    status_code = getattr(exc, "status_code", None)

    if isinstance(exc, openai.RateLimitError):
        if getattr(exc, "code", None) == "insufficient_quota":
            return GatewayError(
                ErrorCode.AI_QUOTA_EXCEEDED,
                "AI service quota exhausted",
                retryable=False,
                status_code=status_code,
            )
        return GatewayError(
            ErrorCode.AI_QUOTA_EXCEEDED,
            "AI service rate limit reached",
            retryable=True,
            status_code=status_code,
        )

    # APITimeoutError subclasses APIConnectionError, so it goes first.
    if isinstance(exc, (openai.APITimeoutError, asyncio.TimeoutError)):
        return GatewayError(ErrorCode.AI_TIMEOUT, "AI service request timed out", retryable=True)

    if isinstance(exc, openai.APIConnectionError):
        return GatewayError(ErrorCode.NETWORK_ERROR, "Could not reach AI service", retryable=True)

    if isinstance(exc, (openai.BadRequestError, openai.UnprocessableEntityError)):
        return GatewayError(
            ErrorCode.INVALID_INPUT,
            "AI service rejected the request",
            retryable=False,
            status_code=status_code,
        )

    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError, openai.NotFoundError)):
        return GatewayError(
            ErrorCode.AI_SERVICE_ERROR,
            "AI service configuration error",
            retryable=False,
            status_code=status_code,
        )

    if isinstance(exc, openai.APIStatusError):
        return GatewayError(
            ErrorCode.AI_SERVICE_ERROR,
            "AI service error",
            retryable=True,
            status_code=status_code,
        )

    return GatewayError(ErrorCode.AI_SERVICE_ERROR, "Unexpected AI service failure", retryable=True)


def create_openai_client(config: AIConfig, api_key: Optional[str] = None) -> AsyncOpenAI:
    """Construct the long-lived provider client.

    SDK-level retries are disabled; the gateway owns the retry policy.
    """
    return AsyncOpenAI(api_key=api_key, timeout=config.timeout_seconds, max_retries=0)


class OpenAIChatProvider:
    """Chat completion provider backed by an AsyncOpenAI client.

    The client is injected and owned by the host application.
    """

    def __init__(self, client: AsyncOpenAI, timeout_seconds: float = 30.0):
        """Initialize the provider.

        Args:
            client: Configured AsyncOpenAI client
            timeout_seconds: Per-call timeout

        Raises:
            ValueError: If timeout_seconds is not positive
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.client = client
        self.timeout_seconds = timeout_seconds

    async def create_chat_completion(
        self,
        messages: Sequence[Dict[str, str]],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> ProviderCompletion:
        """Create one chat completion.

        Args:
            messages: Ordered role/content messages (required)
            model: Model identifier
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature (omitted for models that
                only accept the default)

        Returns:
            ProviderCompletion with text, finish reason and token counters

        Raises:
            ValueError: If messages is empty
            GatewayError: On any provider failure or an empty completion
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        params = {"model": model, "messages": list(messages)}
        if requires_max_completion_tokens(model):
            params["max_completion_tokens"] = max_tokens
        else:
            params["max_tokens"] = max_tokens
        if supports_custom_temperature(model):
            params["temperature"] = temperature

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(**params),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            error = classify_provider_error(e)
            logger.warning(
                "Completion call to %s failed: %s (%s)", model, type(e).__name__, error.code.value
            )
            raise error from e

        choices: List = response.choices or []
        content = choices[0].message.content if choices and choices[0].message else None
        if not content or not content.strip():
            raise GatewayError(
                ErrorCode.AI_SERVICE_ERROR,
                "No response content from AI service",
                retryable=True,
            )

        usage = response.usage
        return ProviderCompletion(
            text=content.strip(),
            model=model,
            finish_reason=choices[0].finish_reason,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            total_tokens=usage.total_tokens if usage else 0,
            request_id=response.id,
        )
