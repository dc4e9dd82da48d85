"""
Unit tests for SDK layer.

Tests the OpenAI provider adapter and provider error classification.
"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import httpx
import openai
import pytest

from planner_guard.config.loader import AIConfig
from planner_guard.core.errors import ErrorCode, GatewayError
from planner_guard.sdk.openai_client import (
    OpenAIChatProvider,
    classify_provider_error,
    create_openai_client,
    requires_max_completion_tokens,
    supports_custom_temperature,
)

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
MESSAGES = [{"role": "user", "content": "Help me plan"}]


def _response(status_code: int) -> httpx.Response:
    return httpx.Response(status_code, request=REQUEST)


def _completion(content="  Here is your plan  ", usage=(10, 5, 15)):
    response = Mock()
    response.id = "chatcmpl-123"
    response.choices = [Mock(message=Mock(content=content), finish_reason="stop")]
    if usage is None:
        response.usage = None
    else:
        response.usage = Mock(prompt_tokens=usage[0], completion_tokens=usage[1], total_tokens=usage[2])
    return response


class TestClassifyProviderError:
    """Test the provider error translation boundary."""

    def test_quota_exhausted(self):
        exc = openai.RateLimitError(
            "quota", response=_response(429), body={"code": "insufficient_quota"}
        )

        error = classify_provider_error(exc)

        assert error.code == ErrorCode.AI_QUOTA_EXCEEDED
        assert error.retryable is False
        assert error.status_code == 429

    def test_rate_limited(self):
        exc = openai.RateLimitError("slow down", response=_response(429), body=None)

        error = classify_provider_error(exc)

        assert error.code == ErrorCode.AI_QUOTA_EXCEEDED
        assert error.retryable is True

    def test_timeout(self):
        error = classify_provider_error(openai.APITimeoutError(request=REQUEST))

        assert error.code == ErrorCode.AI_TIMEOUT
        assert error.retryable is True

    def test_asyncio_timeout(self):
        error = classify_provider_error(asyncio.TimeoutError())
        assert error.code == ErrorCode.AI_TIMEOUT

    def test_connection_error(self):
        error = classify_provider_error(openai.APIConnectionError(request=REQUEST))

        assert error.code == ErrorCode.NETWORK_ERROR
        assert error.retryable is True

    def test_bad_request(self):
        exc = openai.BadRequestError("bad", response=_response(400), body=None)

        error = classify_provider_error(exc)

        assert error.code == ErrorCode.INVALID_INPUT
        assert error.retryable is False

    def test_unprocessable(self):
        exc = openai.UnprocessableEntityError("bad", response=_response(422), body=None)
        assert classify_provider_error(exc).code == ErrorCode.INVALID_INPUT

    def test_authentication(self):
        exc = openai.AuthenticationError("no key", response=_response(401), body=None)

        error = classify_provider_error(exc)

        assert error.code == ErrorCode.AI_SERVICE_ERROR
        assert error.retryable is False
        assert error.status_code == 401

    def test_server_error(self):
        exc = openai.InternalServerError("boom", response=_response(500), body=None)

        error = classify_provider_error(exc)

        assert error.code == ErrorCode.AI_SERVICE_ERROR
        assert error.retryable is True
        assert error.status_code == 500

    def test_unexpected_exception(self):
        error = classify_provider_error(RuntimeError("surprise"))

        assert error.code == ErrorCode.AI_SERVICE_ERROR
        assert error.retryable is True
        assert "surprise" not in error.message

    def test_gateway_error_passes_through(self):
        original = GatewayError(ErrorCode.AI_TIMEOUT, "t")
        assert classify_provider_error(original) is original


class TestModelQuirks:
    """Test model-specific request parameters."""

    def test_max_completion_tokens_models(self):
        assert requires_max_completion_tokens("o1-mini") is True
        assert requires_max_completion_tokens("gpt-4o-2024-08-06") is True
        assert requires_max_completion_tokens("some-model-2025-01") is True
        assert requires_max_completion_tokens("gpt-4-turbo-preview") is False

    def test_default_temperature_models(self):
        assert supports_custom_temperature("o1-preview") is False
        assert supports_custom_temperature("gpt-3.5-turbo") is True


class TestOpenAIChatProvider:
    """Test the async provider adapter."""

    def setup_method(self):
        self.client = Mock()
        self.client.chat.completions.create = AsyncMock(return_value=_completion())
        self.provider = OpenAIChatProvider(self.client, timeout_seconds=5)

    def test_init_rejects_bad_timeout(self):
        with pytest.raises(ValueError, match="timeout_seconds must be > 0"):
            OpenAIChatProvider(self.client, timeout_seconds=0)

    def test_success(self):
        result = asyncio.run(
            self.provider.create_chat_completion(MESSAGES, "gpt-4-turbo-preview", 2000, 0.7)
        )

        assert result.text == "Here is your plan"
        assert result.model == "gpt-4-turbo-preview"
        assert result.finish_reason == "stop"
        assert result.total_tokens == 15
        assert result.request_id == "chatcmpl-123"
        self.client.chat.completions.create.assert_awaited_once_with(
            model="gpt-4-turbo-preview",
            messages=MESSAGES,
            max_tokens=2000,
            temperature=0.7,
        )

    def test_newer_model_parameters(self):
        asyncio.run(self.provider.create_chat_completion(MESSAGES, "o1-mini", 100, 0.7))

        kwargs = self.client.chat.completions.create.call_args.kwargs
        assert kwargs["max_completion_tokens"] == 100
        assert "max_tokens" not in kwargs
        assert "temperature" not in kwargs

    def test_missing_usage(self):
        self.client.chat.completions.create.return_value = _completion(usage=None)

        result = asyncio.run(self.provider.create_chat_completion(MESSAGES, "gpt-4", 100, 0.7))

        assert result.total_tokens == 0

    def test_empty_completion_is_error(self):
        self.client.chat.completions.create.return_value = _completion(content="   ")

        with pytest.raises(GatewayError) as exc_info:
            asyncio.run(self.provider.create_chat_completion(MESSAGES, "gpt-4", 100, 0.7))

        assert exc_info.value.code == ErrorCode.AI_SERVICE_ERROR
        assert exc_info.value.retryable is True

    def test_provider_error_is_classified(self):
        cause = openai.APIConnectionError(request=REQUEST)
        self.client.chat.completions.create.side_effect = cause

        with pytest.raises(GatewayError) as exc_info:
            asyncio.run(self.provider.create_chat_completion(MESSAGES, "gpt-4", 100, 0.7))

        assert exc_info.value.code == ErrorCode.NETWORK_ERROR
        assert exc_info.value.__cause__ is cause

    def test_timeout(self):
        async def slow(**kwargs):
            await asyncio.sleep(1)

        self.client.chat.completions.create = slow
        provider = OpenAIChatProvider(self.client, timeout_seconds=0.01)

        with pytest.raises(GatewayError) as exc_info:
            asyncio.run(provider.create_chat_completion(MESSAGES, "gpt-4", 100, 0.7))

        assert exc_info.value.code == ErrorCode.AI_TIMEOUT

    def test_empty_messages(self):
        with pytest.raises(ValueError, match="messages is required"):
            asyncio.run(self.provider.create_chat_completion([], "gpt-4", 100, 0.7))


class TestCreateOpenAIClient:
    """Test client construction."""

    @patch('planner_guard.sdk.openai_client.AsyncOpenAI')
    def test_sdk_retries_disabled(self, mock_client_class):
        create_openai_client(AIConfig(timeout_seconds=12.0), api_key="sk-test")

        mock_client_class.assert_called_once_with(api_key="sk-test", timeout=12.0, max_retries=0)
