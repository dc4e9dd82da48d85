"""
SDK for the planner guard.

Provider adapters used by the completion gateway.
"""

from .openai_client import OpenAIChatProvider, classify_provider_error, create_openai_client

__all__ = ["OpenAIChatProvider", "classify_provider_error", "create_openai_client"]
