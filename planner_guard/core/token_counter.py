"""
Token counting and budget enforcement.

Provider-agnostic token estimation for conversations, checked against a
hard ceiling before any external call is made.
"""

import math
from dataclasses import dataclass
from typing import Dict, Sequence

from ..config.loader import TokenConfig

Message = Dict[str, str]


@dataclass(frozen=True)
class TokenCountResult:
    """Estimated token count for a conversation."""
    count: int
    is_estimate: bool = True


class TokenBudget:
    """Estimates conversation size and enforces the conversation ceiling.

    Stateless apart from its configuration; safe to share across requests.
    """

    def __init__(self, config: TokenConfig):
        self.config = config

    @property
    def ceiling(self) -> int:
        return self.config.max_conversation_tokens

    def estimate_tokens(self, text: str) -> int:
        """Character count divided by the configured divisor, rounded up."""
        if not text:
            return 0
        return math.ceil(len(text) / self.config.chars_per_token)

    def estimate_conversation_tokens(self, messages: Sequence[Message]) -> TokenCountResult:
        """Estimate the token cost of an ordered message list.

        Each message costs its content estimate plus a fixed per-message
        overhead; the conversation adds a fixed overhead on top.

        Args:
            messages: Ordered role/content messages

        Returns:
            TokenCountResult with the estimated count
        """
        total = self.config.conversation_overhead
        for message in messages:
            total += self.estimate_tokens(message.get("content", "")) + self.config.per_message_overhead
        return TokenCountResult(count=total, is_estimate=True)

    def within_budget(self, messages: Sequence[Message], additional_tokens: int = 0) -> bool:
        """True when the conversation plus additional tokens fits the ceiling.

        A count equal to the ceiling is accepted.
        """
        count = self.estimate_conversation_tokens(messages).count
        return count + additional_tokens <= self.ceiling
