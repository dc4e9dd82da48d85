"""
Unit tests for token counting and budget enforcement.
"""

from planner_guard.config.loader import TokenConfig
from planner_guard.core.token_counter import TokenBudget


class TestEstimateTokens:
    """Test character-based token estimation."""

    def setup_method(self):
        self.budget = TokenBudget(TokenConfig())

    def test_empty(self):
        assert self.budget.estimate_tokens("") == 0

    def test_rounds_up(self):
        assert self.budget.estimate_tokens("abcd") == 1
        assert self.budget.estimate_tokens("abcde") == 2
        assert self.budget.estimate_tokens("a" * 400) == 100

    def test_custom_divisor(self):
        budget = TokenBudget(TokenConfig(chars_per_token=3))
        assert budget.estimate_tokens("abcdefg") == 3


class TestConversationTokens:
    """Test conversation overheads."""

    def setup_method(self):
        self.budget = TokenBudget(TokenConfig())

    def test_empty_conversation_is_overhead_only(self):
        result = self.budget.estimate_conversation_tokens([])
        assert result.count == 10
        assert result.is_estimate is True

    def test_per_message_overhead(self):
        messages = [
            {"role": "system", "content": "abcd"},
            {"role": "user", "content": "abcdefgh"},
        ]
        # 10 + (1 + 4) + (2 + 4)
        assert self.budget.estimate_conversation_tokens(messages).count == 21


class TestWithinBudget:
    """Test the ceiling boundary."""

    MESSAGES = [{"role": "user", "content": "abcd"}]  # 15 tokens

    def test_equal_to_ceiling_is_accepted(self):
        budget = TokenBudget(TokenConfig(max_conversation_tokens=15))
        assert budget.within_budget(self.MESSAGES) is True

    def test_one_over_ceiling_is_rejected(self):
        budget = TokenBudget(TokenConfig(max_conversation_tokens=14))
        assert budget.within_budget(self.MESSAGES) is False

    def test_additional_tokens_count(self):
        budget = TokenBudget(TokenConfig(max_conversation_tokens=15))
        assert budget.within_budget(self.MESSAGES, additional_tokens=1) is False
