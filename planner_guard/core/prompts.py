"""
System prompt construction from business context.
"""

from dataclasses import dataclass
from typing import Optional

SYSTEM_PROMPT_TEMPLATE = """You are an experienced business advisor helping an entrepreneur plan and grow their business.

## Context Information:
- Business Type: {business_type}
- Target Market: {target_market}
- Main Challenge: {challenge}
- Additional Context: {additional_context}

## Guidelines:
1. Tailor your advice to the business type, target market and current challenge
2. Provide practical, implementable solutions with clear next steps
3. Be realistic about costs and timelines
4. Stay on the topic of business planning"""


@dataclass(frozen=True)
class BusinessContext:
    """Session context the advisor prompt is built from."""
    business_type: str
    target_market: str
    challenge: str
    additional_context: Optional[str] = None


def format_system_prompt(context: BusinessContext) -> str:
    """Render the system prompt, substituting placeholders for blank fields."""
    return SYSTEM_PROMPT_TEMPLATE.format(
        business_type=context.business_type or "Not specified",
        target_market=context.target_market or "Not specified",
        challenge=context.challenge or "Not specified",
        additional_context=context.additional_context or "None provided",
    )
