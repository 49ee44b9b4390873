"""AI Agents package."""

from walletwise.agents.ai_agents import (
    AdvisoryResponse,
    AffordabilityAdvisor,
    GeminiTextGenerator,
    TextGenerator,
)

__all__ = [
    "AdvisoryResponse",
    "AffordabilityAdvisor",
    "GeminiTextGenerator",
    "TextGenerator",
]
