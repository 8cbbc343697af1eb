"""AI Agents package."""

from pocket_ledger.agents.ai_agents import (
    EMPTY_PERIOD_REVIEW,
    GeminiAgent,
    InterpretationAgent,
    ReviewAgent,
    TranscriptionAgent,
)

__all__ = [
    "EMPTY_PERIOD_REVIEW",
    "GeminiAgent",
    "InterpretationAgent",
    "ReviewAgent",
    "TranscriptionAgent",
]
