"""AI Agents package."""

from expense_ledger.agents.interface import (
    ClassifierError,
    MovementClassifier,
    RepaymentMatcher,
)
from expense_ledger.agents.ai_agents import (
    GeminiMovementAgent,
    extract_json_object,
    extract_movement_id,
)

__all__ = [
    "ClassifierError",
    "GeminiMovementAgent",
    "MovementClassifier",
    "RepaymentMatcher",
    "extract_json_object",
    "extract_movement_id",
]
