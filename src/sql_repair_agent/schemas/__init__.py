"""
Schemas Package for SQL Repair Agent
"""
from .models import (
    Role,
    ConversationTurn,
    Conversation,
    AttemptOutcome,
    QueryAttempt,
    LoopState,
    RepairRequest,
    RepairResult,
    RepairState,
)

__all__ = [
    "Role",
    "ConversationTurn",
    "Conversation",
    "AttemptOutcome",
    "QueryAttempt",
    "LoopState",
    "RepairRequest",
    "RepairResult",
    "RepairState",
]
