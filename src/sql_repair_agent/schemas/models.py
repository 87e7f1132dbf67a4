"""
Schema Definitions for SQL Repair Agent
Defines the conversation, attempt trail, request/result models and loop state
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Tuple
import uuid

if TYPE_CHECKING:
    from ..providers.base import RowSet


class Role(str, Enum):
    """Speaker of a conversation turn"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ConversationTurn:
    """One message of the repair conversation"""
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class Conversation:
    """
    Immutable, append-only sequence of turns

    ``append`` returns a new Conversation; earlier snapshots stay valid and
    compare equal to themselves, which keeps the state of every attempt
    inspectable after the loop ends.
    """
    turns: Tuple[ConversationTurn, ...] = ()

    def append(self, role: Role, content: str) -> "Conversation":
        return Conversation(self.turns + (ConversationTurn(Role(role), content),))

    @property
    def system_prompt(self) -> Optional[str]:
        """Content of the system turns, joined, or None"""
        parts = [turn.content for turn in self.turns if turn.role is Role.SYSTEM]
        return "\n\n".join(parts) if parts else None

    @property
    def messages(self) -> List[ConversationTurn]:
        """User and assistant turns, in order"""
        return [turn for turn in self.turns if turn.role is not Role.SYSTEM]

    @property
    def last_turn(self) -> Optional[ConversationTurn]:
        return self.turns[-1] if self.turns else None

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(self.turns)

    def __len__(self) -> int:
        return len(self.turns)

    def to_list(self) -> List[Dict[str, str]]:
        return [turn.to_dict() for turn in self.turns]


class AttemptOutcome(str, Enum):
    """Outcome of one candidate query"""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class QueryAttempt:
    """One pass through the repair loop"""
    attempt_index: int
    sql: Optional[str] = None
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    error_message: Optional[str] = None
    completion: Optional[str] = None
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def succeed(self) -> None:
        self.outcome = AttemptOutcome.SUCCEEDED
        self.error_message = None

    def fail(self, error_message: str) -> None:
        self.outcome = AttemptOutcome.FAILED
        self.error_message = error_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_index": self.attempt_index,
            "sql": self.sql,
            "outcome": self.outcome.value,
            "error_message": self.error_message,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }


class LoopState(str, Enum):
    """States of the repair loop"""
    DRAFTING = "drafting"
    EXECUTING = "executing"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (LoopState.SUCCEEDED, LoopState.EXHAUSTED, LoopState.CANCELLED, LoopState.FAILED)


@dataclass
class RepairRequest:
    """A natural-language question to answer with SQL"""
    question: str
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    correlation_id: Optional[str] = None

    # Per-request overrides of the agent configuration
    max_retries: Optional[int] = None
    domain_hints: Optional[List[str]] = None

    created_at: datetime = field(default_factory=datetime.utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "correlation_id": self.correlation_id,
            "question": self.question,
            "max_retries": self.max_retries,
            "domain_hints": self.domain_hints,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }


@dataclass
class RepairResult:
    """Final outcome of one repair loop"""
    request_id: str
    question: str
    state: LoopState

    rowset: Optional["RowSet"] = None
    final_sql: Optional[str] = None
    attempts: List[QueryAttempt] = field(default_factory=list)
    conversation: Conversation = field(default_factory=Conversation)
    token_usage: Dict[str, int] = field(default_factory=lambda: {"input": 0, "output": 0})

    # Timing
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_duration_ms: float = 0.0

    # Error information
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    error: Optional[Exception] = field(default=None, repr=False, compare=False)

    @property
    def is_successful(self) -> bool:
        return self.state is LoopState.SUCCEEDED and self.rowset is not None

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "question": self.question,
            "state": self.state.value,
            "final_sql": self.final_sql,
            "rowset": self.rowset.to_dict() if self.rowset is not None else None,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
            "token_usage": dict(self.token_usage),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_ms": self.total_duration_ms,
            "error_message": self.error_message,
            "error_details": self.error_details,
        }


@dataclass
class RepairState:
    """Live tracking record of one repair loop"""
    request_id: str
    question: str = ""
    max_retries: int = 0
    state: LoopState = LoopState.DRAFTING
    attempt_index: int = 0
    history: List[Tuple[LoopState, datetime]] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    last_updated: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.history.append((self.state, self.started_at))
        self.last_updated = self.started_at

    def transition(self, state: LoopState) -> None:
        """Move to a new loop state and record it"""
        now = datetime.utcnow()
        self.state = state
        self.history.append((state, now))
        self.last_updated = now

    def get_elapsed_time_ms(self) -> float:
        end_time = self.last_updated or datetime.utcnow()
        return (end_time - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "question": self.question,
            "state": self.state.value,
            "attempt_index": self.attempt_index,
            "max_retries": self.max_retries,
            "history": [state.value for state, _ in self.history],
            "elapsed_ms": self.get_elapsed_time_ms(),
        }
