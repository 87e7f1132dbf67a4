"""
Error Handling Module for SQL Repair Agent
Defines the exception taxonomy shared by providers, the model client and the repair loop
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from ..schemas import QueryAttempt


class ErrorSeverity(str, Enum):
    """Error severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error categories for classification"""
    DATABASE = "database"
    QUERY = "query"
    LLM = "llm"
    REPAIR = "repair"
    LIFECYCLE = "lifecycle"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Additional context for errors"""
    correlation_id: Optional[str] = None
    request_id: Optional[str] = None
    provider_name: Optional[str] = None
    sql_query: Optional[str] = None
    question: Optional[str] = None
    attempt_index: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "request_id": self.request_id,
            "provider_name": self.provider_name,
            "sql_query": self.sql_query,
            "question": self.question,
            "attempt_index": self.attempt_index,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class SQLRepairError(Exception):
    """Base exception for SQL Repair Agent"""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        recoverable: bool = False,
        suggestions: Optional[List[str]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.recoverable = recoverable
        self.suggestions = suggestions or []
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "suggestions": self.suggestions,
            "context": self.context.to_dict(),
            "original_error": str(self.original_error) if self.original_error else None,
        }

    def __str__(self) -> str:
        return f"[{self.category.value}] {self.message}"


class ProviderUnavailableError(SQLRepairError):
    """The database could not be reached for introspection or execution"""

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_error: Optional[Exception] = None
    ):
        context = context or ErrorContext()
        context.provider_name = context.provider_name or provider_name
        super().__init__(
            message=message,
            category=ErrorCategory.DATABASE,
            severity=ErrorSeverity.HIGH,
            context=context,
            recoverable=False,
            suggestions=[
                "Check the connection string or host/port configuration",
                "Verify database credentials",
                "Ensure the database server is running and reachable",
            ],
            original_error=original_error
        )
        self.provider_name = provider_name


class QueryExecutionError(SQLRepairError):
    """The database rejected a candidate query"""

    def __init__(
        self,
        driver_message: str,
        sql: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_error: Optional[Exception] = None
    ):
        context = context or ErrorContext()
        if sql:
            context.sql_query = sql
        super().__init__(
            message=driver_message,
            category=ErrorCategory.QUERY,
            severity=ErrorSeverity.MEDIUM,
            context=context,
            recoverable=True,
            original_error=original_error
        )
        self.driver_message = driver_message
        self.sql = sql


class ModelUnavailableError(SQLRepairError):
    """The language model did not produce a completion"""

    def __init__(
        self,
        message: str,
        model_id: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.LLM,
            severity=ErrorSeverity.HIGH,
            context=context,
            recoverable=False,
            suggestions=[
                "Check AWS credentials and permissions",
                "Verify Bedrock model availability in the configured region",
                "Check for rate limiting",
            ],
            original_error=original_error
        )
        self.model_id = model_id


class RepairExhaustedError(SQLRepairError):
    """Every attempt of the repair loop failed"""

    def __init__(
        self,
        message: str,
        attempts: List["QueryAttempt"],
        max_retries: int,
        context: Optional[ErrorContext] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.REPAIR,
            severity=ErrorSeverity.HIGH,
            context=context,
            recoverable=False,
            suggestions=[
                f"No query succeeded within {max_retries + 1} attempt(s)",
                "Rephrase the question or add domain hints",
                "Consider increasing max_retries",
            ],
        )
        self.attempts = list(attempts)
        self.max_retries = max_retries

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["attempts"] = [attempt.to_dict() for attempt in self.attempts]
        return data


class ProviderDisposedError(SQLRepairError):
    """An operation was invoked on a closed provider"""

    def __init__(self, provider_name: str):
        super().__init__(
            message=f"{provider_name} provider has been closed",
            category=ErrorCategory.LIFECYCLE,
            severity=ErrorSeverity.CRITICAL,
            recoverable=False,
        )
        self.provider_name = provider_name


class ConfigurationError(SQLRepairError):
    """Configuration errors"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_error: Optional[Exception] = None
    ):
        suggestions = ["Review configuration settings"]
        if config_key:
            suggestions.append(f"Check configuration for key: {config_key}")

        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            context=context,
            recoverable=False,
            suggestions=suggestions,
            original_error=original_error
        )
        self.config_key = config_key


NO_QUERY_PRODUCED = "no query produced"


def format_execution_feedback(sql: Optional[str], error_message: str) -> str:
    """Format a failed attempt as the next user turn of the repair conversation"""
    if not sql:
        return (
            f"Your previous answer could not be used: {error_message}.\n"
            "Reply with a single SQL query in a ```sql code block."
        )

    lines = [
        "The query",
        "```sql",
        sql,
        "```",
        "failed with the following database error:",
        error_message,
        "",
        "Fix the query and reply with the corrected SQL in a ```sql code block.",
    ]
    return "\n".join(lines)
