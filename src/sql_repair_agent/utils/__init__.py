"""
Utilities Package for SQL Repair Agent
"""
from .logging import (
    setup_logging,
    StructuredFormatter,
    ConsoleFormatter,
    get_logger,
    set_correlation_id,
    get_correlation_id,
    clear_context,
    log_context,
    log_operation,
)

from .errors import (
    ErrorSeverity,
    ErrorCategory,
    ErrorContext,
    SQLRepairError,
    ProviderUnavailableError,
    QueryExecutionError,
    ModelUnavailableError,
    RepairExhaustedError,
    ProviderDisposedError,
    ConfigurationError,
    NO_QUERY_PRODUCED,
    format_execution_feedback,
)

from .metrics import (
    MetricsCollector,
    get_metrics_collector,
    RepairMetrics,
)

__all__ = [
    # Logging
    "setup_logging",
    "StructuredFormatter",
    "ConsoleFormatter",
    "get_logger",
    "set_correlation_id",
    "get_correlation_id",
    "clear_context",
    "log_context",
    "log_operation",
    # Errors
    "ErrorSeverity",
    "ErrorCategory",
    "ErrorContext",
    "SQLRepairError",
    "ProviderUnavailableError",
    "QueryExecutionError",
    "ModelUnavailableError",
    "RepairExhaustedError",
    "ProviderDisposedError",
    "ConfigurationError",
    "NO_QUERY_PRODUCED",
    "format_execution_feedback",
    # Metrics
    "MetricsCollector",
    "get_metrics_collector",
    "RepairMetrics",
]
