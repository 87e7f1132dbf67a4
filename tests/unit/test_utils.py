"""
Unit Tests for Logging and Metrics Utilities
"""
import json
import logging

import pytest

from sql_repair_agent.utils import (
    ConfigurationError,
    MetricsCollector,
    ProviderUnavailableError,
    QueryExecutionError,
    StructuredFormatter,
    get_correlation_id,
    get_logger,
    get_metrics_collector,
    log_context,
    log_operation,
)


class TestLogContext:
    """Tests for thread-local logging context"""

    def test_nested_context_restores_outer_values(self):
        with log_context(correlation_id="c1", request_id="r1"):
            with log_context(request_id="r2", attempt_index=1):
                assert get_correlation_id() == "c1"
            assert get_correlation_id() == "c1"
        assert get_correlation_id() is None

    def test_structured_formatter_includes_context(self):
        record = logging.LogRecord("sql_repair_agent", logging.INFO, __file__, 1, "Executing candidate query", None, None)
        record.extra_fields = {"dialect": "SQLite"}

        with log_context(request_id="r1", attempt_index=2):
            entry = json.loads(StructuredFormatter().format(record))

        assert entry["message"] == "Executing candidate query"
        assert entry["request_id"] == "r1"
        assert entry["attempt_index"] == 2
        assert entry["dialect"] == "SQLite"

    def test_log_operation_reraises(self):
        logger = get_logger("tests")
        with pytest.raises(ValueError):
            with log_operation(logger, "failing_step") as ctx:
                raise ValueError("boom")
        assert ctx["status"] == "error"
        assert ctx["error_type"] == "ValueError"


class TestErrors:
    """Tests for the exception taxonomy"""

    def test_query_execution_error_is_recoverable(self):
        error = QueryExecutionError("no such column: totals", sql="SELECT totals FROM t")
        assert error.recoverable
        assert error.context.sql_query == "SELECT totals FROM t"
        assert error.driver_message == "no such column: totals"

    def test_provider_unavailable_to_dict(self):
        error = ProviderUnavailableError("refused", provider_name="PostgreSQL", original_error=OSError("refused"))
        data = error.to_dict()
        assert data["category"] == "database"
        assert data["context"]["provider_name"] == "PostgreSQL"
        assert data["original_error"] == "refused"

    def test_configuration_error_suggests_key(self):
        error = ConfigurationError("bad value", config_key="agent.max_retries")
        assert "Check configuration for key: agent.max_retries" in error.suggestions
        assert str(error) == "[configuration] bad value"


class TestMetricsCollector:
    """Tests for the metrics collector"""

    def test_counters_with_labels(self):
        collector = get_metrics_collector()
        collector.counter("repair_attempt_total", labels={"outcome": "failed"})
        collector.counter("repair_attempt_total", labels={"outcome": "failed"})
        collector.counter("repair_attempt_total", labels={"outcome": "succeeded"})

        assert collector.get_counter("repair_attempt_total", {"outcome": "failed"}) == 2
        assert collector.get_counter("repair_attempt_total", {"outcome": "succeeded"}) == 1

    def test_disabled_collector_records_nothing(self):
        collector = get_metrics_collector()
        collector.disable()
        collector.counter("ignored")
        collector.enable()
        assert collector.get_counter("ignored") == 0

    def test_timers_and_export(self):
        collector = get_metrics_collector()
        with collector.time_operation("schema_build"):
            pass
        collector.histogram("repair_loop_attempts", 2.0)

        exported = json.loads(collector.export_json())
        assert exported["timers"]["schema_build"]["count"] == 1
        assert exported["histograms"]["repair_loop_attempts"]["count"] == 1

    def test_timer_samples_are_bounded(self, monkeypatch):
        collector = get_metrics_collector()
        monkeypatch.setattr(MetricsCollector, "TIMER_WINDOW", 3)
        for duration in (1.0, 2.0, 3.0, 4.0, 5.0):
            collector.timer("query_execution_duration", duration)

        stats = collector.get_metrics()["timers"]["query_execution_duration"]

        assert stats["count"] == 5
        assert stats["sum"] == 15.0
        assert stats["min"] == 3.0
        assert stats["max"] == 5.0

    def test_singleton(self):
        assert get_metrics_collector() is get_metrics_collector()
