"""
Metrics Collection Module for SQL Repair Agent
In-process counters, timers and histograms for model calls, query executions and repair loops
"""
from __future__ import annotations

import json
import statistics
import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Any, Deque, Dict, Generator, List, Optional, Tuple


class Histogram:
    """Histogram for tracking value distributions"""

    DEFAULT_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]

    def __init__(self, name: str, buckets: Optional[List[float]] = None, labels: Optional[Dict[str, str]] = None):
        self.name = name
        self.labels = labels or {}
        self.buckets = sorted(buckets or self.DEFAULT_BUCKETS)
        self._counts = {b: 0 for b in self.buckets}
        self._counts[float('inf')] = 0
        self._sum = 0.0
        self._count = 0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        """Record an observation"""
        with self._lock:
            self._sum += value
            self._count += 1
            for bucket in self.buckets:
                if value <= bucket:
                    self._counts[bucket] += 1
            self._counts[float('inf')] += 1

    @property
    def count(self) -> int:
        return self._count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "labels": self.labels,
            "buckets": {str(k): v for k, v in self._counts.items()},
            "sum": self._sum,
            "count": self._count,
        }


class MetricsCollector:
    """Thread-safe metrics collector (process-wide singleton)"""

    #: Recent timer samples kept per key for min/max/mean; count and sum cover every sample
    TIMER_WINDOW = 1000

    _instance: Optional["MetricsCollector"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "MetricsCollector":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._counters: Dict[str, float] = defaultdict(float)
        self._histograms: Dict[str, Histogram] = {}
        self._timers: Dict[str, Deque[float]] = {}
        self._timer_totals: Dict[str, Tuple[int, float]] = {}
        self._data_lock = threading.Lock()
        self._enabled = True
        self._initialized = True

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def counter(self, name: str, value: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
        """Increment a counter"""
        if not self._enabled:
            return
        key = self._make_key(name, labels)
        with self._data_lock:
            self._counters[key] += value

    def histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None, buckets: Optional[List[float]] = None) -> None:
        """Record a histogram observation"""
        if not self._enabled:
            return
        key = self._make_key(name, labels)
        with self._data_lock:
            if key not in self._histograms:
                self._histograms[key] = Histogram(name, buckets, labels)
            hist = self._histograms[key]
        hist.observe(value)

    def timer(self, name: str, duration: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Record a timer value in seconds"""
        if not self._enabled:
            return
        key = self._make_key(name, labels)
        with self._data_lock:
            if key not in self._timers:
                self._timers[key] = deque(maxlen=self.TIMER_WINDOW)
            self._timers[key].append(duration)
            count, total = self._timer_totals.get(key, (0, 0.0))
            self._timer_totals[key] = (count + 1, total + duration)

    @contextmanager
    def time_operation(self, name: str, labels: Optional[Dict[str, str]] = None) -> Generator[None, None, None]:
        """Context manager for timing operations"""
        start = time.time()
        try:
            yield
        finally:
            self.timer(name, time.time() - start, labels)

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        with self._data_lock:
            return self._counters.get(self._make_key(name, labels), 0.0)

    def _make_key(self, name: str, labels: Optional[Dict[str, str]] = None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def get_metrics(self) -> Dict[str, Any]:
        """Get all collected metrics"""
        with self._data_lock:
            metrics = {
                "counters": dict(self._counters),
                "histograms": {k: v.to_dict() for k, v in self._histograms.items()},
                "timers": {},
            }
            for key, values in self._timers.items():
                if values:
                    count, total = self._timer_totals[key]
                    metrics["timers"][key] = {
                        "count": count,
                        "sum": total,
                        "min": min(values),
                        "max": max(values),
                        "mean": statistics.mean(values),
                    }
            return metrics

    def reset(self) -> None:
        """Reset all metrics"""
        with self._data_lock:
            self._counters.clear()
            self._histograms.clear()
            self._timers.clear()
            self._timer_totals.clear()

    def export_json(self) -> str:
        """Export metrics as JSON string"""
        return json.dumps(self.get_metrics(), indent=2, default=str)


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance"""
    return MetricsCollector()


def counter(name: str, value: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
    get_metrics_collector().counter(name, value, labels)


def histogram(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    get_metrics_collector().histogram(name, value, labels)


def timer(name: str, duration: float, labels: Optional[Dict[str, str]] = None) -> None:
    get_metrics_collector().timer(name, duration, labels)


class RepairMetrics:
    """Repair-loop specific metrics helper"""

    @staticmethod
    def record_llm_call(duration: float, model_id: str, input_tokens: int, output_tokens: int) -> None:
        labels = {"model_id": model_id}
        timer("llm_call_duration", duration, labels)
        counter("llm_call_total", 1.0, labels)
        counter("llm_input_tokens_total", float(input_tokens), labels)
        counter("llm_output_tokens_total", float(output_tokens), labels)

    @staticmethod
    def record_query_execution(duration: float, db_type: str, success: bool) -> None:
        labels = {"db_type": db_type, "success": str(success).lower()}
        timer("query_execution_duration", duration, labels)
        counter("query_execution_total", 1.0, labels)

    @staticmethod
    def record_attempt(db_type: str, outcome: str) -> None:
        counter("repair_attempt_total", 1.0, {"db_type": db_type, "outcome": outcome})

    @staticmethod
    def record_loop_outcome(duration: float, db_type: str, state: str, attempts: int) -> None:
        labels = {"db_type": db_type, "state": state}
        timer("repair_loop_duration", duration, labels)
        counter("repair_loop_total", 1.0, labels)
        histogram("repair_loop_attempts", float(attempts), {"db_type": db_type})

    @staticmethod
    def record_error(error_type: str, category: str, db_type: str) -> None:
        labels = {"error_type": error_type, "category": category, "db_type": db_type}
        counter("errors_total", 1.0, labels)
