# courier_dispatch/infra/metrics.py
"""
In-process counters and latency summaries, served by GET /metrics.

A summary keeps count/sum/min/max only, so a terminal running all day does
not accumulate one float per gateway call.
"""
from __future__ import annotations
import time
from collections import defaultdict
from threading import Lock
from typing import Dict
from dataclasses import dataclass
from courier_dispatch.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Summary:
    count: int = 0
    total: float = 0.0
    min: float = 0.0
    max: float = 0.0

    def observe(self, value: float) -> None:
        if self.count == 0:
            self.min = self.max = value
        else:
            self.min = min(self.min, value)
            self.max = max(self.max, value)
        self.count += 1
        self.total += value

    def get_stats(self) -> dict:
        avg = self.total / self.count if self.count else 0
        return {"count": self.count, "min": self.min, "max": self.max, "avg": avg}


class MetricsCollector:
    def __init__(self):
        self._counters: Dict[str, int] = defaultdict(int)
        self._summaries: Dict[str, Summary] = defaultdict(Summary)
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] += amount

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._summaries[key].observe(value)

    def get_metrics(self) -> dict:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "histograms": {k: v.get_stats() for k, v in self._summaries.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._summaries.clear()
        logger.info("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        """``name{k=v,...}`` with labels sorted by key."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector"""
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """Observe the wall time of a block, whether it returns or raises."""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self._started = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        observe_histogram(self.metric_name, time.perf_counter() - self._started, **self.labels)


class DispatchMetrics:
    """Named counters for the dispatch flow; label values are provider ids."""

    @staticmethod
    def auto_dispatch_triggered(provider: str) -> None:
        inc_counter("auto_dispatch_triggered_total", provider=provider)

    @staticmethod
    def quote_requested(provider: str, status: str) -> None:
        inc_counter("delivery_quotes_total", provider=provider, status=status)

    @staticmethod
    def dispatch_completed(provider: str, status: str) -> None:
        inc_counter("delivery_dispatches_total", provider=provider, status=status)

    @staticmethod
    def expired_quote_retry(provider: str) -> None:
        inc_counter("delivery_expired_quote_retries_total", provider=provider)

    @staticmethod
    def delivery_cancelled(provider: str, status: str) -> None:
        inc_counter("delivery_cancels_total", provider=provider, status=status)

    @staticmethod
    def track_gateway_call(operation: str, provider: str) -> Timer:
        return Timer("delivery_gateway_seconds", operation=operation, provider=provider)
