"""In-process metrics registry: counters, gauges, latency stats and a bounded event log."""
from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional, Tuple

MetricKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def _labels_tuple(labels: Optional[Dict[str, Any]]) -> Tuple[Tuple[str, str], ...]:
    if not labels:
        return ()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


@dataclass
class Histogram:
    count: int = 0
    total: float = 0.0
    min_value: float = field(default=float("inf"))
    max_value: float = field(default=float("-inf"))

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min_value = min(self.min_value, value)
        self.max_value = max(self.max_value, value)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "avg": self.total / self.count if self.count else 0.0,
            "min": None if self.count == 0 else self.min_value,
            "max": None if self.count == 0 else self.max_value,
        }


class MetricsRegistry:
    """Thread-safe store shared by request hooks, services and the poller thread."""

    def __init__(self, max_events: int = 100) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[MetricKey, float] = defaultdict(float)
        self._gauges: Dict[MetricKey, float] = {}
        self._histograms: Dict[MetricKey, Histogram] = {}
        self._events: Deque[Dict[str, Any]] = deque(maxlen=max_events)

    def increment(self, name: str, amount: float = 1.0, labels: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            self._counters[(name, _labels_tuple(labels))] += amount

    def gauge(self, name: str, value: float, labels: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            self._gauges[(name, _labels_tuple(labels))] = value

    def observe(self, name: str, value: float, labels: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            self._histograms.setdefault((name, _labels_tuple(labels)), Histogram()).observe(value)

    def event(self, name: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._events.append({"name": name, "timestamp": time.time(), "payload": payload})

    def counter_value(self, name: str, labels: Optional[Dict[str, Any]] = None) -> float:
        """Sum of a counter; with labels, only the series matching all of them."""
        wanted = set(_labels_tuple(labels))
        with self._lock:
            return sum(
                value
                for (metric, series), value in self._counters.items()
                if metric == name and wanted.issubset(series)
            )

    def snapshot(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"counters": {}, "gauges": {}, "histograms": {}}
        with self._lock:
            for (name, labels), value in self._counters.items():
                result["counters"].setdefault(name, []).append({"labels": dict(labels), "value": value})
            for (name, labels), value in self._gauges.items():
                result["gauges"].setdefault(name, []).append({"labels": dict(labels), "value": value})
            for (name, labels), histogram in self._histograms.items():
                result["histograms"].setdefault(name, []).append(
                    {"labels": dict(labels), "stats": histogram.snapshot()}
                )
            result["events"] = list(self._events)
        return result

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._events.clear()


_registry = MetricsRegistry()


def increment_counter(name: str, amount: float = 1.0, labels: Optional[Dict[str, Any]] = None) -> None:
    _registry.increment(name, amount, labels)


def set_gauge(name: str, value: float, labels: Optional[Dict[str, Any]] = None) -> None:
    _registry.gauge(name, value, labels)


def observe_latency(name: str, value: float, labels: Optional[Dict[str, Any]] = None) -> None:
    _registry.observe(name, value, labels)


def record_event(name: str, payload: Dict[str, Any]) -> None:
    _registry.event(name, payload)


def get_counter_value(name: str, labels: Optional[Dict[str, Any]] = None) -> float:
    return _registry.counter_value(name, labels)


def get_metrics_snapshot() -> Dict[str, Any]:
    return _registry.snapshot()


def reset_metrics() -> None:
    """Testing helper."""
    _registry.reset()
