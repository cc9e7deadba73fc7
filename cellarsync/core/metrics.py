"""Lightweight in-memory metrics (Prometheus text format)."""

from __future__ import annotations

import re
import threading
from typing import Dict, Iterable, List, Optional, Tuple


def _sanitize_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\"", "\\\"")


def _format_labels(label_names: List[str], values: Tuple[str, ...]) -> str:
    if not label_names:
        return ""
    parts = [f'{name}="{_sanitize_label_value(val)}"' for name, val in zip(label_names, values)]
    return "{" + ",".join(parts) + "}"


class Counter:
    kind = "counter"

    def __init__(self, name: str, label_names: Optional[Iterable[str]] = None):
        self.name = name
        self.label_names = list(label_names or [])
        self._values: Dict[Tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0):
        key = self._label_tuple(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + float(amount)

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        key = self._label_tuple(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def _label_tuple(self, labels: Optional[Dict[str, str]]) -> Tuple[str, ...]:
        labels = labels or {}
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def export(self) -> List[str]:
        lines = [f"# TYPE {self.name} {self.kind}"]
        with self._lock:
            for label_values, value in self._values.items():
                labels = _format_labels(self.label_names, label_values)
                lines.append(f"{self.name}{labels} {value}")
        return lines

    def reset(self):
        with self._lock:
            self._values.clear()


class Gauge(Counter):
    """Last observed value per label set, refreshed by the scraper."""

    kind = "gauge"

    def set(self, value: float, labels: Optional[Dict[str, str]] = None):
        key = self._label_tuple(labels)
        with self._lock:
            self._values[key] = float(value)


class MetricsRegistry:
    def __init__(self):
        self.metrics: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def _register(self, cls, name: str, label_names: Optional[Iterable[str]]):
        with self._lock:
            if name not in self.metrics:
                self.metrics[name] = cls(name, label_names)
            return self.metrics[name]

    def counter(self, name: str, label_names: Optional[Iterable[str]] = None) -> Counter:
        return self._register(Counter, name, label_names)

    def gauge(self, name: str, label_names: Optional[Iterable[str]] = None) -> Gauge:
        return self._register(Gauge, name, label_names)

    def export_prometheus(self) -> str:
        lines: List[str] = []
        for metric in list(self.metrics.values()):
            lines.extend(metric.export())
        return "\n".join(lines) + "\n"

    def reset(self):
        for metric in self.metrics.values():
            metric.reset()


METRICS = MetricsRegistry()

http_requests_total = METRICS.counter("http_requests_total", ["family", "method", "path", "status"])
admin_auth_failures_total = METRICS.counter("admin_auth_failures_total", ["reason"])
reconcile_runs_total = METRICS.counter("reconcile_runs_total", ["operation", "outcome"])
webhook_events_total = METRICS.counter("webhook_events_total", ["type", "outcome"])
webhook_events_backlog = METRICS.gauge("webhook_events_backlog", ["state"])
metrics_cache_lookups_total = METRICS.counter("metrics_cache_lookups_total", ["result"])


_ID_RE = re.compile(r"^([0-9a-fA-F-]{8,}|(sub|cus|acct|evt|price)_[A-Za-z0-9]+)$")

# Path prefix -> route family, first match wins
ROUTE_FAMILIES = (
    ("/api/stripe/webhook", "webhook"),
    ("/api/debug/", "admin"),
    ("/api/business/", "admin"),
    ("/api/health/", "health"),
    ("/healthz", "health"),
    ("/readyz", "health"),
    ("/metrics", "metrics"),
)


def route_family(path: str) -> str:
    for prefix, family in ROUTE_FAMILIES:
        if path.startswith(prefix):
            return family
    return "other"


def normalize_path(path: str) -> str:
    """Reduce cardinality: id-like segments and business refs become :id."""
    parts: List[str] = []
    for segment in path.split("/"):
        if not segment:
            continue
        if segment.isdigit() or _ID_RE.match(segment) or parts[-1:] == ["business"]:
            parts.append(":id")
        else:
            parts.append(segment)
    return "/" + "/".join(parts)
