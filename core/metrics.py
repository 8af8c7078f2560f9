# core/metrics.py — in-process metrics and structured audit logging

import logging
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

DEFAULT_BUCKETS = [0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0]


@dataclass
class MetricCounter:
    """A counter metric that can only increase."""
    name: str
    value: int = 0
    labels: Dict[str, str] = field(default_factory=dict)
    last_updated: float = field(default_factory=time.time)


@dataclass
class MetricHistogram:
    """A histogram metric for tracking distributions."""
    name: str
    buckets: List[float] = field(default_factory=lambda: list(DEFAULT_BUCKETS))
    counts: List[int] = field(default_factory=lambda: [0] * len(DEFAULT_BUCKETS))
    sum: float = 0.0
    count: int = 0
    labels: Dict[str, str] = field(default_factory=dict)
    last_updated: float = field(default_factory=time.time)


class MetricsCollector:
    """Thread-safe metrics collector."""

    def __init__(self):
        self._lock = threading.RLock()
        self._counters: Dict[str, MetricCounter] = {}
        self._histograms: Dict[str, MetricHistogram] = {}
        self._start_time = time.time()

    def _get_metric_key(self, name: str, labels: Dict[str, str] = None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def increment_counter(self, name: str, value: int = 1, labels: Dict[str, str] = None):
        with self._lock:
            key = self._get_metric_key(name, labels)
            if key not in self._counters:
                self._counters[key] = MetricCounter(name=name, labels=labels or {})
            self._counters[key].value += value
            self._counters[key].last_updated = time.time()

    def observe_histogram(self, name: str, value: float, labels: Dict[str, str] = None):
        with self._lock:
            key = self._get_metric_key(name, labels)
            if key not in self._histograms:
                self._histograms[key] = MetricHistogram(name=name, labels=labels or {})

            histogram = self._histograms[key]
            histogram.sum += value
            histogram.count += 1
            histogram.last_updated = time.time()

            for i, bucket in enumerate(histogram.buckets):
                if value <= bucket:
                    histogram.counts[i] += 1
                    break
            else:
                histogram.counts[-1] += 1

    def get_counter(self, name: str, labels: Dict[str, str] = None) -> int:
        with self._lock:
            counter = self._counters.get(self._get_metric_key(name, labels))
            return counter.value if counter else 0

    def get_histogram_stats(self, name: str, labels: Dict[str, str] = None) -> Dict[str, Any]:
        with self._lock:
            histogram = self._histograms.get(self._get_metric_key(name, labels))
            if histogram is None or histogram.count == 0:
                return {"count": 0, "sum": 0.0, "avg": 0.0}
            return {
                "count": histogram.count,
                "sum": histogram.sum,
                "avg": histogram.sum / histogram.count,
                "buckets": dict(zip(histogram.buckets, histogram.counts)),
            }

    def get_all_metrics(self) -> Dict[str, Any]:
        with self._lock:
            counters: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
            for counter in self._counters.values():
                counters[counter.name].append({"value": counter.value, "labels": counter.labels})

            histograms: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
            for histogram in self._histograms.values():
                histograms[histogram.name].append({
                    "stats": self.get_histogram_stats(histogram.name, histogram.labels),
                    "labels": histogram.labels,
                })

            return {
                "counters": dict(counters),
                "histograms": dict(histograms),
                "uptime_seconds": time.time() - self._start_time,
                "timestamp": time.time(),
            }

    def reset_metrics(self):
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
            self._start_time = time.time()


# Global metrics collector instance
_metrics = MetricsCollector()

rbac_audit_logger = logging.getLogger("rbac.audit")
events_audit_logger = logging.getLogger("events.audit")


def increment_counter(name: str, value: int = 1, labels: Dict[str, str] = None):
    """Increment a counter metric."""
    _metrics.increment_counter(name, value, labels)


def observe_histogram(name: str, value: float, labels: Dict[str, str] = None):
    """Observe a value in a histogram metric."""
    _metrics.observe_histogram(name, value, labels)


def get_counter(name: str, labels: Dict[str, str] = None) -> int:
    return _metrics.get_counter(name, labels)


def get_histogram_stats(name: str, labels: Dict[str, str] = None) -> Dict[str, Any]:
    return _metrics.get_histogram_stats(name, labels)


def get_all_metrics() -> Dict[str, Any]:
    return _metrics.get_all_metrics()


def reset_metrics():
    """Reset all metrics (useful for testing)."""
    _metrics.reset_metrics()


@contextmanager
def time_operation(operation_name: str, labels: Dict[str, str] = None):
    """Context manager to time an operation and record it as a histogram."""
    start_time = time.time()
    try:
        yield
    finally:
        duration_ms = (time.time() - start_time) * 1000
        observe_histogram(f"{operation_name}_latency_ms", duration_ms, labels)


# ============================================================================
# RBAC Metrics and Auditing
# ============================================================================

def record_rbac_check(allowed: bool, action: str, roles: List[str], resource_type: str = ""):
    """
    Record a policy evaluation outcome.

    Args:
        allowed: Whether the action was granted
        action: Action being checked
        roles: Caller's roles
        resource_type: Resource the action targets
    """
    if allowed:
        increment_counter("rbac.allowed")
        increment_counter("rbac.allowed.by_action", labels={"action": action})
    else:
        increment_counter("rbac.denied")
        increment_counter("rbac.denied.by_action", labels={"action": action})
        if resource_type:
            increment_counter("rbac.denied.by_resource", labels={"resource": resource_type})


def audit_rbac_denial(
    action: str,
    user_id: Optional[str],
    roles: List[str],
    resource_type: str,
    reason: str,
    metadata: Optional[Dict[str, Any]] = None,
):
    """
    Emit audit log entry for a policy denial.

    Creates structured log entry for security monitoring.
    """
    audit_entry = {
        "event": "rbac_denial",
        "action": action,
        "user_id": user_id or "anonymous",
        "roles": list(roles),
        "resource_type": resource_type,
        "reason": reason,
        "timestamp": time.time(),
    }
    if metadata:
        audit_entry["metadata"] = metadata

    rbac_audit_logger.warning(
        f"RBAC_DENIAL action={action} user={user_id or 'anonymous'} "
        f"roles={','.join(roles)} resource={resource_type} reason={reason}",
        extra={"audit": audit_entry},
    )
    increment_counter("rbac.audit.denials")
    increment_counter("rbac.audit.denials.by_action", labels={"action": action})


# ============================================================================
# Event Lifecycle Metrics
# ============================================================================

class LifecycleMetrics:
    """Metrics and audit entries for event state changes."""

    @staticmethod
    def record_activation(outcome: str, forced: bool = False):
        """outcome is one of: activated, conflict, invalid, retry_exhausted."""
        increment_counter("events.activations", labels={"outcome": outcome, "forced": str(forced).lower()})

    @staticmethod
    def record_transition(action: str, event_id: int, from_state: str, to_state: str,
                          actor: Optional[str] = None):
        increment_counter("events.transitions", labels={"action": action})
        events_audit_logger.info(
            f"{action} event={event_id} {from_state}->{to_state} actor={actor or 'system'}",
            extra={"audit": {
                "event": action,
                "event_id": event_id,
                "from_state": from_state,
                "to_state": to_state,
                "actor": actor,
                "timestamp": time.time(),
            }},
        )

    @staticmethod
    def record_retry(event_id: int):
        increment_counter("events.activation_retries")


# ============================================================================
# Scoping and Playback Metrics
# ============================================================================

class ScopingMetrics:
    """Metrics for the scoped query interceptor."""

    @staticmethod
    def record_empty_read(resource_type: str):
        increment_counter("scoping.empty_reads", labels={"resource": resource_type})

    @staticmethod
    def record_redaction(resource_type: str, rows: int, fields_removed: int):
        increment_counter("scoping.rows_returned", value=rows, labels={"resource": resource_type})
        if fields_removed:
            increment_counter("scoping.fields_redacted", value=fields_removed,
                              labels={"resource": resource_type})

    @staticmethod
    def record_scope_override(field_name: str):
        increment_counter("scoping.overrides", labels={"field": field_name})


class PlaybackMetrics:
    """Metrics for playback source resolution."""

    @staticmethod
    def record_resolution(source: str, intent: str):
        increment_counter("playback.resolutions", labels={"source": source, "intent": intent})

    @staticmethod
    def record_audit_failure(error_type: str):
        increment_counter("playback.audit_failures", labels={"error_type": error_type})


__all__ = [
    "MetricsCollector",
    "increment_counter", "observe_histogram", "get_counter", "get_histogram_stats",
    "get_all_metrics", "reset_metrics", "time_operation",
    "record_rbac_check", "audit_rbac_denial",
    "LifecycleMetrics", "ScopingMetrics", "PlaybackMetrics",
]
