"""In-process metrics for the replication controller.

Nothing here talks to a Prometheus client library. The controller records
into a :class:`MetricsRegistry` and whoever serves ``/metrics`` renders it
with :meth:`MetricsRegistry.export_prometheus`. There is no module-level
registry; one :class:`ReplicationMetrics` is built at startup and handed
to the reconciler.

A series is one metric plus one label set. ``metric.labels(backend="ceph")``
returns a :class:`Series` bound to that set; only label names declared on
the metric are accepted.

Example:
    >>> metrics = ReplicationMetrics()
    >>> metrics.record_reconcile("ceph", "create", "success", 0.42)
    >>> metrics.reconcile_total.labels(backend="ceph", operation="create", result="success").value
    1.0
    >>> print(metrics.registry.export_prometheus())
"""

from __future__ import annotations

import threading
from typing import Any

from unirepl.resilience.circuit_breaker import CircuitState

LabelKey = tuple[tuple[str, str], ...]

# reconcile and backend calls run from milliseconds up to the 300s deadline
DEFAULT_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, float("inf"))


class Metric:
    """Named family of series sharing a label schema."""

    metric_type = "untyped"

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        self.name = name
        self.description = description
        self.label_names = tuple(labels or ())
        self._series: dict[LabelKey, Any] = {}
        self._lock = threading.Lock()

    def _key(self, given: dict[str, Any]) -> LabelKey:
        unknown = sorted(set(given) - set(self.label_names))
        if unknown:
            raise ValueError(f"{self.name}: unknown labels {unknown}")
        return tuple(sorted((k, str(v)) for k, v in given.items()))

    def labels(self, **given: Any) -> Series:
        return Series(self, self._key(given))

    def _initial(self) -> Any:
        return 0.0

    def _update(self, key: LabelKey, fn: Any) -> None:
        with self._lock:
            self._series[key] = fn(self._series.get(key, self._initial()))

    def _read(self, key: LabelKey) -> Any:
        with self._lock:
            return self._series.get(key, self._initial())

    def samples(self) -> list[tuple[dict[str, str], Any]]:
        """Snapshot of ``(labels, value)`` for every series written so far."""
        with self._lock:
            return [(dict(key), self._copy(value)) for key, value in self._series.items()]

    def _copy(self, value: Any) -> Any:
        return value


class Counter(Metric):
    metric_type = "counter"

    def inc(self, amount: float = 1.0) -> None:
        self.labels().inc(amount)

    def total(self) -> float:
        """Sum across every label set."""
        with self._lock:
            return sum(self._series.values())


class Gauge(Metric):
    metric_type = "gauge"

    def set(self, value: float) -> None:
        self.labels().set(value)


class Histogram(Metric):
    """Cumulative bucket counts plus sum and count per series."""

    metric_type = "histogram"

    def __init__(
        self,
        name: str,
        description: str = "",
        labels: list[str] | None = None,
        buckets: tuple[float, ...] | None = None,
    ):
        super().__init__(name, description, labels)
        self.buckets = tuple(buckets or DEFAULT_BUCKETS)

    def _initial(self) -> dict[str, Any]:
        return {"buckets": dict.fromkeys(self.buckets, 0), "sum": 0.0, "count": 0}

    def _copy(self, value: dict[str, Any]) -> dict[str, Any]:
        return {**value, "buckets": dict(value["buckets"])}

    def observe(self, value: float) -> None:
        self.labels().observe(value)

    def _add_observation(self, data: dict[str, Any], value: float) -> dict[str, Any]:
        data = self._copy(data)
        data["sum"] += value
        data["count"] += 1
        for bound in self.buckets:
            if value <= bound:
                data["buckets"][bound] += 1
        return data


class Series:
    """One label set of a metric. Which operations apply depends on the metric type."""

    def __init__(self, metric: Metric, key: LabelKey):
        self._metric = metric
        self._key = key

    def inc(self, amount: float = 1.0) -> None:
        self._require((Counter, Gauge))
        if isinstance(self._metric, Counter) and amount < 0:
            raise ValueError("Counter can only increase")
        self._metric._update(self._key, lambda current: current + amount)

    def dec(self, amount: float = 1.0) -> None:
        self._require(Gauge)
        self._metric._update(self._key, lambda current: current - amount)

    def set(self, value: float) -> None:
        self._require(Gauge)
        self._metric._update(self._key, lambda _current: float(value))

    def observe(self, value: float) -> None:
        histogram = self._require(Histogram)
        histogram._update(self._key, lambda data: histogram._add_observation(data, value))

    @property
    def value(self) -> float:
        return self._metric._read(self._key)

    @property
    def data(self) -> dict[str, Any]:
        """Histogram series as ``{"buckets": {le: n}, "sum": s, "count": n}``."""
        histogram = self._require(Histogram)
        return histogram._copy(histogram._read(self._key))

    def _require(self, kind: type[Metric] | tuple[type[Metric], ...]) -> Any:
        if not isinstance(self._metric, kind):
            raise TypeError(f"{self._metric.name} does not support this operation as a {self._metric.metric_type}")
        return self._metric


def _render_labels(labels: dict[str, str], le: str | None = None) -> str:
    pairs = [
        '{}="{}"'.format(k, v.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"'))
        for k, v in labels.items()
    ]
    if le is not None:
        pairs.append(f'le="{le}"')
    return "{" + ",".join(pairs) + "}" if pairs else ""


class MetricsRegistry:
    """Owns every metric by name and renders them for scraping."""

    def __init__(self) -> None:
        self._metrics: dict[str, Metric] = {}
        self._lock = threading.Lock()

    def _register(self, kind: type[Metric], name: str, *args: Any) -> Any:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = self._metrics[name] = kind(name, *args)
            elif type(metric) is not kind:
                raise ValueError(f"metric {name!r} already registered as {metric.metric_type}")
            return metric

    def counter(self, name: str, description: str = "", labels: list[str] | None = None) -> Counter:
        return self._register(Counter, name, description, labels)

    def gauge(self, name: str, description: str = "", labels: list[str] | None = None) -> Gauge:
        return self._register(Gauge, name, description, labels)

    def histogram(
        self,
        name: str,
        description: str = "",
        labels: list[str] | None = None,
        buckets: tuple[float, ...] | None = None,
    ) -> Histogram:
        return self._register(Histogram, name, description, labels, buckets)

    def get(self, name: str) -> Metric | None:
        with self._lock:
            return self._metrics.get(name)

    def export_prometheus(self) -> str:
        """Render every written series in the Prometheus text format.

        Metrics with no series yet are left out entirely.
        """
        with self._lock:
            metrics = list(self._metrics.values())

        lines: list[str] = []
        for metric in metrics:
            samples = metric.samples()
            if not samples:
                continue
            if metric.description:
                lines.append(f"# HELP {metric.name} {metric.description}")
            lines.append(f"# TYPE {metric.name} {metric.metric_type}")
            for labels, value in samples:
                if not isinstance(metric, Histogram):
                    lines.append(f"{metric.name}{_render_labels(labels)} {value}")
                    continue
                for bound, count in value["buckets"].items():
                    le = "+Inf" if bound == float("inf") else str(bound)
                    lines.append(f"{metric.name}_bucket{_render_labels(labels, le)} {count}")
                lines.append(f"{metric.name}_sum{_render_labels(labels)} {value['sum']}")
                lines.append(f"{metric.name}_count{_render_labels(labels)} {value['count']}")

        return "\n".join(lines) + "\n" if lines else ""


CIRCUIT_STATE_VALUES = {
    CircuitState.CLOSED: 0.0,
    CircuitState.HALF_OPEN: 1.0,
    CircuitState.OPEN: 2.0,
}


class ReplicationMetrics:
    """Pre-defined metrics for the replication controller."""

    def __init__(self, registry: MetricsRegistry | None = None):
        reg = registry or MetricsRegistry()
        self.registry = reg

        self.reconcile_total = reg.counter(
            "unified_replication_reconcile_total",
            "Reconciles by backend, operation kind and result",
            ["backend", "operation", "result"],
        )
        self.reconcile_duration = reg.histogram(
            "unified_replication_reconcile_duration_seconds",
            "Reconcile duration in seconds",
            ["backend", "operation"],
        )
        self.state_transitions = reg.counter(
            "unified_replication_state_transitions_total",
            "Replication state transitions, accepted and rejected",
            ["from", "to", "accepted"],
        )
        self.backend_operations = reg.counter(
            "unified_replication_backend_operations_total",
            "Adapter calls by backend, verb and result",
            ["backend", "operation", "result"],
        )
        self.retry_attempts = reg.counter(
            "unified_replication_retry_attempts_total",
            "Retries scheduled by the retry manager",
            ["key"],
        )
        self.circuit_breaker_state = reg.gauge(
            "unified_replication_circuit_breaker_state",
            "Circuit state: 0 closed, 1 half-open, 2 open",
            ["name"],
        )
        self.circuit_breaker_rejections = reg.counter(
            "unified_replication_circuit_breaker_rejections_total",
            "Calls rejected by an open circuit",
            ["name"],
        )
        self.discovery_total = reg.counter(
            "unified_replication_discovery_total",
            "Discovery calls by result",
            ["result"],
        )

    def record_reconcile(self, backend: str, operation: str, result: str, duration: float) -> None:
        self.reconcile_total.labels(backend=backend, operation=operation, result=result).inc()
        self.reconcile_duration.labels(backend=backend, operation=operation).observe(duration)

    def record_transition(self, from_state: str | None, to_state: str, accepted: bool) -> None:
        self.state_transitions.labels(
            **{"from": from_state or "none", "to": to_state, "accepted": str(accepted).lower()}
        ).inc()

    def record_backend_operation(self, backend: str, operation: str, result: str) -> None:
        self.backend_operations.labels(backend=backend, operation=operation, result=result).inc()

    def record_retry(self, key: str) -> None:
        self.retry_attempts.labels(key=key).inc()

    def record_circuit_state(self, name: str, state: CircuitState) -> None:
        self.circuit_breaker_state.labels(name=name).set(CIRCUIT_STATE_VALUES[state])

    def record_circuit_rejection(self, name: str) -> None:
        self.circuit_breaker_rejections.labels(name=name).inc()

    def record_discovery(self, result: str) -> None:
        self.discovery_total.labels(result=result).inc()


__all__ = [
    "Metric",
    "Series",
    "Counter",
    "Gauge",
    "Histogram",
    "MetricsRegistry",
    "ReplicationMetrics",
    "CIRCUIT_STATE_VALUES",
]
