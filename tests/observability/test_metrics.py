"""Tests for the metrics registry and replication metrics."""

import pytest

from unirepl.observability.metrics import (
    CIRCUIT_STATE_VALUES,
    Counter,
    Gauge,
    Histogram,
    MetricsRegistry,
    ReplicationMetrics,
)
from unirepl.resilience.circuit_breaker import CircuitState


class TestMetricTypes:
    """Tests for Counter, Gauge and Histogram."""

    def test_counter_per_label_set(self):
        """Each label set has its own value; total() sums them."""
        counter = Counter("ops_total", labels=["backend"])
        counter.labels(backend="ceph").inc()
        counter.labels(backend="ceph").inc(2)
        counter.labels(backend="trident").inc()
        assert counter.labels(backend="ceph").value == 3
        assert counter.total() == 4

    def test_counter_cannot_decrease(self):
        counter = Counter("ops_total")
        with pytest.raises(ValueError):
            counter.labels().inc(-1)

    def test_unknown_label_rejected(self):
        """Labels not declared up front are a programming error."""
        counter = Counter("ops_total", labels=["backend"])
        with pytest.raises(ValueError, match="unknown labels"):
            counter.labels(verb="promote")

    def test_operation_must_fit_type(self):
        """A counter series cannot be set and a gauge series cannot observe."""
        with pytest.raises(TypeError):
            Counter("ops_total").labels().set(3)
        with pytest.raises(TypeError):
            Gauge("in_flight").labels().observe(0.1)

    def test_gauge(self):
        gauge = Gauge("in_flight", labels=["backend"])
        child = gauge.labels(backend="ceph")
        child.set(5)
        child.inc()
        child.dec(2)
        assert child.value == 4

    def test_histogram_buckets(self):
        """Observations land in every bucket at or above their value."""
        histogram = Histogram("duration_seconds", buckets=(0.1, 1.0, float("inf")))
        histogram.observe(0.05)
        histogram.observe(0.5)
        histogram.observe(5.0)

        data = histogram.labels().data
        assert data["count"] == 3
        assert data["sum"] == pytest.approx(5.55)
        assert data["buckets"] == {0.1: 1, 1.0: 2, float("inf"): 3}


class TestMetricsRegistry:
    """Tests for registration and export."""

    def test_get_or_create(self):
        """Registering a name twice returns the same metric."""
        registry = MetricsRegistry()
        first = registry.counter("ops_total", "ops", ["backend"])
        assert registry.counter("ops_total") is first
        assert registry.get("ops_total") is first

    def test_type_conflict(self):
        """A name cannot be reused for a different metric type."""
        registry = MetricsRegistry()
        registry.counter("ops_total")
        with pytest.raises(ValueError, match="already registered"):
            registry.gauge("ops_total")

    def test_export_prometheus(self):
        """Exposition has HELP, TYPE and one line per sample."""
        registry = MetricsRegistry()
        registry.counter("ops_total", "Operations", ["backend"]).labels(backend="ceph").inc()
        registry.histogram("wait_seconds", "Wait", buckets=(1.0, float("inf"))).observe(0.5)
        registry.gauge("unused", "Never set")

        text = registry.export_prometheus()

        assert "# HELP ops_total Operations\n# TYPE ops_total counter\n" in text
        assert 'ops_total{backend="ceph"} 1.0' in text
        assert 'wait_seconds_bucket{le="1.0"} 1' in text
        assert 'wait_seconds_bucket{le="+Inf"} 1' in text
        assert "wait_seconds_count 1" in text
        assert "unused" not in text

    def test_empty_export(self):
        assert MetricsRegistry().export_prometheus() == ""


class TestReplicationMetrics:
    """Tests for the controller's metric helpers."""

    def test_record_reconcile(self):
        """Counter and histogram share backend and operation labels."""
        metrics = ReplicationMetrics()
        metrics.record_reconcile("ceph", "create", "success", 0.2)
        assert metrics.reconcile_total.labels(backend="ceph", operation="create", result="success").value == 1
        assert metrics.reconcile_duration.labels(backend="ceph", operation="create").data["count"] == 1

    def test_record_transition(self):
        """A missing from-state is exported as 'none'."""
        metrics = ReplicationMetrics()
        metrics.record_transition(None, "source", accepted=True)
        metrics.record_transition("source", "replica", accepted=False)
        transitions = metrics.state_transitions
        assert transitions.labels(**{"from": "none", "to": "source", "accepted": "true"}).value == 1
        assert transitions.labels(**{"from": "source", "to": "replica", "accepted": "false"}).value == 1

    def test_record_circuit_state(self):
        """Breaker state is a numeric gauge."""
        metrics = ReplicationMetrics()
        metrics.record_circuit_state("ceph.promote", CircuitState.OPEN)
        assert metrics.circuit_breaker_state.labels(name="ceph.promote").value == CIRCUIT_STATE_VALUES[CircuitState.OPEN]
        metrics.record_circuit_state("ceph.promote", CircuitState.CLOSED)
        assert metrics.circuit_breaker_state.labels(name="ceph.promote").value == 0.0

    def test_other_helpers(self):
        metrics = ReplicationMetrics()
        metrics.record_backend_operation("trident", "resync", "error")
        metrics.record_retry("default/db")
        metrics.record_circuit_rejection("trident.resync")
        metrics.record_discovery("cached")

        assert metrics.backend_operations.total() == 1
        assert metrics.retry_attempts.labels(key="default/db").value == 1
        assert metrics.circuit_breaker_rejections.labels(name="trident.resync").value == 1
        assert metrics.discovery_total.labels(result="cached").value == 1

    def test_shared_registry(self):
        """Metrics are registered on the injected registry."""
        registry = MetricsRegistry()
        ReplicationMetrics(registry)
        assert registry.get("unified_replication_reconcile_total") is not None
