"""unirepl.observability - metrics emitted by the controller."""

from unirepl.observability.metrics import (
    Counter,
    Gauge,
    Histogram,
    MetricsRegistry,
    ReplicationMetrics,
)

__all__ = ["Counter", "Gauge", "Histogram", "MetricsRegistry", "ReplicationMetrics"]
