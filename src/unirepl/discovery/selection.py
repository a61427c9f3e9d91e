"""
Backend selection for an intent.

Resolution order:

1. ``spec.backend_hint``: used when available, otherwise ``ConfigurationError``.
   While discovery is degraded, a hint with a registered adapter is used as is.
2. Storage-class keywords of the source endpoint, matched case-insensitively
   against :data:`STORAGE_CLASS_KEYWORDS` in table order. Only available
   backends match.
3. First available backend from discovery, logged as an implicit choice.
   Disabled with ``allow_implicit=False``.
4. ``NoBackendAvailableError``, or the retryable ``ProbeFailedError`` when
   discovery is degraded.
"""

from __future__ import annotations

from collections.abc import Sequence

from unirepl.core.enums import Backend
from unirepl.core.errors import ConfigurationError, NoBackendAvailableError, ProbeFailedError
from unirepl.core.logging import get_logger
from unirepl.core.models import ReplicationIntent
from unirepl.discovery.service import DiscoveryResult

logger = get_logger(__name__)

# Order is the tie-break order: a class named "ceph-on-dell" selects ceph.
STORAGE_CLASS_KEYWORDS: tuple[tuple[Backend, tuple[str, ...]], ...] = (
    (Backend.CEPH, ("ceph", "rbd")),
    (Backend.TRIDENT, ("trident", "netapp")),
    (Backend.POWERSTORE, ("powerstore", "dell")),
)


def match_storage_class(storage_class: str, available: Sequence[Backend]) -> Backend | None:
    """First available backend whose keyword appears in ``storage_class``."""
    lowered = storage_class.lower()
    for backend, keywords in STORAGE_CLASS_KEYWORDS:
        if backend in available and any(keyword in lowered for keyword in keywords):
            return backend
    return None


def select_backend(
    intent: ReplicationIntent,
    discovery: DiscoveryResult,
    *,
    allow_implicit: bool = True,
    registered: Sequence[Backend] = (),
) -> Backend:
    """Resolve the backend that will own ``intent``'s replication.

    ``registered`` lists the backends with an adapter. While discovery is
    degraded (``discovery.error`` set) a hint naming one of them is trusted
    over the stale or empty snapshot. A degraded lookup that still finds
    nothing raises a retryable ``ProbeFailedError`` rather than a terminal
    error.
    """
    available = discovery.available
    degraded = discovery.error is not None
    hint = intent.spec.backend_hint

    if hint is not None:
        if hint in available:
            logger.debug("backend_selected", key=intent.key, backend=hint.value, via="hint")
            return hint
        if degraded and hint in registered:
            logger.warning(
                "backend_selected_without_discovery",
                key=intent.key,
                backend=hint.value,
                discovery_error=discovery.error.message,
            )
            return hint
        raise ConfigurationError(
            f"backend hint {hint.value!r} is not available "
            f"(available: {', '.join(b.value for b in available) or 'none'})"
        ).with_context(key=intent.key, backend=hint.value)

    matched = match_storage_class(intent.spec.source_endpoint.storage_class, available)
    if matched is not None:
        logger.debug("backend_selected", key=intent.key, backend=matched.value, via="storage_class")
        return matched

    if available and allow_implicit:
        chosen = available[0]
        logger.warning(
            "backend_selected_implicitly",
            key=intent.key,
            backend=chosen.value,
            storage_class=intent.spec.source_endpoint.storage_class,
        )
        return chosen

    if degraded:
        raise ProbeFailedError(
            f"no backend resolved for {intent.key} while discovery is degraded: {discovery.error.message}",
            cause=discovery.error,
        ).with_context(key=intent.key)

    raise NoBackendAvailableError(
        f"no backend could be resolved for {intent.key} "
        f"(storage class {intent.spec.source_endpoint.storage_class!r})"
    ).with_context(key=intent.key)


__all__ = ["STORAGE_CLASS_KEYWORDS", "match_storage_class", "select_backend"]
