"""Replication adapter contract and shared base class.

Manifesto:
    The controller never branches on backend type. Every backend is reached
    through :class:`ReplicationAdapter`, looked up in the registry by its
    :class:`~unirepl.core.enums.Backend` identifier. Wire formats, naming
    conventions and native vocabulary stay inside the concrete adapter.

Features:
    - Abstract ``ensure_replication()``, ``delete_replication()``, ``get_status()``
    - Lifecycle verbs ``promote/demote/resync/pause/resume/failover/failback``;
      the base raises ``NotImplementedOperationError`` for each
    - Pre-flight ``validate_configuration()`` / ``supports_configuration()``
    - Cheap local ``health()``; never a network call
    - Transport exceptions wrapped into retryable ``OperationFailedError``
    - Per-adapter operation statistics

Tags:
    unirepl, adapters, abstract-base, adapter-pattern

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, NoReturn

from unirepl.adapters.client import Resource, ResourceClient, ResourceKind
from unirepl.core.enums import Backend, HealthState, ReplicationMode, ReplicationState
from unirepl.core.errors import (
    InvalidValueError,
    NotImplementedOperationError,
    OperationFailedError,
    ReplicationError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from unirepl.core.logging import get_logger
from unirepl.core.models import ReplicationIntent, StatusFragment
from unirepl.core.timestamps import utc_now
from unirepl.translation.engine import TranslationEngine

logger = get_logger(__name__)

MANAGED_BY = "unified-replication-operator"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_NAME = "unified-replication.io/name"
LABEL_BACKEND = "unified-replication.io/backend"


class ReplicationAdapter(ABC):
    """
    Uniform operation contract implemented once per backend.

    All mutating calls are idempotent: ``ensure_replication`` creates or
    updates, ``delete_replication`` treats an absent resource as success.
    """

    backend: ClassVar[Backend]

    @abstractmethod
    async def ensure_replication(self, intent: ReplicationIntent) -> None:
        """Create or update the backend-native resource for ``intent``."""
        ...

    @abstractmethod
    async def delete_replication(self, intent: ReplicationIntent) -> None:
        """Remove the backend-native resource; absence is success."""
        ...

    @abstractmethod
    async def get_status(self, intent: ReplicationIntent) -> StatusFragment:
        """Read the backend resource and report it in unified vocabulary."""
        ...

    @abstractmethod
    async def promote(self, intent: ReplicationIntent) -> None: ...

    @abstractmethod
    async def demote(self, intent: ReplicationIntent) -> None: ...

    @abstractmethod
    async def resync(self, intent: ReplicationIntent) -> None: ...

    @abstractmethod
    async def pause(self, intent: ReplicationIntent) -> None: ...

    @abstractmethod
    async def resume(self, intent: ReplicationIntent) -> None: ...

    @abstractmethod
    async def failover(self, intent: ReplicationIntent) -> None: ...

    @abstractmethod
    async def failback(self, intent: ReplicationIntent) -> None: ...

    @abstractmethod
    def validate_configuration(self, intent: ReplicationIntent) -> None:
        """Raise ``ValidationFailedError``/``InvalidValueError`` if unusable."""
        ...

    @abstractmethod
    def supports_configuration(self, intent: ReplicationIntent) -> bool:
        """``False`` when this backend cannot serve ``intent``; raises on real errors."""
        ...

    @abstractmethod
    def health(self) -> bool:
        """Local liveness signal. Must not perform I/O."""
        ...


@dataclass
class AdapterStats:
    """Operation counters for one adapter instance."""

    operations: dict[str, int] = field(default_factory=dict)
    failures: dict[str, int] = field(default_factory=dict)
    total_duration: float = 0.0
    last_operation: str | None = None
    last_operation_at: datetime | None = None
    last_error: str | None = None

    @property
    def total_operations(self) -> int:
        return sum(self.operations.values())

    @property
    def total_failures(self) -> int:
        return sum(self.failures.values())


class BaseAdapter(ReplicationAdapter):
    """
    Shared plumbing for concrete adapters.

    Subclasses implement ``ensure_replication``, ``delete_replication`` and
    ``get_status`` plus whichever verbs their backend supports natively.
    """

    #: Verbs implemented natively; reported as discovery capabilities.
    supported_verbs: ClassVar[frozenset[str]] = frozenset()

    def __init__(self, client: ResourceClient, translator: TranslationEngine):
        self._client = client
        self._translator = translator
        self._healthy = True
        self._stats = AdapterStats()
        self._lock = threading.Lock()

    @property
    def client(self) -> ResourceClient:
        return self._client

    @property
    def translator(self) -> TranslationEngine:
        return self._translator

    @property
    def stats(self) -> AdapterStats:
        return self._stats

    def health(self) -> bool:
        return self._healthy

    def mark_unhealthy(self, reason: str) -> None:
        self._healthy = False
        logger.warning("adapter_marked_unhealthy", backend=self.backend.value, reason=reason)

    def mark_healthy(self) -> None:
        self._healthy = True

    # ── Translation helpers ──────────────────────────────────────────

    def _native_state(self, state: ReplicationState | str) -> str:
        return self._translator.state_to_backend(self.backend, state)

    def _native_mode(self, mode: ReplicationMode | str) -> str:
        return self._translator.mode_to_backend(self.backend, mode)

    def _unified_state(self, native: str) -> ReplicationState:
        return self._translator.state_from_backend(self.backend, native)

    def _unified_mode(self, native: str) -> ReplicationMode:
        return self._translator.mode_from_backend(self.backend, native)

    # ── Validation ───────────────────────────────────────────────────

    def validate_configuration(self, intent: ReplicationIntent) -> None:
        """Check vocabulary support, then backend-specific rules."""
        self._native_state(intent.spec.desired_state)
        self._native_mode(intent.spec.desired_mode)
        self._validate_backend(intent)

    def _validate_backend(self, intent: ReplicationIntent) -> None:
        """Backend-specific semantic checks. Override in subclasses."""

    def supports_configuration(self, intent: ReplicationIntent) -> bool:
        try:
            self.validate_configuration(intent)
        except (ValidationFailedError, InvalidValueError) as exc:
            logger.debug(
                "configuration_not_supported",
                backend=self.backend.value,
                key=intent.key,
                reason=exc.message,
            )
            return False
        return True

    def _fail_validation(self, intent: ReplicationIntent, message: str) -> NoReturn:
        raise ValidationFailedError(
            message,
            backend=self.backend.value,
            operation="validate",
        ).with_context(key=intent.key)

    # ── Unsupported verbs ────────────────────────────────────────────

    def _not_implemented(self, operation: str) -> NotImplementedOperationError:
        return NotImplementedOperationError(operation, backend=self.backend.value)

    async def promote(self, intent: ReplicationIntent) -> None:
        raise self._not_implemented("promote")

    async def demote(self, intent: ReplicationIntent) -> None:
        raise self._not_implemented("demote")

    async def resync(self, intent: ReplicationIntent) -> None:
        raise self._not_implemented("resync")

    async def pause(self, intent: ReplicationIntent) -> None:
        raise self._not_implemented("pause")

    async def resume(self, intent: ReplicationIntent) -> None:
        raise self._not_implemented("resume")

    async def failover(self, intent: ReplicationIntent) -> None:
        raise self._not_implemented("failover")

    async def failback(self, intent: ReplicationIntent) -> None:
        raise self._not_implemented("failback")

    # ── Operation wrapper ────────────────────────────────────────────

    @asynccontextmanager
    async def _operation(self, operation: str, intent: ReplicationIntent) -> AsyncIterator[None]:
        """Time an operation, record stats, and wrap transport failures.

        ``ReplicationError`` passes through unchanged; builtin transport
        errors become ``OperationFailedError`` with the original chained.
        """
        started = time.perf_counter()
        try:
            yield
        except ReplicationError as exc:
            self._record(operation, started, error=exc)
            raise
        except (ConnectionError, TimeoutError, OSError) as exc:
            self._record(operation, started, error=exc)
            raise OperationFailedError(
                f"{self.backend.value} {operation} failed for {intent.key}: {exc}",
                backend=self.backend.value,
                operation=operation,
                cause=exc,
            ).with_context(key=intent.key) from exc
        else:
            self._record(operation, started)

    def _record(self, operation: str, started: float, error: BaseException | None = None) -> None:
        with self._lock:
            self._stats.operations[operation] = self._stats.operations.get(operation, 0) + 1
            self._stats.total_duration += time.perf_counter() - started
            self._stats.last_operation = operation
            self._stats.last_operation_at = utc_now()
            if error is not None:
                self._stats.failures[operation] = self._stats.failures.get(operation, 0) + 1
                self._stats.last_error = str(error)

    # ── Resource helpers ─────────────────────────────────────────────

    def _labels(self, intent: ReplicationIntent) -> dict[str, str]:
        return {
            LABEL_MANAGED_BY: MANAGED_BY,
            LABEL_NAME: intent.name,
            LABEL_BACKEND: self.backend.value,
        }

    def _object(
        self,
        kind: ResourceKind,
        intent: ReplicationIntent,
        name: str,
        spec: dict[str, Any],
        annotations: dict[str, str] | None = None,
    ) -> Resource:
        return {
            "apiVersion": kind.api_version,
            "kind": kind.kind,
            "metadata": {
                "name": name,
                "namespace": intent.namespace,
                "labels": self._labels(intent),
                "annotations": dict(annotations or {}),
            },
            "spec": spec,
        }

    async def _get_or_none(self, kind: ResourceKind, namespace: str, name: str) -> Resource | None:
        try:
            return await self._client.get(kind, namespace, name)
        except ResourceNotFoundError:
            return None

    async def _apply(self, kind: ResourceKind, desired: Resource) -> Resource:
        """Create ``desired`` or update the spec of the existing record.

        Existing annotations and status are preserved; the update is skipped
        entirely when spec, labels and annotations already match.
        """
        meta = desired["metadata"]
        existing = await self._get_or_none(kind, meta["namespace"], meta["name"])
        if existing is None:
            logger.info("backend_resource_creating", backend=self.backend.value, kind=kind.kind, name=meta["name"])
            return await self._client.create(kind, desired)

        merged = dict(existing)
        merged_meta = dict(existing.get("metadata", {}))
        merged_meta["labels"] = {**merged_meta.get("labels", {}), **meta.get("labels", {})}
        merged_meta["annotations"] = {**merged_meta.get("annotations", {}), **meta.get("annotations", {})}
        merged["metadata"] = merged_meta
        merged["spec"] = {**existing.get("spec", {}), **desired["spec"]}

        if (
            merged["spec"] == existing.get("spec")
            and merged_meta["labels"] == existing.get("metadata", {}).get("labels")
            and merged_meta["annotations"] == existing.get("metadata", {}).get("annotations")
        ):
            logger.debug("backend_resource_unchanged", backend=self.backend.value, kind=kind.kind, name=meta["name"])
            return existing

        logger.info("backend_resource_updating", backend=self.backend.value, kind=kind.kind, name=meta["name"])
        return await self._client.update(kind, merged)

    async def _patch_spec(
        self,
        kind: ResourceKind,
        intent: ReplicationIntent,
        name: str,
        spec: dict[str, Any] | None = None,
        annotations: dict[str, str] | None = None,
    ) -> Resource:
        """Merge fields into an existing record; missing record is an error."""
        existing = await self._client.get(kind, intent.namespace, name)
        patched = dict(existing)
        if spec:
            patched["spec"] = {**existing.get("spec", {}), **spec}
        if annotations:
            meta = dict(existing.get("metadata", {}))
            meta["annotations"] = {**meta.get("annotations", {}), **annotations}
            patched["metadata"] = meta
        return await self._client.update(kind, patched)

    async def _delete_if_present(self, kind: ResourceKind, namespace: str, name: str) -> bool:
        """Delete a record; returns ``False`` when it was already gone."""
        try:
            await self._client.delete(kind, namespace, name)
        except ResourceNotFoundError:
            logger.debug("backend_resource_already_absent", backend=self.backend.value, kind=kind.kind, name=name)
            return False
        logger.info("backend_resource_deleted", backend=self.backend.value, kind=kind.kind, name=name)
        return True


def health_from_conditions(conditions: list[dict[str, Any]]) -> tuple[HealthState, str]:
    """Fold backend-native conditions into a health verdict and message.

    ``Error``/``Failed`` true → unhealthy; ``Degraded`` true or ``Healthy``/
    ``Ready`` false → degraded; otherwise healthy. No conditions → unknown.
    """
    if not conditions:
        return HealthState.UNKNOWN, "no conditions reported"

    health = HealthState.HEALTHY
    messages: list[str] = []
    for condition in conditions:
        kind = condition.get("type")
        status = condition.get("status")
        message = condition.get("message", "")
        if kind in ("Error", "Failed") and status == "True":
            health = HealthState.UNHEALTHY
            messages.append(f"Error: {message}")
        elif kind == "Degraded" and status == "True":
            if health != HealthState.UNHEALTHY:
                health = HealthState.DEGRADED
            messages.append(f"Degraded: {message}")
        elif kind in ("Healthy", "Ready") and status == "False":
            if health == HealthState.HEALTHY:
                health = HealthState.DEGRADED
            messages.append(f"Not {kind.lower()}: {message}")
        elif kind == "Resyncing" and status == "True":
            messages.append("Resyncing in progress")

    return health, "; ".join(messages) or "conditions analyzed"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp from a backend record, if present."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


__all__ = [
    "ReplicationAdapter",
    "BaseAdapter",
    "AdapterStats",
    "health_from_conditions",
    "parse_timestamp",
    "MANAGED_BY",
    "LABEL_MANAGED_BY",
    "LABEL_NAME",
    "LABEL_BACKEND",
]
