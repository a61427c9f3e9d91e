"""
Reconciliation controller: drives one intent toward its desired state.

Manifesto:
    Every reconcile is a pure function of the stored intent and what the
    backend reports. It decides one operation kind, performs it through
    the adapter contract, and writes the outcome back as conditions.

    - **Idempotent:** an unchanged intent degrades to a status read
    - **Serialized per key:** one in-flight reconcile per intent
    - **Bounded:** each reconcile runs under a deadline
    - **Guarded cleanup:** a finalizer keeps the intent until its backend
      resource is gone

Architecture:
    ::

        reconcile(key)
          │  per-key lock, correlation id bound into log context
          ▼
        operation kind ── DELETE  (deletion requested)
                      ├── CREATE  (no conditions yet)
                      ├── UPDATE  (generation moved, or Ready != True)
                      └── SYNC    (otherwise)

        CREATE/UPDATE: discover → select backend → validate transition
                       → validate configuration → verb (retry ∘ breaker)
                       → finalizer → get_status → write status
        SYNC:          get_status → write status
        DELETE:        delete_replication → remove finalizer

    Failures become ``Ready=False`` with a reason. Terminal errors are not
    requeued; everything else is retried after ``error_requeue_interval``.

Tags:
    controller, reconcile, finalizer, conditions, unirepl-controller
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from unirepl.adapters.base import ReplicationAdapter
from unirepl.adapters.registry import AdapterRegistry
from unirepl.controller.conditions import mark_not_ready, mark_ready, set_condition
from unirepl.controller.state_machine import StateMachine
from unirepl.controller.store import IntentStore
from unirepl.core.enums import (
    Backend,
    ConditionStatus,
    ConditionType,
    HealthState,
    OperationKind,
)
from unirepl.core.errors import (
    CircuitOpenError,
    InvalidTransitionError,
    ReplicationError,
    ResourceNotFoundError,
    condition_reason,
    is_retryable,
)
from unirepl.core.logging import LogContext, get_logger
from unirepl.core.models import ObservedStatus, ReplicationIntent, StatusFragment, split_key
from unirepl.core.settings import ControllerSettings
from unirepl.core.timestamps import correlation_id, utc_now
from unirepl.discovery.selection import select_backend
from unirepl.discovery.service import DiscoveryResult, DiscoveryService
from unirepl.observability.metrics import ReplicationMetrics
from unirepl.resilience.circuit_breaker import CircuitBreakerRegistry
from unirepl.resilience.retry import ExponentialBackoff, RetryManager
from unirepl.resilience.timeout import with_deadline_async

logger = get_logger(__name__)

# Errors converted into conditions; anything else is a bug and propagates.
HANDLED_ERRORS = (ReplicationError, TimeoutError, ConnectionError, OSError)

_SYNCED = {
    HealthState.HEALTHY: (ConditionStatus.TRUE, "Healthy"),
    HealthState.DEGRADED: (ConditionStatus.FALSE, "Degraded"),
    HealthState.UNHEALTHY: (ConditionStatus.FALSE, "Unhealthy"),
    HealthState.UNKNOWN: (ConditionStatus.UNKNOWN, "StatusPending"),
}


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconcile."""

    key: str
    operation: OperationKind | None
    requeue_after: float | None = None
    error: BaseException | None = None
    backend: Backend | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def operation_kind(intent: ReplicationIntent) -> OperationKind:
    """Decide what a reconcile of ``intent`` has to do.

    Delete wins over everything; an intent with no conditions is new; a
    moved generation or a non-ready intent needs an update; otherwise a
    status refresh suffices.
    """
    if intent.deletion_requested:
        return OperationKind.DELETE
    status = intent.status
    if not status.conditions:
        return OperationKind.CREATE
    if intent.metadata.generation > status.observed_generation or not status.is_ready:
        return OperationKind.UPDATE
    return OperationKind.SYNC


class ReconciliationController:
    """Reconciles intents from an :class:`IntentStore` against backends.

    All collaborators are injected; the defaults are built from
    ``settings`` so a test can pass only what it wants to control.
    """

    def __init__(
        self,
        store: IntentStore,
        discovery: DiscoveryService,
        adapters: AdapterRegistry,
        *,
        state_machine: StateMachine | None = None,
        retry_manager: RetryManager | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        settings: ControllerSettings | None = None,
        metrics: ReplicationMetrics | None = None,
    ):
        self.settings = settings or ControllerSettings()
        self.store = store
        self.discovery = discovery
        self.adapters = adapters
        self.metrics = metrics or ReplicationMetrics()
        self.state_machine = state_machine or StateMachine(history_size=self.settings.history_size)
        self.retry = retry_manager or RetryManager(
            ExponentialBackoff.from_settings(self.settings),
            history_size=self.settings.history_size,
            on_retry=lambda event: self.metrics.record_retry(event.key),
        )
        self.breakers = breakers or CircuitBreakerRegistry(
            failure_threshold=self.settings.breaker_failure_threshold,
            success_threshold=self.settings.breaker_success_threshold,
            recovery_timeout=self.settings.breaker_recovery_timeout,
            is_failure=is_retryable,
            on_state_change=lambda name, _old, new: self.metrics.record_circuit_state(name, new),
        )

        self._key_locks: dict[str, asyncio.Lock] = {}
        # reconciles holding or waiting on each key lock
        self._key_users: dict[str, int] = {}
        self._guard = threading.Lock()
        self._stats_lock = threading.Lock()
        self.reconcile_count = 0
        self.error_count = 0
        self.last_reconcile_time: datetime | None = None
        self.started_at = utc_now()

    # ── Bookkeeping ──────────────────────────────────────────────────

    def _acquire_slot(self, key: str) -> asyncio.Lock:
        with self._guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = asyncio.Lock()
            self._key_users[key] = self._key_users.get(key, 0) + 1
            return lock

    def _release_slot(self, key: str) -> None:
        with self._guard:
            users = self._key_users[key] - 1
            if users:
                self._key_users[key] = users
            else:
                del self._key_users[key]
                del self._key_locks[key]

    def active_keys(self) -> list[str]:
        """Keys with a reconcile running or queued on their lock."""
        with self._guard:
            return sorted(self._key_locks)

    def is_reconciling(self, key: str) -> bool:
        with self._guard:
            lock = self._key_locks.get(key)
        return lock is not None and lock.locked()

    @property
    def error_rate(self) -> float:
        with self._stats_lock:
            if self.reconcile_count == 0:
                return 0.0
            return self.error_count / self.reconcile_count

    def _count(self, failed: bool) -> None:
        with self._stats_lock:
            self.reconcile_count += 1
            if failed:
                self.error_count += 1
            self.last_reconcile_time = utc_now()

    # ── Entry point ──────────────────────────────────────────────────

    async def reconcile(self, key: str) -> ReconcileResult:
        """Reconcile the intent stored under ``key`` once."""
        lock = self._acquire_slot(key)
        try:
            async with lock:
                namespace, name = split_key(key)
                request_id = correlation_id(namespace, name)
                async with LogContext(key=key, correlation_id=request_id):
                    return await self._reconcile_locked(key, request_id)
        finally:
            self._release_slot(key)

    async def _reconcile_locked(self, key: str, request_id: str) -> ReconcileResult:
        intent = await self.store.get(key)
        if intent is None:
            logger.debug("reconcile_skipped_missing_intent")
            return ReconcileResult(key=key, operation=None)

        kind = operation_kind(intent)
        logger.info("reconcile_started", operation=kind.value, generation=intent.metadata.generation)
        started = time.perf_counter()
        backend = intent.status.backend
        try:
            async with with_deadline_async(self.settings.reconcile_timeout, f"reconcile {key}"):
                if kind == OperationKind.DELETE:
                    result = await self._reconcile_delete(intent)
                elif kind == OperationKind.SYNC and backend is not None:
                    result = await self._reconcile_sync(intent, backend)
                else:
                    result = await self._reconcile_apply(intent, kind, request_id)
        except HANDLED_ERRORS as exc:
            result = await self._handle_failure(intent, kind, exc, backend)

        duration = time.perf_counter() - started
        self._count(failed=not result.ok)
        used = result.backend or backend
        self.metrics.record_reconcile(
            used.value if used is not None else "none",
            kind.value,
            "success" if result.ok else "error",
            duration,
        )
        logger.info(
            "reconcile_finished",
            operation=kind.value,
            ok=result.ok,
            requeue_after=result.requeue_after,
            duration_ms=round(duration * 1000, 2),
        )
        return result

    # ── Create / Update ──────────────────────────────────────────────

    async def _discover(self) -> DiscoveryResult:
        result = await self.discovery.discover()
        if result.error is not None:
            logger.warning("discovery_degraded", error=result.error.message, from_cache=result.from_cache)
            self.metrics.record_discovery("degraded")
        else:
            self.metrics.record_discovery("cached" if result.from_cache else "probed")
        return result

    async def _reconcile_apply(
        self, intent: ReplicationIntent, kind: OperationKind, request_id: str
    ) -> ReconcileResult:
        discovery = await self._discover()
        backend = select_backend(
            intent,
            discovery,
            allow_implicit=self.settings.allow_implicit_backend,
            registered=self.adapters.list_backends(),
        )
        if intent.status.backend is not None and intent.status.backend != backend:
            logger.warning(
                "backend_changed",
                previous=intent.status.backend.value,
                selected=backend.value,
            )
        logger.info("backend_selected", backend=backend.value)
        adapter = self.adapters.get(backend)

        current = intent.status.current_state
        desired = intent.spec.desired_state
        try:
            rule = self.state_machine.attempt_transition(current, desired, kind.value, request_id)
        except InvalidTransitionError:
            self.metrics.record_transition(current.value if current else None, desired.value, accepted=False)
            raise

        adapter.validate_configuration(intent)
        await self._call(adapter, backend, rule.verb, intent)

        finalizer = self.settings.finalizer
        if not intent.has_finalizer(finalizer):
            await self.store.add_finalizer(intent.key, finalizer)

        fragment: StatusFragment = await self._call(adapter, backend, "get_status", intent)

        generation = intent.metadata.generation
        status = intent.status.model_copy(deep=True)
        status.backend = backend
        status.discovered_backends = list(discovery.backends)
        status.observed_generation = generation
        status.current_state = desired
        status.current_mode = fragment.mode or intent.spec.desired_mode
        if fragment.last_sync_time is not None:
            status.last_sync_time = fragment.last_sync_time
        set_condition(
            status,
            ConditionType.BACKEND_SELECTED,
            ConditionStatus.TRUE,
            "BackendSelected",
            f"using {backend.value}",
            generation,
        )
        self._set_synced(status, fragment, generation)
        mark_ready(status, "ReconcileSucceeded", f"{kind.value} via {rule.verb}", generation)
        await self.store.update_status(intent.key, status)

        if current != desired:
            self.state_machine.record_transition(current, desired, rule.description, request_id)
            self.metrics.record_transition(current.value if current else None, desired.value, accepted=True)
            logger.info(
                "state_transitioned",
                from_state=current.value if current else None,
                to_state=desired.value,
                verb=rule.verb,
            )

        return ReconcileResult(
            key=intent.key,
            operation=kind,
            requeue_after=self.settings.success_requeue_interval,
            backend=backend,
        )

    # ── Sync ─────────────────────────────────────────────────────────

    async def _reconcile_sync(self, intent: ReplicationIntent, backend: Backend) -> ReconcileResult:
        adapter = self.adapters.get(backend)
        fragment: StatusFragment = await self._call(adapter, backend, "get_status", intent)

        status = intent.status.model_copy(deep=True)
        self._adopt_observed_state(status, fragment)
        if fragment.mode is not None:
            status.current_mode = fragment.mode
        if fragment.last_sync_time is not None:
            status.last_sync_time = fragment.last_sync_time
        self._set_synced(status, fragment, intent.metadata.generation)
        await self.store.update_status(intent.key, status)

        return ReconcileResult(
            key=intent.key,
            operation=OperationKind.SYNC,
            requeue_after=self.settings.success_requeue_interval,
            backend=backend,
        )

    # ── Delete ───────────────────────────────────────────────────────

    async def _reconcile_delete(self, intent: ReplicationIntent) -> ReconcileResult:
        finalizer = self.settings.finalizer
        backend = intent.status.backend
        if not intent.has_finalizer(finalizer):
            logger.debug("deletion_without_finalizer")
            return ReconcileResult(key=intent.key, operation=OperationKind.DELETE, backend=backend)

        if backend is not None:
            adapter = self.adapters.get(backend)
            await self._call(adapter, backend, "delete_replication", intent)
        else:
            logger.info("deletion_without_backend")

        await self.store.remove_finalizer(intent.key, finalizer)
        logger.info("finalizer_removed", finalizer=finalizer)
        return ReconcileResult(key=intent.key, operation=OperationKind.DELETE, backend=backend)

    # ── Backend calls ────────────────────────────────────────────────

    async def _call(self, adapter: ReplicationAdapter, backend: Backend, verb: str, intent: ReplicationIntent) -> Any:
        """Invoke ``adapter.<verb>(intent)`` as retry(breaker(call))."""
        breaker = self.breakers.for_operation(backend.value, verb)
        method = getattr(adapter, verb)

        async def attempt() -> Any:
            try:
                return await breaker.call_async(method, intent)
            except CircuitOpenError:
                self.metrics.record_circuit_rejection(breaker.name)
                raise

        try:
            result = await self.retry.with_retry(intent.key, attempt)
        except HANDLED_ERRORS:
            self.metrics.record_backend_operation(backend.value, verb, "error")
            raise
        self.metrics.record_backend_operation(backend.value, verb, "success")
        return result

    # ── Status writing ───────────────────────────────────────────────

    def _adopt_observed_state(self, status: ObservedStatus, fragment: StatusFragment) -> None:
        """Move ``current_state`` to what the backend reports, along legal edges only.

        A reading that is not a legal successor (``source`` while
        ``replica`` is recorded) leaves the recorded state alone so the
        next update validates against it.
        """
        observed = fragment.state
        recorded = status.current_state
        if observed is None or observed == recorded:
            return
        if not self.state_machine.is_valid_transition(recorded, observed):
            logger.debug(
                "observed_state_not_adopted",
                recorded=recorded.value if recorded else None,
                observed=observed.value,
            )
            return
        self.state_machine.record_transition(recorded, observed, "observed on backend")
        self.metrics.record_transition(recorded.value if recorded else None, observed.value, accepted=True)
        status.current_state = observed

    @staticmethod
    def _set_synced(status: ObservedStatus, fragment: StatusFragment, generation: int) -> None:
        condition_status, reason = _SYNCED[fragment.health]
        set_condition(status, ConditionType.SYNCED, condition_status, reason, fragment.message, generation)

    async def _handle_failure(
        self,
        intent: ReplicationIntent,
        kind: OperationKind,
        exc: BaseException,
        backend: Backend | None,
    ) -> ReconcileResult:
        retryable = is_retryable(exc)
        requeue: float | None = self.settings.error_requeue_interval

        if kind == OperationKind.DELETE:
            reason = "DeletionFailed"
        elif kind == OperationKind.SYNC and isinstance(exc, ResourceNotFoundError):
            reason = "ResourceMissing"
        else:
            reason = condition_reason(exc)
            if not retryable and not isinstance(exc, CircuitOpenError):
                requeue = None

        log = logger.warning if requeue is not None else logger.error
        log(
            "reconcile_failed",
            operation=kind.value,
            reason=reason,
            retryable=retryable,
            error=str(exc),
            error_type=type(exc).__name__,
        )

        status = intent.status.model_copy(deep=True)
        mark_not_ready(status, reason, str(exc), intent.metadata.generation)
        try:
            await self.store.update_status(intent.key, status)
        except ResourceNotFoundError:
            logger.info("status_write_skipped_intent_gone")

        return ReconcileResult(
            key=intent.key,
            operation=kind,
            requeue_after=requeue,
            error=exc,
            backend=backend,
        )


__all__ = ["ReconciliationController", "ReconcileResult", "operation_kind", "HANDLED_ERRORS"]
