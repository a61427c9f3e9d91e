"""
Shared pytest fixtures for unirepl tests.

This module provides:
- An intent factory with sensible defaults per backend
- In-memory resource client with backend CRDs installed
- A fully wired controller with instant retries
- A manual clock for breaker and cache tests

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments.

    def test_something(make_intent, ceph_client):
        intent = make_intent(storage_class="ceph-rbd")
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest

# Ensure unirepl package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from unirepl.adapters.ceph import VOLUME_REPLICATION, VOLUME_REPLICATION_CLASS
from unirepl.adapters.client import InMemoryResourceClient
from unirepl.adapters.powerstore import REPLICATION_GROUP
from unirepl.adapters.registry import default_registry
from unirepl.adapters.trident import ACTION_MIRROR_UPDATE, MIRROR_RELATIONSHIP
from unirepl.controller.reconciler import ReconciliationController
from unirepl.controller.store import InMemoryIntentStore
from unirepl.core.enums import Backend, ReplicationMode, ReplicationState
from unirepl.core.errors import is_retryable
from unirepl.core.models import (
    Endpoint,
    ObjectMeta,
    ReplicationIntent,
    ReplicationSpec,
    Schedule,
    VolumeDestination,
    VolumeMapping,
    VolumeSource,
)
from unirepl.core.settings import ControllerSettings
from unirepl.discovery.service import DiscoveryService
from unirepl.observability.metrics import ReplicationMetrics
from unirepl.resilience.circuit_breaker import CircuitBreakerRegistry
from unirepl.resilience.retry import ExponentialBackoff, RetryManager
from unirepl.translation.engine import TranslationEngine

CRDS: dict[Backend, tuple[str, ...]] = {
    Backend.CEPH: (VOLUME_REPLICATION_CLASS.crd_name, VOLUME_REPLICATION.crd_name),
    Backend.TRIDENT: (MIRROR_RELATIONSHIP.crd_name, ACTION_MIRROR_UPDATE.crd_name),
    Backend.POWERSTORE: (REPLICATION_GROUP.crd_name,),
}


# =============================================================================
# Helpers
# =============================================================================


class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Awaitable sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def build_intent(
    name: str = "db-data",
    namespace: str = "default",
    *,
    state: ReplicationState | str = ReplicationState.SOURCE,
    mode: ReplicationMode | str = ReplicationMode.ASYNCHRONOUS,
    storage_class: str = "ceph-rbd",
    backend_hint: Backend | str | None = None,
    volume_handle: str = "vol-0042",
    extensions: dict[str, dict[str, Any]] | None = None,
    rpo: str = "15m",
) -> ReplicationIntent:
    return ReplicationIntent(
        metadata=ObjectMeta(name=name, namespace=namespace),
        spec=ReplicationSpec(
            desired_state=ReplicationState(state),
            desired_mode=ReplicationMode(mode),
            volume_mapping=VolumeMapping(
                source=VolumeSource(pvc_name=f"{name}-pvc", namespace=namespace),
                destination=VolumeDestination(volume_handle=volume_handle, namespace=namespace),
            ),
            source_endpoint=Endpoint(cluster="east", region="us-east-1", storage_class=storage_class),
            destination_endpoint=Endpoint(cluster="west", region="us-west-2", storage_class=storage_class),
            schedule=Schedule(rpo=rpo),
            backend_hint=Backend(backend_hint) if backend_hint is not None else None,
            extensions=extensions or {},
        ),
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def make_intent():
    """Factory for replication intents."""
    return build_intent


@pytest.fixture
def translator() -> TranslationEngine:
    return TranslationEngine()


@pytest.fixture
def client() -> InMemoryResourceClient:
    """Resource client with no backend installed."""
    return InMemoryResourceClient()


@pytest.fixture
def ceph_client() -> InMemoryResourceClient:
    """Resource client with only the Ceph CRDs installed."""
    return InMemoryResourceClient(installed=set(CRDS[Backend.CEPH]))


@pytest.fixture
def full_client() -> InMemoryResourceClient:
    """Resource client with every backend installed."""
    return InMemoryResourceClient(installed={crd for crds in CRDS.values() for crd in crds})


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def no_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def settings() -> ControllerSettings:
    return ControllerSettings(
        retry_initial_delay=0.0,
        retry_jitter=0.0,
        discovery_probe_delay=0.0,
        reconcile_timeout=5.0,
    )


@pytest.fixture
def controller_factory(translator, settings, no_sleep):
    """Build a controller around a given client, with instant retries.

    Breakers use a high threshold so retry-heavy tests don't trip them.
    """

    def factory(
        client: InMemoryResourceClient,
        store: InMemoryIntentStore | None = None,
        *,
        failure_threshold: int = 1000,
        **overrides: Any,
    ) -> ReconciliationController:
        metrics = overrides.pop("metrics", None) or ReplicationMetrics()
        return ReconciliationController(
            store or InMemoryIntentStore(),
            DiscoveryService.from_settings(client, translator, settings, sleep=no_sleep),
            default_registry(client, translator),
            retry_manager=RetryManager(
                ExponentialBackoff.from_settings(settings),
                sleep=no_sleep,
                on_retry=lambda event: metrics.record_retry(event.key),
            ),
            breakers=CircuitBreakerRegistry(failure_threshold=failure_threshold, is_failure=is_retryable),
            settings=settings,
            metrics=metrics,
            **overrides,
        )

    return factory
