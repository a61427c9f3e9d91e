"""Replication adapter registry and factory.

Manifesto:
    The controller should never hard-code adapter class names. The registry
    maps :class:`Backend` identifiers to adapter factories and hands out one
    lazily-built instance per backend, wired with the injected
    ``ResourceClient`` and ``TranslationEngine``.

Features:
    - ``AdapterRegistry`` built explicitly; no process-wide singleton
    - ``register()`` for custom / third-party backends
    - ``get()`` cached instance, ``create()`` fresh instance
    - ``health()`` summary across instantiated adapters

Tags:
    unirepl, adapters, registry, factory, dependency-injection

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from unirepl.adapters.base import ReplicationAdapter
from unirepl.adapters.ceph import CephAdapter
from unirepl.adapters.client import ResourceClient
from unirepl.adapters.powerstore import PowerStoreAdapter
from unirepl.adapters.trident import TridentAdapter
from unirepl.core.enums import Backend
from unirepl.core.errors import ConfigurationError
from unirepl.core.logging import get_logger
from unirepl.translation.engine import TranslationEngine

logger = get_logger(__name__)

AdapterFactory = Callable[[ResourceClient, TranslationEngine], ReplicationAdapter]


def _resolve(backend: Backend | str) -> Backend:
    try:
        return Backend(backend)
    except ValueError:
        raise ConfigurationError(f"Unknown replication backend: {backend}") from None


class AdapterRegistry:
    """
    Registry for replication adapter factories.

    Lookups are keyed by backend identifier only; nothing outside this
    module branches on concrete adapter types.
    """

    def __init__(self, client: ResourceClient, translator: TranslationEngine):
        self._client = client
        self._translator = translator
        self._factories: dict[Backend, AdapterFactory] = {}
        self._instances: dict[Backend, ReplicationAdapter] = {}
        self._lock = threading.Lock()

    def register(self, backend: Backend | str, factory: AdapterFactory) -> None:
        """Register an adapter factory; replaces any cached instance."""
        resolved = _resolve(backend)
        with self._lock:
            self._factories[resolved] = factory
            self._instances.pop(resolved, None)
        logger.debug("adapter_registered", backend=resolved.value)

    def unregister(self, backend: Backend | str) -> None:
        resolved = _resolve(backend)
        with self._lock:
            self._factories.pop(resolved, None)
            self._instances.pop(resolved, None)

    def create(self, backend: Backend | str) -> ReplicationAdapter:
        """Build a fresh adapter instance (not cached)."""
        resolved = _resolve(backend)
        with self._lock:
            factory = self._factories.get(resolved)
        if factory is None:
            raise ConfigurationError(f"No adapter registered for backend: {resolved.value}")
        return factory(self._client, self._translator)

    def get(self, backend: Backend | str) -> ReplicationAdapter:
        """Return the cached adapter for ``backend``, building it on first use."""
        resolved = _resolve(backend)
        with self._lock:
            adapter = self._instances.get(resolved)
            if adapter is not None:
                return adapter
            factory = self._factories.get(resolved)
            if factory is None:
                raise ConfigurationError(f"No adapter registered for backend: {resolved.value}")
            adapter = factory(self._client, self._translator)
            self._instances[resolved] = adapter
        logger.debug("adapter_created", backend=resolved.value, adapter=type(adapter).__name__)
        return adapter

    def list_backends(self) -> list[Backend]:
        """Registered backends in declaration order."""
        with self._lock:
            return [backend for backend in Backend if backend in self._factories]

    def is_supported(self, backend: Backend | str) -> bool:
        try:
            resolved = Backend(backend)
        except ValueError:
            return False
        with self._lock:
            return resolved in self._factories

    def health(self) -> dict[str, bool]:
        """Liveness of every instantiated adapter."""
        with self._lock:
            instances = dict(self._instances)
        return {backend.value: adapter.health() for backend, adapter in instances.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._factories)


def default_registry(client: ResourceClient, translator: TranslationEngine) -> AdapterRegistry:
    """
    Build a registry with the Ceph, Trident and PowerStore adapters.

    Usage:
        registry = default_registry(InMemoryResourceClient(), TranslationEngine())
        adapter = registry.get(Backend.CEPH)
    """
    registry = AdapterRegistry(client, translator)
    registry.register(Backend.CEPH, CephAdapter)
    registry.register(Backend.TRIDENT, TridentAdapter)
    registry.register(Backend.POWERSTORE, PowerStoreAdapter)
    return registry


__all__ = ["AdapterRegistry", "AdapterFactory", "default_registry"]
