"""
Backend discovery with a TTL cache and soft failure.

Manifesto:
    The controller asks "which backends are usable right now?" on every
    Create/Update. Probing the cluster that often would be wasteful, and a
    flaky probe must never block reconciliation when hints alone would do.

    - **TTL cache:** a snapshot is reused until it expires
    - **Single flight:** concurrent callers after expiry share one probe
    - **Soft failure:** a failed probe returns the last-known-good snapshot
      plus a ``ProbeFailedError`` in ``result.error``; it never raises
    - **Failure window:** that degraded answer is reused for ``failure_ttl``
      seconds, so an outage does not cost every caller a full probe cycle
    - **Wholesale replace:** the snapshot is swapped atomically, readers
      see either the old or the new one

Architecture:
    ::

        discover()
          ├── cache fresh?  ──yes──► cached snapshot (from_cache=True)
          └── no ──► probe lock ──► re-check ──► _probe()
                                              ├── ok   → replace cache
                                              └── fail → last-known-good + error
                                                         (kept for failure_ttl)

Examples:
    >>> service = DiscoveryService(client, translator, ttl=300)
    >>> result = await service.discover()
    >>> result.available
    [<Backend.CEPH: 'ceph'>]

Tags:
    discovery, ttl-cache, soft-failure, single-flight, unirepl-discovery
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any

from unirepl.adapters.client import ResourceClient
from unirepl.core.enums import Backend
from unirepl.core.errors import DiscoveryError, OperationFailedError, ProbeFailedError
from unirepl.core.logging import get_logger
from unirepl.core.models import BackendDescriptor
from unirepl.core.timestamps import utc_now
from unirepl.discovery.probes import DEFAULT_PROBES, BackendProbe
from unirepl.translation.engine import TranslationEngine

if TYPE_CHECKING:
    from unirepl.core.settings import ControllerSettings

logger = get_logger(__name__)

# Failures that make a probe attempt soft-fail
_PROBE_ERRORS = (OperationFailedError, ConnectionError, TimeoutError, OSError)


@dataclass(frozen=True)
class DiscoveryResult:
    """One discovery snapshot."""

    backends: tuple[BackendDescriptor, ...] = ()
    error: DiscoveryError | None = None
    from_cache: bool = False
    discovered_at: datetime | None = None

    @property
    def available(self) -> list[Backend]:
        """Available backends in probe order."""
        return [d.identifier for d in self.backends if d.available]

    def is_available(self, backend: Backend | str) -> bool:
        return Backend(backend) in self.available

    def descriptor(self, backend: Backend | str) -> BackendDescriptor | None:
        wanted = Backend(backend)
        for descriptor in self.backends:
            if descriptor.identifier == wanted:
                return descriptor
        return None


class DiscoveryService:
    """Probes the cluster for installed backends and caches the answer."""

    def __init__(
        self,
        client: ResourceClient,
        translator: TranslationEngine,
        *,
        probes: Sequence[BackendProbe] = DEFAULT_PROBES,
        ttl: float = 300.0,
        probe_retries: int = 3,
        probe_delay: float = 0.5,
        failure_ttl: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = client
        self._translator = translator
        self._probes = tuple(probes)
        self._ttl = ttl
        self._probe_retries = max(1, probe_retries)
        self._probe_delay = probe_delay
        self._failure_ttl = failure_ttl
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.RLock()
        self._probe_lock = asyncio.Lock()
        self._snapshot: DiscoveryResult | None = None
        self._expires_at = 0.0
        # degraded answer served until _failure_until instead of re-probing
        self._failure: DiscoveryResult | None = None
        self._failure_until = 0.0
        self.probe_count = 0

    @classmethod
    def from_settings(
        cls,
        client: ResourceClient,
        translator: TranslationEngine,
        settings: ControllerSettings,
        **overrides: Any,
    ) -> DiscoveryService:
        """Build a service from the ``discovery_*`` settings."""
        options: dict[str, Any] = {
            "ttl": settings.discovery_ttl,
            "probe_retries": settings.discovery_probe_retries,
            "probe_delay": settings.discovery_probe_delay,
            "failure_ttl": settings.discovery_failure_ttl,
        }
        return cls(client, translator, **(options | overrides))

    # ── Cache ────────────────────────────────────────────────────────

    def _fresh(self) -> DiscoveryResult | None:
        with self._lock:
            now = self._clock()
            if self._snapshot is not None and now < self._expires_at:
                return self._snapshot
            if self._failure is not None and now < self._failure_until:
                return self._failure
        return None

    def cached(self) -> DiscoveryResult | None:
        """Last-known-good snapshot regardless of age."""
        with self._lock:
            return self._snapshot

    def invalidate(self) -> None:
        """Expire the cache; the next ``discover()`` re-probes."""
        with self._lock:
            self._expires_at = 0.0
            self._failure = None

    # ── Public API ───────────────────────────────────────────────────

    async def discover(self) -> DiscoveryResult:
        """Return a snapshot, probing only when the cache has expired."""
        snapshot = self._fresh()
        if snapshot is not None:
            return replace(snapshot, from_cache=True)

        async with self._probe_lock:
            # another caller may have refreshed while we waited
            snapshot = self._fresh()
            if snapshot is not None:
                return replace(snapshot, from_cache=True)
            return await self._probe()

    async def refresh(self) -> DiscoveryResult:
        """Force a probe regardless of cache age."""
        async with self._probe_lock:
            return await self._probe()

    async def available_backends(self) -> list[Backend]:
        return (await self.discover()).available

    async def is_available(self, backend: Backend | str) -> bool:
        return (await self.discover()).is_available(backend)

    # ── Probing ──────────────────────────────────────────────────────

    async def _probe(self) -> DiscoveryResult:
        self.probe_count += 1
        try:
            descriptors = await self._run_probes()
        except _PROBE_ERRORS as exc:
            error = ProbeFailedError(f"backend discovery failed: {exc}", cause=exc)
            last = self.cached()
            logger.warning(
                "discovery_probe_failed",
                error=str(exc),
                has_cached=last is not None,
            )
            if last is not None:
                degraded = replace(last, error=error, from_cache=True)
            else:
                degraded = DiscoveryResult(error=error, discovered_at=utc_now())
            with self._lock:
                self._failure = degraded
                self._failure_until = self._clock() + self._failure_ttl
            return degraded

        result = DiscoveryResult(backends=tuple(descriptors), discovered_at=utc_now())
        with self._lock:
            self._snapshot = result
            self._expires_at = self._clock() + self._ttl
            self._failure = None
        logger.info(
            "discovery_completed",
            available=[b.value for b in result.available],
            probed=len(descriptors),
        )
        return result

    async def _run_probes(self) -> list[BackendDescriptor]:
        attempt = 1
        while True:
            try:
                return [await probe.run(self._client, self._translator) for probe in self._probes]
            except _PROBE_ERRORS as exc:
                logger.debug("discovery_probe_attempt_failed", attempt=attempt, error=str(exc))
                if attempt >= self._probe_retries:
                    raise
            await self._sleep(self._probe_delay)
            attempt += 1


__all__ = ["DiscoveryService", "DiscoveryResult"]
