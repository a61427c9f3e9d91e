"""Per-operation circuit breakers for backend calls.

A backend that keeps failing its promote (or resync, or ensure) calls should
not be hit again by every intent that reconciles against it. Each
``{backend}.{verb}`` pair gets its own breaker, so a broken Trident resync
does not stop Ceph promotes or even Trident demotes.

Lifecycle::

    closed ──(failure_threshold consecutive failures)──▶ open
    open ──(recovery_timeout elapsed, checked lazily)──▶ half_open
    half_open ──(success_threshold successes)──▶ closed
    half_open ──(any counted failure)──▶ open

Only failures accepted by ``is_failure`` move the breaker. The controller
passes :func:`~unirepl.core.errors.is_retryable`, so a validation error on
one intent never opens the circuit for every other intent on that backend.

Example:
    >>> registry = CircuitBreakerRegistry(failure_threshold=5, is_failure=is_retryable)
    >>> breaker = registry.for_operation("ceph", "promote")
    >>> await breaker.call_async(adapter.promote_replication, intent)
"""

from __future__ import annotations

import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from unirepl.core.errors import CircuitOpenError
from unirepl.core.logging import get_logger
from unirepl.core.timestamps import utc_now

T = TypeVar("T")

StateListener = Callable[[str, "CircuitState", "CircuitState"], None]

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitStats:
    """Running totals for one breaker.

    ``rejected_requests`` counts fast-fails while open and never feeds
    ``failure_rate``, which only looks at calls that actually reached the
    backend.
    """

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    last_state_change: datetime | None = None

    @property
    def failure_rate(self) -> float:
        attempted = self.successful_requests + self.failed_requests
        return 100.0 * self.failed_requests / attempted if attempted else 0.0


@dataclass
class CircuitBreaker:
    """Breaker guarding a single backend verb.

    Attributes:
        name: ``"{backend}.{verb}"``
        failure_threshold: Consecutive counted failures that open the circuit
        recovery_timeout: Seconds spent open before probes are let through
        success_threshold: Probe successes needed to close again
        half_open_max_calls: Probes allowed in flight at once
        clock: Monotonic seconds, injectable for tests
        is_failure: Which exceptions count; ``None`` counts all of them
        on_state_change: ``(name, old, new)`` after every transition
    """

    name: str = "default"
    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    success_threshold: int = 2
    half_open_max_calls: int = 1
    clock: Callable[[], float] = time.monotonic
    is_failure: Callable[[BaseException], bool] | None = None
    on_state_change: StateListener | None = None

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _consecutive_failures: int = field(default=0, init=False)
    _probe_successes: int = field(default=0, init=False)
    _probes_in_flight: int = field(default=0, init=False)
    _open_since: float | None = field(default=None, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._consecutive_failures

    # -- transitions ---------------------------------------------------------

    def _maybe_half_open(self) -> None:
        if self._state is not CircuitState.OPEN or self._open_since is None:
            return
        if self.clock() - self._open_since >= self.recovery_timeout:
            self._move(CircuitState.HALF_OPEN)

    def _move(self, target: CircuitState) -> None:
        previous = self._state
        self._state = target
        self._stats.state_changes += 1
        self._stats.last_state_change = utc_now()

        self._probe_successes = 0
        if target is CircuitState.CLOSED:
            self._consecutive_failures = 0
            self._open_since = None
        elif target is CircuitState.OPEN:
            self._open_since = self.clock()
        else:
            self._probes_in_flight = 0

        if target is CircuitState.OPEN:
            logger.warning(
                "circuit_opened",
                circuit=self.name,
                from_state=previous.value,
                consecutive_failures=self._consecutive_failures,
            )
        else:
            logger.info("circuit_state_changed", circuit=self.name, from_state=previous.value, to_state=target.value)

        if self.on_state_change is not None:
            self.on_state_change(self.name, previous, target)

    # -- admission and outcomes ----------------------------------------------

    def allow_request(self) -> bool:
        """Admit or reject one call; rejections are counted in stats."""
        with self._lock:
            self._maybe_half_open()
            self._stats.total_requests += 1

            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.HALF_OPEN and self._probes_in_flight < self.half_open_max_calls:
                self._probes_in_flight += 1
                return True

            self._stats.rejected_requests += 1
            return False

    def record_success(self) -> None:
        with self._lock:
            self._stats.successful_requests += 1
            self._stats.last_success_time = utc_now()

            if self._state is CircuitState.HALF_OPEN:
                self._probes_in_flight = max(0, self._probes_in_flight - 1)
                self._probe_successes += 1
                if self._probe_successes >= self.success_threshold:
                    self._move(CircuitState.CLOSED)
            else:
                self._consecutive_failures = 0

    def record_failure(self, error: BaseException | None = None) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._stats.failed_requests += 1
            self._stats.last_failure_time = utc_now()

            if self._state is CircuitState.HALF_OPEN:
                self._move(CircuitState.OPEN)
            elif self._state is CircuitState.CLOSED and self._consecutive_failures >= self.failure_threshold:
                self._move(CircuitState.OPEN)

    def _release_probe(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._probes_in_flight = max(0, self._probes_in_flight - 1)

    def reset(self) -> None:
        """Close the circuit and forget the failure streak."""
        with self._lock:
            self._move(CircuitState.CLOSED)

    def force_open(self) -> None:
        """Open the circuit now, e.g. while a backend is under maintenance."""
        with self._lock:
            self._move(CircuitState.OPEN)

    async def call_async(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``func(*args, **kwargs)`` if the circuit admits it.

        Exceptions from ``func`` always propagate unchanged. Those rejected
        by ``is_failure``, and cancellation, free their probe slot without
        touching the streak.

        Raises:
            CircuitOpenError: The circuit rejected the call and ``func`` was
                never awaited
        """
        if not self.allow_request():
            raise CircuitOpenError(f"Circuit '{self.name}' is open, rejecting request", circuit=self.name)

        try:
            result = await func(*args, **kwargs)
        except Exception as exc:
            if self.is_failure is None or self.is_failure(exc):
                self.record_failure(exc)
            else:
                self._release_probe()
            raise
        except BaseException:
            # cancelled mid-call: no verdict on the backend, but the probe slot is free again
            self._release_probe()
            raise
        self.record_success()
        return result


class CircuitBreakerRegistry:
    """Lazily created breakers sharing one set of defaults."""

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        success_threshold: int = 2,
        clock: Callable[[], float] = time.monotonic,
        is_failure: Callable[[BaseException], bool] | None = None,
        on_state_change: StateListener | None = None,
    ):
        self._defaults: dict[str, Any] = dict(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            success_threshold=success_threshold,
            clock=clock,
            is_failure=is_failure,
            on_state_change=on_state_change,
        )
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.RLock()

    @staticmethod
    def key(backend: str, verb: str) -> str:
        return f"{backend}.{verb}"

    def get(self, name: str) -> CircuitBreaker | None:
        with self._lock:
            return self._breakers.get(name)

    def get_or_create(self, name: str, **overrides: Any) -> CircuitBreaker:
        """Return the breaker called ``name``, creating it with ``overrides`` on first use."""
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name=name, **(self._defaults | overrides))
                self._breakers[name] = breaker
            return breaker

    def for_operation(self, backend: str, verb: str) -> CircuitBreaker:
        return self.get_or_create(self.key(backend, verb))

    def list_all(self) -> list[str]:
        with self._lock:
            return list(self._breakers)

    def states(self) -> dict[str, CircuitState]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.name: b.state for b in breakers}

    def remove(self, name: str) -> None:
        with self._lock:
            self._breakers.pop(name, None)

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()


__all__ = ["CircuitState", "CircuitStats", "CircuitBreaker", "CircuitBreakerRegistry"]
