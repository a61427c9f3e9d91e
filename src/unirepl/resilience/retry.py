"""Retry with exponential backoff and jitter, keyed by resource identity.

Example:
    >>> from unirepl.resilience.retry import ExponentialBackoff, RetryManager
    >>>
    >>> backoff = ExponentialBackoff(max_attempts=5, initial_delay=1.0, max_delay=300.0)
    >>> for attempt in range(4):
    ...     print(f"Attempt {attempt}: wait {backoff.next_delay(attempt):.2f}s")
    >>>
    >>> manager = RetryManager(backoff)
    >>> await manager.with_retry("default/db-mirror", lambda: adapter.ensure_replication(intent))
"""

from __future__ import annotations

import asyncio
import random
import threading
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from unirepl.core.errors import is_retryable
from unirepl.core.logging import get_logger
from unirepl.core.timestamps import utc_now
from unirepl.resilience.timeout import get_remaining_deadline

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass
class ExponentialBackoff:
    """Exponential backoff with additive jitter.

    Delay = min(initial_delay * multiplier ** attempt, max_delay)
            + uniform(0, jitter_fraction * delay)

    Attributes:
        max_attempts: Total invocations allowed, first try included
        initial_delay: Delay before the first retry, in seconds
        max_delay: Cap on the exponential part, in seconds
        multiplier: Exponential multiplier
        jitter_fraction: Upper bound of jitter as a fraction of the delay
    """

    max_attempts: int = 5
    initial_delay: float = 1.0
    max_delay: float = 300.0
    multiplier: float = 2.0
    jitter_fraction: float = 0.1
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def base_delay(self, attempt: int) -> float:
        """Delay without jitter for zero-based retry ``attempt``."""
        return min(self.initial_delay * (self.multiplier**attempt), self.max_delay)

    def next_delay(self, attempt: int) -> float:
        """Calculate backoff delay including jitter."""
        delay = self.base_delay(attempt)
        if self.jitter_fraction > 0:
            delay += self.rng.uniform(0, self.jitter_fraction * delay)
        return delay

    def should_retry(self, attempt: int) -> bool:
        """``attempt`` is the number of invocations already made."""
        return attempt < self.max_attempts

    @classmethod
    def from_settings(cls, settings: Any) -> ExponentialBackoff:
        return cls(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay,
            max_delay=settings.retry_max_delay,
            multiplier=settings.retry_multiplier,
            jitter_fraction=settings.retry_jitter,
        )


@dataclass(frozen=True)
class RetryEvent:
    """One scheduled retry."""

    key: str
    attempt: int
    delay: float
    error: str
    error_type: str
    timestamp: datetime = field(default_factory=utc_now)


class RetryManager:
    """Runs async operations with per-key retry bookkeeping.

    Per-key attempt counters exist only while a call is in flight: they
    count failures, drop to zero on the first success and are removed
    when the call returns or raises.

    Terminal errors (per ``classifier``) are raised on the spot. The
    backoff sleep is a plain ``await``, so cancelling the task aborts it
    immediately.
    """

    def __init__(
        self,
        backoff: ExponentialBackoff | None = None,
        *,
        classifier: Callable[[BaseException], bool] = is_retryable,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        history_size: int = 100,
        on_retry: Callable[[RetryEvent], None] | None = None,
    ):
        self.backoff = backoff or ExponentialBackoff()
        self._classifier = classifier
        self._sleep = sleep
        self._on_retry = on_retry
        self._counters: dict[str, int] = {}
        self._history: deque[RetryEvent] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def attempts(self, key: str) -> int:
        """Failed attempts of the in-flight call for ``key`` (0 when idle)."""
        with self._lock:
            return self._counters.get(key, 0)

    def history(self) -> list[RetryEvent]:
        with self._lock:
            return list(self._history)

    def in_flight(self) -> list[str]:
        with self._lock:
            return sorted(self._counters)

    def _bump(self, key: str) -> int:
        with self._lock:
            count = self._counters.get(key, 0) + 1
            self._counters[key] = count
            return count

    def _reset(self, key: str) -> None:
        with self._lock:
            self._counters[key] = 0

    def _clear(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)

    async def with_retry(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Execute ``fn`` with retry logic.

        Args:
            key: Resource identity the counters are kept under
            fn: Zero-argument callable returning an awaitable

        Returns:
            Result of the first successful call

        Raises:
            The terminal error, or the last retryable error once
            ``max_attempts`` invocations have failed or the next backoff
            would outlast the enclosing deadline
        """
        invocations = 0
        try:
            while True:
                invocations += 1
                try:
                    result = await fn()
                except Exception as exc:
                    failures = self._bump(key)
                    if not self._classifier(exc):
                        logger.debug("retry_skipped_terminal", key=key, error_type=type(exc).__name__)
                        raise
                    if not self.backoff.should_retry(invocations):
                        logger.warning(
                            "retry_exhausted",
                            key=key,
                            attempts=invocations,
                            error=str(exc),
                        )
                        raise

                    delay = self.backoff.next_delay(invocations - 1)
                    remaining = get_remaining_deadline()
                    if remaining is not None and delay >= remaining:
                        # sleeping would only run into the enclosing deadline
                        logger.warning(
                            "retry_abandoned_deadline",
                            key=key,
                            attempts=invocations,
                            delay=round(delay, 3),
                            remaining=round(remaining, 3),
                        )
                        raise
                    event = RetryEvent(
                        key=key,
                        attempt=failures,
                        delay=delay,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    with self._lock:
                        self._history.append(event)
                    if self._on_retry is not None:
                        self._on_retry(event)
                    logger.info(
                        "retry_scheduled",
                        key=key,
                        attempt=invocations,
                        delay=round(delay, 3),
                        error=str(exc),
                    )
                    await self._sleep(delay)
                else:
                    self._reset(key)
                    return result
        finally:
            self._clear(key)


__all__ = ["ExponentialBackoff", "RetryEvent", "RetryManager"]
