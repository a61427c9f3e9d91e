"""Deadline enforcement for reconciles.

Every reconcile runs inside ``with_deadline_async(reconcile_timeout)``. On
expiry the running task is cancelled at its current ``await`` (adapter
call or retry backoff sleep alike) and the caller sees
:class:`TimeoutExpired`, a ``TimeoutError`` subclass and therefore
retryable.

Nested deadlines are tracked per task through a ``ContextVar`` stack;
an inner deadline never outlives the outer one.

Examples:
    >>> async with with_deadline_async(300.0, "reconcile default/db") as ctx:
    ...     await adapter.ensure_replication(intent)
    ...     if ctx.remaining() < 5.0:
    ...         return

Tags:
    timeout, deadline, resilience, asyncio, unirepl-resilience
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TypeVar

T = TypeVar("T")


class TimeoutExpired(TimeoutError):
    """A deadline set by :func:`with_deadline_async` ran out.

    Subclassing ``TimeoutError`` keeps it on the retryable side of the
    error classification, so an overrun reconcile is requeued.
    """

    def __init__(self, timeout: float, elapsed: float | None = None, operation: str = "operation"):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation
        detail = "" if elapsed is None else f" (ran for {elapsed:.2f}s)"
        super().__init__(f"Operation '{operation}' timed out after {timeout}s{detail}")


@dataclass
class DeadlineContext:
    """One active deadline, in ``time.monotonic()`` seconds."""

    deadline: float
    timeout_seconds: float
    operation: str = "operation"
    start_time: float = field(default_factory=time.monotonic)

    def remaining(self) -> float:
        # negative once the deadline has passed
        return self.deadline - time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.start_time

    def is_expired(self) -> bool:
        return self.remaining() <= 0


# innermost deadline last; each task sees its own copy
_active_deadlines: ContextVar[tuple[DeadlineContext, ...]] = ContextVar("unirepl_deadlines", default=())


def get_current_deadline() -> DeadlineContext | None:
    active = _active_deadlines.get()
    return active[-1] if active else None


def get_effective_timeout(requested: float) -> float:
    """``requested`` clipped to what the enclosing deadline still allows."""
    outer = get_current_deadline()
    return requested if outer is None else max(0.0, min(requested, outer.remaining()))


def get_remaining_deadline() -> float | None:
    """Seconds left on the innermost deadline, ``None`` outside any."""
    outer = get_current_deadline()
    return None if outer is None else outer.remaining()


@asynccontextmanager
async def with_deadline_async(seconds: float, operation: str | None = None) -> AsyncIterator[DeadlineContext]:
    """Run the block under a deadline of ``seconds``, clipped to any outer one.

    Raises:
        TimeoutExpired: The block was cancelled at the deadline
        ValueError: ``seconds`` is negative
    """
    if seconds < 0:
        raise ValueError(f"Timeout must be non-negative, got {seconds}")

    budget = get_effective_timeout(seconds)
    started = time.monotonic()
    ctx = DeadlineContext(
        deadline=started + budget,
        timeout_seconds=budget,
        operation=operation or "operation",
        start_time=started,
    )

    token = _active_deadlines.set((*_active_deadlines.get(), ctx))
    try:
        async with asyncio.timeout(budget) as scope:
            yield ctx
    except TimeoutError:
        # a TimeoutError raised by the body itself is not ours to rename
        if not scope.expired():
            raise
        raise TimeoutExpired(timeout=budget, elapsed=ctx.elapsed, operation=ctx.operation) from None
    finally:
        _active_deadlines.reset(token)


async def run_with_timeout_async(awaitable: Awaitable[T], timeout_seconds: float, operation: str | None = None) -> T:
    """Await ``awaitable``, raising :class:`TimeoutExpired` after ``timeout_seconds``."""
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")
    async with with_deadline_async(timeout_seconds, operation):
        return await awaitable


__all__ = [
    "TimeoutExpired",
    "DeadlineContext",
    "get_current_deadline",
    "get_effective_timeout",
    "get_remaining_deadline",
    "with_deadline_async",
    "run_with_timeout_async",
]
