"""
unirepl.resilience - retry, circuit breaking and deadlines for backend calls.

Composition used by the controller for every backend call::

    await retry.with_retry(key, lambda: breaker.call_async(adapter.verb, intent))

all inside ``with_deadline_async(reconcile_timeout)``.
"""

from unirepl.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    CircuitStats,
)
from unirepl.resilience.retry import ExponentialBackoff, RetryEvent, RetryManager
from unirepl.resilience.timeout import (
    DeadlineContext,
    TimeoutExpired,
    get_current_deadline,
    run_with_timeout_async,
    with_deadline_async,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStats",
    "ExponentialBackoff",
    "RetryEvent",
    "RetryManager",
    "DeadlineContext",
    "TimeoutExpired",
    "get_current_deadline",
    "run_with_timeout_async",
    "with_deadline_async",
]
