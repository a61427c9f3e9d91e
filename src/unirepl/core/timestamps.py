"""
UTC timestamp and correlation-id utilities (stdlib-only).

Every component that stamps a condition, a transition record or a discovery
snapshot imports from here so that all times are timezone-aware UTC.

Tags:
    timestamps, utc, correlation-id, unirepl-core, stdlib-only

STDLIB ONLY - NO PYDANTIC.
"""

import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_iso8601(dt: datetime) -> str:
    """Serialize a datetime as ISO-8601, assuming UTC for naive values."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.isoformat()


def correlation_id(namespace: str, name: str) -> str:
    """Build a request/correlation id for one reconcile of one intent.

    Format is ``{namespace}-{name}-{unix_nanos}`` so ids sort by time
    within a single intent.
    """
    return f"{namespace}-{name}-{time.time_ns()}"
