"""
Shared vocabulary enums for the replication core.

These are the *unified* tokens: the backend-agnostic words an intent is
written in. Backend-native tokens never appear here; they live only in the
translation tables.

STDLIB ONLY - NO PYDANTIC.
"""

from enum import Enum


class ReplicationState(str, Enum):
    """
    Unified replication state of a volume.

    ``promoting``/``demoting``/``syncing`` are in-flight states; ``failed``
    is the recovery entry point. Legal moves between them are owned by
    :mod:`unirepl.controller.state_machine`.
    """

    SOURCE = "source"
    REPLICA = "replica"
    PROMOTING = "promoting"
    DEMOTING = "demoting"
    SYNCING = "syncing"
    FAILED = "failed"


class ReplicationMode(str, Enum):
    """Unified replication mode."""

    SYNCHRONOUS = "synchronous"
    ASYNCHRONOUS = "asynchronous"
    EVENTUAL = "eventual"


class ScheduleMode(str, Enum):
    """How replication is scheduled."""

    CONTINUOUS = "continuous"
    INTERVAL = "interval"
    MANUAL = "manual"


class Backend(str, Enum):
    """
    Backend identifiers.

    Declaration order is significant: it is the tie-break order used by
    storage-class keyword matching during backend selection.
    """

    CEPH = "ceph"
    TRIDENT = "trident"
    POWERSTORE = "powerstore"


class Axis(str, Enum):
    """Translation axis."""

    STATE = "state"
    MODE = "mode"


class OperationKind(str, Enum):
    """What a single reconcile pass decided to do."""

    CREATE = "create"
    UPDATE = "update"
    SYNC = "sync"
    DELETE = "delete"


class HealthState(str, Enum):
    """Backend-reported replication health."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class ConditionStatus(str, Enum):
    """Tri-state condition status."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionType(str, Enum):
    """Condition types written into observed status."""

    READY = "Ready"
    SYNCED = "Synced"
    BACKEND_SELECTED = "BackendSelected"


__all__ = [
    "ReplicationState",
    "ReplicationMode",
    "ScheduleMode",
    "Backend",
    "Axis",
    "OperationKind",
    "HealthState",
    "ConditionStatus",
    "ConditionType",
]
