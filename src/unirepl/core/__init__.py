"""
unirepl.core - shared primitives of the replication core.

Enums, the data model, the error taxonomy, logging and settings. Nothing
in here talks to a backend or holds process-wide mutable state.
"""

from unirepl.core.enums import (
    Axis,
    Backend,
    ConditionStatus,
    ConditionType,
    HealthState,
    OperationKind,
    ReplicationMode,
    ReplicationState,
    ScheduleMode,
)
from unirepl.core.errors import (
    ErrorCategory,
    ErrorContext,
    ReplicationError,
    is_retryable,
)
from unirepl.core.models import (
    BackendDescriptor,
    Condition,
    Endpoint,
    ObjectMeta,
    ObservedStatus,
    ReplicationIntent,
    ReplicationSpec,
    Schedule,
    StatusFragment,
    VolumeDestination,
    VolumeMapping,
    VolumeSource,
)

__all__ = [
    "Axis",
    "Backend",
    "ConditionStatus",
    "ConditionType",
    "HealthState",
    "OperationKind",
    "ReplicationMode",
    "ReplicationState",
    "ScheduleMode",
    "ErrorCategory",
    "ErrorContext",
    "ReplicationError",
    "is_retryable",
    "BackendDescriptor",
    "Condition",
    "Endpoint",
    "ObjectMeta",
    "ObservedStatus",
    "ReplicationIntent",
    "ReplicationSpec",
    "Schedule",
    "StatusFragment",
    "VolumeDestination",
    "VolumeMapping",
    "VolumeSource",
]
