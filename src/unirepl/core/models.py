"""
Data model for replication intents and their observed status.

The intent is the backend-agnostic desired-state record a caller submits;
the observed status is owned exclusively by the controller. Both are
pydantic models so they serialize cleanly to and from the object store.

Architecture:
    ::

        ReplicationIntent
        ├── metadata: ObjectMeta   (name, namespace, generation,
        │                           deletion_timestamp, finalizers)
        ├── spec: ReplicationSpec  (desired_state, desired_mode,
        │                           volume_mapping, endpoints, schedule,
        │                           backend_hint, extensions)
        └── status: ObservedStatus (conditions, observed_generation,
                                    current_state/mode, discovered_backends,
                                    backend, last_sync_time)

Tags:
    models, pydantic, intent, status, conditions, unirepl-core
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from unirepl.core.enums import (
    Backend,
    ConditionStatus,
    ConditionType,
    HealthState,
    ReplicationMode,
    ReplicationState,
    ScheduleMode,
)
from unirepl.core.timestamps import utc_now

TIME_PATTERN = re.compile(r"^[0-9]+(s|m|h|d)$")


# ── Intent ───────────────────────────────────────────────────────────────


class ObjectMeta(BaseModel):
    """Identity and lifecycle bookkeeping of an intent."""

    name: str
    namespace: str = "default"
    generation: int = Field(default=1, ge=1)
    deletion_timestamp: datetime | None = None
    finalizers: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class VolumeSource(BaseModel):
    """Source side of a volume mapping."""

    pvc_name: str
    namespace: str = "default"


class VolumeDestination(BaseModel):
    """Destination side of a volume mapping."""

    volume_handle: str
    namespace: str = "default"


class VolumeMapping(BaseModel):
    """Unified single source → single destination mapping."""

    source: VolumeSource
    destination: VolumeDestination


class Endpoint(BaseModel):
    """Cluster/region/storage-class descriptor used as a discovery hint."""

    cluster: str
    region: str
    storage_class: str


class Schedule(BaseModel):
    """Replication schedule; RPO/RTO use the ``<n>(s|m|h|d)`` grammar."""

    mode: ScheduleMode = ScheduleMode.CONTINUOUS
    rpo: str = "15m"
    rto: str = "5m"

    @field_validator("rpo", "rto")
    @classmethod
    def _check_time_pattern(cls, value: str) -> str:
        if not TIME_PATTERN.match(value):
            raise ValueError(f"must match {TIME_PATTERN.pattern}, got {value!r}")
        return value


class ReplicationSpec(BaseModel):
    """Desired replication for one volume pair."""

    desired_state: ReplicationState
    desired_mode: ReplicationMode
    volume_mapping: VolumeMapping
    source_endpoint: Endpoint
    destination_endpoint: Endpoint
    schedule: Schedule = Field(default_factory=Schedule)
    backend_hint: Backend | None = None
    extensions: dict[str, dict[str, Any]] = Field(default_factory=dict)

    def extension(self, backend: Backend | str) -> dict[str, Any]:
        """Backend-specific options, empty when none were given."""
        return self.extensions.get(Backend(backend).value, {})


# ── Status ───────────────────────────────────────────────────────────────


class Condition(BaseModel):
    """One observed condition; unique per ``type`` within a status."""

    type: str
    status: ConditionStatus
    reason: str
    message: str = ""
    last_transition_time: datetime = Field(default_factory=utc_now)
    observed_generation: int = 0


class BackendDescriptor(BaseModel):
    """Discovery's verdict on one backend."""

    model_config = ConfigDict(frozen=True)

    identifier: Backend
    available: bool
    capabilities: frozenset[str] = frozenset()
    detected_resources: tuple[str, ...] = ()
    message: str = ""


class StatusFragment(BaseModel):
    """What an adapter reports back from the backend, in unified vocabulary."""

    state: ReplicationState | None = None
    mode: ReplicationMode | None = None
    health: HealthState = HealthState.UNKNOWN
    message: str = ""
    last_sync_time: datetime | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class ObservedStatus(BaseModel):
    """Controller-owned observed status of an intent."""

    conditions: list[Condition] = Field(default_factory=list)
    observed_generation: int = 0
    current_state: ReplicationState | None = None
    current_mode: ReplicationMode | None = None
    discovered_backends: list[BackendDescriptor] = Field(default_factory=list)
    backend: Backend | None = None
    last_sync_time: datetime | None = None

    def get_condition(self, condition_type: ConditionType | str) -> Condition | None:
        """Return the condition of a given type, if present."""
        wanted = ConditionType(condition_type).value if isinstance(condition_type, ConditionType) else condition_type
        for condition in self.conditions:
            if condition.type == wanted:
                return condition
        return None

    @property
    def is_ready(self) -> bool:
        ready = self.get_condition(ConditionType.READY)
        return ready is not None and ready.status == ConditionStatus.TRUE


class ReplicationIntent(BaseModel):
    """A backend-agnostic desired-replication record."""

    metadata: ObjectMeta
    spec: ReplicationSpec
    status: ObservedStatus = Field(default_factory=ObservedStatus)

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def deletion_requested(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.metadata.finalizers


def split_key(key: str) -> tuple[str, str]:
    """Split ``namespace/name``; a bare name lives in ``default``."""
    namespace, sep, name = key.partition("/")
    if not sep:
        return "default", namespace
    return namespace, name


__all__ = [
    "TIME_PATTERN",
    "ObjectMeta",
    "VolumeSource",
    "VolumeDestination",
    "VolumeMapping",
    "Endpoint",
    "Schedule",
    "ReplicationSpec",
    "Condition",
    "BackendDescriptor",
    "StatusFragment",
    "ObservedStatus",
    "ReplicationIntent",
    "split_key",
]
