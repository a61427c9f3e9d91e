"""Merge-by-type helpers for status conditions.

A status holds at most one condition per ``type``. Setting a condition
replaces the existing one of that type and leaves other types untouched.
``last_transition_time`` only moves when the ``status`` value changes.
"""

from __future__ import annotations

from datetime import datetime

from unirepl.core.enums import ConditionStatus, ConditionType
from unirepl.core.models import Condition, ObservedStatus
from unirepl.core.timestamps import utc_now


def _type_name(condition_type: ConditionType | str) -> str:
    return condition_type.value if isinstance(condition_type, ConditionType) else condition_type


def set_condition(
    status: ObservedStatus,
    condition_type: ConditionType | str,
    condition_status: ConditionStatus,
    reason: str,
    message: str = "",
    observed_generation: int = 0,
    now: datetime | None = None,
) -> Condition:
    """Insert or replace the condition of ``condition_type`` in place."""
    name = _type_name(condition_type)
    existing = status.get_condition(name)
    transition_time = now or utc_now()
    if existing is not None and existing.status == condition_status:
        transition_time = existing.last_transition_time

    condition = Condition(
        type=name,
        status=condition_status,
        reason=reason,
        message=message,
        last_transition_time=transition_time,
        observed_generation=observed_generation,
    )
    status.conditions = [c for c in status.conditions if c.type != name] + [condition]
    return condition


def remove_condition(status: ObservedStatus, condition_type: ConditionType | str) -> None:
    name = _type_name(condition_type)
    status.conditions = [c for c in status.conditions if c.type != name]


def mark_ready(status: ObservedStatus, reason: str, message: str = "", generation: int = 0) -> Condition:
    return set_condition(status, ConditionType.READY, ConditionStatus.TRUE, reason, message, generation)


def mark_not_ready(status: ObservedStatus, reason: str, message: str = "", generation: int = 0) -> Condition:
    return set_condition(status, ConditionType.READY, ConditionStatus.FALSE, reason, message, generation)


def is_condition_true(status: ObservedStatus, condition_type: ConditionType | str) -> bool:
    condition = status.get_condition(_type_name(condition_type))
    return condition is not None and condition.status == ConditionStatus.TRUE


__all__ = [
    "set_condition",
    "remove_condition",
    "mark_ready",
    "mark_not_ready",
    "is_condition_true",
]
