"""
Replication state machine: legal transitions plus a bounded audit log.

Valid transition graph::

    (initial) → SOURCE | REPLICA
    SOURCE    → DEMOTING | SYNCING | FAILED
    REPLICA   → PROMOTING | SYNCING | FAILED
    PROMOTING → SOURCE | FAILED
    DEMOTING  → REPLICA | FAILED
    SYNCING   → SOURCE | REPLICA | FAILED
    FAILED    → SYNCING | SOURCE | REPLICA

A same-state transition is always valid. ``SOURCE → REPLICA`` and
``REPLICA → SOURCE`` are deliberately absent: a role swap must pass through
``DEMOTING``/``PROMOTING``.

Architecture Decision:
    Transition validation is deliberately strict. If a legitimate move is
    blocked, add it to ``VALID_TRANSITIONS`` explicitly; never bypass the
    guard. Rejected attempts are still recorded, with reason ``"rejected"``.

Tags:
    state-machine, transitions, audit, ring-buffer, unirepl-controller
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from unirepl.core.enums import ReplicationState
from unirepl.core.errors import InvalidTransitionError
from unirepl.core.logging import get_logger
from unirepl.core.timestamps import utc_now

logger = get_logger(__name__)

S = ReplicationState

VALID_TRANSITIONS: dict[ReplicationState, frozenset[ReplicationState]] = {
    S.SOURCE: frozenset({S.DEMOTING, S.SYNCING, S.FAILED}),
    S.REPLICA: frozenset({S.PROMOTING, S.SYNCING, S.FAILED}),
    S.PROMOTING: frozenset({S.SOURCE, S.FAILED}),
    S.DEMOTING: frozenset({S.REPLICA, S.FAILED}),
    S.SYNCING: frozenset({S.SOURCE, S.REPLICA, S.FAILED}),
    S.FAILED: frozenset({S.SYNCING, S.SOURCE, S.REPLICA}),
}

INITIAL_STATES: frozenset[ReplicationState] = frozenset({S.SOURCE, S.REPLICA})

REJECTED = "rejected"


@dataclass(frozen=True)
class TransitionRule:
    """What a legal transition means and which adapter verb performs it."""

    description: str
    verb: str


_RULES: dict[tuple[ReplicationState | None, ReplicationState], TransitionRule] = {
    (None, S.SOURCE): TransitionRule("establish as replication source", "ensure_replication"),
    (None, S.REPLICA): TransitionRule("establish as replication target", "ensure_replication"),
    (S.SOURCE, S.DEMOTING): TransitionRule("begin demotion to replica", "demote"),
    (S.SOURCE, S.SYNCING): TransitionRule("resynchronize from source", "resync"),
    (S.SOURCE, S.FAILED): TransitionRule("mark source failed", "ensure_replication"),
    (S.REPLICA, S.PROMOTING): TransitionRule("begin promotion to source", "promote"),
    (S.REPLICA, S.SYNCING): TransitionRule("resynchronize replica", "resync"),
    (S.REPLICA, S.FAILED): TransitionRule("mark replica failed", "ensure_replication"),
    (S.PROMOTING, S.SOURCE): TransitionRule("complete promotion", "ensure_replication"),
    (S.PROMOTING, S.FAILED): TransitionRule("promotion failed", "ensure_replication"),
    (S.DEMOTING, S.REPLICA): TransitionRule("complete demotion", "ensure_replication"),
    (S.DEMOTING, S.FAILED): TransitionRule("demotion failed", "ensure_replication"),
    (S.SYNCING, S.SOURCE): TransitionRule("resync complete as source", "ensure_replication"),
    (S.SYNCING, S.REPLICA): TransitionRule("resync complete as replica", "ensure_replication"),
    (S.SYNCING, S.FAILED): TransitionRule("resync failed", "ensure_replication"),
    (S.FAILED, S.SYNCING): TransitionRule("recover by resynchronizing", "resync"),
    (S.FAILED, S.SOURCE): TransitionRule("recover as source", "ensure_replication"),
    (S.FAILED, S.REPLICA): TransitionRule("recover as replica", "ensure_replication"),
}

_NO_CHANGE = TransitionRule("no state change", "ensure_replication")


@dataclass(frozen=True)
class TransitionRecord:
    """One entry of the transition audit log."""

    from_state: ReplicationState | None
    to_state: ReplicationState
    reason: str
    request_id: str | None = None
    accepted: bool = True
    timestamp: datetime = field(default_factory=utc_now)


def is_valid_transition(current: ReplicationState | None, target: ReplicationState) -> bool:
    """Pure graph check; no recording."""
    if current is None:
        return target in INITIAL_STATES
    if current == target:
        return True
    return target in VALID_TRANSITIONS.get(current, frozenset())


def validate_transition(current: ReplicationState | None, target: ReplicationState) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_transition(ReplicationState.REPLICA, ReplicationState.PROMOTING)
        >>> # OK, no exception
        >>> validate_transition(ReplicationState.REPLICA, ReplicationState.SOURCE)
        InvalidTransitionError: Invalid replication state transition: replica → source
    """
    if not is_valid_transition(current, target):
        raise InvalidTransitionError(
            current.value if current is not None else None,
            target.value,
        )


def transition_rule(current: ReplicationState | None, target: ReplicationState) -> TransitionRule:
    """Rule for a legal transition.

    Raises:
        InvalidTransitionError: If the transition is not legal
    """
    validate_transition(current, target)
    if current == target:
        return _NO_CHANGE
    return _RULES[(current, target)]


def valid_transitions(current: ReplicationState | None) -> frozenset[ReplicationState]:
    if current is None:
        return INITIAL_STATES
    return VALID_TRANSITIONS.get(current, frozenset())


class StateMachine:
    """Transition validator with a bounded, append-safe history.

    The history is a ``deque(maxlen=history_size)``; the oldest record is
    evicted first.
    """

    def __init__(self, history_size: int = 100):
        self._history: deque[TransitionRecord] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    @property
    def history_size(self) -> int:
        return self._history.maxlen or 0

    is_valid_transition = staticmethod(is_valid_transition)
    validate_transition = staticmethod(validate_transition)
    transition_rule = staticmethod(transition_rule)
    valid_transitions = staticmethod(valid_transitions)

    def record_transition(
        self,
        from_state: ReplicationState | None,
        to_state: ReplicationState,
        reason: str,
        request_id: str | None = None,
        accepted: bool = True,
    ) -> TransitionRecord:
        record = TransitionRecord(
            from_state=from_state,
            to_state=to_state,
            reason=reason,
            request_id=request_id,
            accepted=accepted,
        )
        with self._lock:
            self._history.append(record)
        return record

    def attempt_transition(
        self,
        from_state: ReplicationState | None,
        to_state: ReplicationState,
        reason: str,
        request_id: str | None = None,
    ) -> TransitionRule:
        """Validate a transition; rejected attempts are recorded, then raised.

        Accepted transitions are *not* recorded here. The caller records
        them once the backend has actually been driven there.
        """
        try:
            rule = transition_rule(from_state, to_state)
        except InvalidTransitionError:
            self.record_transition(from_state, to_state, REJECTED, request_id, accepted=False)
            logger.warning(
                "transition_rejected",
                from_state=from_state.value if from_state else None,
                to_state=to_state.value,
                request_id=request_id,
                attempted_reason=reason,
            )
            raise
        return rule

    def history(self) -> list[TransitionRecord]:
        with self._lock:
            return list(self._history)

    def history_for_state(self, state: ReplicationState) -> list[TransitionRecord]:
        """Records that left from or arrived at ``state``."""
        with self._lock:
            return [r for r in self._history if r.from_state == state or r.to_state == state]

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()


__all__ = [
    "VALID_TRANSITIONS",
    "INITIAL_STATES",
    "REJECTED",
    "TransitionRule",
    "TransitionRecord",
    "StateMachine",
    "is_valid_transition",
    "validate_transition",
    "transition_rule",
    "valid_transitions",
]
