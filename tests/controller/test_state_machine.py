"""Tests for the replication state machine."""

import pytest

from unirepl.controller.state_machine import (
    REJECTED,
    VALID_TRANSITIONS,
    StateMachine,
    is_valid_transition,
    transition_rule,
    valid_transitions,
    validate_transition,
)
from unirepl.core.enums import ReplicationState
from unirepl.core.errors import InvalidTransitionError

S = ReplicationState

LEGAL_EDGES = [(src, dst) for src, targets in VALID_TRANSITIONS.items() for dst in sorted(targets)]


# =============================================================================
# Graph
# =============================================================================


class TestTransitionGraph:
    """Tests for the legal transition graph."""

    @pytest.mark.parametrize(("current", "target"), LEGAL_EDGES)
    def test_legal_edges(self, current, target):
        """Every edge in the graph validates and has a rule."""
        assert is_valid_transition(current, target)
        assert transition_rule(current, target).description

    @pytest.mark.parametrize("state", list(S))
    def test_same_state_is_valid(self, state):
        """Staying put is always allowed and means re-ensuring."""
        assert is_valid_transition(state, state)
        assert transition_rule(state, state).verb == "ensure_replication"

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.SOURCE, S.REPLICA),
            (S.REPLICA, S.SOURCE),
            (S.PROMOTING, S.REPLICA),
            (S.DEMOTING, S.SOURCE),
            (S.SOURCE, S.PROMOTING),
            (S.FAILED, S.PROMOTING),
        ],
    )
    def test_illegal_edges(self, current, target):
        """Role swaps must pass through an in-flight state."""
        assert not is_valid_transition(current, target)
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(current, target)
        assert exc_info.value.current == current.value
        assert exc_info.value.target == target.value

    def test_initial_states(self):
        """A new intent can only start as source or replica."""
        assert valid_transitions(None) == frozenset({S.SOURCE, S.REPLICA})
        assert is_valid_transition(None, S.REPLICA)
        assert not is_valid_transition(None, S.SYNCING)

    @pytest.mark.parametrize(
        ("current", "target", "verb"),
        [
            (S.REPLICA, S.PROMOTING, "promote"),
            (S.SOURCE, S.DEMOTING, "demote"),
            (S.SOURCE, S.SYNCING, "resync"),
            (S.FAILED, S.SYNCING, "resync"),
            (S.PROMOTING, S.SOURCE, "ensure_replication"),
            (None, S.SOURCE, "ensure_replication"),
        ],
    )
    def test_verbs(self, current, target, verb):
        """Transitions map to the adapter verb that performs them."""
        assert transition_rule(current, target).verb == verb


# =============================================================================
# Audit log
# =============================================================================


class TestStateMachine:
    """Tests for StateMachine recording."""

    def test_rejection_is_recorded(self):
        """A rejected attempt is logged with reason 'rejected' and re-raised."""
        machine = StateMachine()
        with pytest.raises(InvalidTransitionError):
            machine.attempt_transition(S.SOURCE, S.REPLICA, "update", request_id="default-db-1")

        [record] = machine.history()
        assert record.accepted is False
        assert record.reason == REJECTED
        assert record.request_id == "default-db-1"

    def test_accepted_attempt_is_not_recorded(self):
        """Only the caller records accepted transitions."""
        machine = StateMachine()
        rule = machine.attempt_transition(S.REPLICA, S.PROMOTING, "update")
        assert rule.verb == "promote"
        assert machine.history() == []

    def test_history_is_bounded(self):
        """The oldest records are evicted first."""
        machine = StateMachine(history_size=3)
        for target in (S.SOURCE, S.DEMOTING, S.REPLICA, S.PROMOTING, S.SOURCE):
            machine.record_transition(None, target, "test")
        assert machine.history_size == 3
        assert [r.to_state for r in machine.history()] == [S.REPLICA, S.PROMOTING, S.SOURCE]

    def test_history_for_state(self):
        """history_for_state matches either end of a record."""
        machine = StateMachine()
        machine.record_transition(S.SOURCE, S.DEMOTING, "demote")
        machine.record_transition(S.DEMOTING, S.REPLICA, "settle")
        machine.record_transition(S.REPLICA, S.SYNCING, "resync")
        assert len(machine.history_for_state(S.DEMOTING)) == 2
        machine.clear_history()
        assert machine.history() == []
