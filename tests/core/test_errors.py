"""Tests for the error taxonomy and retry classification."""

import pytest

from unirepl.core.errors import (
    RETRY_CLASSIFICATION,
    CircuitOpenError,
    ConfigurationError,
    ErrorCategory,
    InvalidTransitionError,
    InvalidValueError,
    NoBackendAvailableError,
    NotImplementedOperationError,
    OperationFailedError,
    ProbeFailedError,
    ReplicationError,
    ResourceConflictError,
    ResourceNotFoundError,
    UnsupportedBackendError,
    ValidationFailedError,
    categorize_error,
    classify_type,
    condition_reason,
    is_retryable,
    is_terminal,
)


# =============================================================================
# Classification
# =============================================================================


class TestRetryClassification:
    """Tests for the binary retry table."""

    @pytest.mark.parametrize(
        "error",
        [
            OperationFailedError("update failed"),
            ResourceConflictError("conflict"),
            ProbeFailedError("probe failed"),
            ConnectionResetError("reset"),
            TimeoutError("slow"),
            OSError("io"),
        ],
    )
    def test_retryable(self, error):
        """Transport and backend failures are retryable."""
        assert is_retryable(error) is True
        assert is_terminal(error) is False

    @pytest.mark.parametrize(
        "error",
        [
            InvalidValueError("bad token"),
            UnsupportedBackendError("nope"),
            ValidationFailedError("invalid"),
            ConfigurationError("misconfigured"),
            NoBackendAvailableError("none"),
            NotImplementedOperationError("failover", backend="trident"),
            ResourceNotFoundError("VolumeReplication", "default", "db-vr"),
            InvalidTransitionError("source", "replica"),
            CircuitOpenError(circuit="ceph.promote"),
            ValueError("bug"),
        ],
    )
    def test_terminal(self, error):
        """Configuration, validation and programming errors are terminal."""
        assert is_retryable(error) is False

    def test_mro_lookup_uses_most_specific_entry(self):
        """ResourceNotFoundError is terminal although its parent is an AdapterError."""
        assert classify_type(ResourceNotFoundError) is False
        assert classify_type(ConnectionRefusedError) is True

    def test_explicit_retryable_wins(self):
        """An explicit retryable= overrides the table for one instance."""
        error = ValidationFailedError("flaky webhook", retryable=True)
        assert is_retryable(error) is True

    def test_table_covers_builtin_transport_errors(self):
        """Builtins escaping an adapter unwrapped are classified."""
        assert RETRY_CLASSIFICATION[ConnectionError] is True
        assert RETRY_CLASSIFICATION[TimeoutError] is True


# =============================================================================
# Structure
# =============================================================================


class TestReplicationError:
    """Tests for the base error."""

    def test_defaults(self):
        """Base error is internal and terminal."""
        error = ReplicationError("boom")
        assert error.category == ErrorCategory.INTERNAL
        assert error.retryable is False
        assert error.reason == "InternalError"

    def test_with_context_is_fluent(self):
        """with_context sets known fields and stores the rest as metadata."""
        error = OperationFailedError("create failed").with_context(
            backend="ceph", operation="ensure_replication", attempt=3
        )
        assert error.context.backend == "ceph"
        assert error.context.operation == "ensure_replication"
        assert error.context.metadata == {"attempt": 3}

    def test_cause_is_chained(self):
        """Wrapped exceptions stay reachable through __cause__."""
        cause = ConnectionResetError("peer reset")
        error = OperationFailedError("update failed", cause=cause)
        assert error.__cause__ is cause
        assert error.to_dict()["cause"] == "peer reset"

    def test_to_dict(self):
        """to_dict includes type, category, reason and context."""
        error = ValidationFailedError("bad", backend="ceph", operation="validate")
        data = error.to_dict()
        assert data["error_type"] == "ValidationFailedError"
        assert data["category"] == "VALIDATION"
        assert data["reason"] == "ValidationFailed"
        assert data["context"] == {"backend": "ceph", "operation": "validate"}

    def test_not_implemented_message(self):
        """NotImplementedOperationError names the verb and backend."""
        error = NotImplementedOperationError("failover", backend="powerstore")
        assert "failover" in str(error)
        assert "powerstore" in str(error)
        assert error.reason == "NotImplemented"

    def test_invalid_transition_message(self):
        """Missing current state renders as <none>."""
        error = InvalidTransitionError(None, "promoting")
        assert "<none>" in str(error)
        assert error.reason == "InvalidStateTransition"


# =============================================================================
# Condition reasons
# =============================================================================


class TestConditionReason:
    """Tests for condition_reason()."""

    def test_terminal_error_keeps_its_reason(self):
        """Terminal errors surface their own reason."""
        assert condition_reason(InvalidTransitionError("source", "replica")) == "InvalidStateTransition"
        assert condition_reason(ValidationFailedError("bad")) == "ValidationFailed"
        assert condition_reason(NoBackendAvailableError("none")) == "NoBackendAvailable"

    def test_retryable_error_collapses(self):
        """Retryable errors that exhausted retries become ReconcileFailed."""
        assert condition_reason(OperationFailedError("boom")) == "ReconcileFailed"
        assert condition_reason(ConnectionError("down")) == "ReconcileFailed"

    def test_timeout(self):
        """Deadline overruns get their own reason."""
        assert condition_reason(TimeoutError("slow")) == "ReconcileTimeout"

    def test_circuit_open(self):
        """Open circuits are reported as CircuitOpen."""
        assert condition_reason(CircuitOpenError(circuit="ceph.promote")) == "CircuitOpen"

    def test_unknown_error(self):
        """Anything else is an internal error."""
        assert condition_reason(KeyError("x")) == "InternalError"

    def test_categorize_builtin(self):
        """Builtin errors are categorized by kind."""
        assert categorize_error(TimeoutError()) == ErrorCategory.TIMEOUT
        assert categorize_error(ConnectionError()) == ErrorCategory.BACKEND
        assert categorize_error(KeyError()) == ErrorCategory.UNKNOWN
