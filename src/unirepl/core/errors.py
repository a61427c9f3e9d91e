"""
Structured error types for the replication core.

Every failure the controller can observe is one of the typed errors below.
Each carries enough metadata for three decisions the controller makes on
every reconcile: *retry or not*, *which condition reason to write*, and
*what to log*.

Errors carry:
- **Category:** which subsystem raised it (translation, discovery, adapter...)
- **Retryable:** whether the Retry Manager may try again
- **Reason:** the CamelCase condition reason written into observed status
- **Context:** backend, operation, resource and intent key
- **Cause:** chained underlying exception for root cause analysis

Manifesto:
    - **Typed Error Hierarchy:** One subtree per subsystem
    - **Explicit Retry Semantics:** A single classification table decides
      retryability; nothing is inferred from message text
    - **Rich Context:** Errors carry metadata for logging and conditions
    - **Error Chaining:** Transport exceptions are wrapped, never lost

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      ReplicationError                            │
        │  (category, retryable, reason, context, cause)                  │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TranslationError    DiscoveryError       AdapterError          │
        │       │                   │                    │                 │
        │  UnsupportedBackend  ProbeFailed (soft)   ValidationFailed      │
        │  InvalidValue        NoBackendAvailable   OperationFailed (R)   │
        │  InconsistentMapping                      NotImplementedOp      │
        │                                           ResourceNotFound      │
        │                                                                  │
        │  StateMachineError   ConfigurationError   CircuitOpenError      │
        │       │                                   (fast-fail)           │
        │  InvalidTransition                                              │
        └─────────────────────────────────────────────────────────────────┘

        (R) = retryable.  Builtin ConnectionError / TimeoutError / OSError
        are retryable too; everything else is terminal.

Examples:
    Wrapping a transport failure:

    >>> try:
    ...     raise ConnectionResetError("peer reset")
    ... except ConnectionError as e:
    ...     err = OperationFailedError("update VolumeReplication failed", cause=e)
    >>> err.retryable
    True

    Terminal errors:

    >>> is_retryable(InvalidTransitionError("source", "replica"))
    False

Guardrails:
    ❌ DON'T: Raise bare Exception from an adapter
    ✅ DO: Wrap native failures in OperationFailedError(cause=...)

    ❌ DON'T: Decide retryability at the call site
    ✅ DO: Extend RETRY_CLASSIFICATION and let is_retryable() answer

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    unirepl-core, conditions

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

import builtins
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Error categories for classification and routing.

    Categories follow the subsystem that raised the error so log queries
    and dashboards can split "our bug" from "the backend is down".

    Attributes:
        TRANSLATION: Vocabulary lookup failures
        DISCOVERY: Backend probing and selection
        ADAPTER: Backend adapter contract failures
        BACKEND: Native backend / transport failures
        VALIDATION: Semantic pre-flight checks
        CONFIG: Operator configuration mistakes
        STATE_MACHINE: Illegal state transitions
        RESILIENCE: Synthetic fast-fail from the circuit breaker
        TIMEOUT: Deadline exceeded
        INTERNAL: Bugs, unexpected state
        UNKNOWN: Uncategorized errors
    """

    TRANSLATION = "TRANSLATION"
    DISCOVERY = "DISCOVERY"
    ADAPTER = "ADAPTER"
    BACKEND = "BACKEND"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    STATE_MACHINE = "STATE_MACHINE"
    RESILIENCE = "RESILIENCE"
    TIMEOUT = "TIMEOUT"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        backend: Backend identifier involved, if any
        operation: Adapter verb or controller phase
        resource: Backend-native resource name
        key: Intent key (``namespace/name``)
        request_id: Correlation id of the reconcile
        metadata: Additional key-value pairs
    """

    backend: str | None = None
    operation: str | None = None
    resource: str | None = None
    key: str | None = None
    request_id: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["backend", "operation", "resource", "key", "request_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ReplicationError(Exception):
    """
    Base exception for all replication-core errors.

    Subclasses set ``default_category`` and ``default_reason``. Retryability
    defaults to the entry in :data:`RETRY_CLASSIFICATION` for the most
    specific class in the MRO, so the table is the single source of truth;
    an explicit ``retryable=`` argument still wins for one-off cases.

    Examples:
        >>> error = ReplicationError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False

        >>> error = OperationFailedError("create failed").with_context(
        ...     backend="ceph", operation="ensure_replication"
        ... )
        >>> error.context.backend
        'ceph'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False
    default_reason: str = "InternalError"

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        reason: str | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else classify_type(type(self))
        self.reason = reason or self.default_reason
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ReplicationError:
        """
        Add context to this error (fluent API).

        Usage:
            raise OperationFailedError("update failed").with_context(
                backend="trident", resource="db-mirror"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
            "reason": self.reason,
        }

        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict

        if self.cause is not None:
            result["cause"] = str(self.cause)

        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSLATION ERRORS
# =============================================================================


class TranslationError(ReplicationError):
    """Base for vocabulary translation failures.

    Carries the ``backend``, ``axis`` and offending ``value`` so the
    condition message can name exactly which token was rejected.
    """

    default_category = ErrorCategory.TRANSLATION
    default_reason = "TranslationFailed"

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        axis: str | None = None,
        value: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.backend = backend
        self.axis = axis
        self.value = value
        if backend is not None:
            self.context.backend = backend


class UnsupportedBackendError(TranslationError):
    """No translation tables exist for the requested backend."""

    default_reason = "UnsupportedBackend"


class InvalidValueError(TranslationError):
    """Token is not present in the table for that backend and axis."""

    default_reason = "InvalidValue"


class InconsistentMappingError(TranslationError):
    """A translation table violates the bijection/totality invariant.

    This indicates a defect in the tables themselves, never a runtime
    condition caused by user input.
    """

    default_category = ErrorCategory.INTERNAL
    default_reason = "InconsistentMapping"


# =============================================================================
# DISCOVERY ERRORS
# =============================================================================


class DiscoveryError(ReplicationError):
    """Base for backend discovery failures."""

    default_category = ErrorCategory.DISCOVERY
    default_reason = "DiscoveryFailed"


class ProbeFailedError(DiscoveryError):
    """Probing the environment failed.

    Soft: the discovery service returns the last-known-good snapshot
    alongside this error instead of raising it.
    """

    default_reason = "DiscoveryDegraded"


class NoBackendAvailableError(DiscoveryError):
    """No backend could be resolved for an intent. Terminal for the reconcile."""

    default_reason = "NoBackendAvailable"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigurationError(ReplicationError):
    """Operator or intent configuration cannot be satisfied.

    Raised for an unavailable ``backend_hint``, an unregistered adapter,
    and invalid adapter options.
    """

    default_category = ErrorCategory.CONFIG
    default_reason = "ConfigurationError"


# =============================================================================
# ADAPTER ERRORS
# =============================================================================


class AdapterError(ReplicationError):
    """Base for failures surfaced through the adapter contract."""

    default_category = ErrorCategory.ADAPTER
    default_reason = "AdapterError"

    def __init__(self, message: str, *, backend: str | None = None, operation: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        if backend is not None:
            self.context.backend = backend
        if operation is not None:
            self.context.operation = operation


class ValidationFailedError(AdapterError):
    """Backend-specific semantic validation of an intent failed."""

    default_category = ErrorCategory.VALIDATION
    default_reason = "ValidationFailed"


class OperationFailedError(AdapterError):
    """A backend call failed; wraps the underlying transport/backend error."""

    default_category = ErrorCategory.BACKEND
    default_reason = "AdapterError"


class NotImplementedOperationError(AdapterError):
    """The backend has no native analogue for the requested verb.

    Permanent: surfaced as a condition, never retried.
    """

    default_reason = "NotImplemented"

    def __init__(self, operation: str, *, backend: str | None = None, **kwargs: Any):
        super().__init__(
            f"operation {operation!r} is not implemented by backend {backend or 'unknown'!r}",
            backend=backend,
            operation=operation,
            **kwargs,
        )
        self.operation = operation


class ResourceNotFoundError(AdapterError):
    """A backend-native resource does not exist."""

    default_category = ErrorCategory.BACKEND
    default_reason = "ResourceNotFound"

    def __init__(self, kind: str, namespace: str, name: str, **kwargs: Any):
        super().__init__(f"{kind} {namespace}/{name} not found", **kwargs)
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.context.resource = name


class ResourceConflictError(AdapterError):
    """A backend-native resource already exists or was modified concurrently."""

    default_category = ErrorCategory.BACKEND
    default_reason = "ResourceConflict"


# =============================================================================
# STATE MACHINE ERRORS
# =============================================================================


class StateMachineError(ReplicationError):
    """Base for state machine failures."""

    default_category = ErrorCategory.STATE_MACHINE
    default_reason = "StateMachineError"


class InvalidTransitionError(StateMachineError):
    """Raised when a requested state transition is not in the graph.

    Terminal: requires the caller to change the desired state.
    """

    default_reason = "InvalidStateTransition"

    def __init__(self, current: str | None, target: str, **kwargs: Any) -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid replication state transition: {current or '<none>'} → {target}",
            **kwargs,
        )


# =============================================================================
# RESILIENCE ERRORS
# =============================================================================


class CircuitOpenError(ReplicationError):
    """Raised when a circuit is open and rejecting calls.

    Synthetic fast-fail: the wrapped call was never invoked. Not retried
    inside the retry loop; the controller's requeue interval takes over.
    """

    default_category = ErrorCategory.RESILIENCE
    default_reason = "CircuitOpen"

    def __init__(self, message: str = "Circuit breaker is open", *, circuit: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.circuit = circuit


# =============================================================================
# CLASSIFICATION
# =============================================================================


# Binary retry classification. Lookup walks the exception's MRO and the
# first class found here decides. Entries for builtins cover transport
# failures that escape an adapter unwrapped.
RETRY_CLASSIFICATION: dict[type[BaseException], bool] = {
    UnsupportedBackendError: False,
    InvalidValueError: False,
    InconsistentMappingError: False,
    TranslationError: False,
    ProbeFailedError: True,
    NoBackendAvailableError: False,
    ConfigurationError: False,
    ValidationFailedError: False,
    NotImplementedOperationError: False,
    ResourceNotFoundError: False,
    ResourceConflictError: True,
    OperationFailedError: True,
    InvalidTransitionError: False,
    CircuitOpenError: False,
    builtins.TimeoutError: True,
    ConnectionError: True,
    OSError: True,
}


def classify_type(error_type: type[BaseException]) -> bool:
    """Return the retryability of an exception type from the table."""
    for klass in error_type.__mro__:
        if klass in RETRY_CLASSIFICATION:
            return RETRY_CLASSIFICATION[klass]
    if issubclass(error_type, ReplicationError):
        return error_type.default_retryable
    return False


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, ReplicationError):
        return error.retryable
    return classify_type(type(error))


def is_terminal(error: BaseException) -> bool:
    """Inverse of :func:`is_retryable`."""
    return not is_retryable(error)


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, ReplicationError):
        return error.category
    if isinstance(error, builtins.TimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.BACKEND
    return ErrorCategory.UNKNOWN


def condition_reason(error: BaseException) -> str:
    """CamelCase reason to write into a ``Ready=False`` condition.

    Terminal errors keep their specific reason; retryable ones that
    outlived the retry budget collapse to ``ReconcileFailed``.
    """
    if isinstance(error, CircuitOpenError):
        return error.reason
    if isinstance(error, builtins.TimeoutError):
        return "ReconcileTimeout"
    if is_retryable(error):
        return "ReconcileFailed"
    if isinstance(error, ReplicationError):
        return error.reason
    return "InternalError"


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ReplicationError",
    # Translation
    "TranslationError",
    "UnsupportedBackendError",
    "InvalidValueError",
    "InconsistentMappingError",
    # Discovery
    "DiscoveryError",
    "ProbeFailedError",
    "NoBackendAvailableError",
    # Config
    "ConfigurationError",
    # Adapter
    "AdapterError",
    "ValidationFailedError",
    "OperationFailedError",
    "NotImplementedOperationError",
    "ResourceNotFoundError",
    "ResourceConflictError",
    # State machine
    "StateMachineError",
    "InvalidTransitionError",
    # Resilience
    "CircuitOpenError",
    # Classification
    "RETRY_CLASSIFICATION",
    "classify_type",
    "is_retryable",
    "is_terminal",
    "categorize_error",
    "condition_reason",
]
