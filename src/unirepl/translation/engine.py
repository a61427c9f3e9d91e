"""
Translation engine: unified vocabulary ↔ backend vocabulary.

Stateless lookups over the immutable tables in :mod:`unirepl.translation.maps`.
One engine is constructed at startup and injected into the adapters and
the controller; tests can pass alternative tables.

Examples:
    >>> engine = TranslationEngine()
    >>> engine.to_backend("ceph", Axis.STATE, "replica")
    'secondary'
    >>> engine.from_backend(Backend.POWERSTORE, "state", "destination")
    'replica'
    >>> engine.to_backend("ceph", "mode", "eventual")
    'async-eventual'
    >>> engine.to_backend("ceph", "state", "standby")
    Traceback (most recent call last):
    ...
    unirepl.core.errors.InvalidValueError: ...

Tags:
    translation, engine, stateless, unirepl-core
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from unirepl.core.enums import Axis, Backend, ReplicationMode, ReplicationState
from unirepl.core.errors import (
    InconsistentMappingError,
    InvalidValueError,
    UnsupportedBackendError,
)
from unirepl.translation.maps import DEFAULT_TABLES, BackendTables


def _token(value: str | Enum) -> str:
    return value.value if isinstance(value, Enum) else value


@dataclass(frozen=True)
class BackendInfo:
    """Supported vocabulary of one backend."""

    backend: Backend
    supported_states: tuple[str, ...]
    supported_modes: tuple[str, ...]
    backend_states: tuple[str, ...]
    backend_modes: tuple[str, ...]

    def __str__(self) -> str:
        return (
            f"{self.backend.value} backend supports:\n"
            f"  States: {', '.join(self.supported_states)} -> {', '.join(self.backend_states)}\n"
            f"  Modes: {', '.join(self.supported_modes)} -> {', '.join(self.backend_modes)}"
        )


class TranslationEngine:
    """Bidirectional translator for the state and mode axes."""

    def __init__(self, tables: Mapping[Backend, BackendTables] | None = None):
        self._tables = tables if tables is not None else DEFAULT_TABLES

    def _tables_for(self, backend: Backend | str) -> tuple[Backend, BackendTables]:
        try:
            resolved = Backend(_token(backend))
        except ValueError:
            raise UnsupportedBackendError(
                f"backend {_token(backend)!r} is not supported",
                backend=_token(backend),
            ) from None
        tables = self._tables.get(resolved)
        if tables is None:
            raise UnsupportedBackendError(
                f"no translation tables registered for backend {resolved.value!r}",
                backend=resolved.value,
            )
        return resolved, tables

    # ── Core contract ────────────────────────────────────────────────

    def to_backend(self, backend: Backend | str, axis: Axis | str, unified: str | Enum) -> str:
        """Translate a unified token to the backend's token."""
        resolved, tables = self._tables_for(backend)
        axis = Axis(_token(axis))
        token = _token(unified)
        native = tables.for_axis(axis).to_backend(token)
        if native is None:
            raise InvalidValueError(
                f"unified {axis.value} {token!r} has no {resolved.value} equivalent",
                backend=resolved.value,
                axis=axis.value,
                value=token,
            )
        return native

    def from_backend(self, backend: Backend | str, axis: Axis | str, native: str) -> str:
        """Translate a backend token back to the unified token."""
        resolved, tables = self._tables_for(backend)
        axis = Axis(_token(axis))
        unified = tables.for_axis(axis).from_backend(native)
        if unified is None:
            raise InvalidValueError(
                f"{resolved.value} {axis.value} {native!r} is not a recognized token",
                backend=resolved.value,
                axis=axis.value,
                value=native,
            )
        return unified

    def validate(self, backend: Backend | str) -> None:
        """Check the bijection/totality invariant of both tables.

        Raises:
            InconsistentMappingError: describing every violation found
        """
        resolved, tables = self._tables_for(backend)
        problems = [
            f"{axis.value}: {problem}"
            for axis in Axis
            for problem in tables.for_axis(axis).violations()
        ]
        if problems:
            raise InconsistentMappingError(
                f"{resolved.value} translation tables are inconsistent: " + "; ".join(problems),
                backend=resolved.value,
            )

    def validate_all(self) -> None:
        for backend in self.supported_backends():
            self.validate(backend)

    # ── Typed helpers ────────────────────────────────────────────────

    def state_to_backend(self, backend: Backend | str, state: ReplicationState | str) -> str:
        return self.to_backend(backend, Axis.STATE, state)

    def state_from_backend(self, backend: Backend | str, native: str) -> ReplicationState:
        return ReplicationState(self.from_backend(backend, Axis.STATE, native))

    def mode_to_backend(self, backend: Backend | str, mode: ReplicationMode | str) -> str:
        return self.to_backend(backend, Axis.MODE, mode)

    def mode_from_backend(self, backend: Backend | str, native: str) -> ReplicationMode:
        return ReplicationMode(self.from_backend(backend, Axis.MODE, native))

    def translate_to_backend(
        self,
        backend: Backend | str,
        state: ReplicationState | str,
        mode: ReplicationMode | str,
    ) -> tuple[str, str]:
        """Translate a (state, mode) pair in one call."""
        return self.state_to_backend(backend, state), self.mode_to_backend(backend, mode)

    def translate_from_backend(
        self, backend: Backend | str, native_state: str, native_mode: str
    ) -> tuple[ReplicationState, ReplicationMode]:
        return self.state_from_backend(backend, native_state), self.mode_from_backend(backend, native_mode)

    # ── Introspection ────────────────────────────────────────────────

    def supported_backends(self) -> list[Backend]:
        return list(self._tables)

    def is_supported(self, backend: Backend | str) -> bool:
        try:
            self._tables_for(backend)
        except UnsupportedBackendError:
            return False
        return True

    def supported_states(self, backend: Backend | str) -> list[str]:
        return self._tables_for(backend)[1].state.unified_values()

    def supported_modes(self, backend: Backend | str) -> list[str]:
        return self._tables_for(backend)[1].mode.unified_values()

    def backend_info(self, backend: Backend | str) -> BackendInfo:
        resolved, tables = self._tables_for(backend)
        return BackendInfo(
            backend=resolved,
            supported_states=tuple(tables.state.unified_values()),
            supported_modes=tuple(tables.mode.unified_values()),
            backend_states=tuple(tables.state.backend_values()),
            backend_modes=tuple(tables.mode.backend_values()),
        )


__all__ = ["TranslationEngine", "BackendInfo"]
