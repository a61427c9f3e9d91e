"""
Immutable translation tables between unified and backend vocabularies.

Each backend owns two tables (state and mode). A table is a bijection:
every unified token has exactly one backend token and vice versa. Where a
backend's native vocabulary is smaller than the unified one (Ceph only
knows primary/secondary/resync, Trident only established/promoted/
reestablished) the table uses *extended* backend tokens such as
``resync-promote`` or ``established-replica`` so that the reverse lookup
stays total. Adapters normalize extended tokens to native ones right
before they submit a resource.

Tables are built once at import and exposed through ``MappingProxyType``;
nothing can mutate them afterwards, so readers need no locking.

Examples:
    >>> DEFAULT_TABLES[Backend.CEPH].state.to_backend("source")
    'primary'
    >>> DEFAULT_TABLES[Backend.TRIDENT].mode.from_backend("Async")
    'asynchronous'

Tags:
    translation, vocabulary, bijection, immutable, unirepl-core
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from unirepl.core.enums import Axis, Backend


@dataclass(frozen=True)
class TranslationMap:
    """One bidirectional table (unified ↔ backend) for a single axis.

    ``reverse`` is derived from ``forward``; when two unified tokens share a
    backend token the derived reverse table is shorter than the forward one,
    which :meth:`violations` reports.
    """

    forward: Mapping[str, str]
    reverse: Mapping[str, str] = field(init=False)

    def __post_init__(self) -> None:
        forward = dict(self.forward)
        reverse: dict[str, str] = {}
        for unified, native in forward.items():
            reverse.setdefault(native, unified)
        object.__setattr__(self, "forward", MappingProxyType(forward))
        object.__setattr__(self, "reverse", MappingProxyType(reverse))

    @classmethod
    def from_pairs(cls, pairs: Mapping[str, str]) -> TranslationMap:
        return cls(forward=pairs)

    def to_backend(self, unified: str) -> str | None:
        return self.forward.get(unified)

    def from_backend(self, native: str) -> str | None:
        return self.reverse.get(native)

    def unified_values(self) -> list[str]:
        return list(self.forward)

    def backend_values(self) -> list[str]:
        return list(self.reverse)

    def violations(self) -> list[str]:
        """Describe every bijection/totality violation (empty when sound)."""
        problems: list[str] = []

        seen: dict[str, str] = {}
        for unified, native in self.forward.items():
            if native in seen:
                problems.append(
                    f"unified tokens {seen[native]!r} and {unified!r} share backend token {native!r}"
                )
            else:
                seen[native] = unified

        for native in self.forward.values():
            if native not in self.reverse:
                problems.append(f"backend token {native!r} missing from reverse table")

        for native, unified in self.reverse.items():
            if self.forward.get(unified) != native:
                problems.append(f"reverse entry {native!r} -> {unified!r} does not round-trip")

        return problems


@dataclass(frozen=True)
class BackendTables:
    """State and mode tables for one backend."""

    state: TranslationMap
    mode: TranslationMap

    def for_axis(self, axis: Axis) -> TranslationMap:
        return self.state if axis == Axis.STATE else self.mode


CEPH_STATES = TranslationMap.from_pairs({
    "source": "primary",
    "replica": "secondary",
    "syncing": "resync",
    "promoting": "resync-promote",
    "demoting": "resync-demote",
    "failed": "error",
})

CEPH_MODES = TranslationMap.from_pairs({
    "synchronous": "sync",
    "asynchronous": "async",
    "eventual": "async-eventual",
})

TRIDENT_STATES = TranslationMap.from_pairs({
    "source": "established",
    "replica": "established-replica",
    "promoting": "promoted",
    "demoting": "reestablished",
    "syncing": "established-syncing",
    "failed": "established-failed",
})

TRIDENT_MODES = TranslationMap.from_pairs({
    "synchronous": "Sync",
    "asynchronous": "Async",
    "eventual": "AsyncEventual",
})

POWERSTORE_STATES = TranslationMap.from_pairs({
    "source": "source",
    "replica": "destination",
    "promoting": "promoting",
    "demoting": "demoting",
    "syncing": "syncing",
    "failed": "failed",
})

POWERSTORE_MODES = TranslationMap.from_pairs({
    "synchronous": "SYNC",
    "asynchronous": "ASYNC",
    "eventual": "ASYNC_EVENTUAL",
})

DEFAULT_TABLES: Mapping[Backend, BackendTables] = MappingProxyType({
    Backend.CEPH: BackendTables(state=CEPH_STATES, mode=CEPH_MODES),
    Backend.TRIDENT: BackendTables(state=TRIDENT_STATES, mode=TRIDENT_MODES),
    Backend.POWERSTORE: BackendTables(state=POWERSTORE_STATES, mode=POWERSTORE_MODES),
})


__all__ = [
    "TranslationMap",
    "BackendTables",
    "DEFAULT_TABLES",
    "CEPH_STATES",
    "CEPH_MODES",
    "TRIDENT_STATES",
    "TRIDENT_MODES",
    "POWERSTORE_STATES",
    "POWERSTORE_MODES",
]
