"""
Boundary with backend-native declarative resources.

Adapters never talk to a backend API directly; they read and write opaque
resource records (plain dicts with ``metadata``/``spec``/``status``)
through a :class:`ResourceClient`. A production deployment plugs in a
client for its cluster API; tests and local runs use
:class:`InMemoryResourceClient`.

Architecture:
    ::

        ReplicationAdapter ──► ResourceClient (Protocol)
                                ├── has_kind(crd_name)        discovery probe
                                ├── get / list                reads
                                └── create / update / delete  mutations

        InMemoryResourceClient
          - installed kinds set   (what discovery sees)
          - resource dict         (kind, namespace, name) → record
          - failure injection     fail_next() / fail_always()
          - call log              assertions in tests

Guardrails:
    ❌ DON'T: Return live references to stored records
    ✅ DO: Deep-copy on the way in and on the way out

Tags:
    protocol, resource-client, backend-boundary, in-memory, unirepl-adapters
"""

from __future__ import annotations

import asyncio
import copy
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from unirepl.core.errors import ResourceConflictError, ResourceNotFoundError

Resource = dict[str, Any]


@dataclass(frozen=True)
class ResourceKind:
    """Identity of a backend-native resource type."""

    group: str
    version: str
    kind: str
    plural: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    @property
    def crd_name(self) -> str:
        return f"{self.plural}.{self.group}"


@runtime_checkable
class ResourceClient(Protocol):
    """Async access to backend-native resources.

    ``get``, ``update`` and ``delete`` raise :class:`ResourceNotFoundError`
    for a missing record; ``create`` raises :class:`ResourceConflictError`
    when the record already exists. Transport failures surface as
    ``ConnectionError``/``TimeoutError`` (or subclasses).
    """

    async def has_kind(self, crd_name: str) -> bool:
        ...

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> Resource:
        ...

    async def list(
        self, kind: ResourceKind, namespace: str, labels: dict[str, str] | None = None
    ) -> list[Resource]:
        ...

    async def create(self, kind: ResourceKind, resource: Resource) -> Resource:
        ...

    async def update(self, kind: ResourceKind, resource: Resource) -> Resource:
        ...

    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        ...


@dataclass
class _Injection:
    error: BaseException
    remaining: int | None  # None = forever


@dataclass
class InMemoryResourceClient:
    """Dict-backed :class:`ResourceClient` with failure injection.

    Example:
        >>> client = InMemoryResourceClient()
        >>> client.install("volumereplications.replication.storage.openshift.io")
        >>> client.fail_next("create", ConnectionError("apiserver down"), times=2)
    """

    installed: set[str] = field(default_factory=set)
    calls: list[tuple[str, str, str]] = field(default_factory=list, init=False)
    _resources: dict[tuple[str, str, str], Resource] = field(default_factory=dict, init=False)
    _injections: dict[str, list[_Injection]] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _version: int = field(default=0, init=False)

    # ── Test controls ────────────────────────────────────────────────

    def install(self, *crd_names: str) -> None:
        with self._lock:
            self.installed.update(crd_names)

    def uninstall(self, *crd_names: str) -> None:
        with self._lock:
            self.installed.difference_update(crd_names)

    def fail_next(self, operation: str, error: BaseException, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        with self._lock:
            self._injections.setdefault(operation, []).append(_Injection(error, times))

    def fail_always(self, operation: str, error: BaseException) -> None:
        with self._lock:
            self._injections.setdefault(operation, []).append(_Injection(error, None))

    def clear_failures(self) -> None:
        with self._lock:
            self._injections.clear()

    def call_count(self, operation: str) -> int:
        return sum(1 for op, _, _ in self.calls if op == operation)

    def stored(self, kind: ResourceKind, namespace: str, name: str) -> Resource | None:
        """Direct peek at a stored record (copy), bypassing injections."""
        with self._lock:
            found = self._resources.get((kind.crd_name, namespace, name))
            return copy.deepcopy(found) if found is not None else None

    def put(self, kind: ResourceKind, resource: Resource) -> None:
        """Seed a record directly, bypassing injections."""
        meta = resource["metadata"]
        with self._lock:
            self._resources[(kind.crd_name, meta.get("namespace", "default"), meta["name"])] = copy.deepcopy(resource)

    # ── Internals ────────────────────────────────────────────────────

    def _record(self, operation: str, crd_name: str, name: str) -> None:
        with self._lock:
            self.calls.append((operation, crd_name, name))
            queue = self._injections.get(operation)
            if not queue:
                return
            injection = queue[0]
            if injection.remaining is not None:
                injection.remaining -= 1
                if injection.remaining <= 0:
                    queue.pop(0)
            error = injection.error
        raise error

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    # ── ResourceClient ───────────────────────────────────────────────

    async def has_kind(self, crd_name: str) -> bool:
        await asyncio.sleep(0)
        self._record("has_kind", crd_name, "")
        with self._lock:
            return crd_name in self.installed

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> Resource:
        await asyncio.sleep(0)
        self._record("get", kind.crd_name, name)
        with self._lock:
            found = self._resources.get((kind.crd_name, namespace, name))
            if found is None:
                raise ResourceNotFoundError(kind.kind, namespace, name)
            return copy.deepcopy(found)

    async def list(
        self, kind: ResourceKind, namespace: str, labels: dict[str, str] | None = None
    ) -> list[Resource]:
        await asyncio.sleep(0)
        self._record("list", kind.crd_name, "")
        wanted = labels or {}
        with self._lock:
            return [
                copy.deepcopy(resource)
                for (crd_name, ns, _), resource in sorted(self._resources.items())
                if crd_name == kind.crd_name
                and ns == namespace
                and all(resource["metadata"].get("labels", {}).get(k) == v for k, v in wanted.items())
            ]

    async def create(self, kind: ResourceKind, resource: Resource) -> Resource:
        await asyncio.sleep(0)
        meta = resource["metadata"]
        namespace = meta.get("namespace", "default")
        self._record("create", kind.crd_name, meta["name"])
        with self._lock:
            identity = (kind.crd_name, namespace, meta["name"])
            if identity in self._resources:
                raise ResourceConflictError(f"{kind.kind} {namespace}/{meta['name']} already exists")
            stored = copy.deepcopy(resource)
            stored.setdefault("apiVersion", kind.api_version)
            stored.setdefault("kind", kind.kind)
            stored["metadata"]["resourceVersion"] = self._next_version()
            self._resources[identity] = stored
            return copy.deepcopy(stored)

    async def update(self, kind: ResourceKind, resource: Resource) -> Resource:
        await asyncio.sleep(0)
        meta = resource["metadata"]
        namespace = meta.get("namespace", "default")
        self._record("update", kind.crd_name, meta["name"])
        with self._lock:
            identity = (kind.crd_name, namespace, meta["name"])
            if identity not in self._resources:
                raise ResourceNotFoundError(kind.kind, namespace, meta["name"])
            stored = copy.deepcopy(resource)
            stored["metadata"]["resourceVersion"] = self._next_version()
            self._resources[identity] = stored
            return copy.deepcopy(stored)

    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        await asyncio.sleep(0)
        self._record("delete", kind.crd_name, name)
        with self._lock:
            if self._resources.pop((kind.crd_name, namespace, name), None) is None:
                raise ResourceNotFoundError(kind.kind, namespace, name)


__all__ = ["Resource", "ResourceKind", "ResourceClient", "InMemoryResourceClient"]
