"""
Boundary with the declarative object store that persists intents.

The controller reads intents and writes observed status, finalizers and
nothing else. Deletion is two-phase: ``request_deletion`` stamps a
deletion timestamp; the record disappears only once its finalizer list is
empty.

Architecture:
    ::

        IntentStore (Protocol)
        ├── get(key) → ReplicationIntent | None
        ├── list_keys()
        ├── update_status(key, status)
        ├── add_finalizer / remove_finalizer
        └── request_deletion(key)

        InMemoryIntentStore
          + apply(intent)        create, or update spec (bumps generation)
          + subscribe(listener)  change notifications → work queue

Tags:
    protocol, object-store, finalizers, in-memory, unirepl-controller
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from unirepl.core.errors import ResourceNotFoundError
from unirepl.core.logging import get_logger
from unirepl.core.models import ObservedStatus, ReplicationIntent, split_key
from unirepl.core.timestamps import utc_now

logger = get_logger(__name__)

INTENT_KIND = "ReplicationIntent"


@runtime_checkable
class IntentStore(Protocol):
    """Async access to persisted intents.

    ``get`` returns ``None`` for an unknown (or fully deleted) key; the
    mutating calls raise :class:`ResourceNotFoundError`.
    """

    async def get(self, key: str) -> ReplicationIntent | None:
        ...

    async def list_keys(self) -> list[str]:
        ...

    async def update_status(self, key: str, status: ObservedStatus) -> None:
        ...

    async def add_finalizer(self, key: str, finalizer: str) -> None:
        ...

    async def remove_finalizer(self, key: str, finalizer: str) -> None:
        ...

    async def request_deletion(self, key: str) -> None:
        ...


class InMemoryIntentStore:
    """Dict-backed :class:`IntentStore` with change notifications.

    Example:
        >>> store = InMemoryIntentStore()
        >>> store.subscribe(runner.enqueue)
        >>> store.apply(intent)
    """

    def __init__(self) -> None:
        self._intents: dict[str, ReplicationIntent] = {}
        self._listeners: list[Callable[[str], None]] = []
        self._lock = threading.RLock()
        self.finalized: list[str] = []

    # ── Notifications ────────────────────────────────────────────────

    def subscribe(self, listener: Callable[[str], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def _notify(self, key: str) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(key)

    # ── Writes from the API side ─────────────────────────────────────

    def apply(self, intent: ReplicationIntent) -> ReplicationIntent:
        """Create ``intent`` or update its spec.

        A changed spec bumps ``metadata.generation``. Status, finalizers and
        the deletion timestamp of an existing record are kept.
        """
        key = intent.key
        with self._lock:
            existing = self._intents.get(key)
            if existing is None:
                stored = intent.model_copy(deep=True)
                stored.metadata.generation = max(1, intent.metadata.generation)
            else:
                stored = existing.model_copy(deep=True)
                if intent.spec != existing.spec:
                    stored.spec = intent.spec.model_copy(deep=True)
                    stored.metadata.generation = existing.metadata.generation + 1
                stored.metadata.labels = dict(intent.metadata.labels)
                stored.metadata.annotations = dict(intent.metadata.annotations)
            self._intents[key] = stored
            result = stored.model_copy(deep=True)
        logger.debug("intent_applied", key=key, generation=result.metadata.generation)
        self._notify(key)
        return result

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._intents

    # ── IntentStore ──────────────────────────────────────────────────

    def _require(self, key: str) -> ReplicationIntent:
        found = self._intents.get(key)
        if found is None:
            namespace, name = split_key(key)
            raise ResourceNotFoundError(INTENT_KIND, namespace, name)
        return found

    async def get(self, key: str) -> ReplicationIntent | None:
        with self._lock:
            found = self._intents.get(key)
            return found.model_copy(deep=True) if found is not None else None

    async def list_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._intents)

    async def update_status(self, key: str, status: ObservedStatus) -> None:
        with self._lock:
            self._require(key).status = status.model_copy(deep=True)

    async def add_finalizer(self, key: str, finalizer: str) -> None:
        with self._lock:
            intent = self._require(key)
            if finalizer not in intent.metadata.finalizers:
                intent.metadata.finalizers.append(finalizer)

    async def remove_finalizer(self, key: str, finalizer: str) -> None:
        with self._lock:
            intent = self._require(key)
            if finalizer in intent.metadata.finalizers:
                intent.metadata.finalizers.remove(finalizer)
            self._finalize_if_ready(key, intent)

    async def request_deletion(self, key: str) -> None:
        with self._lock:
            intent = self._require(key)
            if intent.metadata.deletion_timestamp is None:
                intent.metadata.deletion_timestamp = utc_now()
            self._finalize_if_ready(key, intent)
        self._notify(key)

    def _finalize_if_ready(self, key: str, intent: ReplicationIntent) -> None:
        if intent.deletion_requested and not intent.metadata.finalizers:
            del self._intents[key]
            self.finalized.append(key)
            logger.info("intent_finalized", key=key)


__all__ = ["IntentStore", "InMemoryIntentStore", "INTENT_KIND"]
