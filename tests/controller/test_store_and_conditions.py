"""Tests for the in-memory intent store and condition helpers."""

from datetime import timedelta

import pytest

from unirepl.controller.conditions import (
    is_condition_true,
    mark_not_ready,
    mark_ready,
    remove_condition,
    set_condition,
)
from unirepl.controller.store import InMemoryIntentStore
from unirepl.core.enums import ConditionStatus, ConditionType, ReplicationMode
from unirepl.core.errors import ResourceNotFoundError
from unirepl.core.models import ObservedStatus
from unirepl.core.timestamps import utc_now

KEY = "default/db-data"


# =============================================================================
# Conditions
# =============================================================================


class TestConditions:
    """Tests for merge-by-type condition updates."""

    def test_one_condition_per_type(self):
        """Setting a type twice replaces it."""
        status = ObservedStatus()
        mark_not_ready(status, "ReconcileFailed", "boom")
        mark_ready(status, "ReconcileSucceeded")
        assert len(status.conditions) == 1
        assert status.is_ready

    def test_other_types_untouched(self):
        """Different types coexist."""
        status = ObservedStatus()
        mark_ready(status, "ReconcileSucceeded")
        set_condition(status, ConditionType.SYNCED, ConditionStatus.UNKNOWN, "StatusPending")
        remove_condition(status, ConditionType.READY)
        assert [c.type for c in status.conditions] == ["Synced"]
        assert not is_condition_true(status, "Ready")

    def test_transition_time_moves_only_on_status_change(self):
        """Same status keeps the original transition time."""
        status = ObservedStatus()
        first = utc_now()
        later = first + timedelta(minutes=5)

        set_condition(status, "Ready", ConditionStatus.TRUE, "A", now=first)
        same = set_condition(status, "Ready", ConditionStatus.TRUE, "B", now=later)
        assert same.last_transition_time == first
        assert same.reason == "B"

        changed = set_condition(status, "Ready", ConditionStatus.FALSE, "C", now=later)
        assert changed.last_transition_time == later

    def test_generation_recorded(self):
        """The observed generation is stored on the condition."""
        status = ObservedStatus()
        condition = mark_ready(status, "ReconcileSucceeded", "ok", generation=4)
        assert condition.observed_generation == 4


# =============================================================================
# Store
# =============================================================================


class TestInMemoryIntentStore:
    """Tests for InMemoryIntentStore."""

    @pytest.mark.asyncio
    async def test_apply_and_get(self, make_intent):
        """A new intent starts at generation 1 and is returned as a copy."""
        store = InMemoryIntentStore()
        store.apply(make_intent())

        intent = await store.get(KEY)
        assert intent.metadata.generation == 1
        intent.metadata.finalizers.append("mutated")
        assert (await store.get(KEY)).metadata.finalizers == []
        assert await store.list_keys() == [KEY]

    @pytest.mark.asyncio
    async def test_spec_change_bumps_generation(self, make_intent):
        """Only a changed spec moves the generation; status is kept."""
        store = InMemoryIntentStore()
        store.apply(make_intent())
        status = ObservedStatus(observed_generation=1)
        mark_ready(status, "ReconcileSucceeded")
        await store.update_status(KEY, status)

        assert store.apply(make_intent()).metadata.generation == 1
        updated = store.apply(make_intent(mode=ReplicationMode.SYNCHRONOUS))
        assert updated.metadata.generation == 2
        assert updated.status.is_ready

    def test_subscribers_notified(self, make_intent):
        """apply() notifies every subscriber with the key."""
        store = InMemoryIntentStore()
        seen: list[str] = []
        store.subscribe(seen.append)
        store.apply(make_intent())
        assert seen == [KEY]

    @pytest.mark.asyncio
    async def test_deletion_waits_for_finalizers(self, make_intent):
        """The record stays until the last finalizer is removed."""
        store = InMemoryIntentStore()
        store.apply(make_intent())
        await store.add_finalizer(KEY, "replication.storage.io/finalizer")
        await store.add_finalizer(KEY, "replication.storage.io/finalizer")

        await store.request_deletion(KEY)
        intent = await store.get(KEY)
        assert intent.deletion_requested
        assert intent.metadata.finalizers == ["replication.storage.io/finalizer"]

        await store.remove_finalizer(KEY, "replication.storage.io/finalizer")
        assert await store.get(KEY) is None
        assert store.finalized == [KEY]

    @pytest.mark.asyncio
    async def test_deletion_without_finalizers_is_immediate(self, make_intent):
        """No finalizer means the record goes at once."""
        store = InMemoryIntentStore()
        store.apply(make_intent())
        await store.request_deletion(KEY)
        assert not store.exists(KEY)

    @pytest.mark.asyncio
    async def test_missing_key(self):
        """get() returns None; mutations raise ResourceNotFoundError."""
        store = InMemoryIntentStore()
        assert await store.get(KEY) is None
        with pytest.raises(ResourceNotFoundError):
            await store.update_status(KEY, ObservedStatus())
        with pytest.raises(ResourceNotFoundError):
            await store.add_finalizer(KEY, "f")
