"""Tests for the Ceph VolumeReplication adapter."""

import pytest

from unirepl.adapters.base import LABEL_BACKEND, LABEL_MANAGED_BY, MANAGED_BY
from unirepl.adapters.ceph import MODE_ANNOTATION, VOLUME_REPLICATION, CephAdapter
from unirepl.core.enums import HealthState, ReplicationMode, ReplicationState
from unirepl.core.errors import (
    InvalidValueError,
    OperationFailedError,
    ResourceNotFoundError,
    ValidationFailedError,
    is_retryable,
)


@pytest.fixture
def adapter(ceph_client, translator):
    return CephAdapter(ceph_client, translator)


def stored_vr(client, name="db-data"):
    return client.stored(VOLUME_REPLICATION, "default", f"{name}-vr")


# =============================================================================
# ensure / delete
# =============================================================================


class TestCephEnsure:
    """Tests for ensure_replication()."""

    @pytest.mark.asyncio
    async def test_creates_volume_replication(self, adapter, ceph_client, make_intent):
        """One VolumeReplication named <intent>-vr is created."""
        await adapter.ensure_replication(make_intent())

        record = stored_vr(ceph_client)
        assert record["kind"] == "VolumeReplication"
        assert record["apiVersion"] == "replication.storage.openshift.io/v1alpha1"
        assert record["spec"] == {
            "volumeReplicationClass": "rbd-volumereplicationclass",
            "pvcName": "db-data-pvc",
            "replicationState": "primary",
        }
        assert record["metadata"]["annotations"][MODE_ANNOTATION] == "async"
        assert record["metadata"]["labels"][LABEL_MANAGED_BY] == MANAGED_BY
        assert record["metadata"]["labels"][LABEL_BACKEND] == "ceph"

    @pytest.mark.asyncio
    async def test_is_idempotent(self, adapter, ceph_client, make_intent):
        """A second ensure with the same intent writes nothing."""
        intent = make_intent()
        await adapter.ensure_replication(intent)
        await adapter.ensure_replication(intent)
        assert ceph_client.call_count("create") == 1
        assert ceph_client.call_count("update") == 0

    @pytest.mark.asyncio
    async def test_updates_changed_state(self, adapter, ceph_client, make_intent):
        """Changing the desired state updates the existing record."""
        await adapter.ensure_replication(make_intent())
        await adapter.ensure_replication(make_intent(state=ReplicationState.REPLICA))
        assert stored_vr(ceph_client)["spec"]["replicationState"] == "secondary"
        assert ceph_client.call_count("update") == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("state", "native"),
        [
            (ReplicationState.PROMOTING, "primary"),
            (ReplicationState.DEMOTING, "secondary"),
            (ReplicationState.SYNCING, "resync"),
        ],
    )
    async def test_extended_tokens_normalized(self, adapter, ceph_client, make_intent, state, native):
        """resync-promote/resync-demote never reach the wire."""
        await adapter.ensure_replication(make_intent(state=state))
        assert stored_vr(ceph_client)["spec"]["replicationState"] == native

    @pytest.mark.asyncio
    async def test_extension_options(self, adapter, ceph_client, make_intent):
        """Extension options select the class and autoResync."""
        intent = make_intent(
            extensions={"ceph": {"volume_replication_class": "fast-class", "auto_resync": True}}
        )
        await adapter.ensure_replication(intent)
        spec = stored_vr(ceph_client)["spec"]
        assert spec["volumeReplicationClass"] == "fast-class"
        assert spec["autoResync"] is True

    @pytest.mark.asyncio
    async def test_transport_failure_is_wrapped(self, adapter, ceph_client, make_intent):
        """A transport error becomes a retryable OperationFailedError."""
        cause = ConnectionResetError("peer reset")
        ceph_client.fail_next("create", cause)

        with pytest.raises(OperationFailedError) as exc_info:
            await adapter.ensure_replication(make_intent())

        error = exc_info.value
        assert error.__cause__ is cause
        assert is_retryable(error)
        assert error.context.operation == "ensure_replication"
        assert error.context.key == "default/db-data"
        assert adapter.stats.failures == {"ensure_replication": 1}

    @pytest.mark.asyncio
    async def test_delete_absent_is_success(self, adapter, ceph_client, make_intent):
        """Deleting a missing record does not raise."""
        await adapter.delete_replication(make_intent())
        assert ceph_client.call_count("delete") == 1

    @pytest.mark.asyncio
    async def test_delete_removes_record(self, adapter, ceph_client, make_intent):
        """delete_replication removes the VolumeReplication."""
        intent = make_intent()
        await adapter.ensure_replication(intent)
        await adapter.delete_replication(intent)
        assert stored_vr(ceph_client) is None
        assert adapter.stats.operations["delete_replication"] == 1


# =============================================================================
# Status
# =============================================================================


class TestCephStatus:
    """Tests for get_status()."""

    @pytest.mark.asyncio
    async def test_no_status_reported(self, adapter, make_intent):
        """Before Ceph reports, state comes from the spec and health is unknown."""
        intent = make_intent(state=ReplicationState.REPLICA)
        await adapter.ensure_replication(intent)

        fragment = await adapter.get_status(intent)
        assert fragment.state is ReplicationState.REPLICA
        assert fragment.mode is ReplicationMode.ASYNCHRONOUS
        assert fragment.health is HealthState.UNKNOWN
        assert fragment.message == "status not reported yet"

    @pytest.mark.asyncio
    async def test_reported_status(self, adapter, ceph_client, make_intent):
        """Reported state, conditions and sync time are translated."""
        intent = make_intent()
        await adapter.ensure_replication(intent)
        record = stored_vr(ceph_client)
        record["status"] = {
            "state": "Primary",
            "conditions": [{"type": "Degraded", "status": "True", "message": "lagging"}],
            "lastSyncTime": "2026-01-02T03:04:05Z",
        }
        ceph_client.put(VOLUME_REPLICATION, record)

        fragment = await adapter.get_status(intent)
        assert fragment.state is ReplicationState.SOURCE
        assert fragment.health is HealthState.DEGRADED
        assert fragment.message == "Degraded: lagging"
        assert fragment.last_sync_time.year == 2026

    @pytest.mark.asyncio
    async def test_status_without_conditions(self, adapter, ceph_client, make_intent):
        """A settled primary with no conditions is healthy."""
        intent = make_intent()
        await adapter.ensure_replication(intent)
        record = stored_vr(ceph_client)
        record["status"] = {"state": "primary"}
        ceph_client.put(VOLUME_REPLICATION, record)

        fragment = await adapter.get_status(intent)
        assert fragment.health is HealthState.HEALTHY
        assert fragment.details["native_state"] == "primary"

    @pytest.mark.asyncio
    async def test_missing_record(self, adapter, make_intent):
        """get_status on a missing record raises ResourceNotFoundError."""
        with pytest.raises(ResourceNotFoundError):
            await adapter.get_status(make_intent())


# =============================================================================
# Validation
# =============================================================================


class TestCephValidation:
    """Tests for validate_configuration()."""

    def test_valid(self, adapter, make_intent):
        """A ceph-rbd intent between two clusters validates."""
        intent = make_intent(extensions={"ceph": {"mirroring_mode": "journal"}})
        adapter.validate_configuration(intent)
        assert adapter.supports_configuration(intent) is True

    def test_wrong_storage_class(self, adapter, make_intent):
        """A non-RBD storage class is rejected."""
        with pytest.raises(ValidationFailedError):
            adapter.validate_configuration(make_intent(storage_class="netapp-gold"))

    def test_same_endpoints(self, adapter, make_intent):
        """Source and destination must differ."""
        intent = make_intent()
        intent.spec.destination_endpoint = intent.spec.source_endpoint.model_copy()
        with pytest.raises(ValidationFailedError, match="must differ"):
            adapter.validate_configuration(intent)

    def test_bad_mirroring_mode(self, adapter, make_intent):
        """mirroring_mode must be snapshot or journal."""
        intent = make_intent(extensions={"ceph": {"mirroring_mode": "continuous"}})
        with pytest.raises(ValidationFailedError):
            adapter.validate_configuration(intent)
        assert adapter.supports_configuration(intent) is False

    def test_unknown_state_token(self, adapter, make_intent):
        """A state with no Ceph token fails translation before backend checks run."""
        intent = make_intent()
        intent.spec.desired_state = "standby"
        with pytest.raises(InvalidValueError):
            adapter.validate_configuration(intent)
        assert adapter.supports_configuration(intent) is False

    @pytest.mark.asyncio
    async def test_eventual_mode(self, adapter, ceph_client, make_intent):
        """Eventual mode is annotated as async-eventual and read back."""
        intent = make_intent(mode=ReplicationMode.EVENTUAL)
        assert adapter.supports_configuration(intent) is True

        await adapter.ensure_replication(intent)

        assert stored_vr(ceph_client)["metadata"]["annotations"][MODE_ANNOTATION] == "async-eventual"
        assert (await adapter.get_status(intent)).mode is ReplicationMode.EVENTUAL


# =============================================================================
# Verbs
# =============================================================================


class TestCephVerbs:
    """Tests for lifecycle verbs."""

    @pytest.mark.asyncio
    async def test_promote(self, adapter, ceph_client, make_intent):
        """promote sets replicationState primary."""
        intent = make_intent(state=ReplicationState.REPLICA)
        await adapter.promote(intent)
        assert stored_vr(ceph_client)["spec"]["replicationState"] == "primary"

    @pytest.mark.asyncio
    async def test_demote(self, adapter, ceph_client, make_intent):
        """demote sets replicationState secondary."""
        await adapter.demote(make_intent())
        assert stored_vr(ceph_client)["spec"]["replicationState"] == "secondary"

    @pytest.mark.asyncio
    async def test_resync(self, adapter, ceph_client, make_intent):
        """resync sets replicationState resync."""
        await adapter.resync(make_intent())
        assert stored_vr(ceph_client)["spec"]["replicationState"] == "resync"

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, adapter, ceph_client, make_intent):
        """pause/resume toggle autoResync on the existing record."""
        intent = make_intent()
        await adapter.ensure_replication(intent)
        await adapter.pause(intent)
        assert stored_vr(ceph_client)["spec"]["autoResync"] is False
        await adapter.resume(intent)
        assert stored_vr(ceph_client)["spec"]["autoResync"] is True

    @pytest.mark.asyncio
    async def test_pause_requires_record(self, adapter, make_intent):
        """pause on a missing record surfaces ResourceNotFoundError."""
        with pytest.raises(ResourceNotFoundError):
            await adapter.pause(make_intent())

    @pytest.mark.asyncio
    async def test_failover_and_failback(self, adapter, ceph_client, make_intent):
        """failover promotes, failback demotes."""
        intent = make_intent(state=ReplicationState.REPLICA)
        await adapter.failover(intent)
        assert stored_vr(ceph_client)["spec"]["replicationState"] == "primary"
        await adapter.failback(intent)
        assert stored_vr(ceph_client)["spec"]["replicationState"] == "secondary"
