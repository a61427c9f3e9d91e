"""
PowerStore adapter: ``DellCSIReplicationGroup`` records.

PowerStore groups volumes by label selector rather than by explicit list,
so the unified single mapping becomes one source/remote volume pair plus a
``volumeSelector`` matching the intent's name label. Resync, pause and
resume are requests expressed on the group itself.
"""

from __future__ import annotations

from typing import Any

from unirepl.adapters.base import LABEL_NAME, BaseAdapter, health_from_conditions, parse_timestamp
from unirepl.adapters.client import ResourceKind
from unirepl.core.enums import Backend, HealthState, ReplicationState
from unirepl.core.errors import InvalidValueError
from unirepl.core.logging import get_logger
from unirepl.core.models import ReplicationIntent, StatusFragment
from unirepl.core.timestamps import to_iso8601, utc_now

logger = get_logger(__name__)

REPLICATION_GROUP = ResourceKind(
    group="replication.storage.dell.com",
    version="v1",
    kind="DellCSIReplicationGroup",
    plural="dellcsireplicationgroups",
)

RESYNC_ANNOTATION = "replication.dell.com/resync-requested"

LINK_HEALTH = {
    "synchronized": HealthState.HEALTHY,
    "synchronizing": HealthState.DEGRADED,
    "failed": HealthState.UNHEALTHY,
    "error": HealthState.UNHEALTHY,
}


class PowerStoreAdapter(BaseAdapter):
    """Drives Dell PowerStore replication groups."""

    backend = Backend.POWERSTORE
    supported_verbs = frozenset({"promote", "demote", "resync", "pause", "resume"})

    def resource_name(self, intent: ReplicationIntent) -> str:
        return intent.name

    async def ensure_replication(self, intent: ReplicationIntent) -> None:
        await self._ensure(intent, intent.spec.desired_state, "ensure_replication")

    async def _ensure(self, intent: ReplicationIntent, state: ReplicationState, operation: str) -> None:
        async with self._operation(operation, intent):
            mapping = intent.spec.volume_mapping
            spec: dict[str, Any] = {
                "state": self._native_state(state),
                "replicationPolicy": self._native_mode(intent.spec.desired_mode),
                "syncSchedule": intent.spec.schedule.rpo,
                "sourceVolumes": [{"pvcName": mapping.source.pvc_name, "volumeHandle": ""}],
                "remoteVolumes": [{"volumeHandle": mapping.destination.volume_handle}],
                "volumeSelector": {"matchLabels": {LABEL_NAME: intent.name}},
            }
            desired = self._object(REPLICATION_GROUP, intent, self.resource_name(intent), spec)
            await self._apply(REPLICATION_GROUP, desired)

    async def delete_replication(self, intent: ReplicationIntent) -> None:
        async with self._operation("delete_replication", intent):
            await self._delete_if_present(REPLICATION_GROUP, intent.namespace, self.resource_name(intent))

    async def get_status(self, intent: ReplicationIntent) -> StatusFragment:
        async with self._operation("get_status", intent):
            resource = await self._client.get(REPLICATION_GROUP, intent.namespace, self.resource_name(intent))

        spec = resource.get("spec", {})
        status = resource.get("status") or {}

        native_state = status.get("state") or spec.get("state") or ""
        try:
            state = self._unified_state(native_state) if native_state else None
        except InvalidValueError:
            logger.warning("powerstore_unknown_state", native_state=native_state)
            state = None
        native_mode = spec.get("replicationPolicy")
        mode = self._unified_mode(native_mode) if native_mode else None

        if not status:
            return StatusFragment(
                state=state,
                mode=mode,
                health=HealthState.UNKNOWN,
                message="status not reported yet",
                details={"native_state": native_state},
            )

        link_state = status.get("replicationLinkState") or ""
        health = LINK_HEALTH.get(link_state.lower(), HealthState.UNKNOWN)
        message = f"link {link_state}" if link_state else ""
        if health == HealthState.UNKNOWN and status.get("conditions"):
            health, message = health_from_conditions(status["conditions"])

        return StatusFragment(
            state=state,
            mode=mode,
            health=health,
            message=message,
            last_sync_time=parse_timestamp(status.get("lastSyncTime")),
            details={"native_state": native_state, "link_state": link_state},
        )

    # ── Verbs ────────────────────────────────────────────────────────

    async def promote(self, intent: ReplicationIntent) -> None:
        await self._ensure(intent, ReplicationState.SOURCE, "promote")

    async def demote(self, intent: ReplicationIntent) -> None:
        await self._ensure(intent, ReplicationState.REPLICA, "demote")

    async def resync(self, intent: ReplicationIntent) -> None:
        await self.ensure_replication(intent)
        async with self._operation("resync", intent):
            await self._patch_spec(
                REPLICATION_GROUP,
                intent,
                self.resource_name(intent),
                annotations={RESYNC_ANNOTATION: to_iso8601(utc_now())},
            )

    async def pause(self, intent: ReplicationIntent) -> None:
        async with self._operation("pause", intent):
            await self._patch_spec(REPLICATION_GROUP, intent, self.resource_name(intent), spec={"action": "Pause"})

    async def resume(self, intent: ReplicationIntent) -> None:
        async with self._operation("resume", intent):
            await self._patch_spec(REPLICATION_GROUP, intent, self.resource_name(intent), spec={"action": "Resume"})


__all__ = ["PowerStoreAdapter", "REPLICATION_GROUP", "RESYNC_ANNOTATION"]
