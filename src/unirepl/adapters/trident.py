"""
Trident adapter: ``TridentMirrorRelationship`` plus on-demand
``TridentActionMirrorUpdate`` records for resync.

Trident's relationship state is one of ``established``/``promoted``/
``reestablished``. The translation table uses extended tokens
(``established-replica``, ``established-syncing``, ``established-failed``)
to keep the reverse lookup total; they collapse to ``established`` on the
wire. Reading back, a native ``established`` is expanded again using the
intent's desired state.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from unirepl.adapters.base import BaseAdapter, health_from_conditions, parse_timestamp
from unirepl.adapters.client import ResourceClient, ResourceKind
from unirepl.core.enums import Backend, HealthState, ReplicationState
from unirepl.core.errors import InvalidValueError
from unirepl.core.logging import get_logger
from unirepl.core.models import ReplicationIntent, StatusFragment
from unirepl.translation.engine import TranslationEngine

logger = get_logger(__name__)

MIRROR_RELATIONSHIP = ResourceKind(
    group="trident.netapp.io",
    version="v1",
    kind="TridentMirrorRelationship",
    plural="tridentmirrorrelationships",
)
ACTION_MIRROR_UPDATE = ResourceKind(
    group="trident.netapp.io",
    version="v1",
    kind="TridentActionMirrorUpdate",
    plural="tridentactionmirrorupdates",
)

ESTABLISHED = "established"

_EXPANDED = {
    ReplicationState.REPLICA: "established-replica",
    ReplicationState.SYNCING: "established-syncing",
    ReplicationState.FAILED: "established-failed",
}


def normalize_state(native: str) -> str:
    """Collapse an extended ``established-*`` token to the wire token."""
    if native.startswith(f"{ESTABLISHED}-"):
        return ESTABLISHED
    return native


class TridentAdapter(BaseAdapter):
    """Drives NetApp Trident mirroring."""

    backend = Backend.TRIDENT
    supported_verbs = frozenset({"promote", "demote", "resync"})

    def __init__(
        self,
        client: ResourceClient,
        translator: TranslationEngine,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(client, translator)
        self._clock = clock

    def resource_name(self, intent: ReplicationIntent) -> str:
        return intent.name

    def _validate_backend(self, intent: ReplicationIntent) -> None:
        if not intent.spec.volume_mapping.destination.volume_handle:
            self._fail_validation(intent, "trident requires a remote volume handle")

    # ── Contract ─────────────────────────────────────────────────────

    async def ensure_replication(self, intent: ReplicationIntent) -> None:
        await self._ensure(intent, intent.spec.desired_state, "ensure_replication")

    async def _ensure(self, intent: ReplicationIntent, state: ReplicationState, operation: str) -> None:
        async with self._operation(operation, intent):
            mapping = intent.spec.volume_mapping
            spec: dict[str, Any] = {
                "state": normalize_state(self._native_state(state)),
                "replicationPolicy": self._native_mode(intent.spec.desired_mode),
                "volumeGroupName": f"{intent.name}-vg",
                "replicationSchedule": intent.spec.schedule.rpo,
                "volumeMappings": [
                    {
                        "localPVCName": mapping.source.pvc_name,
                        "remoteVolumeHandle": mapping.destination.volume_handle,
                    }
                ],
            }
            desired = self._object(MIRROR_RELATIONSHIP, intent, self.resource_name(intent), spec)
            await self._apply(MIRROR_RELATIONSHIP, desired)

    async def delete_replication(self, intent: ReplicationIntent) -> None:
        async with self._operation("delete_replication", intent):
            await self._delete_if_present(MIRROR_RELATIONSHIP, intent.namespace, self.resource_name(intent))

    async def get_status(self, intent: ReplicationIntent) -> StatusFragment:
        async with self._operation("get_status", intent):
            resource = await self._client.get(MIRROR_RELATIONSHIP, intent.namespace, self.resource_name(intent))

        spec = resource.get("spec", {})
        status = resource.get("status") or {}

        native_state = status.get("state") or spec.get("state") or ""
        if native_state == ESTABLISHED:
            native_state = _EXPANDED.get(intent.spec.desired_state, ESTABLISHED)
        try:
            state = self._unified_state(native_state) if native_state else None
        except InvalidValueError:
            logger.warning("trident_unknown_state", native_state=native_state)
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

        health, message = health_from_conditions(status.get("conditions") or [])
        return StatusFragment(
            state=state,
            mode=mode,
            health=health,
            message=status.get("message") or message,
            last_sync_time=parse_timestamp(status.get("lastTransferTime")),
            details={"native_state": native_state},
        )

    # ── Verbs ────────────────────────────────────────────────────────

    async def promote(self, intent: ReplicationIntent) -> None:
        await self._ensure(intent, ReplicationState.SOURCE, "promote")

    async def demote(self, intent: ReplicationIntent) -> None:
        await self._ensure(intent, ReplicationState.REPLICA, "demote")

    async def resync(self, intent: ReplicationIntent) -> None:
        await self.ensure_replication(intent)
        async with self._operation("resync", intent):
            name = f"{intent.name}-resync-{int(self._clock())}"
            action = self._object(
                ACTION_MIRROR_UPDATE,
                intent,
                name,
                {"mirrorRelationshipName": self.resource_name(intent), "snapshotHandle": ""},
            )
            await self._client.create(ACTION_MIRROR_UPDATE, action)
        logger.info("trident_resync_requested", key=intent.key, action=name)


__all__ = ["TridentAdapter", "MIRROR_RELATIONSHIP", "ACTION_MIRROR_UPDATE", "normalize_state"]
