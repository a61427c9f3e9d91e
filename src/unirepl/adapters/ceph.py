"""
Ceph adapter: one ``VolumeReplication`` record per intent.

Ceph-CSI only understands ``primary``/``secondary``/``resync`` for
``replicationState``. The extended tokens ``resync-promote`` and
``resync-demote`` from the translation table are normalized to
``primary``/``secondary`` right before submission. The mode has no field in
the native spec and is kept in an annotation so status can report it back.

Resource shape::

    apiVersion: replication.storage.openshift.io/v1alpha1
    kind: VolumeReplication
    metadata:
      name: <intent>-vr
      labels: {app.kubernetes.io/managed-by, unified-replication.io/backend}
      annotations: {unified-replication.io/mode: sync|async|async-eventual}
    spec:
      volumeReplicationClass: rbd-volumereplicationclass
      pvcName: <source pvc>
      replicationState: primary|secondary|resync
      autoResync: bool
"""

from __future__ import annotations

from typing import Any

from unirepl.adapters.base import BaseAdapter, health_from_conditions, parse_timestamp
from unirepl.adapters.client import ResourceKind
from unirepl.core.enums import Backend, HealthState
from unirepl.core.errors import InvalidValueError
from unirepl.core.logging import get_logger
from unirepl.core.models import ReplicationIntent, StatusFragment

logger = get_logger(__name__)

VOLUME_REPLICATION = ResourceKind(
    group="replication.storage.openshift.io",
    version="v1alpha1",
    kind="VolumeReplication",
    plural="volumereplications",
)
VOLUME_REPLICATION_CLASS = ResourceKind(
    group="replication.storage.openshift.io",
    version="v1alpha1",
    kind="VolumeReplicationClass",
    plural="volumereplicationclasses",
)

DEFAULT_REPLICATION_CLASS = "rbd-volumereplicationclass"
MODE_ANNOTATION = "unified-replication.io/mode"
MIRRORING_MODES = ("snapshot", "journal")

# Extended table tokens → tokens Ceph-CSI accepts
_NATIVE_STATES = {
    "resync-promote": "primary",
    "resync-demote": "secondary",
}


class CephAdapter(BaseAdapter):
    """Drives Ceph RBD mirroring through ``VolumeReplication`` records."""

    backend = Backend.CEPH
    supported_verbs = frozenset(
        {"promote", "demote", "resync", "pause", "resume", "failover", "failback"}
    )

    def resource_name(self, intent: ReplicationIntent) -> str:
        return f"{intent.name}-vr"

    def _submission_state(self, intent: ReplicationIntent) -> str:
        native = self._native_state(intent.spec.desired_state)
        return _NATIVE_STATES.get(native, native)

    # ── Validation ───────────────────────────────────────────────────

    def _validate_backend(self, intent: ReplicationIntent) -> None:
        spec = intent.spec
        storage_class = spec.source_endpoint.storage_class
        if not storage_class:
            self._fail_validation(intent, "storage class is required for the ceph backend")
        lowered = storage_class.lower()
        if "rbd" not in lowered and "ceph" not in lowered:
            self._fail_validation(
                intent,
                f"storage class {storage_class!r} does not look like a Ceph RBD class",
            )

        src, dst = spec.source_endpoint, spec.destination_endpoint
        if src.cluster == dst.cluster and src.region == dst.region:
            self._fail_validation(intent, "source and destination endpoints must differ")

        mirroring_mode = spec.extension(self.backend).get("mirroring_mode")
        if mirroring_mode is not None and mirroring_mode not in MIRRORING_MODES:
            self._fail_validation(
                intent,
                f"mirroring_mode must be one of {', '.join(MIRRORING_MODES)}, got {mirroring_mode!r}",
            )

    # ── Contract ─────────────────────────────────────────────────────

    async def ensure_replication(self, intent: ReplicationIntent) -> None:
        async with self._operation("ensure_replication", intent):
            extension = intent.spec.extension(self.backend)
            spec: dict[str, Any] = {
                "volumeReplicationClass": extension.get(
                    "volume_replication_class", DEFAULT_REPLICATION_CLASS
                ),
                "pvcName": intent.spec.volume_mapping.source.pvc_name,
                "replicationState": self._submission_state(intent),
            }
            if "auto_resync" in extension:
                spec["autoResync"] = bool(extension["auto_resync"])

            desired = self._object(
                VOLUME_REPLICATION,
                intent,
                self.resource_name(intent),
                spec,
                annotations={MODE_ANNOTATION: self._native_mode(intent.spec.desired_mode)},
            )
            await self._apply(VOLUME_REPLICATION, desired)

    async def delete_replication(self, intent: ReplicationIntent) -> None:
        async with self._operation("delete_replication", intent):
            await self._delete_if_present(VOLUME_REPLICATION, intent.namespace, self.resource_name(intent))

    async def get_status(self, intent: ReplicationIntent) -> StatusFragment:
        async with self._operation("get_status", intent):
            resource = await self._client.get(VOLUME_REPLICATION, intent.namespace, self.resource_name(intent))
        return self._fragment(resource)

    def _fragment(self, resource: dict[str, Any]) -> StatusFragment:
        spec = resource.get("spec", {})
        status = resource.get("status") or {}
        annotations = resource.get("metadata", {}).get("annotations", {})

        mode = None
        native_mode = annotations.get(MODE_ANNOTATION)
        if native_mode:
            mode = self._unified_mode(native_mode)

        native_state = (status.get("state") or spec.get("replicationState") or "").lower()
        try:
            state = self._unified_state(native_state) if native_state else None
        except InvalidValueError:
            logger.warning("ceph_unknown_state", native_state=native_state)
            state = None

        if not status:
            return StatusFragment(
                state=state,
                mode=mode,
                health=HealthState.UNKNOWN,
                message="status not reported yet",
                details={"native_state": native_state},
            )

        conditions = status.get("conditions") or []
        if conditions:
            health, message = health_from_conditions(conditions)
        elif native_state in ("primary", "secondary"):
            health, message = HealthState.HEALTHY, f"replication {native_state}"
        else:
            health, message = HealthState.UNKNOWN, status.get("message", "")

        return StatusFragment(
            state=state,
            mode=mode,
            health=health,
            message=message,
            last_sync_time=parse_timestamp(status.get("lastSyncTime")),
            details={"native_state": native_state},
        )

    # ── Verbs ────────────────────────────────────────────────────────

    async def _set_state(self, operation: str, intent: ReplicationIntent, native_state: str) -> None:
        async with self._operation(operation, intent):
            await self._patch_spec(
                VOLUME_REPLICATION,
                intent,
                self.resource_name(intent),
                spec={"replicationState": native_state},
            )
        logger.info("ceph_state_set", key=intent.key, operation=operation, replication_state=native_state)

    async def _ensure_then_set(self, operation: str, intent: ReplicationIntent, native_state: str) -> None:
        await self.ensure_replication(intent)
        await self._set_state(operation, intent, native_state)

    async def promote(self, intent: ReplicationIntent) -> None:
        await self._ensure_then_set("promote", intent, "primary")

    async def demote(self, intent: ReplicationIntent) -> None:
        await self._ensure_then_set("demote", intent, "secondary")

    async def resync(self, intent: ReplicationIntent) -> None:
        await self._ensure_then_set("resync", intent, "resync")

    async def pause(self, intent: ReplicationIntent) -> None:
        async with self._operation("pause", intent):
            await self._patch_spec(VOLUME_REPLICATION, intent, self.resource_name(intent), spec={"autoResync": False})

    async def resume(self, intent: ReplicationIntent) -> None:
        async with self._operation("resume", intent):
            await self._patch_spec(VOLUME_REPLICATION, intent, self.resource_name(intent), spec={"autoResync": True})

    async def failover(self, intent: ReplicationIntent) -> None:
        await self.promote(intent)

    async def failback(self, intent: ReplicationIntent) -> None:
        await self.demote(intent)


__all__ = ["CephAdapter", "VOLUME_REPLICATION", "VOLUME_REPLICATION_CLASS", "MODE_ANNOTATION"]
