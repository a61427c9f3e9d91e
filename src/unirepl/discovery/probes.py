"""
Per-backend discovery probes.

A backend is *available* when every resource kind it requires is served
by the cluster. Optional kinds are reported in ``detected_resources`` but
do not affect availability.

Tags:
    discovery, probes, unirepl-discovery
"""

from __future__ import annotations

from dataclasses import dataclass, field

from unirepl.adapters.ceph import VOLUME_REPLICATION, VOLUME_REPLICATION_CLASS, CephAdapter
from unirepl.adapters.client import ResourceClient
from unirepl.adapters.powerstore import REPLICATION_GROUP, PowerStoreAdapter
from unirepl.adapters.trident import ACTION_MIRROR_UPDATE, MIRROR_RELATIONSHIP, TridentAdapter
from unirepl.core.enums import Backend
from unirepl.core.models import BackendDescriptor
from unirepl.translation.engine import TranslationEngine


@dataclass(frozen=True)
class BackendProbe:
    """Resource kinds that identify one backend's presence."""

    backend: Backend
    required: tuple[str, ...]
    optional: tuple[str, ...] = ()
    verbs: frozenset[str] = field(default_factory=frozenset)

    def capabilities(self, translator: TranslationEngine) -> frozenset[str]:
        """Verbs plus ``state:<token>``/``mode:<token>`` for supported vocabulary."""
        caps = set(self.verbs)
        if translator.is_supported(self.backend):
            caps.update(f"state:{s}" for s in translator.supported_states(self.backend))
            caps.update(f"mode:{m}" for m in translator.supported_modes(self.backend))
        return frozenset(caps)

    async def run(self, client: ResourceClient, translator: TranslationEngine) -> BackendDescriptor:
        """Check each kind against the client.

        Transport errors from ``has_kind`` propagate to the caller.
        """
        detected: list[str] = []
        for crd_name in (*self.required, *self.optional):
            if await client.has_kind(crd_name):
                detected.append(crd_name)

        missing = [crd_name for crd_name in self.required if crd_name not in detected]
        if missing:
            return BackendDescriptor(
                identifier=self.backend,
                available=False,
                detected_resources=tuple(detected),
                message=f"missing resources: {', '.join(missing)}",
            )
        return BackendDescriptor(
            identifier=self.backend,
            available=True,
            capabilities=self.capabilities(translator),
            detected_resources=tuple(detected),
            message=f"{len(detected)} resource kinds detected",
        )


CEPH_PROBE = BackendProbe(
    backend=Backend.CEPH,
    required=(VOLUME_REPLICATION_CLASS.crd_name, VOLUME_REPLICATION.crd_name),
    verbs=CephAdapter.supported_verbs,
)

TRIDENT_PROBE = BackendProbe(
    backend=Backend.TRIDENT,
    required=(MIRROR_RELATIONSHIP.crd_name, ACTION_MIRROR_UPDATE.crd_name),
    optional=("tridentvolumes.trident.netapp.io",),
    verbs=TridentAdapter.supported_verbs,
)

POWERSTORE_PROBE = BackendProbe(
    backend=Backend.POWERSTORE,
    required=(REPLICATION_GROUP.crd_name,),
    verbs=PowerStoreAdapter.supported_verbs,
)

# Probe order is the order backends appear in discovery results
DEFAULT_PROBES: tuple[BackendProbe, ...] = (CEPH_PROBE, TRIDENT_PROBE, POWERSTORE_PROBE)


__all__ = ["BackendProbe", "CEPH_PROBE", "TRIDENT_PROBE", "POWERSTORE_PROBE", "DEFAULT_PROBES"]
