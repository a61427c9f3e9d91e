"""
unirepl.adapters - per-backend implementations of the replication contract.

Usage:
    from unirepl.adapters import default_registry, InMemoryResourceClient

    registry = default_registry(InMemoryResourceClient(), TranslationEngine())
    await registry.get("ceph").ensure_replication(intent)
"""

from unirepl.adapters.base import AdapterStats, BaseAdapter, ReplicationAdapter
from unirepl.adapters.ceph import CephAdapter
from unirepl.adapters.client import (
    InMemoryResourceClient,
    Resource,
    ResourceClient,
    ResourceKind,
)
from unirepl.adapters.powerstore import PowerStoreAdapter
from unirepl.adapters.registry import AdapterRegistry, default_registry
from unirepl.adapters.trident import TridentAdapter

__all__ = [
    "ReplicationAdapter",
    "BaseAdapter",
    "AdapterStats",
    "CephAdapter",
    "TridentAdapter",
    "PowerStoreAdapter",
    "AdapterRegistry",
    "default_registry",
    "Resource",
    "ResourceClient",
    "ResourceKind",
    "InMemoryResourceClient",
]
