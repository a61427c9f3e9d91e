"""
unirepl.discovery - which backends are usable, and which one an intent gets.
"""

from unirepl.discovery.probes import DEFAULT_PROBES, BackendProbe
from unirepl.discovery.selection import STORAGE_CLASS_KEYWORDS, match_storage_class, select_backend
from unirepl.discovery.service import DiscoveryResult, DiscoveryService

__all__ = [
    "BackendProbe",
    "DEFAULT_PROBES",
    "DiscoveryResult",
    "DiscoveryService",
    "STORAGE_CLASS_KEYWORDS",
    "match_storage_class",
    "select_backend",
]
