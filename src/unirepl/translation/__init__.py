"""Bidirectional vocabulary translation between unified and backend tokens."""

from unirepl.translation.engine import BackendInfo, TranslationEngine
from unirepl.translation.maps import DEFAULT_TABLES, BackendTables, TranslationMap

__all__ = [
    "TranslationEngine",
    "BackendInfo",
    "TranslationMap",
    "BackendTables",
    "DEFAULT_TABLES",
]
