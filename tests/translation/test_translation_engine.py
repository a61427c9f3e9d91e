"""Tests for the translation tables and engine."""

from types import MappingProxyType

import pytest

from unirepl.core.enums import Axis, Backend, ReplicationMode, ReplicationState
from unirepl.core.errors import InconsistentMappingError, InvalidValueError, UnsupportedBackendError
from unirepl.translation.engine import TranslationEngine
from unirepl.translation.maps import DEFAULT_TABLES, BackendTables, TranslationMap

ALL_STATES = [s.value for s in ReplicationState]
ALL_MODES = [m.value for m in ReplicationMode]


# =============================================================================
# Tables
# =============================================================================


class TestTranslationMap:
    """Tests for a single bidirectional table."""

    def test_reverse_is_derived(self):
        """The reverse table mirrors the forward one."""
        table = TranslationMap.from_pairs({"source": "primary", "replica": "secondary"})
        assert table.from_backend("secondary") == "replica"
        assert table.backend_values() == ["primary", "secondary"]

    def test_tables_are_immutable(self):
        """Tables are read-only mapping proxies."""
        table = DEFAULT_TABLES[Backend.CEPH].state
        assert isinstance(table.forward, MappingProxyType)
        with pytest.raises(TypeError):
            table.forward["source"] = "other"  # type: ignore[index]

    def test_violation_detected(self):
        """Two unified tokens sharing a backend token break the bijection."""
        table = TranslationMap.from_pairs({"source": "established", "replica": "established"})
        problems = table.violations()
        assert any("share backend token 'established'" in p for p in problems)

    @pytest.mark.parametrize("backend", list(Backend))
    def test_default_tables_are_sound(self, backend):
        """Every shipped table is a bijection."""
        tables = DEFAULT_TABLES[backend]
        assert tables.state.violations() == []
        assert tables.mode.violations() == []


# =============================================================================
# Engine
# =============================================================================


class TestTranslationEngine:
    """Tests for TranslationEngine lookups."""

    @pytest.mark.parametrize(
        ("backend", "unified", "native"),
        [
            ("ceph", "source", "primary"),
            ("ceph", "replica", "secondary"),
            ("ceph", "syncing", "resync"),
            ("trident", "source", "established"),
            ("trident", "promoting", "promoted"),
            ("trident", "demoting", "reestablished"),
            ("powerstore", "replica", "destination"),
            ("powerstore", "failed", "failed"),
        ],
    )
    def test_state_to_backend(self, translator, backend, unified, native):
        """Known state tokens translate to the native vocabulary."""
        assert translator.to_backend(backend, Axis.STATE, unified) == native

    @pytest.mark.parametrize(
        ("backend", "sync", "async_", "eventual"),
        [
            ("ceph", "sync", "async", "async-eventual"),
            ("trident", "Sync", "Async", "AsyncEventual"),
            ("powerstore", "SYNC", "ASYNC", "ASYNC_EVENTUAL"),
        ],
    )
    def test_modes(self, translator, backend, sync, async_, eventual):
        """Mode tokens keep each backend's casing."""
        assert translator.mode_to_backend(backend, ReplicationMode.SYNCHRONOUS) == sync
        assert translator.mode_to_backend(backend, "asynchronous") == async_
        assert translator.mode_to_backend(backend, ReplicationMode.EVENTUAL) == eventual

    @pytest.mark.parametrize("backend", list(Backend))
    def test_mode_round_trip(self, translator, backend):
        """Every unified mode, eventual included, survives a round trip."""
        assert sorted(translator.supported_modes(backend)) == sorted(ALL_MODES)
        for unified in ALL_MODES:
            native = translator.to_backend(backend, "mode", unified)
            assert translator.from_backend(backend, "mode", native) == unified

    @pytest.mark.parametrize("backend", list(Backend))
    def test_state_round_trip(self, translator, backend):
        """from_backend(to_backend(u)) == u for every supported state."""
        for unified in translator.supported_states(backend):
            native = translator.to_backend(backend, "state", unified)
            assert translator.from_backend(backend, "state", native) == unified

    @pytest.mark.parametrize("backend", list(Backend))
    def test_state_bijection(self, translator, backend):
        """Distinct unified states never share a native token."""
        natives = [translator.to_backend(backend, "state", u) for u in translator.supported_states(backend)]
        assert len(natives) == len(set(natives))

    @pytest.mark.parametrize("backend", list(Backend))
    def test_all_states_supported(self, translator, backend):
        """Every backend covers the whole unified state vocabulary."""
        assert sorted(translator.supported_states(backend)) == sorted(ALL_STATES)

    def test_unknown_unified_token(self, translator):
        """A token outside the unified vocabulary names backend, axis and value."""
        with pytest.raises(InvalidValueError) as exc_info:
            translator.to_backend("ceph", "mode", "lazy")
        error = exc_info.value
        assert error.backend == "ceph"
        assert error.axis == "mode"
        assert error.value == "lazy"

    def test_unknown_native_token(self, translator):
        """An unrecognized backend token is an InvalidValueError."""
        with pytest.raises(InvalidValueError):
            translator.from_backend("ceph", "state", "splitbrain")

    def test_unknown_backend(self, translator):
        """An unknown backend name is an UnsupportedBackendError."""
        with pytest.raises(UnsupportedBackendError):
            translator.to_backend("glusterfs", "state", "source")
        assert translator.is_supported("glusterfs") is False

    def test_backend_without_tables(self):
        """A known backend missing from the injected tables is unsupported."""
        engine = TranslationEngine({Backend.CEPH: DEFAULT_TABLES[Backend.CEPH]})
        assert engine.supported_backends() == [Backend.CEPH]
        with pytest.raises(UnsupportedBackendError):
            engine.state_to_backend("trident", "source")

    def test_typed_helpers(self, translator):
        """Typed helpers return enums on the way back."""
        state, mode = translator.translate_from_backend("trident", "promoted", "Sync")
        assert state is ReplicationState.PROMOTING
        assert mode is ReplicationMode.SYNCHRONOUS
        assert translator.translate_to_backend("powerstore", "source", "asynchronous") == ("source", "ASYNC")

    def test_validate_all_passes(self, translator):
        """Shipped tables validate."""
        translator.validate_all()

    def test_validate_reports_inconsistency(self):
        """validate() raises with every violation described."""
        broken = BackendTables(
            state=TranslationMap.from_pairs({"source": "primary", "replica": "primary"}),
            mode=DEFAULT_TABLES[Backend.CEPH].mode,
        )
        engine = TranslationEngine({Backend.CEPH: broken})
        with pytest.raises(InconsistentMappingError) as exc_info:
            engine.validate("ceph")
        assert "state:" in str(exc_info.value)

    def test_backend_info(self, translator):
        """backend_info summarizes both vocabularies."""
        info = translator.backend_info(Backend.POWERSTORE)
        assert "destination" in info.backend_states
        assert info.supported_modes == ("synchronous", "asynchronous", "eventual")
        assert "powerstore backend supports" in str(info)
