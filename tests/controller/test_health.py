"""Tests for liveness, readiness and the health router."""

from datetime import timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from unirepl.controller.health import HealthChecker, ReadinessChecker, create_health_router
from unirepl.core.enums import Backend


@pytest.fixture
def controller(controller_factory, ceph_client):
    return controller_factory(ceph_client)


# =============================================================================
# Liveness
# =============================================================================


class TestHealthChecker:
    """Tests for HealthChecker.check()."""

    def test_fresh_controller_is_healthy(self, controller):
        """A just-started controller with adapters is healthy."""
        report = HealthChecker(controller).check()
        assert report.status == "healthy"
        assert report.problems == []
        assert report.reconcile_count == 0
        assert report.last_reconcile is None

    def test_idle_controller(self, controller):
        """No reconcile within health_max_idle is a problem."""
        later = controller.started_at + timedelta(seconds=601)
        report = HealthChecker(controller, clock=lambda: later).check()
        assert report.status == "unhealthy"
        assert report.problems == ["no reconcile for 601s"]

    def test_error_rate(self, controller):
        """An error rate above the threshold is a problem."""
        controller.reconcile_count = 4
        controller.error_count = 3
        report = HealthChecker(controller).check()
        assert report.status == "unhealthy"
        assert report.error_rate == 0.75
        assert report.problems == ["error rate 0.75 above 0.50"]

    def test_no_adapters(self, controller):
        """An empty adapter registry is a problem."""
        for backend in Backend:
            controller.adapters.unregister(backend)
        report = HealthChecker(controller).check()
        assert "no adapters registered" in report.problems

    def test_reports_adapters_and_circuits(self, controller):
        """Instantiated adapters and breaker states are included."""
        controller.adapters.get(Backend.CEPH)
        controller.breakers.for_operation("ceph", "promote").force_open()
        report = HealthChecker(controller).check()
        assert report.adapters == {"ceph": True}
        assert report.circuits == {"ceph.promote": "open"}


# =============================================================================
# Readiness
# =============================================================================


class TestReadinessChecker:
    """Tests for ReadinessChecker.check()."""

    @pytest.mark.asyncio
    async def test_ready(self, controller):
        """Ready when marked ready and discovery answers."""
        report = await ReadinessChecker(controller).check()
        assert report.status == "ready"
        assert report.available_backends == ["ceph"]

    @pytest.mark.asyncio
    async def test_not_started(self, controller):
        """A checker marked not ready reports it."""
        checker = ReadinessChecker(controller)
        checker.mark_not_ready()
        report = await checker.check()
        assert report.status == "not_ready"
        assert report.problems == ["controller not started"]

        checker.mark_ready()
        assert (await checker.check()).status == "ready"

    @pytest.mark.asyncio
    async def test_discovery_unreachable(self, controller, ceph_client):
        """Probe failures with nothing cached make the controller unready."""
        ceph_client.fail_always("has_kind", ConnectionError("apiserver down"))
        report = await ReadinessChecker(controller).check()
        assert report.status == "not_ready"
        assert report.problems[0].startswith("discovery unreachable:")
        assert report.available_backends == []


# =============================================================================
# Router
# =============================================================================


class TestHealthRouter:
    """Tests for the FastAPI endpoints."""

    def _client(self, controller, *, ready=True, clock=None) -> TestClient:
        health = HealthChecker(controller, clock=clock) if clock else HealthChecker(controller)
        app = FastAPI()
        app.include_router(create_health_router(health, ReadinessChecker(controller, ready=ready)))
        return TestClient(app)

    def test_healthz_ok(self, controller):
        """/healthz answers 200 while healthy."""
        response = self._client(controller).get("/healthz")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_healthz_unhealthy(self, controller):
        """/healthz answers 503 with the problems listed."""
        later = controller.started_at + timedelta(hours=1)
        response = self._client(controller, clock=lambda: later).get("/healthz")
        assert response.status_code == 503
        assert response.json()["problems"] == ["no reconcile for 3600s"]

    def test_readyz(self, controller):
        """/readyz answers 200 when ready and 503 otherwise."""
        assert self._client(controller).get("/readyz").status_code == 200

        response = self._client(controller, ready=False).get("/readyz")
        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
