"""Liveness and readiness of the controller process.

Provides:

- **``HealthChecker``**: the controller is alive while it keeps
  reconciling, its error rate stays under ``health_max_error_rate`` and at
  least one adapter is registered.
- **``ReadinessChecker``**: ready once marked ready and discovery is
  reachable.
- **``create_health_router()``**: FastAPI router with ``/healthz`` and
  ``/readyz``; either answers 503 when its check fails.

Quick start::

    router = create_health_router(HealthChecker(controller), ReadinessChecker(controller))
    app.include_router(router)
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from unirepl.controller.reconciler import ReconciliationController
from unirepl.core.logging import get_logger
from unirepl.core.timestamps import to_iso8601, utc_now

logger = get_logger(__name__)


# ── Response Models ──────────────────────────────────────────────────────


class HealthReport(BaseModel):
    """Body of ``GET /healthz``.

    Fields
    ──────
    status           : ``healthy`` | ``unhealthy``
    problems         : Why the controller is unhealthy (empty when healthy)
    reconcile_count  : Reconciles since start
    error_rate       : Failed reconciles / all reconciles
    last_reconcile   : ISO-8601 UTC of the last reconcile, if any
    adapters         : Registered backend → adapter health
    circuits         : Circuit breaker name → state
    """

    status: Literal["healthy", "unhealthy"] = "healthy"
    problems: list[str] = Field(default_factory=list)
    reconcile_count: int = 0
    error_rate: float = 0.0
    last_reconcile: str | None = None
    adapters: dict[str, bool] = Field(default_factory=dict)
    circuits: dict[str, str] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: to_iso8601(utc_now()))


class ReadinessReport(BaseModel):
    """Body of ``GET /readyz``."""

    status: Literal["ready", "not_ready"] = "ready"
    problems: list[str] = Field(default_factory=list)
    available_backends: list[str] = Field(default_factory=list)


# ── Checks ───────────────────────────────────────────────────────────────


class HealthChecker:
    """Liveness verdict derived from the controller's own counters."""

    def __init__(self, controller: ReconciliationController, *, clock: Callable[[], datetime] = utc_now):
        self.controller = controller
        self._clock = clock

    def check(self) -> HealthReport:
        controller = self.controller
        settings = controller.settings
        problems: list[str] = []

        now: datetime = self._clock()
        last = controller.last_reconcile_time or controller.started_at
        idle = (now - last).total_seconds()
        if idle > settings.health_max_idle:
            problems.append(f"no reconcile for {idle:.0f}s")

        error_rate = controller.error_rate
        if error_rate > settings.health_max_error_rate:
            problems.append(f"error rate {error_rate:.2f} above {settings.health_max_error_rate:.2f}")

        adapters = controller.adapters.health()
        if len(controller.adapters) == 0:
            problems.append("no adapters registered")

        report = HealthReport(
            status="unhealthy" if problems else "healthy",
            problems=problems,
            reconcile_count=controller.reconcile_count,
            error_rate=round(error_rate, 4),
            last_reconcile=to_iso8601(controller.last_reconcile_time) if controller.last_reconcile_time else None,
            adapters=adapters,
            circuits={name: state.value for name, state in controller.breakers.states().items()},
        )
        if problems:
            logger.warning("controller_unhealthy", problems=problems)
        return report


class ReadinessChecker:
    """Readiness verdict: explicitly marked ready and discovery answers."""

    def __init__(self, controller: ReconciliationController, *, ready: bool = True):
        self.controller = controller
        self._ready = ready

    def mark_ready(self) -> None:
        self._ready = True

    def mark_not_ready(self) -> None:
        self._ready = False

    async def check(self) -> ReadinessReport:
        problems: list[str] = []
        if not self._ready:
            problems.append("controller not started")

        result = await self.controller.discovery.discover()
        if result.error is not None and not result.backends:
            problems.append(f"discovery unreachable: {result.error.message}")

        return ReadinessReport(
            status="not_ready" if problems else "ready",
            problems=problems,
            available_backends=[backend.value for backend in result.available],
        )


# ── Router Factory ───────────────────────────────────────────────────────


def create_health_router(health: HealthChecker, readiness: ReadinessChecker):
    """Create a FastAPI ``APIRouter`` serving ``/healthz`` and ``/readyz``."""
    # Late import so the controller core doesn't hard-depend on fastapi.
    from fastapi import APIRouter  # noqa: PLC0415
    from fastapi.responses import JSONResponse  # noqa: PLC0415

    router = APIRouter(tags=["health"])

    @router.get("/healthz", response_model=HealthReport)
    async def healthz() -> JSONResponse:
        """Liveness probe."""
        report = health.check()
        code = 503 if report.status == "unhealthy" else 200
        return JSONResponse(content=report.model_dump(), status_code=code)

    @router.get("/readyz", response_model=ReadinessReport)
    async def readyz() -> JSONResponse:
        """Readiness probe."""
        report = await readiness.check()
        code = 503 if report.status == "not_ready" else 200
        return JSONResponse(content=report.model_dump(), status_code=code)

    return router


__all__ = [
    "HealthReport",
    "ReadinessReport",
    "HealthChecker",
    "ReadinessChecker",
    "create_health_router",
]
