"""Controller settings.

All tunables of the control loop (worker pool size, timeouts, requeue
intervals, retry/backoff, breaker thresholds, discovery TTL) are declared
once here and read from ``UNIREPL_*`` environment variables or a ``.env``
file.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not runtime
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** Works out of the box for development
    - **Extra ignore:** Unknown env vars don't cause startup failures

Examples:
    >>> from unirepl.core.settings import ControllerSettings
    >>> settings = ControllerSettings(max_concurrent_reconciles=4)
    >>> settings.reconcile_timeout
    300.0

Tags:
    settings, configuration, pydantic, environment, unirepl-core
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ControllerSettings(BaseSettings):
    """Settings for the reconciliation controller and its collaborators.

    Fields
    ──────
    log_level / json_logs / service_name : structlog configuration
    max_concurrent_reconciles             : worker pool size
    reconcile_timeout                     : per-reconcile deadline (seconds)
    success_requeue_interval              : requeue after a good reconcile
    error_requeue_interval                : requeue after a failed reconcile
    discovery_*                           : discovery cache and probing
    retry_*                               : Retry Manager backoff
    breaker_*                             : circuit breaker thresholds
    history_size                          : state transition ring buffer
    health_*                              : health checker thresholds
    """

    model_config = SettingsConfigDict(
        env_prefix="UNIREPL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None
    service_name: str = "unirepl-controller"

    # ── Control loop ─────────────────────────────────────────────
    max_concurrent_reconciles: int = Field(default=1, ge=1, le=256)
    reconcile_timeout: float = Field(default=300.0, gt=0)
    success_requeue_interval: float = Field(default=30.0, gt=0)
    error_requeue_interval: float = Field(default=10.0, gt=0)
    finalizer: str = "replication.storage.io/finalizer"

    # ── Discovery ────────────────────────────────────────────────
    discovery_ttl: float = Field(default=300.0, ge=0)
    discovery_probe_retries: int = Field(default=3, ge=1)
    discovery_probe_delay: float = Field(default=0.5, ge=0)
    discovery_failure_ttl: float = Field(default=10.0, ge=0)
    allow_implicit_backend: bool = Field(
        default=True,
        description="Fall back to the first available backend when neither "
        "the hint nor the storage class resolves one",
    )

    # ── Retry ────────────────────────────────────────────────────
    retry_max_attempts: int = Field(default=5, ge=1)
    retry_initial_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=300.0, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1.0)
    retry_jitter: float = Field(default=0.1, ge=0.0, le=1.0)

    # ── Circuit breaker ──────────────────────────────────────────
    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_success_threshold: int = Field(default=2, ge=1)
    breaker_recovery_timeout: float = Field(default=30.0, ge=0)

    # ── State machine / health ───────────────────────────────────
    history_size: int = Field(default=100, ge=1)
    health_max_idle: float = Field(default=600.0, gt=0)
    health_max_error_rate: float = Field(default=0.5, ge=0.0, le=1.0)


@lru_cache
def get_settings() -> ControllerSettings:
    """Process-wide settings loaded from the environment."""
    return ControllerSettings()


__all__ = ["ControllerSettings", "get_settings"]
