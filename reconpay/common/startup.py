"""Startup log line describing how this worker will poll and claim."""

import os

from reconpay.common.config import Settings
from reconpay.common.logging import logger

SECRET_MARKERS = ("KEY", "SECRET", "PASSWORD", "TOKEN", "DSN")
ENV_KEYS = ["PGHOST", "PGPORT", "PGDATABASE", "PGUSER", "PGPASSWORD", "POSTGRES_DSN"]


def _safe_env(name: str) -> str:
    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if any(marker in name for marker in SECRET_MARKERS):
        return "<redacted>"
    return value


def startup_summary(settings: Settings, worker_id: str) -> dict:
    """Effective queue settings plus the raw (redacted) connection env."""

    summary = {
        "service": settings.service_name,
        "worker_id": worker_id,
        "poll_interval_ms": settings.poll_interval_ms,
        "lock_timeout_ms": settings.lock_timeout_ms,
        "metrics_port": settings.metrics_port,
        "otel_enabled": settings.otel_enabled,
    }
    for key in ENV_KEYS:
        summary[key] = _safe_env(key)
    return summary


def log_startup_config(settings: Settings, worker_id: str) -> None:
    logger.info("startup_config=%s", startup_summary(settings, worker_id))
