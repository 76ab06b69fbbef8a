"""Environment-driven settings for the reconciliation worker.

The worker process loads this once at startup. Connection parameters follow
the libpq `PG*` variable names so the same environment works for `psql`.
"""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL


class Settings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "reconciler"
    log_level: str = "INFO"
    pghost: str = "localhost"
    pgport: int = 5432
    pgdatabase: str = "payments"
    pguser: str = "postgres"
    pgpassword: str = "postgres"
    postgres_dsn: str | None = None
    poll_interval_ms: int = 2000
    lock_timeout_ms: int = 30000
    worker_id: str | None = None
    metrics_port: int = 9108
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    db_echo_queries: bool = False
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def database_url(self) -> str | URL:
        """Explicit DSN when given, otherwise one assembled from `PG*` values."""

        if self.postgres_dsn:
            return self.postgres_dsn
        return URL.create(
            "postgresql+psycopg",
            username=self.pguser,
            password=self.pgpassword,
            host=self.pghost,
            port=self.pgport,
            database=self.pgdatabase,
        )

    def resolved_worker_id(self) -> str:
        return self.worker_id or f"worker-{os.getpid()}"

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0

    @property
    def lock_timeout_seconds(self) -> float:
        return self.lock_timeout_ms / 1000.0


settings = Settings()
