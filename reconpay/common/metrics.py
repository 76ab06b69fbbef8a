"""Prometheus metric definitions for the reconciliation worker."""

from prometheus_client import Counter, Gauge, Histogram, start_http_server


jobs_claimed_total = Counter("recon_jobs_claimed_total", "Jobs claimed (including stale reclaims)", ["service"])
jobs_completed_total = Counter("recon_jobs_completed_total", "Jobs committed as completed", ["service"])
jobs_failed_total = Counter("recon_jobs_failed_total", "Jobs marked failed", ["service", "reason"])
poll_errors_total = Counter("recon_poll_errors_total", "Claim attempts that raised", ["service"])
verdicts_total = Counter("recon_verdicts_total", "Reconciliation verdicts produced", ["service", "verdict"])
terminal_overwrites_total = Counter(
    "recon_terminal_overwrites_total",
    "Job status writes ignored because the job was no longer held by this worker",
    ["service", "attempted"],
)
job_duration_seconds = Histogram(
    "recon_job_duration_seconds",
    "Wall time from claim to job close-out",
    ["service"],
)
jobs_pending_total = Gauge(
    "recon_jobs_pending_total",
    "Current count of jobs pending or processing",
    ["service"],
)
oldest_pending_age_seconds = Gauge(
    "recon_oldest_pending_age_seconds",
    "Age in seconds of the oldest pending job",
    ["service"],
)
poller_busy = Gauge("recon_poller_busy", "1 while a claim/process cycle is in flight", ["service"])


def start_metrics_server(port: int) -> None:
    """Expose all registered metrics over HTTP; `0` disables the exporter."""

    if port > 0:
        start_http_server(port)
