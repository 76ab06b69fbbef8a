"""Job store: claim, close-out and reclaim over the `recon_jobs` table.

Every function takes the caller's session and leaves commit to the caller, so
the completion write can ride inside the processing transaction while the
claim and failure writes commit on their own. Lock ages and `locked_at` use
the store's clock, never the worker's.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, or_, select, update

from reconpay.common.config import settings
from reconpay.common.db import store_now, store_seconds_ago
from reconpay.common.logging import logger
from reconpay.common.metrics import (
    jobs_pending_total,
    oldest_pending_age_seconds,
    terminal_overwrites_total,
)
from reconpay.common.state_machine import (
    COMPLETED,
    FAILED,
    PENDING,
    PROCESSING,
    is_terminal,
    validate_transition,
)
from reconpay.services.reconciler.models import ReconJob


class ClaimLostError(RuntimeError):
    """The job is no longer held by this worker (reclaimed after lock timeout)."""


@dataclass(frozen=True)
class ClaimedJob:
    id: str
    payment_id: str
    attempts: int
    claimed_at: datetime


def claim_statement(worker_id: str, lock_timeout_seconds: float):
    """Build the single-statement claim: pick one eligible row, lock it, flip it.

    The inner select skips rows locked by concurrent claimers, so two workers
    running this at the same time never return the same job.
    """

    table = ReconJob.__table__
    stale_before = store_seconds_ago(float(lock_timeout_seconds))
    claim_ids = (
        select(table.c.id)
        .where(
            or_(
                table.c.status == PENDING,
                (table.c.status == PROCESSING) & (table.c.locked_at < stale_before),
            )
        )
        .order_by(table.c.created_at)
        .limit(1)
        .with_for_update(skip_locked=True)
    )
    return (
        update(table)
        .where(table.c.id.in_(claim_ids))
        .values(
            status=PROCESSING,
            locked_at=store_now(),
            locked_by=worker_id,
            attempts=table.c.attempts + 1,
            updated_at=store_now(),
        )
        .returning(table.c.id, table.c.payment_id, table.c.attempts, table.c.locked_at)
    )


def claim_next_job(db, worker_id: str, lock_timeout_seconds: float) -> ClaimedJob | None:
    """Atomically claim the oldest pending (or stale processing) job, if any."""

    row = db.execute(claim_statement(worker_id, lock_timeout_seconds)).first()
    if row is None:
        return None
    return ClaimedJob(id=row.id, payment_id=row.payment_id, attempts=row.attempts, claimed_at=row.locked_at)


def _close_out(db, job_id: str, status: str, worker_id: str | None, increment_attempt: bool) -> bool:
    table = ReconJob.__table__
    conditions = [table.c.id == job_id, table.c.status == PROCESSING]
    if worker_id is not None:
        conditions.append(table.c.locked_by == worker_id)
    values = {"status": status, "updated_at": store_now()}
    if increment_attempt:
        values["attempts"] = table.c.attempts + 1
    result = db.execute(update(table).where(*conditions).values(**values))
    if result.rowcount:
        return True

    current = db.execute(select(table.c.status, table.c.locked_by).where(table.c.id == job_id)).first()
    current_status = current.status if current else None
    logger.warning(
        "job_close_out_ignored job_id=%s attempted=%s current_status=%s terminal=%s locked_by=%s",
        job_id,
        status,
        current_status,
        current_status is not None and is_terminal(current_status),
        current.locked_by if current else None,
    )
    terminal_overwrites_total.labels(service=settings.service_name, attempted=status).inc()
    return False


def mark_job_completed(db, job_id: str, worker_id: str | None = None) -> bool:
    """Close a held job as completed; a job in any other state is left alone."""

    return _close_out(db, job_id, COMPLETED, worker_id, increment_attempt=False)


def mark_job_failed(db, job_id: str, increment_attempt: bool, worker_id: str | None = None) -> bool:
    """Close a held job as failed.

    `increment_attempt` adds a second increment on top of the one taken at
    claim time; the exception path uses it, the missing-payment path does not.
    """

    return _close_out(db, job_id, FAILED, worker_id, increment_attempt=increment_attempt)


def requeue_failed_job(db, job_id: str) -> ReconJob:
    """Operator reset: put a failed job back in the queue, keeping its attempts."""

    job = db.execute(select(ReconJob).where(ReconJob.id == job_id).with_for_update()).scalar_one_or_none()
    if job is None:
        raise ValueError("job not found")
    validate_transition(job.status, PENDING)
    job.status = PENDING
    job.locked_at = None
    job.locked_by = None
    job.updated_at = store_now()
    db.flush()
    return job


def enqueue_job(db, payment_id: str) -> ReconJob:
    """Insert a new pending job for one payment."""

    job = ReconJob(
        payment_id=payment_id,
        status=PENDING,
        attempts=0,
        created_at=store_now(),
        updated_at=store_now(),
    )
    db.add(job)
    db.flush()
    return job


def update_queue_backlog_metrics(db, service_name: str) -> None:
    """Update gauges for pending queue depth and oldest pending age."""

    table = ReconJob.__table__
    now = datetime.now(timezone.utc)
    open_statuses = (PENDING, PROCESSING)
    pending_count = (
        db.execute(select(func.count()).select_from(table).where(table.c.status.in_(open_statuses))).scalar_one()
    )
    oldest_pending = db.execute(select(func.min(table.c.created_at)).where(table.c.status == PENDING)).scalar_one()
    age_seconds = 0.0
    if oldest_pending is not None:
        if oldest_pending.tzinfo is None:
            oldest_pending = oldest_pending.replace(tzinfo=timezone.utc)
        age_seconds = max(0.0, (now - oldest_pending).total_seconds())
    jobs_pending_total.labels(service=service_name).set(float(pending_count))
    oldest_pending_age_seconds.labels(service=service_name).set(age_seconds)
