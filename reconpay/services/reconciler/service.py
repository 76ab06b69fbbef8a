"""Reconciliation processing pipeline.

Claims one job at a time, evaluates the payment against the rule set and
commits result, payment status, ledger entry and job completion together.
Every processing error is caught here and turned into a job status change.
"""

import time

from opentelemetry import trace
from sqlalchemy import update

from reconpay.common.db import store_now
from reconpay.common.logging import job_log_context, logger
from reconpay.common.metrics import (
    job_duration_seconds,
    jobs_claimed_total,
    jobs_completed_total,
    jobs_failed_total,
    verdicts_total,
)
from reconpay.services.reconciler.jobs import (
    ClaimedJob,
    ClaimLostError,
    claim_next_job,
    mark_job_completed,
    mark_job_failed,
    update_queue_backlog_metrics,
)
from reconpay.services.reconciler.ledger import post_payment
from reconpay.services.reconciler.models import Payment, ReconciliationResult
from reconpay.services.reconciler.rules import PaymentSnapshot, Reconciler, reconcile_payment

tracer = trace.get_tracer(__name__)

OUTCOME_COMPLETED = "completed"
OUTCOME_PAYMENT_MISSING = "payment_missing"
OUTCOME_ERROR = "error"


class ReconciliationService:
    """Owns the claim and the transactional job pipeline for one worker."""

    def __init__(
        self,
        session_factory,
        worker_id: str,
        lock_timeout_seconds: float = 30.0,
        reconciler: Reconciler = reconcile_payment,
        service_name: str = "reconciler",
    ) -> None:
        self.session_factory = session_factory
        self.worker_id = worker_id
        self.lock_timeout_seconds = lock_timeout_seconds
        self.reconciler = reconciler
        self.service_name = service_name

    def claim_next(self) -> ClaimedJob | None:
        """Claim at most one job and commit the claim on its own."""

        with tracer.start_as_current_span("worker.claim"):
            with self.session_factory() as db:
                job = claim_next_job(db, self.worker_id, self.lock_timeout_seconds)
                db.commit()
        self.refresh_backlog_metrics()
        if job is not None:
            jobs_claimed_total.labels(service=self.service_name).inc()
            logger.info("job_claimed job_id=%s payment_id=%s attempts=%s", job.id, job.payment_id, job.attempts)
        return job

    def refresh_backlog_metrics(self) -> None:
        """Gauge refresh runs after the claim commits; its failures are only logged."""

        try:
            with self.session_factory() as db:
                update_queue_backlog_metrics(db, self.service_name)
        except Exception as exc:
            logger.warning("backlog_metrics_failed error=%s", exc)

    def process_job(self, job: ClaimedJob) -> str:
        """Run one claimed job to a terminal status; never raises."""

        started = time.perf_counter()
        with job_log_context(job.id, job.payment_id):
            try:
                with tracer.start_as_current_span("worker.process_job") as span:
                    span.set_attribute("job.id", job.id)
                    span.set_attribute("payment.id", job.payment_id)
                    outcome = self._process(job)
                    span.set_attribute("job.outcome", outcome)
                    return outcome
            finally:
                job_duration_seconds.labels(service=self.service_name).observe(time.perf_counter() - started)

    def _process(self, job: ClaimedJob) -> str:
        logger.info("job_processing job_id=%s payment_id=%s", job.id, job.payment_id)
        try:
            snapshot = self._load_payment(job)
        except Exception as exc:
            logger.exception("payment_load_failed job_id=%s error=%s", job.id, exc)
            self._fail(job, increment_attempt=True, reason="load_error")
            return OUTCOME_ERROR

        if snapshot is None:
            logger.error("payment_not_found job_id=%s payment_id=%s", job.id, job.payment_id)
            self._fail(job, increment_attempt=False, reason="payment_missing")
            return OUTCOME_PAYMENT_MISSING

        try:
            verdict = self.reconciler(snapshot)
            verdicts_total.labels(service=self.service_name, verdict=verdict.status).inc()
            with self.session_factory() as db:
                try:
                    db.add(
                        ReconciliationResult(
                            payment_id=snapshot.id,
                            recon_job_id=job.id,
                            status=verdict.status,
                            matched=verdict.matched,
                            discrepancy_amount=verdict.discrepancy_amount,
                            notes=verdict.notes,
                            created_at=store_now(),
                        )
                    )
                    db.execute(
                        update(Payment)
                        .where(Payment.id == snapshot.id)
                        .values(status="completed" if verdict.matched else "failed", updated_at=store_now())
                    )
                    post_payment(db, snapshot.account_id, snapshot.id, snapshot.amount)
                    if not mark_job_completed(db, job.id, worker_id=self.worker_id):
                        raise ClaimLostError(f"job {job.id} is no longer held by {self.worker_id}")
                    db.commit()
                except Exception:
                    db.rollback()
                    raise
        except Exception as exc:
            logger.exception("job_failed job_id=%s error=%s", job.id, exc)
            self._fail(job, increment_attempt=True, reason=type(exc).__name__)
            return OUTCOME_ERROR

        jobs_completed_total.labels(service=self.service_name).inc()
        logger.info(
            "job_completed job_id=%s verdict=%s matched=%s",
            job.id,
            verdict.status,
            verdict.matched,
        )
        return OUTCOME_COMPLETED

    def _load_payment(self, job: ClaimedJob) -> PaymentSnapshot | None:
        with self.session_factory() as db:
            payment = db.get(Payment, job.payment_id)
            return PaymentSnapshot.from_row(payment) if payment is not None else None

    def _fail(self, job: ClaimedJob, increment_attempt: bool, reason: str) -> None:
        """Record the failure in its own transaction, outside any rolled-back one."""

        jobs_failed_total.labels(service=self.service_name, reason=reason).inc()
        try:
            with self.session_factory() as db:
                mark_job_failed(db, job.id, increment_attempt, worker_id=self.worker_id)
                db.commit()
        except Exception as exc:
            # The claim ages out and the job becomes reclaimable.
            logger.exception("job_fail_write_failed job_id=%s error=%s", job.id, exc)
