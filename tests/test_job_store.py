"""Claim, reclaim and close-out behavior of the job store."""

import logging
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.dialects import postgresql

from reconpay.common.state_machine import InvalidTransition
from reconpay.services.reconciler.jobs import (
    claim_next_job,
    claim_statement,
    enqueue_job,
    mark_job_completed,
    mark_job_failed,
    requeue_failed_job,
)
from tests.conftest import T0, backdate_lock, get_job

LOCK_TIMEOUT = 30.0


def claim(session_factory, worker_id):
    with session_factory() as db:
        job = claim_next_job(db, worker_id, LOCK_TIMEOUT)
        db.commit()
        return job


def test_claim_marks_job_processing(session_factory, make_job):
    job = make_job("pay-1")

    claimed = claim(session_factory, "worker-a")

    assert claimed.id == job.id
    assert claimed.payment_id == "pay-1"
    assert claimed.attempts == 1
    stored = get_job(session_factory, job.id)
    assert stored.status == "processing"
    assert stored.locked_by == "worker-a"
    assert stored.locked_at is not None


def test_claim_stamps_lock_with_store_time(session_factory, make_job):
    make_job("pay-1")

    claimed = claim(session_factory, "worker-a")

    locked_at = claimed.claimed_at.replace(tzinfo=timezone.utc)
    assert abs(datetime.now(timezone.utc) - locked_at) < timedelta(minutes=1)


def test_empty_queue_returns_none(session_factory):
    assert claim(session_factory, "worker-a") is None


def test_only_one_claimer_gets_a_job(session_factory, make_job):
    make_job("pay-1")

    first = claim(session_factory, "worker-a")
    second = claim(session_factory, "worker-b")

    assert first is not None
    assert second is None


def test_claims_oldest_job_first(session_factory, make_job):
    newer = make_job("pay-new", created_at=T0 - timedelta(minutes=1))
    older = make_job("pay-old", created_at=T0 - timedelta(minutes=5))

    assert claim(session_factory, "worker-a").id == older.id
    assert claim(session_factory, "worker-b").id == newer.id


def test_terminal_jobs_are_not_claimable(session_factory, make_job):
    make_job("pay-1", status="completed", attempts=1)
    make_job("pay-2", status="failed", attempts=2)

    assert claim(session_factory, "worker-a") is None


def test_stale_processing_job_is_reclaimed_after_lock_timeout(session_factory, make_job):
    job = make_job("pay-1")
    claim(session_factory, "worker-a")

    backdate_lock(session_factory, job.id, LOCK_TIMEOUT - 5)
    assert claim(session_factory, "worker-b") is None

    backdate_lock(session_factory, job.id, LOCK_TIMEOUT + 5)
    reclaimed = claim(session_factory, "worker-b")
    assert reclaimed.id == job.id
    assert reclaimed.attempts == 2
    stored = get_job(session_factory, job.id)
    assert stored.status == "processing"
    assert stored.locked_by == "worker-b"


def test_original_holder_can_reclaim_its_own_stale_job(session_factory, make_job):
    job = make_job("pay-1")
    claim(session_factory, "worker-a")
    backdate_lock(session_factory, job.id, LOCK_TIMEOUT + 5)

    reclaimed = claim(session_factory, "worker-a")
    assert reclaimed.attempts == 2


def test_claim_statement_uses_skip_locked_on_postgres():
    sql = str(claim_statement("worker-a", LOCK_TIMEOUT).compile(dialect=postgresql.dialect()))

    assert "FOR UPDATE SKIP LOCKED" in sql
    assert "RETURNING recon_jobs.id, recon_jobs.payment_id, recon_jobs.attempts" in sql
    assert "ORDER BY recon_jobs.created_at" in sql
    assert "LIMIT" in sql


def test_claim_statement_reads_lock_age_from_postgres_clock():
    sql = str(claim_statement("worker-a", LOCK_TIMEOUT).compile(dialect=postgresql.dialect()))

    assert "recon_jobs.locked_at < (clock_timestamp() - make_interval(secs =>" in sql
    assert "locked_at=clock_timestamp()" in sql


def test_mark_completed_is_noop_on_terminal_job(session_factory, make_job, caplog):
    job = make_job("pay-1")
    claim(session_factory, "worker-a")

    with caplog.at_level(logging.WARNING, logger="reconpay"):
        with session_factory() as db:
            assert mark_job_completed(db, job.id, worker_id="worker-a") is True
            assert mark_job_completed(db, job.id, worker_id="worker-a") is False
            db.commit()

    assert get_job(session_factory, job.id).status == "completed"
    assert "job_close_out_ignored" in caplog.text
    assert "current_status=completed terminal=True" in caplog.text


def test_mark_completed_does_not_overwrite_failed(session_factory, make_job):
    job = make_job("pay-1")
    claim(session_factory, "worker-a")

    with session_factory() as db:
        mark_job_failed(db, job.id, increment_attempt=False)
        assert mark_job_completed(db, job.id) is False
        db.commit()

    assert get_job(session_factory, job.id).status == "failed"


def test_mark_failed_with_increment_counts_twice(session_factory, make_job):
    job = make_job("pay-1")
    claim(session_factory, "worker-a")

    with session_factory() as db:
        assert mark_job_failed(db, job.id, increment_attempt=True, worker_id="worker-a")
        db.commit()

    stored = get_job(session_factory, job.id)
    assert stored.status == "failed"
    assert stored.attempts == 2


def test_mark_failed_without_increment_keeps_claim_count(session_factory, make_job):
    job = make_job("pay-1")
    claim(session_factory, "worker-a")

    with session_factory() as db:
        mark_job_failed(db, job.id, increment_attempt=False)
        db.commit()

    assert get_job(session_factory, job.id).attempts == 1


def test_close_out_by_former_holder_is_ignored(session_factory, make_job, caplog):
    job = make_job("pay-1")
    claim(session_factory, "worker-a")
    backdate_lock(session_factory, job.id, LOCK_TIMEOUT + 5)
    claim(session_factory, "worker-b")

    with caplog.at_level(logging.WARNING, logger="reconpay"):
        with session_factory() as db:
            assert mark_job_completed(db, job.id, worker_id="worker-a") is False
            assert mark_job_failed(db, job.id, increment_attempt=True, worker_id="worker-a") is False
            db.commit()

    stored = get_job(session_factory, job.id)
    assert stored.status == "processing"
    assert stored.locked_by == "worker-b"
    assert stored.attempts == 2
    assert "terminal=False locked_by=worker-b" in caplog.text


def test_requeue_failed_job_makes_it_claimable_again(session_factory, make_job):
    job = make_job("pay-1", status="failed", attempts=2, locked_by="worker-a", locked_at=T0)

    with session_factory() as db:
        requeue_failed_job(db, job.id)
        db.commit()

    stored = get_job(session_factory, job.id)
    assert stored.status == "pending"
    assert stored.locked_by is None
    assert stored.attempts == 2
    assert claim(session_factory, "worker-b").attempts == 3


def test_requeue_rejects_completed_job(session_factory, make_job):
    job = make_job("pay-1", status="completed", attempts=1)

    with session_factory() as db:
        with pytest.raises(InvalidTransition):
            requeue_failed_job(db, job.id)


def test_requeue_unknown_job(session_factory):
    with session_factory() as db:
        with pytest.raises(ValueError, match="not found"):
            requeue_failed_job(db, "missing")


def test_enqueue_job_is_pending_with_no_attempts(session_factory):
    with session_factory() as db:
        job = enqueue_job(db, "pay-1")
        db.commit()

    stored = get_job(session_factory, job.id)
    assert stored.status == "pending"
    assert stored.attempts == 0
    assert stored.created_at is not None
