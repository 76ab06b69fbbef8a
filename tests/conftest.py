"""Shared fixtures: an in-memory SQLite store built from the ORM metadata."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.pool import StaticPool

from reconpay.common.db import Base, make_session_factory
from reconpay.services.reconciler.models import LedgerEntry, Payment, ReconJob

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture()
def make_payment(session_factory):
    def _create(amount: str, account_id: str = "acct-1", payment_id: str | None = None) -> Payment:
        with session_factory() as db:
            payment = Payment(account_id=account_id, amount=Decimal(amount), currency="USD", status="pending")
            if payment_id is not None:
                payment.id = payment_id
            db.add(payment)
            db.commit()
            return payment

    return _create


@pytest.fixture()
def make_job(session_factory):
    def _create(payment_id: str, created_at: datetime = T0 - timedelta(minutes=1), **fields) -> ReconJob:
        with session_factory() as db:
            job = ReconJob(
                payment_id=payment_id,
                status=fields.pop("status", "pending"),
                attempts=fields.pop("attempts", 0),
                created_at=created_at,
                updated_at=created_at,
                **fields,
            )
            db.add(job)
            db.commit()
            return job

    return _create


@pytest.fixture()
def make_ledger_entry(session_factory):
    def _create(account_id: str, amount: str, balance_after: str, created_at: datetime, payment_id: str = "seed"):
        with session_factory() as db:
            entry = LedgerEntry(
                account_id=account_id,
                payment_id=payment_id,
                entry_type="payment",
                amount=Decimal(amount),
                balance_after=Decimal(balance_after),
                created_at=created_at,
            )
            db.add(entry)
            db.commit()
            return entry

    return _create


def get_job(session_factory, job_id: str) -> ReconJob:
    with session_factory() as db:
        return db.get(ReconJob, job_id)


def backdate_lock(session_factory, job_id: str, seconds: float) -> None:
    """Age a held job's lock as if it was claimed `seconds` ago."""

    with session_factory() as db:
        db.execute(
            update(ReconJob)
            .where(ReconJob.id == job_id)
            .values(locked_at=datetime.now(timezone.utc) - timedelta(seconds=seconds))
        )
        db.commit()
