"""Store-clock expressions and per-query timing hooks."""

import logging

import pytest
from sqlalchemy import create_engine, select, text
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from reconpay.common.db import install_query_timing, store_now, store_seconds_ago


@pytest.fixture()
def timed_engine():
    engine = create_engine("sqlite+pysqlite:///:memory:", poolclass=StaticPool)
    install_query_timing(engine)
    yield engine
    engine.dispose()


def test_failed_statement_does_not_leave_timing_entry(timed_engine, caplog):
    with caplog.at_level(logging.INFO, logger="reconpay.sql"):
        with timed_engine.connect() as conn:
            with pytest.raises(OperationalError):
                conn.execute(text("SELECT * FROM no_such_table"))
            assert conn.info["query_start"] == []

            conn.rollback()
            assert conn.execute(text("SELECT 1")).scalar_one() == 1
            assert conn.info["query_start"] == []

    assert "failed_query text=SELECT * FROM no_such_table" in caplog.text
    assert "executed_query text=SELECT 1" in caplog.text


def test_store_time_compiles_to_clock_timestamp_on_postgres():
    dialect = postgresql.dialect()

    assert str(select(store_now()).compile(dialect=dialect)).startswith("SELECT clock_timestamp()")
    assert "clock_timestamp() - make_interval(secs =>" in str(select(store_seconds_ago(30.0)).compile(dialect=dialect))


def test_sqlite_store_time_orders_with_stored_datetimes(timed_engine):
    with timed_engine.connect() as conn:
        now = conn.execute(select(store_now())).scalar_one()
        earlier = conn.execute(select(store_seconds_ago(60.0))).scalar_one()

    assert earlier < now
    assert 59 <= (now - earlier).total_seconds() <= 61
