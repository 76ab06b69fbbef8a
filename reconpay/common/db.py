"""Database bootstrap helpers.

The engine is process-scoped: `main` creates it at startup, hands the session
factory to the components that need it, and disposes it on shutdown.

Queue and ledger timestamps come from the store's clock (`store_now`,
`store_seconds_ago`) so workers with skewed clocks still agree on lock age
and ledger order.
"""

import logging
import time

from sqlalchemy import DateTime, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.sql.expression import FunctionElement

from reconpay.common.config import Settings

query_logger = logging.getLogger("reconpay.sql")


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


class store_now(FunctionElement):
    """Wall-clock time on the store, evaluated when the statement runs."""

    type = DateTime(timezone=True)
    inherit_cache = True


class store_seconds_ago(FunctionElement):
    """Store time minus N seconds; takes the number of seconds as its argument."""

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(store_now)
def _store_now_default(element, compiler, **kw):
    return "CURRENT_TIMESTAMP"


@compiles(store_now, "postgresql")
def _store_now_pg(element, compiler, **kw):
    # clock_timestamp() keeps moving inside a transaction, unlike now().
    return "clock_timestamp()"


@compiles(store_now, "sqlite")
def _store_now_sqlite(element, compiler, **kw):
    # Same text layout SQLAlchemy uses when it stores datetimes in SQLite.
    return "(strftime('%Y-%m-%d %H:%M:%S', 'now') || substr(strftime('%f', 'now'), 3) || '000')"


@compiles(store_seconds_ago)
def _store_seconds_ago_default(element, compiler, **kw):
    return "(CURRENT_TIMESTAMP - %s * INTERVAL '1' SECOND)" % compiler.process(element.clauses, **kw)


@compiles(store_seconds_ago, "postgresql")
def _store_seconds_ago_pg(element, compiler, **kw):
    return "(clock_timestamp() - make_interval(secs => %s))" % compiler.process(element.clauses, **kw)


@compiles(store_seconds_ago, "sqlite")
def _store_seconds_ago_sqlite(element, compiler, **kw):
    return "strftime('%%Y-%%m-%%d %%H:%%M:%%f', 'now', '-' || %s || ' seconds')" % compiler.process(
        element.clauses, **kw
    )


def install_query_timing(engine: Engine) -> None:
    """Log every statement with its duration and affected row count."""

    @event.listens_for(engine, "before_cursor_execute")
    def _before(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start", []).append(time.perf_counter())

    @event.listens_for(engine, "after_cursor_execute")
    def _after(conn, cursor, statement, parameters, context, executemany):
        started = conn.info["query_start"].pop()
        query_logger.info(
            "executed_query text=%s duration_ms=%.1f rows=%s",
            " ".join(statement.split())[:80],
            (time.perf_counter() - started) * 1000.0,
            cursor.rowcount,
        )

    @event.listens_for(engine, "handle_error")
    def _failed(context):
        conn = context.connection
        if conn is None or not conn.info.get("query_start"):
            return
        started = conn.info["query_start"].pop()
        query_logger.warning(
            "failed_query text=%s duration_ms=%.1f error=%s",
            " ".join((context.statement or "").split())[:80],
            (time.perf_counter() - started) * 1000.0,
            context.original_exception,
        )


def create_db_engine(settings: Settings, **kwargs) -> Engine:
    """Build the single engine this process talks to the store through."""

    engine = create_engine(settings.database_url(), pool_pre_ping=True, **kwargs)
    if settings.db_echo_queries:
        install_query_timing(engine)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    # `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
