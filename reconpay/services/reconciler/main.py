"""Reconciliation worker process lifecycle.

Builds the store connection, starts the metrics exporter and runs the poller
until SIGTERM/SIGINT, then drains the in-flight job and releases the pool.
"""

import asyncio
import signal

from reconpay.common.config import settings
from reconpay.common.db import create_db_engine, make_session_factory
from reconpay.common.logging import configure_logging, logger
from reconpay.common.metrics import start_metrics_server
from reconpay.common.startup import log_startup_config
from reconpay.common.tracing import setup_tracing, shutdown_tracing
from reconpay.services.reconciler.poller import Poller
from reconpay.services.reconciler.service import ReconciliationService


async def run_worker() -> None:
    worker_id = settings.resolved_worker_id()
    configure_logging(worker_id)
    provider = setup_tracing(settings)
    log_startup_config(settings, worker_id)
    start_metrics_server(settings.metrics_port)

    engine = create_db_engine(settings)
    service = ReconciliationService(
        make_session_factory(engine),
        worker_id,
        lock_timeout_seconds=settings.lock_timeout_seconds,
        service_name=settings.service_name,
    )
    poller = Poller(
        service,
        settings.poll_interval_seconds,
        on_shutdown=engine.dispose,
        service_name=settings.service_name,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, poller.request_shutdown)

    logger.info("worker_started worker_id=%s", worker_id)
    try:
        await poller.run()
    finally:
        shutdown_tracing(provider)
    logger.info("worker_stopped worker_id=%s", worker_id)


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
