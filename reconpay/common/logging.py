"""JSON logging for the reconciliation worker.

Every record carries the worker identity and, while a claimed job is being
processed, that job's id and payment id, so one job's lines can be pulled out
of an interleaved multi-worker log stream.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from reconpay.common.config import settings


worker_id_ctx: ContextVar[str] = ContextVar("worker_id", default="")
job_id_ctx: ContextVar[str] = ContextVar("job_id", default="")
payment_id_ctx: ContextVar[str] = ContextVar("payment_id", default="")


class JobContextFilter(logging.Filter):
    """Stamp worker and current-job identifiers onto every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.worker_id = worker_id_ctx.get()
        record.job_id = job_id_ctx.get()
        record.payment_id = payment_id_ctx.get()
        return True


@contextmanager
def job_log_context(job_id: str, payment_id: str):
    """Tag log lines emitted inside the block with one job's identifiers."""

    job_token = job_id_ctx.set(job_id)
    payment_token = payment_id_ctx.set(payment_id)
    try:
        yield
    finally:
        job_id_ctx.reset(job_token)
        payment_id_ctx.reset(payment_token)


def configure_logging(worker_id: str) -> None:
    """Configure root logger once per worker process."""

    worker_id_ctx.set(worker_id)
    handler = logging.StreamHandler(sys.stdout)
    context_filter = JobContextFilter()
    handler.addFilter(context_filter)
    formatter = JsonFormatter(
        "%(asctime)s %(levelname)s %(service_name)s %(worker_id)s %(job_id)s %(payment_id)s %(message)s"
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.addFilter(context_filter)


logger = logging.getLogger("reconpay")
