"""Fixed-interval polling loop for one worker instance.

Each tick starts at most one claim-and-process cycle. A tick that fires while
a cycle is still in flight is dropped, not queued. Store work runs in a worker
thread so the timer keeps ticking while a transaction is open.
"""

import asyncio
import enum

from reconpay.common.logging import logger
from reconpay.common.metrics import poll_errors_total, poller_busy


class PollerState(str, enum.Enum):
    IDLE = "idle"
    CLAIMING = "claiming"
    PROCESSING = "processing"


class Poller:
    """Drives `service.claim_next` / `service.process_job` on a timer."""

    def __init__(self, service, interval_seconds: float, on_shutdown=None, service_name: str = "reconciler") -> None:
        self.service = service
        self.interval_seconds = interval_seconds
        self.on_shutdown = on_shutdown
        self.service_name = service_name
        self.state = PollerState.IDLE
        self.skipped_ticks = 0
        self._stop = asyncio.Event()
        self._inflight: asyncio.Task | None = None

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def tick(self) -> asyncio.Task | None:
        """Start one cycle unless one is already running or shutdown began."""

        if self.stopping:
            return None
        if self.busy:
            self.skipped_ticks += 1
            logger.debug("poll_tick_skipped state=%s", self.state.value)
            return None
        self._inflight = asyncio.create_task(self._cycle())
        return self._inflight

    async def _cycle(self) -> None:
        poller_busy.labels(service=self.service_name).set(1)
        try:
            self.state = PollerState.CLAIMING
            try:
                job = await asyncio.to_thread(self.service.claim_next)
            except Exception as exc:
                poll_errors_total.labels(service=self.service_name).inc()
                logger.exception("poll_error error=%s", exc)
                return
            if job is None:
                return
            self.state = PollerState.PROCESSING
            await asyncio.to_thread(self.service.process_job, job)
        finally:
            self.state = PollerState.IDLE
            poller_busy.labels(service=self.service_name).set(0)

    def request_shutdown(self) -> None:
        """Stop accepting ticks; `run` drains the in-flight cycle and returns."""

        if not self.stopping:
            logger.info("poller_shutdown_requested busy=%s", self.busy)
        self._stop.set()

    async def run(self) -> None:
        logger.info("poller_started interval_seconds=%s", self.interval_seconds)
        try:
            while not self.stopping:
                self.tick()
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            if self._inflight is not None:
                # Finish the open transaction rather than abandoning the claim.
                await asyncio.gather(self._inflight, return_exceptions=True)
            if self.on_shutdown is not None:
                self.on_shutdown()
            logger.info("poller_stopped skipped_ticks=%s", self.skipped_ticks)
