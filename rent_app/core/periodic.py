import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger("workers")

CycleJob = Callable[[asyncio.Event], Awaitable[object]]


async def sleep_or_stop(seconds: float, stop_event: asyncio.Event | None) -> bool:
    """Sleep for ``seconds``; return True early if ``stop_event`` fires."""
    if stop_event is None:
        await asyncio.sleep(seconds)
        return False
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        return True
    except asyncio.TimeoutError:
        return False


class PeriodicWorker:
    """Runs ``job(stop_event)`` every ``interval`` seconds in its own task.

    The job receives the stop event so it can bail out between items.
    A failing cycle is logged and the next one runs on schedule.
    ``stop`` waits up to ``grace_seconds`` for the current cycle, then
    cancels it.
    """

    def __init__(
        self,
        name: str,
        job: CycleJob,
        interval: float,
        initial_delay: float = 0,
        grace_seconds: float = 10,
    ):
        self.name = name
        self.job = job
        self.interval = interval
        self.initial_delay = initial_delay
        self.grace_seconds = grace_seconds
        self.stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            logger.warning(f"{self.name} already running")
            return
        self.stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info(f"{self.name} started, every {self.interval:g}s")

    async def stop(self):
        if not self._task:
            return
        self.stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=self.grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"{self.name} did not stop in {self.grace_seconds:g}s, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info(f"{self.name} stopped")

    async def run_once(self):
        try:
            return await self.job(self.stop_event)
        except Exception:
            logger.exception(f"{self.name} cycle failed")
            return None
        finally:
            self.cycles += 1

    async def _loop(self):
        if self.initial_delay and await sleep_or_stop(self.initial_delay, self.stop_event):
            return

        while not self.stop_event.is_set():
            await self.run_once()
            if await sleep_or_stop(self.interval, self.stop_event):
                break
