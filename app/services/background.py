from __future__ import annotations

import asyncio
import contextlib
import logging

logger = logging.getLogger(__name__)


class BackgroundWorker:
    """
    Periodic job bound to the app lifespan.

    Subclasses implement `run_once()`.  `start()` runs it once before
    returning (so startup fails loudly if the job cannot run at all), then
    repeats it every *interval* seconds until `stop()`.
    """

    def __init__(self, *, interval: float, name: str) -> None:
        self.interval = interval
        self.name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        await self.run_once()
        self._task = asyncio.create_task(self._repeat(), name=self.name)
        logger.info("%s scheduled every %.0fs", self.name, self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("%s stopped", self.name)

    async def run_once(self) -> None:
        raise NotImplementedError

    async def _repeat(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception:
                # Keep the schedule alive; the next interval tries again
                logger.exception("%s run failed", self.name)
