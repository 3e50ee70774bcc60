import asyncio
from typing import Any, List
from fusionmarkt.common.logging_setup import get_logger

logger = get_logger("fusionmarkt.workers")


class BaseWorker:
    """
    A fixed pool of asyncio tasks consuming one bounded queue.

    Subclasses implement ``handle``. An item whose handler raises is logged
    and dropped; the consuming task keeps running.
    """
    name = "worker"
    _STOP = object()

    def __init__(self, workers_count: int = 2, max_queue_size: int = 1000):
        self.workers_count = max(1, workers_count)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def __call__(self):
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._consume(f"{self.name}-{n}"), name=f"{self.name}-{n}")
            for n in range(1, self.workers_count + 1)
        ]
        logger.info("worker.pool_started", extra={"pool": self.name, "size": self.workers_count})

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait until every queued item has been handled."""
        await asyncio.wait_for(self.queue.join(), timeout=timeout)

    async def shutdown(self, *, drain_first: bool = True, drain_timeout: float = 30.0, wait_timeout: float = 30.0):
        if not self._tasks:
            return
        if drain_first:
            try:
                await self.drain(drain_timeout)
            except asyncio.TimeoutError:
                logger.warning("worker.drain_timeout", extra={"pool": self.name, "pending": self.queue.qsize()})

        for _ in self._tasks:
            await self.queue.put(self._STOP)

        _, stuck = await asyncio.wait(self._tasks, timeout=wait_timeout)
        for task in stuck:
            logger.warning("worker.cancelled", extra={"worker": task.get_name()})
            task.cancel()
        self._tasks = []
        logger.info("worker.pool_stopped", extra={"pool": self.name})

    async def _consume(self, wname: str):
        while True:
            item = await self.queue.get()
            try:
                if item is self._STOP:
                    return
                await self.handle(item, wname)
            except Exception:
                logger.exception("worker.item_failed", extra={"worker": wname})
            finally:
                self.queue.task_done()

    async def handle(self, item: Any, wname: str) -> None:
        raise NotImplementedError
