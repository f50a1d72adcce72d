"""In-process background queue for triage work.

Item creation enqueues the item id and returns; a fixed pool of worker
tasks drains the queue and runs the triage workflow.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class TriageQueue:
    """asyncio.Queue drained by a fixed number of worker tasks."""

    def __init__(self, handler: Callable[[str], Awaitable[object]], worker_count: int = 2):
        """Initialize the queue.

        Args:
            handler: Coroutine function run for each enqueued item id
            worker_count: Number of concurrent workers
        """
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self.handler = handler
        self.worker_count = worker_count
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"triage-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(f"Started {self.worker_count} triage workers")

    async def enqueue(self, item_id: str) -> None:
        """Hand an item off for background triage."""
        if self._queue is None:
            raise RuntimeError("Triage queue is not running")
        await self._queue.put(item_id)
        logger.debug(f"Queued triage for {item_id} ({self._queue.qsize()} pending)")

    async def join(self) -> None:
        """Wait until every queued item has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Cancel the workers. Items still queued are dropped."""
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        dropped = self.pending
        if dropped:
            logger.warning(f"Triage queue stopped with {dropped} items pending")
        self._workers = []
        self._queue = None
        logger.info("Triage workers stopped")

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            item_id = await queue.get()
            try:
                await self.handler(item_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # One failed item must not stop the worker
                logger.error(f"Triage worker {index} failed on {item_id}: {e}")
            finally:
                queue.task_done()
