"""
Async Job Queue.

Bounded in-process queue drained by worker tasks. Enqueuing returns once
the message is accepted; the handler runs detached from the caller, so a
job failure never propagates to the enqueuer.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from core.errors import QueueClosedError

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], Awaitable[Any]]


class AsyncJobQueue:
    """
    Args:
        handler: Coroutine executing one message, e.g. ``JobHandlers.dispatch``.
        workers: Number of worker tasks.
        capacity: Queue size; ``enqueue`` waits while the queue is full.
    """

    def __init__(self, handler: MessageHandler, workers: int = 1, capacity: int = 64) -> None:
        self._handler = handler
        self._worker_count = max(1, workers)
        self._capacity = max(1, capacity)
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []
        self._closed = False
        self.processed = 0
        self.failed = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def _ensure_started(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._capacity)
        if not self._workers:
            self._workers = [
                asyncio.create_task(self._worker(self._queue, index), name=f"esign-job-worker-{index}")
                for index in range(self._worker_count)
            ]
            logger.info(f"Job queue started with {self._worker_count} worker(s)")
        return self._queue

    async def enqueue(self, message: Any) -> None:
        """
        Raises:
            QueueClosedError: The queue has been closed.
        """
        if self._closed:
            raise QueueClosedError("job queue is closed")
        queue = self._ensure_started()
        await queue.put(message)
        logger.debug(f"Enqueued {type(message).__name__}")

    async def join(self) -> None:
        """Wait until every accepted message has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Stop accepting messages, drain the queue and stop the workers."""
        if self._closed:
            return
        self._closed = True
        await self.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info(f"Job queue closed (processed={self.processed}, failed={self.failed})")

    async def _worker(self, queue: asyncio.Queue, index: int) -> None:
        while True:
            message = await queue.get()
            try:
                await self._handler(message)
                self.processed += 1
            except Exception:
                self.failed += 1
                logger.exception(f"Worker {index} failed handling {type(message).__name__}")
            finally:
                queue.task_done()
