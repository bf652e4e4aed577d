"""
Sync Dispatcher

A single-writer lane between record conversion and the database. The producer
submits converted records in feed order; one worker task takes them off an
asyncio.Queue and writes them one at a time, so the next record can be
converted while the previous one is being written.

Usage:
    async with SyncDispatcher(write, max_queue_size=0) as dispatcher:
        for record in records:
            await dispatcher.submit(record)

Leaving the block normally, or with an exception, waits until every queued
record has been written. Cancellation of the surrounding task cancels the
worker instead, abandoning queued records.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

_STOP = object()


class SyncDispatcher(Generic[T]):

    def __init__(self, writer: Callable[[T], Awaitable[Any]], max_queue_size: int = 0,
                 describe: Optional[Callable[[T], str]] = None, name: str = "sync"):
        """
        Args:
            writer: Coroutine function that persists one record
            max_queue_size: Records that may wait for the writer before `submit`
                            blocks; 0 means unbounded
            describe: Short label of a record for log lines
            name: Name of the worker task
        """
        self.writer = writer
        self.describe = describe or repr
        self.name = name
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max(0, max_queue_size))
        self.submitted = 0
        self.completed = 0
        self.failed = 0
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def pending(self) -> int:
        return self.queue.qsize()

    def start(self):
        if self._worker is None:
            self._worker = asyncio.create_task(self._run(), name=f"{self.name}-writer")

    async def submit(self, record: T):
        """Enqueue a record; waits only while the queue is full"""
        if self._closed:
            raise RuntimeError("Dispatcher is closed")
        self.start()
        await self.queue.put(record)
        self.submitted += 1

    async def _run(self):
        while True:
            record = await self.queue.get()
            try:
                if record is _STOP:
                    return
                await self.writer(record)
                self.completed += 1
            except Exception as e:
                self.failed += 1
                logger.error(f"❌ Failed to synchronize {self.describe(record)}: {e}", exc_info=True)
            finally:
                self.queue.task_done()

    async def drain(self):
        """Stop accepting records and wait until all queued ones are written"""
        self._closed = True
        if self._worker is None:
            return
        await self.queue.put(_STOP)
        await self._worker

    async def cancel(self):
        self._closed = True
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        abandoned = self.queue.qsize()
        if abandoned:
            logger.warning(f"⚠️ Cancelled with {abandoned} queued records not written")

    async def __aenter__(self) -> 'SyncDispatcher[T]':
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None and issubclass(exc_type, asyncio.CancelledError):
            await self.cancel()
            return False

        if exc_type is not None:
            logger.info(f"⏳ Waiting for {self.pending} queued records before reporting the failure")
        await self.drain()
        return False
