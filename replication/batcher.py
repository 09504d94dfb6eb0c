"""
Write batching with a single in-flight transaction.

Producers ``add()`` write operations without waiting. A single drain task
is the only slot: it forms FIFO batches of up to ``batch_size`` operations
and awaits each one before taking the next, and ``add()`` starts a new
drain only when none is running. ``finish()`` waits until the buffer is
empty and nothing is executing.
"""

import asyncio
import contextlib
import logging
from collections import deque
from typing import AsyncIterator, Awaitable, Callable, Optional

from replication.config import CLONE_BATCH_SIZE
from replication.models import BatchFailure, WriteOperation

logger = logging.getLogger(__name__)

SubmitBatch = Callable[[list[WriteOperation]], Awaitable[None]]


class WriteBatcher:
    """Unbounded FIFO of write operations drained in transactional batches.

    A failing batch is recorded in ``failures`` and logged; draining goes on
    with the next batch. Callers inspect ``failures`` after ``finish()``.
    """

    def __init__(
        self,
        submit: SubmitBatch,
        batch_size: int = CLONE_BATCH_SIZE,
        name: str = "writes",
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._submit = submit
        self.batch_size = batch_size
        self.name = name
        self._queue: deque[WriteOperation] = deque()
        self._idle = asyncio.Event()
        self._idle.set()
        self._drain_task: Optional[asyncio.Task] = None

        self.in_flight = 0
        self.max_in_flight = 0
        self.batches_sent = 0
        self.operations_written = 0
        self.failures: list[BatchFailure] = []

    @property
    def size(self) -> int:
        """Operations buffered and not yet handed to a batch."""
        return len(self._queue)

    @property
    def idle(self) -> bool:
        return not self._queue and self._drain_task is None

    def add(self, operation: WriteOperation) -> None:
        """Buffer an operation; never blocks. Needs a running event loop."""
        self._queue.append(operation)
        self._idle.clear()
        if self._drain_task is None:
            self._start_drain()

    async def finish(self) -> None:
        """Wait until the buffer is empty and no batch is executing."""
        while not self.idle:
            if self._drain_task is None:
                # A cancelled drain can leave operations behind.
                self._start_drain()
            await self._idle.wait()

    async def cancel(self) -> int:
        """Drop buffered operations and stop draining; returns the dropped count."""
        dropped = len(self._queue)
        self._queue.clear()
        task = self._drain_task
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._drain_task = None
        self._idle.set()
        if dropped:
            logger.warning("Dropped %d buffered %s operations", dropped, self.name)
        return dropped

    def _start_drain(self) -> None:
        loop = asyncio.get_running_loop()
        self._drain_task = loop.create_task(self._drain(), name=f"{self.name}-drain")

    def _next_batch(self) -> list[WriteOperation]:
        count = min(self.batch_size, len(self._queue))
        return [self._queue.popleft() for _ in range(count)]

    async def _drain(self) -> None:
        try:
            while self._queue:
                batch = self._next_batch()
                await self._submit_batch(batch)
        finally:
            self._drain_task = None
            if not self._queue:
                self._idle.set()

    async def _submit_batch(self, batch: list[WriteOperation]) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self._submit(batch)
        except Exception as exc:
            failure = BatchFailure.from_batch(self.name, batch, exc)
            self.failures.append(failure)
            logger.error(
                "Batch of %d %s operations failed: %s",
                len(batch),
                self.name,
                failure.error,
            )
        else:
            self.batches_sent += 1
            self.operations_written += len(batch)
        finally:
            self.in_flight -= 1

    def __repr__(self) -> str:
        return (
            f"WriteBatcher(name={self.name!r}, size={self.size}, "
            f"in_flight={self.in_flight}, batches={self.batches_sent}, "
            f"failures={len(self.failures)})"
        )


@contextlib.asynccontextmanager
async def progress_reporter(
    batcher: WriteBatcher, interval: float
) -> AsyncIterator[None]:
    """Log the batcher queue depth every ``interval`` seconds while active."""

    async def _report() -> None:
        while True:
            await asyncio.sleep(interval)
            logger.info(
                "Queue size: %d (%s, batches sent: %d)",
                batcher.size,
                batcher.name,
                batcher.batches_sent,
            )

    task = asyncio.get_running_loop().create_task(_report(), name=f"{batcher.name}-progress")
    try:
        yield
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
