"""Bounded background queue for best-effort writes (seen records, vacancy cache).

Jobs run one at a time on a single worker task.  Every failure is logged
and kept in ``failures`` for callers to inspect.  The queue is bounded:
``submit`` waits while it is full.
"""

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from vacancy_notifier.config import BACKGROUND_QUEUE_SIZE

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


@dataclass
class WriteFailure:
    label: str
    error: BaseException
    failed_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class BackgroundWriter:
    def __init__(self, max_pending: int = BACKGROUND_QUEUE_SIZE, max_failures: int = 500):
        self._max_pending = max_pending
        self._queue: asyncio.Queue[tuple[str, Job]] | None = None
        self._worker: asyncio.Task | None = None
        self.failures: deque[WriteFailure] = deque(maxlen=max_failures)
        self.completed = 0

    def _ensure_worker(self) -> asyncio.Queue:
        # Created lazily so the queue binds to the loop that actually uses it
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._max_pending)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="background-writer")
        return self._queue

    async def submit(self, label: str, job: Job) -> None:
        queue = self._ensure_worker()
        await queue.put((label, job))

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            label, job = await self._queue.get()
            try:
                await job()
                self.completed += 1
            except Exception as e:
                logger.error(f"Background write '{label}' failed: {e}")
                self.failures.append(WriteFailure(label=label, error=e))
            finally:
                self._queue.task_done()

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def drain(self) -> None:
        """Wait until every submitted job has finished (successfully or not)."""
        if self._queue is not None:
            await self._queue.join()

    def take_failures(self) -> list[WriteFailure]:
        failures = list(self.failures)
        self.failures.clear()
        return failures

    async def close(self) -> None:
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
        self._queue = None
