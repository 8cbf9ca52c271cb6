"""
Per-session serial task queue.

Every operation touching one session (initialisation, a poll tick, a manual
capture, ending) is submitted here and runs strictly after the previous one
has finished. Different sessions own different queues and run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]


class SessionEndedError(RuntimeError):
    """Raised when work is submitted for a session that has ended."""


class SessionTaskQueue:
    """
    FIFO of coroutine factories consumed by a single worker task.

    ``submit`` awaits the task's result and re-raises its exception. If the
    submitter is cancelled before the task starts, the task is dropped; a
    task that has already started always runs to completion.
    """

    def __init__(self, session_id: int):
        self.session_id = session_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(
                self._run(), name=f"session-{self.session_id}-queue"
            )

    async def submit(self, factory: TaskFactory, *, last: bool = False) -> Any:
        """
        Queue ``factory`` and wait for its result.

        Args:
            factory: Zero-argument callable returning the coroutine to run
            last: Close the queue behind this task

        Raises:
            SessionEndedError: If the queue has been closed
        """
        if self._closed:
            raise SessionEndedError(f"Session {self.session_id} has ended")
        future = asyncio.get_running_loop().create_future()
        self._ensure_worker()
        self._queue.put_nowait((factory, future))
        if last:
            self._closed = True
        return await future

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                factory, future = item
                if future.cancelled():
                    logger.debug(f"Session {self.session_id}: dropping cancelled task")
                    continue
                try:
                    result = await factory()
                except Exception as e:
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(result)
            finally:
                self._queue.task_done()

    def close(self) -> None:
        """Reject further submissions; already queued tasks still run."""
        self._closed = True

    async def aclose(self) -> None:
        """Close, let queued tasks finish and stop the worker."""
        self.close()
        if self._worker is None or self._worker.done():
            return
        self._queue.put_nowait(None)
        await self._worker
