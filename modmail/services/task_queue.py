"""Single-worker FIFO executor for work that must not interleave.

Thread creation does a check-then-create against the store and Discord. Two
DMs from a new user can arrive within the channel creation latency, so every
such operation is enqueued here and runs strictly one after another.

There is no per-task timeout: a stalled Discord or database call stalls
every task behind it.
"""
import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Optional

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]


class QueueState(str, Enum):
    IDLE = "IDLE"
    PROCESSING = "PROCESSING"


@dataclass
class QueuedTask:
    position: int
    action: Action
    succeeded: Optional[bool] = None
    result: Any = None
    error: Optional[BaseException] = None
    _done: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    async def wait(self) -> "QueuedTask":
        """Wait for the task to finish, whatever the outcome."""
        await self._done.wait()
        return self


class SerialTaskQueue:
    def __init__(self, name: str = "serial"):
        self.name = name
        self._pending: Deque[QueuedTask] = deque()
        self._positions = itertools.count(1)
        self._state = QueueState.IDLE
        self._worker: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def state(self) -> QueueState:
        return self._state

    def __len__(self) -> int:
        return len(self._pending)

    def enqueue(self, action: Action) -> QueuedTask:
        """Append a task and return without waiting for it to run."""
        task = QueuedTask(position=next(self._positions), action=action)
        self._pending.append(task)
        if self._state is QueueState.IDLE:
            self._state = QueueState.PROCESSING
            self._idle.clear()
            self._worker = asyncio.get_running_loop().create_task(
                self._process(), name=f"{self.name}-queue"
            )
        return task

    async def _process(self) -> None:
        try:
            while self._pending:
                task = self._pending.popleft()
                try:
                    task.result = await task.action()
                    task.succeeded = True
                except Exception as e:
                    task.succeeded = False
                    task.error = e
                    logger.exception("Queued task #%s on %s failed: %s", task.position, self.name, e)
                finally:
                    task._done.set()
        finally:
            self._state = QueueState.IDLE
            self._worker = None
            self._idle.set()

    async def join(self) -> None:
        """Wait until every task enqueued so far has finished."""
        await self._idle.wait()

    async def shutdown(self) -> None:
        """Drop pending tasks and stop the worker."""
        dropped = len(self._pending)
        self._pending.clear()
        worker = self._worker
        if worker is not None:
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        self._state = QueueState.IDLE
        self._worker = None
        self._idle.set()
        if dropped:
            logger.warning("Discarded %s pending task(s) on %s shutdown", dropped, self.name)
