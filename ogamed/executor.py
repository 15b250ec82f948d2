from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from .errors import InternalError, OGameError, is_transient

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]

BACKOFF_BASE = 1.0
BACKOFF_CAP = 60.0
MAX_ATTEMPTS = 5


class Regime(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


@dataclass(order=True)
class Task:
    eligible_at: float
    seq: int
    name: str = field(compare=False)
    action: Action = field(compare=False, repr=False)
    future: asyncio.Future = field(compare=False, repr=False)
    prepare: bool = field(default=True, compare=False)
    attempts: int = field(default=0, compare=False)


class TaskHandle:
    """Awaitable result of a submitted task; cancel() withdraws it while queued."""

    def __init__(self, executor: "CommandExecutor", task: Task):
        self._executor = executor
        self.task = task

    def cancel(self) -> bool:
        return self._executor.cancel(self.task)

    def done(self) -> bool:
        return self.task.future.done()

    def __await__(self):
        return self.task.future.__await__()


class ManualToken:
    """Proof of holding manual mode. Only the holder can run work or leave."""

    def __init__(self, executor: "CommandExecutor"):
        self._executor = executor
        self.active = True

    async def run(self, action: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        if not self.active:
            raise InternalError("manual mode already left")
        if self._executor.before_task is not None:
            await self._executor.before_task()
        return await action(*args, **kwargs)


class CommandExecutor:
    """Single lane for everything that talks to the game.

    Tasks wait in a heap ordered by (eligible_at, seq) and run one at a time
    under the lane lock. Manual mode holds that same lock, so while a
    ManualToken is out nothing queued runs and the queue only grows.
    """

    def __init__(
        self,
        *,
        before_task: Optional[Callable[[], Awaitable[Any]]] = None,
        clock: Callable[[], float] = time.monotonic,
        backoff_base: float = BACKOFF_BASE,
        backoff_cap: float = BACKOFF_CAP,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self.before_task = before_task
        self._clock = clock
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.max_attempts = max_attempts

        self._heap: List[Task] = []
        self._seq = itertools.count()
        self._lane = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._worker: Optional[asyncio.Task] = None
        self._current: Optional[Task] = None
        self._token: Optional[ManualToken] = None

    # ---------- lifecycle ----------

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="ogamed-executor")

    async def close(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        while self._heap:
            task = heapq.heappop(self._heap)
            if not task.future.done():
                task.future.set_exception(InternalError(f"executor closed before {task.name} ran"))

    # ---------- queue ----------

    def submit(
        self,
        action: Action,
        *,
        name: str = "",
        delay: float = 0.0,
        at: Optional[float] = None,
        prepare: bool = True,
    ) -> TaskHandle:
        """Queue an action; it becomes eligible at `at` (clock time) or after `delay` seconds."""
        eligible_at = at if at is not None else self._clock() + max(0.0, delay)
        task = Task(
            eligible_at=eligible_at,
            seq=next(self._seq),
            name=name or getattr(action, "__name__", "task"),
            action=action,
            future=asyncio.get_running_loop().create_future(),
            prepare=prepare,
        )
        task.future.add_done_callback(lambda _: self._withdrawn(task))
        heapq.heappush(self._heap, task)
        self._wakeup.set()
        logger.debug("Queued %s (seq %d, depth %d)", task.name, task.seq, len(self._heap))
        return TaskHandle(self, task)

    def cancel(self, task: Task) -> bool:
        # a dispatched task runs to completion
        if task is self._current or task.future.done() or task not in self._heap:
            return False
        self._heap.remove(task)
        heapq.heapify(self._heap)
        task.future.cancel()
        logger.info("Cancelled queued task %s", task.name)
        return True

    def _withdrawn(self, task: Task) -> None:
        # the caller stopped waiting (timeout, cancelled request) while the task was queued
        if task.future.cancelled() and task in self._heap:
            self._heap.remove(task)
            heapq.heapify(self._heap)
            logger.info("Dropped queued task %s, its caller gave up", task.name)

    @property
    def queue_depth(self) -> int:
        return len(self._heap)

    @property
    def regime(self) -> Regime:
        return Regime.MANUAL if self._token is not None else Regime.AUTOMATIC

    def state(self) -> Dict[str, Any]:
        return {
            "locked": self._lane.locked(),
            "regime": self.regime.value,
            "current": self._current.name if self._current else None,
            "queue_depth": self.queue_depth,
        }

    def tasks(self) -> List[Dict[str, Any]]:
        now = self._clock()
        return [
            {
                "name": t.name,
                "seq": t.seq,
                "eligible_in": max(0.0, t.eligible_at - now),
                "attempts": t.attempts,
            }
            for t in sorted(self._heap)
        ]

    # ---------- manual mode ----------

    async def enter_manual(self) -> ManualToken:
        await self._lane.acquire()
        self._token = ManualToken(self)
        logger.info("Manual mode entered, automatic draining suspended")
        return self._token

    def leave_manual(self, token: ManualToken) -> None:
        if token is not self._token or not token.active:
            raise InternalError("token does not hold manual mode")
        token.active = False
        self._token = None
        self._lane.release()
        self._wakeup.set()
        logger.info("Manual mode left (%d task(s) waiting)", self.queue_depth)

    @asynccontextmanager
    async def manual(self) -> AsyncIterator[ManualToken]:
        token = await self.enter_manual()
        try:
            yield token
        finally:
            self.leave_manual(token)

    # ---------- worker ----------

    async def _wait_for_work(self) -> None:
        while True:
            if not self._heap:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue
            delay = self._heap[0].eligible_at - self._clock()
            if delay <= 0:
                return
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    async def _drain(self) -> None:
        while True:
            await self._wait_for_work()
            async with self._lane:
                # the head may have changed while waiting for the lane
                if not self._heap or self._heap[0].eligible_at > self._clock():
                    continue
                task = heapq.heappop(self._heap)
                if task.future.done():
                    logger.debug("Skipping %s, already settled", task.name)
                    continue
                await self._run(task)

    def _backoff(self, attempts: int) -> float:
        return min(self.backoff_cap, self.backoff_base * 2 ** (attempts - 1))

    async def _run(self, task: Task) -> None:
        self._current = task
        task.attempts += 1
        try:
            if task.prepare and self.before_task is not None:
                await self.before_task()
            result = await task.action()
        except asyncio.CancelledError:
            if not task.future.done():
                task.future.cancel()
            raise
        except OGameError as e:
            if is_transient(e) and task.attempts < self.max_attempts:
                delay = self._backoff(task.attempts)
                logger.warning("%s failed (%s), retry %d/%d in %.0fs",
                               task.name, e.message, task.attempts, self.max_attempts - 1, delay)
                task.eligible_at = self._clock() + delay
                heapq.heappush(self._heap, task)
                return
            if is_transient(e):
                logger.error("%s failed after %d attempts: %s", task.name, task.attempts, e.message)
            if not task.future.done():
                task.future.set_exception(e)
        except Exception as e:
            logger.exception("Task %s crashed", task.name)
            if not task.future.done():
                task.future.set_exception(InternalError(f"{task.name}: {type(e).__name__}: {e}"))
        else:
            if not task.future.done():
                task.future.set_result(result)
        finally:
            self._current = None
