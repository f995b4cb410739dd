from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

from ..log_config import debug_verbose

TaskFactory = Callable[[], Awaitable[Any]]


class ConcurrencyLimiter:
    """FIFO admission of coroutine factories with a reconfigurable cap.

    A task that is never admitted is never started: the factory is only
    invoked once a slot frees up, so withdrawing pending work costs nothing.
    Changing the capacity never drops pending work and never interrupts
    running tasks; it only changes how many future admissions may happen.
    """

    def __init__(self, capacity: int, *, name: str = "limiter") -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.name = name
        self._capacity = capacity
        self._active = 0
        self._pending: Deque[Tuple[TaskFactory, "asyncio.Future[Any]"]] = deque()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def pending_count(self) -> int:
        return sum(1 for _, future in self._pending if not future.done())

    def submit(self, factory: TaskFactory) -> "asyncio.Future[Any]":
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        self._pending.append((factory, future))
        self._drain()
        return future

    def set_capacity(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if capacity == self._capacity:
            return
        debug_verbose(
            "limiter_capacity",
            {"limiter": self.name, "old": self._capacity, "new": capacity},
        )
        self._capacity = capacity
        self._drain()

    def withdraw(self, future: "asyncio.Future[Any]") -> bool:
        """Drop a not-yet-admitted submission and cancel its future."""
        for index, (_, pending) in enumerate(self._pending):
            if pending is future:
                del self._pending[index]
                future.cancel()
                return True
        return False

    def _drain(self) -> None:
        while self._active < self._capacity and self._pending:
            factory, future = self._pending.popleft()
            if future.done():
                continue
            self._active += 1
            task = asyncio.ensure_future(self._run(factory, future))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, factory: TaskFactory, future: "asyncio.Future[Any]") -> None:
        try:
            result = await factory()
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as exc:  # noqa: BLE001 - delivered through the future
            if not future.done():
                future.set_exception(exc)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._active -= 1
            self._drain()

    async def aclose(self, timeout: Optional[float] = None) -> None:
        for _, future in self._pending:
            future.cancel()
        self._pending.clear()
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)


__all__ = ["ConcurrencyLimiter", "TaskFactory"]
