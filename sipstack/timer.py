"""A thread-safe timer wheel keyed by monotonic deadlines."""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from typing import Generic, TypeVar

T = TypeVar("T")


class Timer(Generic[T]):
    """Holds values that become due at given monotonic times.

    Times are floats in seconds, as returned by ``time.monotonic()``.
    Each scheduled value gets a task id, starting at 1, that can be used
    to cancel it before it is polled.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[int, tuple[float, T]] = {}
        self._queue: list[tuple[float, int]] = []
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def timeout(self, duration: float, value: T) -> int:
        """Schedule ``value`` to become due ``duration`` seconds from now."""
        return self.timeout_at(time.monotonic() + duration, value)

    def timeout_at(self, execute_at: float, value: T) -> int:
        """Schedule ``value`` to become due at the monotonic time ``execute_at``."""
        with self._lock:
            task_id = next(self._ids)
            self._tasks[task_id] = (execute_at, value)
            heapq.heappush(self._queue, (execute_at, task_id))
            return task_id

    def cancel(self, task_id: int) -> T | None:
        """Remove a scheduled task and return its value, or None if unknown."""
        with self._lock:
            entry = self._tasks.pop(task_id, None)
            if entry is None:
                return None
            if len(self._queue) > 2 * len(self._tasks) + 64:
                self._queue = [
                    item for item in self._queue if item[1] in self._tasks
                ]
                heapq.heapify(self._queue)
            return entry[1]

    def poll(self, now: float) -> list[T]:
        """Remove and return every value due at or before ``now``, earliest first."""
        due: list[T] = []
        with self._lock:
            while self._queue and self._queue[0][0] <= now:
                _, task_id = heapq.heappop(self._queue)
                entry = self._tasks.pop(task_id, None)
                if entry is not None:
                    due.append(entry[1])
        return due