"""A bounded, thread-safe FIFO queue used to hand log lines to a writer thread."""

from __future__ import annotations

import queue
import threading
from collections import deque
from typing import Any, Deque


class BlockingQueue:
    """Bounded FIFO queue whose ``pop`` blocks until an item is available."""

    def __init__(self, max_size: int = 1000) -> None:
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self._max_size = max_size
        self._items: Deque[Any] = deque()
        self._cond = threading.Condition(threading.Lock())

    def clear(self) -> None:
        """Drop every queued item."""
        with self._cond:
            self._items.clear()

    def full(self) -> bool:
        with self._cond:
            return len(self._items) >= self._max_size

    def empty(self) -> bool:
        with self._cond:
            return not self._items

    def front(self) -> Any:
        """Return the oldest item without removing it."""
        with self._cond:
            if not self._items:
                raise IndexError("front of an empty queue")
            return self._items[0]

    def back(self) -> Any:
        """Return the newest item without removing it."""
        with self._cond:
            if not self._items:
                raise IndexError("back of an empty queue")
            return self._items[-1]

    def size(self) -> int:
        with self._cond:
            return len(self._items)

    def max_size(self) -> int:
        with self._cond:
            return self._max_size

    def __len__(self) -> int:
        return self.size()

    def push(self, item: Any) -> bool:
        """Append ``item``; return False if the queue is already full."""
        with self._cond:
            if len(self._items) >= self._max_size:
                self._cond.notify_all()
                return False
            self._items.append(item)
            self._cond.notify_all()
            return True

    def pop(self, timeout: float | None = None) -> Any:
        """Remove and return the oldest item.

        Without a timeout this waits as long as needed. With a timeout in
        seconds it waits at most that long and raises ``queue.Empty`` if
        nothing arrived.
        """
        with self._cond:
            if timeout is None:
                self._cond.wait_for(lambda: bool(self._items))
            elif not self._items:
                self._cond.wait(timeout)
                if not self._items:
                    raise queue.Empty
            return self._items.popleft()