"""Worker threads that take connection requests from a bounded queue."""

from __future__ import annotations

import contextlib
import threading
from collections import deque
from typing import Any, Deque, Iterator


class ThreadPool:
    """Runs queued requests on a fixed set of worker threads.

    With ``actor_model`` 1 (reactor) workers also do the socket read or
    write named by the request's ``state``; otherwise (proactor) they only
    call ``process``.
    """

    def __init__(
        self,
        actor_model: int = 0,
        conn_pool: Any = None,
        thread_number: int = 8,
        max_requests: int = 10000,
    ) -> None:
        if thread_number <= 0 or max_requests <= 0:
            raise ValueError("thread_number and max_requests must be positive")
        self.actor_model = actor_model
        self.conn_pool = conn_pool
        self.thread_number = thread_number
        self.max_requests = max_requests
        self._queue: Deque[Any] = deque()
        self._lock = threading.Lock()
        self._pending = threading.Semaphore(0)
        self._stop = False
        self._threads = [
            threading.Thread(target=self._run, name=f"worker-{i}", daemon=True)
            for i in range(thread_number)
        ]
        for thread in self._threads:
            thread.start()

    def append(self, request: Any, state: int) -> bool:
        """Queue a reactor request: ``state`` 0 reads, 1 writes."""
        with self._lock:
            if len(self._queue) >= self.max_requests:
                return False
            request.state = state
            self._queue.append(request)
        self._pending.release()
        return True

    def append_p(self, request: Any) -> bool:
        """Queue a proactor request whose data is already read."""
        with self._lock:
            if len(self._queue) >= self.max_requests:
                return False
            self._queue.append(request)
        self._pending.release()
        return True

    def shutdown(self) -> None:
        """Stop the workers and wait for them to finish their current request."""
        self._stop = True
        for _ in self._threads:
            self._pending.release()
        for thread in self._threads:
            thread.join()

    def __enter__(self) -> ThreadPool:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    @contextlib.contextmanager
    def _database(self, request: Any) -> Iterator[None]:
        if self.conn_pool is None:
            request.mysql = None
            yield
            return
        with self.conn_pool.connection() as conn:
            request.mysql = conn
            yield

    def _run(self) -> None:
        while True:
            self._pending.acquire()
            if self._stop:
                return
            with self._lock:
                if not self._queue:
                    continue
                request = self._queue.popleft()
            if request is None:
                continue
            if self.actor_model == 1:
                self._react(request)
            else:
                with self._database(request):
                    request.process()

    def _react(self, request: Any) -> None:
        if request.state == 0:
            if request.read_once():
                request.improv = 1
                with self._database(request):
                    request.process()
            else:
                request.improv = 1
                request.timer_flag = 1
        else:
            if request.write():
                request.improv = 1
            else:
                request.improv = 1
                request.timer_flag = 1