"""Line-oriented log file writer with daily and size-based rollover."""

from __future__ import annotations

import os
import threading
import time
from datetime import date, datetime
from typing import IO

from .blocking_queue import BlockingQueue

_LEVEL_TAGS = {0: "[debug]:", 1: "[info]:", 2: "[warn]:", 3: "[erro]:"}
_PREFIX_LIMIT = 47
_STOP = object()


class Log:
    """Writes timestamped lines to a dated file, synchronously or via a thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._count = 0
        self._is_async = False
        self._queue: BlockingQueue | None = None
        self._writer: threading.Thread | None = None
        self._fp: IO[str] | None = None
        self._dir_name = ""
        self._log_name = ""
        self._today: date | None = None
        self.close_log = 0
        self.log_buf_size = 8192
        self.split_lines = 5_000_000
        self.path: str | None = None

    def init(
        self,
        file_name: str,
        close_log: int = 0,
        log_buf_size: int = 8192,
        split_lines: int = 5_000_000,
        max_queue_size: int = 0,
    ) -> None:
        """Open today's log file; a positive queue size enables async writing."""
        self.close()
        if max_queue_size >= 1:
            self._is_async = True
            self._queue = BlockingQueue(max_queue_size)
            self._writer = threading.Thread(
                target=self._async_write, name="log-writer", daemon=True
            )
            self._writer.start()
        else:
            self._is_async = False

        self.close_log = close_log
        self.log_buf_size = log_buf_size
        self.split_lines = split_lines
        self._count = 0

        head, sep, tail = file_name.rpartition("/")
        self._dir_name = head + sep
        self._log_name = tail

        today = date.today()
        self._today = today
        self.path = self._dated_name(today)
        self._fp = open(self.path, "a", encoding="utf-8")

    def _dated_name(self, day: date, suffix: str = "") -> str:
        return f"{self._dir_name}{day.strftime('%Y_%m_%d')}_{self._log_name}{suffix}"

    def _async_write(self) -> None:
        assert self._queue is not None
        while True:
            line = self._queue.pop()
            if line is _STOP:
                return
            with self._lock:
                if self._fp is not None:
                    self._fp.write(line)

    def write_log(self, level: int, message: str) -> None:
        """Write one line at ``level`` (0 debug, 1 info, 2 warn, 3 error)."""
        if self._fp is None:
            raise RuntimeError("log is not initialised")
        now = datetime.now()
        tag = _LEVEL_TAGS.get(level, "[info]:")

        with self._lock:
            self._count += 1
            today = now.date()
            if self._today != today or self._count % self.split_lines == 0:
                self._fp.flush()
                self._fp.close()
                if self._today != today:
                    self.path = self._dated_name(today)
                    self._today = today
                    self._count = 0
                else:
                    self.path = self._dated_name(
                        today, f".{self._count // self.split_lines}"
                    )
                self._fp = open(self.path, "a", encoding="utf-8")

            prefix = f"{now:%Y-%m-%d %H:%M:%S}.{now.microsecond:06d} {tag} "
            prefix = prefix[:_PREFIX_LIMIT]
            room = max(self.log_buf_size - len(prefix) - 2, 0)
            line = f"{prefix}{message[:room]}\n"

        if self._is_async and self._queue is not None and not self._queue.full():
            self._queue.push(line)
        else:
            with self._lock:
                self._fp.write(line)

    def flush(self) -> None:
        """Flush buffered output to the file."""
        with self._lock:
            if self._fp is not None:
                self._fp.flush()

    def close(self) -> None:
        """Drain the async queue, stop the writer and close the file."""
        if self._writer is not None and self._queue is not None:
            while not self._queue.push(_STOP):
                time.sleep(0.001)
            self._writer.join()
        self._writer = None
        self._queue = None
        with self._lock:
            if self._fp is not None:
                self._fp.flush()
                self._fp.close()
                self._fp = None

    def _emit(self, level: int, message: str) -> None:
        if self.close_log == 0:
            self.write_log(level, message)
            self.flush()

    def debug(self, message: str) -> None:
        self._emit(0, message)

    def info(self, message: str) -> None:
        self._emit(1, message)

    def warn(self, message: str) -> None:
        self._emit(2, message)

    def error(self, message: str) -> None:
        self._emit(3, message)


_instance: Log | None = None
_instance_lock = threading.Lock()


def get_instance() -> Log:
    """Return the process-wide log."""
    global _instance
    with _instance_lock:
        if _instance is None:
            _instance = Log()
        return _instance


def _dated_path(directory: str | os.PathLike, name: str) -> str:
    return os.path.join(directory, f"{date.today().strftime('%Y_%m_%d')}_{name}")