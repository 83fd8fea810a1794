"""Expiry timers for idle connections, kept in ascending order of expiry."""

from __future__ import annotations

import bisect
import contextlib
import os
import select
import signal
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

EPOLLIN = getattr(select, "EPOLLIN", 0x001)
EPOLLOUT = getattr(select, "EPOLLOUT", 0x004)
EPOLLERR = getattr(select, "EPOLLERR", 0x008)
EPOLLHUP = getattr(select, "EPOLLHUP", 0x010)
EPOLLRDHUP = getattr(select, "EPOLLRDHUP", 0x2000)
EPOLLONESHOT = getattr(select, "EPOLLONESHOT", 1 << 30)
EPOLLET = getattr(select, "EPOLLET", 1 << 31)

TIMESLOT = 5


@dataclass(eq=False)
class ClientData:
    """What the server keeps about a client connection."""

    address: Any
    sockfd: Any
    timer: UtilTimer | None = None


@dataclass(eq=False)
class UtilTimer:
    """A deadline with the callback to run on the client data when it passes."""

    expire: float
    cb_func: Callable[[Any], None]
    user_data: Any = None


class SortTimerList:
    """Timers ordered by expiry; equal expiries keep their insertion order."""

    def __init__(self) -> None:
        self._timers: list[UtilTimer] = []

    def add_timer(self, timer: UtilTimer | None) -> None:
        if timer is None:
            return
        bisect.insort_right(self._timers, timer, key=lambda t: t.expire)

    def adjust_timer(self, timer: UtilTimer | None) -> None:
        """Move a timer whose expiry grew to its new place."""
        if timer is None:
            return
        index = self._index(timer)
        if index is None:
            return
        if index + 1 == len(self._timers) or timer.expire < self._timers[index + 1].expire:
            return
        del self._timers[index]
        self.add_timer(timer)

    def del_timer(self, timer: UtilTimer | None) -> None:
        if timer is None:
            return
        index = self._index(timer)
        if index is not None:
            del self._timers[index]

    def tick(self, now: float | None = None) -> int:
        """Run and drop every timer whose expiry is not after ``now``."""
        current = time.time() if now is None else now
        expired = 0
        while self._timers and current >= self._timers[0].expire:
            timer = self._timers.pop(0)
            timer.cb_func(timer.user_data)
            expired += 1
        return expired

    def _index(self, timer: UtilTimer) -> int | None:
        for index, candidate in enumerate(self._timers):
            if candidate is timer:
                return index
        return None

    def __iter__(self) -> Iterator[UtilTimer]:
        return iter(list(self._timers))

    def __len__(self) -> int:
        return len(self._timers)


@dataclass
class Utils:
    """Socket, signal and timer helpers shared by the server loop."""

    timeslot: int = TIMESLOT
    timer_lst: SortTimerList = field(default_factory=SortTimerList)
    pipe: socket.socket | None = None
    poller: Any = None

    def set_nonblocking(self, sock: Any) -> bool:
        """Make ``sock`` non-blocking; return whether it was blocking before."""
        if isinstance(sock, int):
            old = os.get_blocking(sock)
            os.set_blocking(sock, False)
            return old
        old = sock.getblocking()
        sock.setblocking(False)
        return old

    def add_fd(self, poller: Any, fd: Any, one_shot: bool, trig_mode: int) -> int:
        """Register ``fd`` for reads with ``poller`` and make it non-blocking."""
        events = EPOLLIN | EPOLLRDHUP
        if trig_mode == 1:
            events |= EPOLLET
        if one_shot:
            events |= EPOLLONESHOT
        poller.register(fd, events)
        self.set_nonblocking(fd)
        return events

    def sig_handler(self, signum: int, frame: Any = None) -> None:
        """Forward the signal number as one byte through the wake-up pipe."""
        if self.pipe is None:
            return
        with contextlib.suppress(OSError):
            self.pipe.send(bytes([signum & 0xFF]))

    def add_sig(self, signum: int, handler: Any) -> Any:
        """Install ``handler`` for ``signum``; return the previous handler."""
        return signal.signal(signum, handler)

    def timer_handler(self) -> None:
        """Expire due timers and re-arm the alarm."""
        self.timer_lst.tick()
        signal.alarm(self.timeslot)

    def show_error(self, conn: socket.socket, info: str) -> None:
        """Send ``info`` to the client and close the connection."""
        with contextlib.suppress(OSError):
            conn.send(info.encode())
        conn.close()