"""The event-driven HTTP server: accepts clients, dispatches I/O and expires idle ones."""

from __future__ import annotations

import contextlib
import os
import select
import signal
import socket
import struct
import sys
import time
from typing import Any, Sequence

from . import log as _logmod
from . import sql_pool as _sql_pool
from .config import Config
from .http_conn import USERS, HttpConn
from .threadpool import ThreadPool
from .timer import (
    EPOLLERR,
    EPOLLHUP,
    EPOLLIN,
    EPOLLOUT,
    EPOLLRDHUP,
    TIMESLOT,
    ClientData,
    UtilTimer,
    Utils,
)

MAX_FD = 65536
MAX_EVENT_NUMBER = 10000

DB_USER = "lzq"
PASSWORD = "password"
DB_NAME = "lzqdb"

_TRIG_MODES = {0: (0, 0), 1: (0, 1), 2: (1, 0), 3: (1, 1)}


def _default_root() -> str:
    return os.getcwd() + "/root"


class WebServer:
    """Listens on a port and serves static pages and login/registration forms."""

    def __init__(
        self,
        port: int = 9006,
        user: str = DB_USER,
        password: str = PASSWORD,
        database_name: str = DB_NAME,
        log_write: int = 0,
        opt_linger: int = 0,
        trig_mode: int = 0,
        sql_num: int = 8,
        thread_num: int = 8,
        close_log: int = 0,
        actor_model: int = 0,
        root: str | os.PathLike | None = None,
    ) -> None:
        self.port = port
        self.user = user
        self.password = password
        self.database_name = database_name
        self.log_write_mode = log_write
        self.opt_linger = opt_linger
        self.trig_combo = trig_mode
        self.sql_num = sql_num
        self.thread_num = thread_num
        self.close_log = close_log
        self.actor_model = actor_model
        self.root = os.fspath(root) if root is not None else _default_root()

        self.listen_trig_mode = 0
        self.conn_trig_mode = 0

        self.users: dict[int, HttpConn] = {}
        self.users_timer: dict[int, ClientData] = {}
        self.user_table = USERS
        self.utils = Utils(TIMESLOT)

        self.conn_pool: Any = None
        self.pool: ThreadPool | None = None
        self.poller: Any = None
        self.listen_sock: socket.socket | None = None
        self.pipe_read: socket.socket | None = None

        self.timeout_pending = False
        self.stop_server = False
        self._old_signals: dict[int, Any] = {}

    def _log(self, level: int, message: str) -> None:
        if self.close_log != 0:
            return
        with contextlib.suppress(RuntimeError):
            logger = _logmod.get_instance()
            (logger.info if level == 1 else logger.error)(message)

    def trig_mode(self) -> None:
        """Split the combined trigger mode into listen and connection modes."""
        if self.trig_combo in _TRIG_MODES:
            self.listen_trig_mode, self.conn_trig_mode = _TRIG_MODES[self.trig_combo]

    def log_write(self) -> None:
        """Open the server log, asynchronous when ``log_write`` is 1."""
        if self.close_log == 0:
            queue_size = 800 if self.log_write_mode == 1 else 0
            _logmod.get_instance().init(
                "./ServerLog", self.close_log, 2000, 800000, queue_size
            )

    def sql_pool(self) -> None:
        """Open the database pool and load the user table from it."""
        self.conn_pool = _sql_pool.get_instance()
        self.conn_pool.init(
            "localhost",
            self.user,
            self.password,
            self.database_name,
            3306,
            self.sql_num,
            self.close_log,
        )
        self.user_table.load(self.conn_pool)

    def thread_pool(self) -> None:
        """Start the worker threads."""
        self.pool = ThreadPool(self.actor_model, self.conn_pool, self.thread_num)

    def event_listen(self) -> None:
        """Create the listening socket, the poller, the signal pipe and the alarm."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        if self.opt_linger in (0, 1):
            sock.setsockopt(
                socket.SOL_SOCKET,
                socket.SO_LINGER,
                struct.pack("ii", self.opt_linger, 1),
            )
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("", self.port))
        sock.listen(5)
        self.listen_sock = sock

        self.poller = select.epoll()
        self.utils.poller = self.poller
        self.utils.add_fd(self.poller, sock, False, self.listen_trig_mode)

        self.pipe_read, pipe_write = socket.socketpair()
        self.utils.set_nonblocking(pipe_write)
        self.utils.add_fd(self.poller, self.pipe_read, False, 0)
        self.utils.pipe = pipe_write

        self._old_signals[signal.SIGPIPE] = self.utils.add_sig(
            signal.SIGPIPE, signal.SIG_IGN
        )
        for signum in (signal.SIGALRM, signal.SIGTERM):
            self._old_signals[signum] = self.utils.add_sig(
                signum, self.utils.sig_handler
            )
        signal.alarm(TIMESLOT)

    def _close_client(self, client: ClientData | None) -> None:
        if client is None:
            return
        conn = self.users.pop(client.sockfd, None)
        if conn is not None:
            conn.close_conn()

    def timer(self, conn: socket.socket, address: Any) -> UtilTimer:
        """Set up a new client and give it an expiry three time slots away."""
        fd = conn.fileno()
        self.users[fd] = HttpConn(
            conn,
            address,
            self.root,
            self.conn_trig_mode,
            self.close_log,
            self.poller,
            self.user_table,
        )
        client = ClientData(address=address, sockfd=fd)
        new_timer = UtilTimer(
            expire=time.time() + 3 * TIMESLOT,
            cb_func=self._close_client,
            user_data=client,
        )
        client.timer = new_timer
        self.users_timer[fd] = client
        self.utils.timer_lst.add_timer(new_timer)
        return new_timer

    def adjust_timer(self, timer: UtilTimer) -> None:
        """Push a timer three time slots into the future after activity."""
        timer.expire = time.time() + 3 * TIMESLOT
        self.utils.timer_lst.adjust_timer(timer)
        self._log(1, "adjust timer once")

    def deal_timer(self, timer: UtilTimer | None, fd: int) -> None:
        """Close the client on ``fd`` and drop its timer."""
        client = self.users_timer.get(fd)
        if timer is not None:
            timer.cb_func(client)
            self.utils.timer_lst.del_timer(timer)
        else:
            self._close_client(client)
        self._log(1, f"close fd {fd}")

    def _accept_one(self) -> bool:
        assert self.listen_sock is not None
        try:
            conn, address = self.listen_sock.accept()
        except OSError as exc:
            self._log(3, f"accept error:errno is:{exc.errno}")
            return False
        if HttpConn.user_count >= MAX_FD:
            self.utils.show_error(conn, "Internal server busy")
            self._log(3, "Internal server busy")
            return False
        self.timer(conn, address)
        return True

    def deal_client_data(self) -> bool:
        """Accept new clients: one in LT mode, all pending ones in ET mode."""
        if self.listen_trig_mode == 0:
            return self._accept_one()
        while self._accept_one():
            pass
        return False

    def deal_with_signal(self) -> bool:
        """Read forwarded signal numbers; False if nothing could be read."""
        if self.pipe_read is None:
            return False
        try:
            signals = self.pipe_read.recv(1024)
        except OSError:
            return False
        if not signals:
            return False
        for signum in signals:
            if signum == signal.SIGALRM:
                self.timeout_pending = True
            elif signum == signal.SIGTERM:
                self.stop_server = True
        return True

    def _client_timer(self, fd: int) -> UtilTimer | None:
        client = self.users_timer.get(fd)
        return client.timer if client is not None else None

    def _react(self, fd: int, conn: HttpConn, state: int) -> None:
        timer = self._client_timer(fd)
        if timer is not None:
            self.adjust_timer(timer)
        assert self.pool is not None
        if not self.pool.append(conn, state):
            return
        while conn.improv != 1:
            time.sleep(0.0005)
        if conn.timer_flag == 1:
            self.deal_timer(timer, fd)
            conn.timer_flag = 0
        conn.improv = 0

    def deal_with_read(self, fd: int) -> None:
        """Handle readable data on a client connection."""
        conn = self.users.get(fd)
        if conn is None:
            return
        if self.actor_model == 1:
            self._react(fd, conn, 0)
            return
        timer = self._client_timer(fd)
        if conn.read_once():
            self._log(1, f"deal with the client({conn.address[0]})")
            assert self.pool is not None
            self.pool.append_p(conn)
            if timer is not None:
                self.adjust_timer(timer)
        else:
            self.deal_timer(timer, fd)

    def deal_with_write(self, fd: int) -> None:
        """Send pending response data on a client connection."""
        conn = self.users.get(fd)
        if conn is None:
            return
        if self.actor_model == 1:
            self._react(fd, conn, 1)
            return
        timer = self._client_timer(fd)
        if conn.write():
            self._log(1, f"send data to the client({conn.address[0]})")
            if timer is not None:
                self.adjust_timer(timer)
        else:
            self.deal_timer(timer, fd)

    def event_loop(self) -> None:
        """Dispatch poller events until a SIGTERM arrives."""
        assert self.listen_sock is not None and self.pipe_read is not None
        listen_fd = self.listen_sock.fileno()
        pipe_fd = self.pipe_read.fileno()
        self.timeout_pending = False
        self.stop_server = False
        while not self.stop_server:
            try:
                events = self.poller.poll(-1, MAX_EVENT_NUMBER)
            except OSError:
                self._log(3, "epoll failure")
                break
            for fd, mask in events:
                if fd == listen_fd:
                    self.deal_client_data()
                elif mask & (EPOLLRDHUP | EPOLLHUP | EPOLLERR):
                    self.deal_timer(self._client_timer(fd), fd)
                elif fd == pipe_fd and mask & EPOLLIN:
                    if not self.deal_with_signal():
                        self._log(3, "dealclientdata failure")
                elif mask & EPOLLIN:
                    self.deal_with_read(fd)
                elif mask & EPOLLOUT:
                    self.deal_with_write(fd)
            if self.timeout_pending:
                self.utils.timer_handler()
                self._log(1, "timer tick")
                self.timeout_pending = False

    def close(self) -> None:
        """Stop workers, cancel the alarm, restore signals and close every socket."""
        if self.pool is not None:
            self.pool.shutdown()
            self.pool = None
        if self._old_signals:
            signal.alarm(0)
            for signum, handler in self._old_signals.items():
                with contextlib.suppress(OSError, ValueError, TypeError):
                    signal.signal(signum, handler)
            self._old_signals.clear()
        for conn in list(self.users.values()):
            conn.close_conn()
        self.users.clear()
        self.users_timer.clear()
        for sock in (self.listen_sock, self.pipe_read, self.utils.pipe):
            if sock is not None:
                sock.close()
        self.listen_sock = None
        self.pipe_read = None
        self.utils.pipe = None
        if self.poller is not None and hasattr(self.poller, "close"):
            self.poller.close()
        self.poller = None

    def __enter__(self) -> WebServer:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Parse options, set the server up and run it until SIGTERM."""
    config = Config()
    config.parse_arg(sys.argv[1:] if argv is None else argv)
    server = WebServer(
        config.port,
        DB_USER,
        PASSWORD,
        DB_NAME,
        config.log_write,
        config.opt_linger,
        config.trig_mode,
        config.sql_num,
        config.thread_num,
        config.close_log,
        config.actor_model,
    )
    with server:
        server.log_write()
        server.sql_pool()
        server.thread_pool()
        server.trig_mode()
        server.event_listen()
        server.event_loop()
    return 0


if __name__ == "__main__":
    sys.exit(main())