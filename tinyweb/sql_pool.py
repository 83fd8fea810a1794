"""A fixed-size pool of database connections shared by worker threads."""

from __future__ import annotations

import contextlib
import threading
from collections import deque
from typing import Any, Callable, Deque, Iterator


def _mysql_connect(host: str, user: str, password: str, database: str, port: int) -> Any:
    import pymysql

    return pymysql.connect(
        host=host, user=user, password=password, database=database, port=port
    )


class ConnectionPool:
    """Hands out pre-opened connections and takes them back."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._free: Deque[Any] = deque()
        self._in_use = 0
        self.max_conn = 0
        self.url = ""
        self.port = 0
        self.user = ""
        self.password = ""
        self.database_name = ""
        self.close_log = 0

    def init(
        self,
        url: str,
        user: str,
        password: str,
        database_name: str,
        port: int,
        max_conn: int,
        close_log: int = 0,
        connector: Callable[..., Any] | None = None,
    ) -> None:
        """Open ``max_conn`` connections; raise ConnectionError if one fails."""
        connect = connector if connector is not None else _mysql_connect
        self.url = url
        self.port = port
        self.user = user
        self.password = password
        self.database_name = database_name
        self.close_log = close_log

        opened: list[Any] = []
        for _ in range(max_conn):
            try:
                conn = connect(
                    host=url,
                    user=user,
                    password=password,
                    database=database_name,
                    port=port,
                )
            except Exception as exc:
                for made in opened:
                    with contextlib.suppress(Exception):
                        made.close()
                raise ConnectionError("MySQL Error") from exc
            if conn is None:
                for made in opened:
                    with contextlib.suppress(Exception):
                        made.close()
                raise ConnectionError("MySQL Error")
            opened.append(conn)

        with self._lock:
            self._free.extend(opened)
            self.max_conn = len(self._free)

    def get_connection(self) -> Any:
        """Take a free connection, or return None when none is free."""
        with self._lock:
            if not self._free:
                return None
            conn = self._free.popleft()
            self._in_use += 1
            return conn

    def release_connection(self, conn: Any) -> bool:
        """Give ``conn`` back to the pool; False if there was nothing to give."""
        if conn is None:
            return False
        with self._lock:
            self._free.append(conn)
            self._in_use -= 1
        return True

    def free_connections(self) -> int:
        with self._lock:
            return len(self._free)

    @property
    def in_use(self) -> int:
        with self._lock:
            return self._in_use

    def destroy(self) -> None:
        """Close every pooled connection."""
        with self._lock:
            for conn in self._free:
                with contextlib.suppress(Exception):
                    conn.close()
            self._free.clear()
            self._in_use = 0

    @contextlib.contextmanager
    def connection(self) -> Iterator[Any]:
        """Borrow a connection for the duration of a ``with`` block."""
        conn = self.get_connection()
        try:
            yield conn
        finally:
            self.release_connection(conn)


_instance: ConnectionPool | None = None
_instance_lock = threading.Lock()


def get_instance() -> ConnectionPool:
    """Return the process-wide connection pool."""
    global _instance
    with _instance_lock:
        if _instance is None:
            _instance = ConnectionPool()
        return _instance