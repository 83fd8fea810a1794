"""One HTTP connection: request parsing, static file lookup and response output."""

from __future__ import annotations

import contextlib
import os
import re
import stat
import threading
from enum import IntEnum
from typing import Any

from . import log as _logmod
from .timer import EPOLLET, EPOLLIN, EPOLLONESHOT, EPOLLOUT, EPOLLRDHUP

FILENAME_LEN = 200
READ_BUFFER_SIZE = 2048
WRITE_BUFFER_SIZE = 1024

OK_200_TITLE = "OK"
ERROR_400_TITLE = "Bad Request"
ERROR_400_FORM = "Your request has bad syntax or is inherently impossible to staisfy.\n"
ERROR_403_TITLE = "Forbidden"
ERROR_403_FORM = "You do not have permission to get file form this server.\n"
ERROR_404_TITLE = "Not Found"
ERROR_404_FORM = "The requested file was not found on this server.\n"
ERROR_500_TITLE = "Internal Error"
ERROR_500_FORM = "There was an unusual problem serving the request file.\n"
EMPTY_PAGE = "<html><body></body></html>"

_PAGES = {
    "0": "/register.html",
    "1": "/log.html",
    "5": "/picture.html",
    "6": "/video.html",
    "7": "/fans.html",
}
_EOL = re.compile(rb"[\r\n]")
_BLANK = re.compile(r"[ \t]")
_LEADING_LONG = re.compile(r"[ \t\n\r\f\v]*([+-]?\d+)")


class Method(IntEnum):
    GET = 0
    POST = 1
    HEAD = 2
    PUT = 3
    DELETE = 4
    TRACE = 5
    OPTIONS = 6
    CONNECT = 7
    PATH = 8


class CheckState(IntEnum):
    REQUESTLINE = 0
    HEADER = 1
    CONTENT = 2


class HttpCode(IntEnum):
    NO_REQUEST = 0
    GET_REQUEST = 1
    BAD_REQUEST = 2
    NO_RESOURCE = 3
    FORBIDDEN_REQUEST = 4
    FILE_REQUEST = 5
    INTERNAL_ERROR = 6
    CLOSED_CONNECTION = 7


class LineStatus(IntEnum):
    OK = 0
    BAD = 1
    OPEN = 2


def _atol(text: str) -> int:
    match = _LEADING_LONG.match(text)
    return int(match.group(1)) if match else 0


def _after_prefix(text: str, prefix: str) -> str | None:
    """Return ``text`` past a case-insensitive ``prefix`` and blanks, else None."""
    if text[: len(prefix)].lower() != prefix.lower():
        return None
    return text[len(prefix):].lstrip(" \t")


def _log_info(message: str) -> None:
    with contextlib.suppress(RuntimeError):
        _logmod.get_instance().info(message)


def _log_error(message: str) -> None:
    with contextlib.suppress(RuntimeError):
        _logmod.get_instance().error(message)


class UserTable:
    """Registered user names and passwords, shared by all connections."""

    def __init__(self) -> None:
        self._users: dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, conn_pool: Any) -> int:
        """Read every user from the database; return how many are known."""
        with conn_pool.connection() as mysql:
            try:
                with mysql.cursor() as cursor:
                    cursor.execute("SELECT username,passwd FROM user")
                    rows = list(cursor.fetchall())
            except Exception as exc:
                _log_error(f"SELECT error:{exc}\n")
                rows = []
        with self._lock:
            for name, secret in rows:
                self._users[str(name)] = str(secret)
            return len(self._users)

    def register(self, name: str, password: str, mysql: Any) -> bool:
        """Add a new user to the database and the table.

        Returns False if the name is taken or the insert failed; a failed
        insert still records the user in memory.
        """
        with self._lock:
            if name in self._users:
                return False
            try:
                with mysql.cursor() as cursor:
                    cursor.execute(
                        "INSERT INTO user(username, passwd) VALUES(%s, %s)",
                        (name, password),
                    )
                mysql.commit()
                inserted = True
            except Exception:
                inserted = False
            self._users[name] = password
            return inserted

    def check(self, name: str, password: str) -> bool:
        with self._lock:
            return name in self._users and self._users[name] == password

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._users

    def __len__(self) -> int:
        with self._lock:
            return len(self._users)


USERS = UserTable()


class HttpConn:
    """State of one client connection, from request bytes to response bytes."""

    user_count = 0
    _count_lock = threading.Lock()

    def __init__(
        self,
        sock: Any = None,
        address: Any = None,
        doc_root: str | os.PathLike = "",
        trig_mode: int = 0,
        close_log: int = 0,
        poller: Any = None,
        users: UserTable | None = None,
    ) -> None:
        self.sock = sock
        self.address = address
        self.doc_root = os.fspath(doc_root)
        self.trig_mode = trig_mode
        self.close_log = close_log
        self.poller = poller
        self.users = users if users is not None else USERS
        if sock is not None:
            events = EPOLLIN | EPOLLRDHUP | EPOLLONESHOT
            if trig_mode == 1:
                events |= EPOLLET
            if poller is not None:
                poller.register(sock, events)
            sock.setblocking(False)
            with HttpConn._count_lock:
                HttpConn.user_count += 1
        self.reset()

    def reset(self) -> None:
        """Forget the current request so the connection can take the next one."""
        self.mysql: Any = None
        self.bytes_to_send = 0
        self.bytes_have_send = 0
        self.check_state = CheckState.REQUESTLINE
        self.linger = False
        self.method = Method.GET
        self.url: str | None = None
        self.version: str | None = None
        self.content_length = 0
        self.host: str | None = None
        self.body: str | None = None
        self.real_file = ""
        self.cgi = 0
        self.state = 0
        self.timer_flag = 0
        self.improv = 0
        self._read_buf = bytearray()
        self._write_buf = bytearray()
        self._start_line = 0
        self._checked_idx = 0
        self._line_end = 0
        self._file: bytes | None = None
        self._segments: list[bytes] = []

    def _info(self, message: str) -> None:
        if self.close_log == 0:
            _log_info(message)

    def _modfd(self, event: int) -> None:
        if self.poller is None or self.sock is None:
            return
        events = event | EPOLLONESHOT | EPOLLRDHUP
        if self.trig_mode == 1:
            events |= EPOLLET
        with contextlib.suppress(OSError, ValueError):
            self.poller.modify(self.sock, events)

    def close_conn(self, real_close: bool = True) -> None:
        """Unregister and close the socket, counting one client fewer."""
        if not real_close or self.sock is None:
            return
        with contextlib.suppress(OSError, ValueError):
            self._info(f"close {self.sock.fileno()}")
        if self.poller is not None:
            with contextlib.suppress(OSError, ValueError, KeyError):
                self.poller.unregister(self.sock)
        self.sock.close()
        self.sock = None
        with HttpConn._count_lock:
            HttpConn.user_count -= 1

    def read_once(self) -> bool:
        """Read what the socket has; False on close, error or a full buffer."""
        if self.sock is None or len(self._read_buf) >= READ_BUFFER_SIZE:
            return False
        if self.trig_mode == 0:
            try:
                data = self.sock.recv(READ_BUFFER_SIZE - len(self._read_buf))
            except OSError:
                return False
            if not data:
                return False
            self._read_buf += data
            return True
        while True:
            try:
                data = self.sock.recv(READ_BUFFER_SIZE - len(self._read_buf))
            except BlockingIOError:
                return True
            except OSError:
                return False
            if not data:
                return False
            self._read_buf += data

    def feed(self, data: bytes) -> bool:
        """Add received bytes as ``read_once`` would; False if nothing fits."""
        room = READ_BUFFER_SIZE - len(self._read_buf)
        if room <= 0:
            return False
        self._read_buf += data[:room]
        return bool(data)

    def parse_line(self) -> LineStatus:
        """Find the end of the next CRLF-terminated line in the read buffer."""
        match = _EOL.search(self._read_buf, self._checked_idx)
        if match is None:
            self._checked_idx = len(self._read_buf)
            return LineStatus.OPEN
        pos = match.start()
        self._checked_idx = pos
        if match.group() == b"\r":
            if pos + 1 == len(self._read_buf):
                return LineStatus.OPEN
            if self._read_buf[pos + 1 : pos + 2] == b"\n":
                self._line_end = pos
                self._checked_idx = pos + 2
                return LineStatus.OK
            return LineStatus.BAD
        if pos > 1 and self._read_buf[pos - 1 : pos] == b"\r":
            self._line_end = pos - 1
            self._checked_idx = pos + 1
            return LineStatus.OK
        return LineStatus.BAD

    def _parse_request_line(self, text: str) -> HttpCode:
        gap = _BLANK.search(text)
        if gap is None:
            return HttpCode.BAD_REQUEST
        method = text[: gap.start()].upper()
        if method == "GET":
            self.method = Method.GET
        elif method == "POST":
            self.method = Method.POST
            self.cgi = 1
        else:
            return HttpCode.BAD_REQUEST
        rest = text[gap.end():].lstrip(" \t")
        gap = _BLANK.search(rest)
        if gap is None:
            return HttpCode.BAD_REQUEST
        url: str | None = rest[: gap.start()]
        self.version = rest[gap.end():].lstrip(" \t")
        if self.version.upper() != "HTTP/1.1":
            return HttpCode.BAD_REQUEST
        for scheme in ("http://", "https://"):
            if url is not None and url[: len(scheme)].lower() == scheme:
                slash = url.find("/", len(scheme))
                url = url[slash:] if slash >= 0 else None
        if not url or url[0] != "/":
            return HttpCode.BAD_REQUEST
        if url == "/":
            url = "/judge.html"
        self.url = url
        self.check_state = CheckState.HEADER
        return HttpCode.NO_REQUEST

    def _parse_headers(self, text: str) -> HttpCode:
        if not text:
            if self.content_length != 0:
                self.check_state = CheckState.CONTENT
                return HttpCode.NO_REQUEST
            return HttpCode.GET_REQUEST
        if (value := _after_prefix(text, "Connection:")) is not None:
            if value.lower() == "keep-alive":
                self.linger = True
        elif (value := _after_prefix(text, "Content-length:")) is not None:
            self.content_length = _atol(value)
        elif (value := _after_prefix(text, "Host:")) is not None:
            self.host = value
        else:
            self._info(f"oop!unknow header: {text}")
        return HttpCode.NO_REQUEST

    def _parse_content(self) -> HttpCode:
        if len(self._read_buf) >= self.content_length + self._checked_idx:
            end = self._checked_idx + self.content_length
            self.body = bytes(self._read_buf[self._checked_idx : end]).decode("latin-1")
            return HttpCode.GET_REQUEST
        return HttpCode.NO_REQUEST

    def process_read(self) -> HttpCode:
        """Parse as much of the request as has arrived."""
        line_status = LineStatus.OK
        while (
            self.check_state is CheckState.CONTENT and line_status is LineStatus.OK
        ) or (line_status := self.parse_line()) is LineStatus.OK:
            if self.check_state is CheckState.CONTENT:
                self._start_line = self._checked_idx
                if self._parse_content() is HttpCode.GET_REQUEST:
                    return self.do_request()
                line_status = LineStatus.OPEN
                continue
            text = bytes(self._read_buf[self._start_line : self._line_end]).decode("latin-1")
            self._start_line = self._checked_idx
            self._info(text)
            if self.check_state is CheckState.REQUESTLINE:
                if self._parse_request_line(text) is HttpCode.BAD_REQUEST:
                    return HttpCode.BAD_REQUEST
            else:
                code = self._parse_headers(text)
                if code is HttpCode.BAD_REQUEST:
                    return HttpCode.BAD_REQUEST
                if code is HttpCode.GET_REQUEST:
                    return self.do_request()
        return HttpCode.NO_REQUEST

    def _handle_cgi(self, page: str) -> str | None:
        body = self.body or ""
        amp = body.find("&", 5)
        if amp < 0:
            return None
        name = body[5:amp]
        secret = body[amp + 10 :]
        if page == "3":
            if self.users.register(name, secret, self.mysql):
                return "/log.html"
            return "/registerError.html"
        if self.users.check(name, secret):
            return "/welcome.html"
        return "/logError.html"

    def do_request(self) -> HttpCode:
        """Map the URL to a file under the document root and load it."""
        url = self.url or "/"
        slash = url.rfind("/")
        page = url[slash + 1 : slash + 2]
        if self.cgi == 1 and page in ("2", "3"):
            target = self._handle_cgi(page)
            if target is None:
                return HttpCode.BAD_REQUEST
            self.url = target
        elif page in _PAGES:
            target = _PAGES[page]
        else:
            target = url
        self.real_file = (self.doc_root + target)[: FILENAME_LEN - 1]

        try:
            info = os.stat(self.real_file)
        except OSError:
            return HttpCode.NO_RESOURCE
        if not info.st_mode & stat.S_IROTH:
            return HttpCode.FORBIDDEN_REQUEST
        if stat.S_ISDIR(info.st_mode):
            return HttpCode.BAD_REQUEST
        try:
            with open(self.real_file, "rb") as handle:
                self._file = handle.read()
        except OSError:
            return HttpCode.FORBIDDEN_REQUEST
        return HttpCode.FILE_REQUEST

    def _add_response(self, text: str) -> bool:
        used = len(self._write_buf)
        if used >= WRITE_BUFFER_SIZE:
            return False
        data = text.encode("latin-1")
        if len(data) >= WRITE_BUFFER_SIZE - 1 - used:
            return False
        self._write_buf += data
        self._info(f"request:{self._write_buf.decode('latin-1')}")
        return True

    def _add_status_line(self, status: int, title: str) -> bool:
        return self._add_response(f"HTTP/1.1 {status} {title}\r\n")

    def _add_headers(self, content_length: int) -> bool:
        return (
            self._add_response(f"Content-Length:{content_length}\r\n")
            and self._add_response(
                f"Connection:{'keep-alive' if self.linger else 'close'}\r\n"
            )
            and self._add_response("\r\n")
        )

    def _add_error(self, status: int, title: str, form: str) -> bool:
        self._add_status_line(status, title)
        self._add_headers(len(form))
        return self._add_response(form)

    def process_write(self, code: HttpCode) -> bool:
        """Build the response for ``code``; False if there is none to send."""
        if code is HttpCode.INTERNAL_ERROR:
            built = self._add_error(500, ERROR_500_TITLE, ERROR_500_FORM)
        elif code is HttpCode.BAD_REQUEST:
            built = self._add_error(404, ERROR_404_TITLE, ERROR_404_FORM)
        elif code is HttpCode.FORBIDDEN_REQUEST:
            built = self._add_error(403, ERROR_403_TITLE, ERROR_403_FORM)
        elif code is HttpCode.FILE_REQUEST:
            self._add_status_line(200, OK_200_TITLE)
            if self._file:
                self._add_headers(len(self._file))
                self._segments = [bytes(self._write_buf), self._file]
                self.bytes_to_send = len(self._write_buf) + len(self._file)
                return True
            self._add_headers(len(EMPTY_PAGE))
            self._add_response(EMPTY_PAGE)
            return False
        else:
            return False
        if not built:
            return False
        self._segments = [bytes(self._write_buf)]
        self.bytes_to_send = len(self._write_buf)
        return True

    def _pending(self) -> list[memoryview]:
        skip = self.bytes_have_send
        views: list[memoryview] = []
        for segment in self._segments:
            if skip >= len(segment):
                skip -= len(segment)
                continue
            views.append(memoryview(segment)[skip:])
            skip = 0
        return views

    def response_bytes(self) -> bytes:
        """The part of the built response that has not been sent yet."""
        return b"".join(self._pending())

    def process(self) -> HttpCode:
        """Parse what was read and, once a request is complete, build its reply."""
        code = self.process_read()
        if code is HttpCode.NO_REQUEST:
            self._modfd(EPOLLIN)
            return code
        if not self.process_write(code):
            self.close_conn()
        self._modfd(EPOLLOUT)
        return code

    def write(self) -> bool:
        """Send the response; False when the connection should be closed."""
        if self.bytes_to_send == 0:
            self._modfd(EPOLLIN)
            self.reset()
            return True
        if self.sock is None:
            return False
        while True:
            try:
                sent = self.sock.sendmsg(self._pending())
            except BlockingIOError:
                self._modfd(EPOLLOUT)
                return True
            except OSError:
                self._file = None
                return False
            self.bytes_have_send += sent
            self.bytes_to_send -= sent
            if self.bytes_to_send <= 0:
                self._file = None
                self._modfd(EPOLLIN)
                if self.linger:
                    self.reset()
                    return True
                return False