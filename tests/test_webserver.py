import signal
import socket
import threading
import time

import pytest

from tinyweb.http_conn import HttpConn
from tinyweb.threadpool import ThreadPool
from tinyweb.timer import EPOLLONESHOT, EPOLLOUT, TIMESLOT
from tinyweb.webserver import WebServer

REQUEST = b"GET / HTTP/1.1\r\nHost: localhost\r\n\r\n"
PAGE = b"<html><body>judge</body></html>"


class FakePoller:
    def __init__(self):
        self.registered = {}
        self.modified = []
        self.unregistered = []

    def register(self, sock, events):
        self.registered[sock.fileno()] = events

    def modify(self, sock, events):
        self.modified.append((sock.fileno(), events))

    def unregister(self, sock):
        self.unregistered.append(sock.fileno())


@pytest.fixture
def site(tmp_path):
    page = tmp_path / "judge.html"
    page.write_bytes(PAGE)
    page.chmod(0o644)
    return tmp_path


@pytest.fixture
def server(site):
    srv = WebServer(port=0, close_log=1, thread_num=1, root=str(site))
    srv.poller = FakePoller()
    yield srv
    srv.close()


def _wait_for(predicate, limit=5.0):
    deadline = time.time() + limit
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def _read_all(sock):
    sock.settimeout(5)
    chunks = []
    while True:
        data = sock.recv(4096)
        if not data:
            return b"".join(chunks)
        chunks.append(data)


@pytest.mark.parametrize(
    "combo, expected",
    [(0, (0, 0)), (1, (0, 1)), (2, (1, 0)), (3, (1, 1)), (7, (0, 0))],
)
def test_trig_mode_split(combo, expected):
    srv = WebServer(trig_mode=combo, close_log=1)
    srv.trig_mode()
    assert (srv.listen_trig_mode, srv.conn_trig_mode) == expected


def test_timer_registers_client(server):
    a, b = socket.socketpair()
    before = HttpConn.user_count
    start = time.time()
    timer = server.timer(a, ("127.0.0.1", 1234))
    fd = a.fileno()
    assert fd in server.users
    assert server.users_timer[fd].timer is timer
    assert server.users_timer[fd].sockfd == fd
    assert start + 3 * TIMESLOT <= timer.expire <= time.time() + 3 * TIMESLOT
    assert list(server.utils.timer_lst) == [timer]
    assert server.poller.registered[fd] & EPOLLONESHOT
    assert HttpConn.user_count == before + 1
    b.close()


def test_deal_timer_closes_client(server):
    a, b = socket.socketpair()
    before = HttpConn.user_count
    timer = server.timer(a, ("127.0.0.1", 1234))
    fd = a.fileno()
    server.deal_timer(timer, fd)
    assert a.fileno() == -1
    assert fd not in server.users
    assert len(server.utils.timer_lst) == 0
    assert fd in server.poller.unregistered
    assert HttpConn.user_count == before
    b.close()


def test_adjust_timer_moves_it_behind_later_peer(server):
    a1, b1 = socket.socketpair()
    a2, b2 = socket.socketpair()
    first = server.timer(a1, ("127.0.0.1", 1))
    second = server.timer(a2, ("127.0.0.1", 2))
    assert list(server.utils.timer_lst) == [first, second]
    time.sleep(0.01)
    server.adjust_timer(first)
    assert list(server.utils.timer_lst) == [second, first]
    assert first.expire >= second.expire
    b1.close()
    b2.close()


def test_deal_with_signal_sets_flags(server):
    read_end, write_end = socket.socketpair()
    server.pipe_read = read_end
    server.utils.pipe = write_end
    write_end.send(bytes([signal.SIGALRM]))
    assert server.deal_with_signal() is True
    assert server.timeout_pending is True
    assert server.stop_server is False
    write_end.send(bytes([signal.SIGTERM]))
    assert server.deal_with_signal() is True
    assert server.stop_server is True


def test_deal_with_signal_on_closed_pipe(server):
    read_end, write_end = socket.socketpair()
    server.pipe_read = read_end
    write_end.close()
    assert server.deal_with_signal() is False
    assert server.stop_server is False


def test_read_then_write_serves_page(server):
    server.pool = ThreadPool(0, None, 1)
    a, b = socket.socketpair()
    server.timer(a, ("127.0.0.1", 1234))
    fd = a.fileno()
    conn = server.users[fd]
    b.sendall(REQUEST)
    server.deal_with_read(fd)
    assert _wait_for(lambda: conn.bytes_to_send > 0)
    assert any(mask & EPOLLOUT for _, mask in server.poller.modified)
    server.deal_with_write(fd)
    response = _read_all(b)
    assert response.startswith(b"HTTP/1.1 200 OK\r\n")
    assert f"Content-Length:{len(PAGE)}\r\n".encode() in response
    assert b"Connection:close\r\n" in response
    assert response.endswith(PAGE)
    assert fd not in server.users
    b.close()


def test_read_from_closed_peer_drops_client(server):
    server.pool = ThreadPool(0, None, 1)
    a, b = socket.socketpair()
    server.timer(a, ("127.0.0.1", 1234))
    fd = a.fileno()
    b.close()
    server.deal_with_read(fd)
    assert fd not in server.users
    assert len(server.utils.timer_lst) == 0
    assert a.fileno() == -1


def test_event_loop_end_to_end(site):
    srv = WebServer(port=0, close_log=1, thread_num=2, root=str(site))
    result = {}
    try:
        srv.thread_pool()
        srv.trig_mode()
        srv.event_listen()
        port = srv.listen_sock.getsockname()[1]

        def client():
            try:
                with socket.create_connection(("127.0.0.1", port), timeout=5) as c:
                    c.sendall(REQUEST)
                    result["response"] = _read_all(c)
            finally:
                srv.utils.sig_handler(signal.SIGTERM)

        worker = threading.Thread(target=client)
        worker.start()
        srv.event_loop()
        worker.join(5)
    finally:
        srv.close()
    assert srv.stop_server is True
    assert result["response"].startswith(b"HTTP/1.1 200 OK\r\n")
    assert result["response"].endswith(PAGE)