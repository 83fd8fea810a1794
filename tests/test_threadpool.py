import threading
import time

import pytest

from tinyweb.sql_pool import ConnectionPool
from tinyweb.threadpool import ThreadPool


class FakeConnection:
    def close(self):
        pass


class FakeRequest:
    def __init__(self, read_ok=True, write_ok=True, block=None):
        self.read_ok = read_ok
        self.write_ok = write_ok
        self.block = block
        self.state = None
        self.improv = 0
        self.timer_flag = 0
        self.mysql = None
        self.seen_mysql = []
        self.started = threading.Event()
        self.processed = threading.Event()

    def read_once(self):
        return self.read_ok

    def write(self):
        return self.write_ok

    def process(self):
        self.started.set()
        self.seen_mysql.append(self.mysql)
        if self.block is not None:
            self.block.wait(5)
        self.processed.set()


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def conn_pool():
    pool = ConnectionPool()
    password = "password"
    pool.init("localhost", "user", password, "testdb", 3306, 2, 0,
              lambda **kwargs: FakeConnection())
    return pool


@pytest.mark.parametrize("threads,requests", [(0, 10), (2, 0), (-1, 5)])
def test_rejects_non_positive_sizes(threads, requests):
    with pytest.raises(ValueError):
        ThreadPool(0, None, threads, requests)


def test_proactor_processes_with_borrowed_connection(conn_pool):
    request = FakeRequest()
    with ThreadPool(0, conn_pool, 2) as pool:
        assert pool.append_p(request) is True
        assert request.processed.wait(5)
    assert isinstance(request.seen_mysql[0], FakeConnection)
    assert wait_for(lambda: conn_pool.free_connections() == 2)


def test_reactor_read_success(conn_pool):
    request = FakeRequest(read_ok=True)
    with ThreadPool(1, conn_pool, 2) as pool:
        assert pool.append(request, 0) is True
        assert request.processed.wait(5)
    assert request.state == 0
    assert request.improv == 1
    assert request.timer_flag == 0


def test_reactor_read_failure_flags_timer(conn_pool):
    request = FakeRequest(read_ok=False)
    with ThreadPool(1, conn_pool, 1) as pool:
        pool.append(request, 0)
        assert wait_for(lambda: request.improv == 1)
    assert request.timer_flag == 1
    assert not request.processed.is_set()


def test_reactor_write_success_and_failure(conn_pool):
    good = FakeRequest(write_ok=True)
    bad = FakeRequest(write_ok=False)
    with ThreadPool(1, conn_pool, 2) as pool:
        pool.append(good, 1)
        pool.append(bad, 1)
        assert wait_for(lambda: good.improv == 1 and bad.improv == 1)
    assert good.timer_flag == 0
    assert bad.timer_flag == 1
    assert good.state == 1
    assert not good.processed.is_set()


def test_append_refuses_when_queue_full():
    release = threading.Event()
    busy = FakeRequest(block=release)
    pool = ThreadPool(0, None, 1, 1)
    try:
        assert pool.append_p(busy) is True
        assert busy.started.wait(5)
        assert pool.append_p(FakeRequest()) is True
        assert pool.append_p(FakeRequest()) is False
        assert pool.append(FakeRequest(), 0) is False
    finally:
        release.set()
        pool.shutdown()
    assert busy.processed.is_set()
    assert busy.seen_mysql == [None]