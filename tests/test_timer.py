import os
import signal
import socket

from tinyweb.timer import (
    EPOLLET,
    EPOLLIN,
    EPOLLONESHOT,
    EPOLLRDHUP,
    ClientData,
    SortTimerList,
    UtilTimer,
    Utils,
)


def _timer(expire, log=None, name=None):
    data = ClientData(address=("127.0.0.1", 0), sockfd=name)
    return UtilTimer(
        expire=expire,
        cb_func=(lambda d: log.append(d.sockfd)) if log is not None else (lambda d: None),
        user_data=data,
    )


def test_add_keeps_ascending_order():
    lst = SortTimerList()
    timers = [_timer(e) for e in [30, 10, 20, 5, 25]]
    for t in timers:
        lst.add_timer(t)
    expires = [t.expire for t in lst]
    assert expires == sorted(expires)
    assert len(lst) == 5


def test_equal_expiry_keeps_insertion_order():
    lst = SortTimerList()
    a, b, c = _timer(10), _timer(10), _timer(10)
    for t in (a, b, c):
        lst.add_timer(t)
    assert list(lst) == [a, b, c]


def test_add_none_is_ignored():
    lst = SortTimerList()
    lst.add_timer(None)
    assert len(lst) == 0


def test_adjust_moves_timer_back():
    lst = SortTimerList()
    a, b, c = _timer(1), _timer(2), _timer(3)
    for t in (a, b, c):
        lst.add_timer(t)
    a.expire = 10
    lst.adjust_timer(a)
    assert list(lst) == [b, c, a]


def test_adjust_without_overtaking_keeps_place():
    lst = SortTimerList()
    a, b = _timer(1), _timer(5)
    lst.add_timer(a)
    lst.add_timer(b)
    a.expire = 4
    lst.adjust_timer(a)
    assert list(lst) == [a, b]


def test_del_timer_head_middle_tail():
    lst = SortTimerList()
    ts = [_timer(e) for e in (1, 2, 3, 4)]
    for t in ts:
        lst.add_timer(t)
    lst.del_timer(ts[0])
    lst.del_timer(ts[2])
    lst.del_timer(ts[3])
    assert list(lst) == [ts[1]]
    lst.del_timer(ts[1])
    assert len(lst) == 0


def test_tick_runs_only_expired():
    fired = []
    lst = SortTimerList()
    for expire, name in [(100, "a"), (200, "b"), (300, "c")]:
        lst.add_timer(_timer(expire, fired, name))
    assert lst.tick(now=200) == 2
    assert fired == ["a", "b"]
    assert [t.expire for t in lst] == [300]


def test_tick_on_empty_list():
    assert SortTimerList().tick(now=1e12) == 0


def test_add_fd_registers_mask():
    class Recorder:
        def __init__(self):
            self.calls = []

        def register(self, fd, events):
            self.calls.append((fd, events))

    a, b = socket.socketpair()
    try:
        poller = Recorder()
        utils = Utils(5)
        mask = utils.add_fd(poller, a, True, 1)
        assert mask == EPOLLIN | EPOLLRDHUP | EPOLLET | EPOLLONESHOT
        assert poller.calls == [(a, mask)]
        assert a.getblocking() is False
        mask_lt = utils.add_fd(poller, b, False, 0)
        assert mask_lt == EPOLLIN | EPOLLRDHUP
    finally:
        a.close()
        b.close()


def test_set_nonblocking_returns_previous_state():
    r, w = os.pipe()
    try:
        utils = Utils(5)
        assert utils.set_nonblocking(r) is True
        assert os.get_blocking(r) is False
        assert utils.set_nonblocking(r) is False
    finally:
        os.close(r)
        os.close(w)


def test_sig_handler_writes_signal_byte():
    a, b = socket.socketpair()
    try:
        utils = Utils(5, pipe=a)
        utils.sig_handler(signal.SIGTERM, None)
        assert b.recv(16) == bytes([signal.SIGTERM])
    finally:
        a.close()
        b.close()


def test_show_error_sends_and_closes():
    a, b = socket.socketpair()
    try:
        Utils(5).show_error(a, "Internal server busy")
        assert b.recv(64) == b"Internal server busy"
        assert a.fileno() == -1
    finally:
        b.close()


def test_timer_handler_ticks_and_rearms():
    fired = []
    utils = Utils(100)
    utils.timer_lst.add_timer(_timer(0, fired, "old"))
    try:
        utils.timer_handler()
    finally:
        remaining = signal.alarm(0)
    assert fired == ["old"]
    assert 0 < remaining <= 100


def test_add_sig_returns_previous_handler():
    utils = Utils(5)
    original = signal.getsignal(signal.SIGUSR1)
    try:
        utils.add_sig(signal.SIGUSR1, signal.SIG_IGN)
        previous = utils.add_sig(signal.SIGUSR1, original)
        assert previous == signal.SIG_IGN
    finally:
        signal.signal(signal.SIGUSR1, original)