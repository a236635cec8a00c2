import os
import threading

import pytest

from r2net.efd import EventFd
from r2net.epoll import EPOLLIN, Epoll, EpollClient

HELLO_WORLD = b"Hello World"


class _PipeReader(EpollClient):
    def __init__(self, fd):
        self.fd = fd
        self.nevents = 0

    def event(self, fd, event):
        assert fd == self.fd
        self.nevents += 1
        data = os.read(fd, len(HELLO_WORLD))
        assert data == HELLO_WORLD


class _Recorder(EpollClient):
    def __init__(self):
        self.events = []

    def event(self, fd, event):
        self.events.append((fd, event))


@pytest.fixture
def pipe():
    rfd, wfd = os.pipe2(os.O_NONBLOCK)
    yield rfd, wfd
    os.close(rfd)
    os.close(wfd)


def test_epoll_reads_four_messages(pipe):
    rfd, wfd = pipe
    client = _PipeReader(rfd)
    with EventFd() as efd, Epoll(efd, 4, -1, client) as epoll:
        epoll.add(rfd, EPOLLIN)
        while client.nevents < 4:
            os.write(wfd, HELLO_WORLD)
            assert epoll.wait() == 1
        epoll.delete(rfd)
    assert client.nevents == 4


def test_epoll_from_another_thread(pipe):
    rfd, wfd = pipe
    client = _PipeReader(rfd)
    done = threading.Event()
    with EventFd() as efd, Epoll(efd, 4, 50, client) as epoll:
        epoll.add(rfd, EPOLLIN)

        def loop():
            while client.nevents < 4:
                epoll.wait()
            epoll.delete(rfd)
            done.set()

        worker = threading.Thread(target=loop, name="epoll")
        worker.start()
        while not done.is_set():
            os.write(wfd, HELLO_WORLD)
            done.wait(0.01)
        worker.join()
    assert client.nevents >= 4


def test_timeout_with_no_events_returns_zero(pipe):
    rfd, _ = pipe
    client = _Recorder()
    with EventFd() as efd, Epoll(efd, 4, 0, client) as epoll:
        epoll.add(rfd, EPOLLIN)
        assert epoll.wait() == 0
    assert client.events == []


def test_wakeup_is_drained_and_reported():
    client = _Recorder()
    with EventFd(os.EFD_NONBLOCK) as efd, Epoll(efd, 4, -1, client) as epoll:
        efd.write(1)
        assert epoll.wait() == 1
        assert client.events == [(efd.fileno(), EPOLLIN)]
        with pytest.raises(BlockingIOError):
            efd.read()


def test_wakeup_from_other_thread():
    client = _Recorder()
    with EventFd() as efd, Epoll(efd, 4, -1, client) as epoll:
        writer = threading.Thread(target=efd.write, args=(1,))
        writer.start()
        assert epoll.wait() == 1
        writer.join()
        assert [fd for fd, _ in client.events] == [efd.fileno()]


def test_deleted_fd_no_longer_reported(pipe):
    rfd, wfd = pipe
    client = _Recorder()
    with EventFd() as efd, Epoll(efd, 4, 0, client) as epoll:
        epoll.add(rfd, EPOLLIN)
        epoll.delete(rfd)
        os.write(wfd, HELLO_WORLD)
        assert epoll.wait() == 0
        epoll.delete(rfd)
    assert client.events == []


def test_add_invalid_fd_raises():
    client = _Recorder()
    with EventFd() as efd, Epoll(efd, 4, 0, client) as epoll:
        r, w = os.pipe()
        os.close(r)
        os.close(w)
        with pytest.raises(OSError):
            epoll.add(r, EPOLLIN)