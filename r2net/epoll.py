"""An epoll loop that dispatches ready descriptors to a client."""

from __future__ import annotations

import abc
import contextlib
import os
import select

from .efd import EventFd

EPOLLIN = select.EPOLLIN
EPOLLOUT = select.EPOLLOUT
EPOLLHUP = select.EPOLLHUP
EPOLLERR = select.EPOLLERR


class EpollClient(abc.ABC):
    """Receives the events that an :class:`Epoll` collects."""

    @abc.abstractmethod
    def event(self, fd: int, event: int) -> None:
        """Handle ``event`` (a mask of EPOLL* bits) on ``fd``."""


class Epoll:
    """Waits on registered descriptors and hands each event to ``client``.

    ``wakeup`` is an eventfd that is always registered; writing to it wakes
    up a waiting :meth:`wait`, which drains it before calling the client.
    ``timeout`` is in milliseconds, -1 meaning wait forever.
    """

    def __init__(
        self, wakeup: EventFd, nfds: int, timeout: int, client: EpollClient
    ) -> None:
        self._epoll = select.epoll(nfds)
        self._nfds = nfds
        self._timeout = timeout
        self._wakeup = wakeup
        self._client = client
        try:
            self.add(wakeup.fileno(), EPOLLIN)
        except BaseException:
            self._epoll.close()
            raise

    def __enter__(self) -> Epoll:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def add(self, fd: int, flags: int) -> None:
        """Make ``fd`` non-blocking and watch it for ``flags``."""
        os.set_blocking(fd, False)
        self._epoll.register(fd, flags)

    def delete(self, fd: int) -> None:
        """Stop watching ``fd``; unknown descriptors are ignored."""
        with contextlib.suppress(OSError):
            self._epoll.unregister(fd)

    def wait(self) -> int:
        """Wait once and dispatch the events; returns how many there were."""
        timeout = self._timeout / 1000 if self._timeout >= 0 else -1
        try:
            events = self._epoll.poll(timeout, self._nfds)
        except InterruptedError:
            return 0
        wakeup_fd = self._wakeup.fileno()
        for fd, mask in events:
            if fd == wakeup_fd:
                self._wakeup.read()
            self._client.event(fd, mask)
        return len(events)

    def close(self) -> None:
        self._epoll.close()