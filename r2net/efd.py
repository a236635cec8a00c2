"""A thin object around a Linux eventfd counter."""

from __future__ import annotations

import os


class EventFd:
    """An eventfd: writes add to a 64-bit counter, a read returns and resets it."""

    def __init__(self, flags: int = 0) -> None:
        self._fd = os.eventfd(0, flags)

    def __enter__(self) -> EventFd:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def fileno(self) -> int:
        if self._fd < 0:
            raise ValueError("eventfd is closed")
        return self._fd

    def write(self, value: int) -> None:
        """Add ``value`` to the counter."""
        os.eventfd_write(self.fileno(), value)

    def read(self) -> int:
        """Return the counter value (or 1 in semaphore mode)."""
        return os.eventfd_read(self.fileno())

    def close(self) -> None:
        if self._fd >= 0:
            os.close(self._fd)
            self._fd = -1