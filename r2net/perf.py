"""Lightweight timing of a code section: hit count and average elapsed time."""

from __future__ import annotations

import time


class Perf:
    """Accumulates how often a section ran and how long it took, in nanoseconds.

    Call :meth:`start` before the section and :meth:`stop` after it, or use
    the instance as a context manager.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._started = 0
        self._hits = 0
        self._elapsed = 0

    def __enter__(self) -> Perf:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def start(self) -> None:
        """Take the starting timestamp."""
        self._started = time.perf_counter_ns()

    def stop(self) -> None:
        """Count one hit and add the time elapsed since :meth:`start`."""
        elapsed = time.perf_counter_ns() - self._started
        self._hits += 1
        self._elapsed += elapsed

    def count(self) -> int:
        """How many times :meth:`stop` has been called."""
        return self._hits

    def average(self) -> int:
        """Average elapsed nanoseconds per hit, or 0 before any hit."""
        if self._hits == 0:
            return 0
        return self._elapsed // self._hits