"""Packet buffers and pools, HFSC scheduling, timing and Linux I/O helpers."""

__version__ = "0.1.0"
__all__ = ["packet", "hfsc", "perf", "efd", "epoll", "shm", "rawsock"]