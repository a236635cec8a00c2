"""POSIX shared memory regions, mapped into the process."""

from __future__ import annotations

import contextlib
import mmap
import os
from typing import Tuple

_SHM_DIR = "/dev/shm"


def _path(name: str) -> str:
    stripped = name[1:] if name.startswith("/") else name
    if not stripped or "/" in stripped or "\0" in stripped:
        raise ValueError(f"invalid shared memory name {name!r}")
    return os.path.join(_SHM_DIR, stripped)


def shm_open_rw(name: str, size: int) -> Tuple[int, mmap.mmap]:
    """Create (or truncate) region ``name`` of ``size`` bytes, mapped read-write.

    Returns the descriptor and the mapping.
    """
    fd = os.open(_path(name), os.O_CREAT | os.O_TRUNC | os.O_RDWR, 0o600)
    try:
        os.ftruncate(fd, size)
        region = mmap.mmap(
            fd, size, mmap.MAP_SHARED, mmap.PROT_READ | mmap.PROT_WRITE
        )
    except BaseException:
        os.close(fd)
        raise
    return fd, region


def shm_open_ro(name: str, size: int) -> Tuple[int, mmap.mmap]:
    """Open existing region ``name`` and map ``size`` bytes of it read-only."""
    fd = os.open(_path(name), os.O_RDONLY)
    try:
        region = mmap.mmap(fd, size, mmap.MAP_SHARED, mmap.PROT_READ)
    except BaseException:
        os.close(fd)
        raise
    return fd, region


def shm_close(fd: int) -> None:
    """Close a region's descriptor; the mapping stays valid until closed."""
    os.close(fd)


def shm_unlink(name: str) -> None:
    """Remove region ``name``; a missing region is ignored."""
    with contextlib.suppress(FileNotFoundError):
        os.unlink(_path(name))