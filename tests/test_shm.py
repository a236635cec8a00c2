import os
import uuid

import pytest

from r2net.shm import shm_close, shm_open_ro, shm_open_rw, shm_unlink


@pytest.fixture
def name():
    n = f"/r2net_test_{os.getpid()}_{uuid.uuid4().hex}"
    yield n
    shm_unlink(n)


def test_rw_then_ro_sees_data(name):
    fd, rw = shm_open_rw(name, 4096)
    rw[0:5] = b"hello"
    rfd, ro = shm_open_ro(name, 4096)
    assert ro[0:5] == b"hello"
    assert len(ro) == 4096
    ro.close()
    rw.close()
    shm_close(rfd)
    shm_close(fd)


def test_ro_mapping_cannot_be_written(name):
    fd, rw = shm_open_rw(name, 4096)
    rw[0:1] = b"y"
    rfd, ro = shm_open_ro(name, 4096)
    with pytest.raises(TypeError):
        ro[0:1] = b"x"
    assert ro[0:1] == b"y"
    assert rw[0:1] == b"y"
    ro.close()
    rw.close()
    shm_close(rfd)
    shm_close(fd)


def test_reopen_rw_truncates(name):
    fd, rw = shm_open_rw(name, 4096)
    rw[0:4] = b"abcd"
    rw.close()
    shm_close(fd)
    fd, rw = shm_open_rw(name, 4096)
    assert rw[0:4] == bytes(4)
    rw.close()
    shm_close(fd)


def test_ro_missing_region_raises(name):
    with pytest.raises(FileNotFoundError):
        shm_open_ro(name, 4096)


def test_unlink_removes_region(name):
    fd, rw = shm_open_rw(name, 4096)
    rw.close()
    shm_close(fd)
    shm_unlink(name)
    with pytest.raises(FileNotFoundError):
        shm_open_ro(name, 4096)
    shm_unlink(name)


def test_invalid_name_raises():
    with pytest.raises(ValueError):
        shm_open_rw("/a/b", 4096)
    with pytest.raises(ValueError):
        shm_open_ro("/", 4096)


def test_closed_fd_rejected(name):
    fd, rw = shm_open_rw(name, 4096)
    rw.close()
    shm_close(fd)
    with pytest.raises(OSError):
        shm_close(fd)