import queue
import socket
from unittest import mock

import pytest

from r2net.packet import PktsHeap
from r2net.rawsock import RawSocket

NUM_PKTS = 10
NUM_PART = 20
MAX_PACKET = 1500
PARTICLE_SZ = 512


class _FakeRaw:
    """Stands in for a raw socket, carrying frames over a local socket pair."""

    def __init__(self, sock):
        self._sock = sock
        self.bound = None
        self.options = []
        self.closed = False

    def bind(self, address):
        self.bound = address

    def setsockopt(self, *args):
        self.options.append(args)

    def setblocking(self, flag):
        self._sock.setblocking(flag)

    def recvmsg_into(self, buffers, ancbufsize=0, flags=0):
        return self._sock.recvmsg_into(buffers, ancbufsize)

    def sendmsg(self, buffers):
        return self._sock.sendmsg(buffers)

    def fileno(self):
        return self._sock.fileno()

    def close(self):
        self.closed = True


def _packet_free(q, pool):
    while not q.empty():
        pool.free(q.get_nowait())


def _packet_pool(part_sz, q):
    return PktsHeap("PKTS_HEAP", q, NUM_PKTS, NUM_PART, part_sz)


def _open(fake, name, non_blocking=False):
    with mock.patch("socket.socket", return_value=fake), mock.patch(
        "socket.if_nametoindex", return_value=7
    ):
        return RawSocket(name, non_blocking)


@pytest.fixture
def pair():
    a, b = socket.socketpair(socket.AF_UNIX, socket.SOCK_SEQPACKET)
    yield _FakeRaw(a), _FakeRaw(b)
    a.close()
    b.close()


def test_read_write(pair):
    fake_tx, fake_rx = pair
    tx = _open(fake_tx, "r2_eth1")
    rx = _open(fake_rx, "r2_eth2")
    assert tx.fileno() > 0
    assert rx.fileno() > 0

    data = bytes(x % 256 for x in range(MAX_PACKET))
    tx_q = queue.SimpleQueue()
    tx_pool = _packet_pool(PARTICLE_SZ, tx_q)
    pkt = tx_pool.pkt(0)
    pkt.append(tx_pool, data)
    assert len(list(pkt.particles())) > 1
    assert tx.sendmsg(tx_pool, pkt) == MAX_PACKET
    assert tx_q.qsize() == 1
    _packet_free(tx_q, tx_pool)

    rx_q = queue.SimpleQueue()
    rx_pool = _packet_pool(MAX_PACKET, rx_q)
    got = rx.recvmsg(rx_pool, 0)
    assert len(got) == MAX_PACKET
    buf, length = got.data(0)
    assert length == MAX_PACKET
    assert bytes(buf) == data
    got.release()
    _packet_free(rx_q, rx_pool)


def test_bind_and_options(pair):
    fake, _ = pair
    sock = _open(fake, "r2_eth1")
    assert fake.bound == ("r2_eth1", 0x0003)
    assert (263, 8, 1) in fake.options
    assert sock.interface == "r2_eth1"
    sock.close()
    assert fake.closed


def test_non_blocking_receive_returns_empty_packet(pair):
    fake, _ = pair
    sock = _open(fake, "r2_eth2", non_blocking=True)
    q = queue.SimpleQueue()
    pool = _packet_pool(MAX_PACKET, q)
    pkt = sock.recvmsg(pool, 64)
    assert len(pkt) == 0
    assert pkt.headroom() == 64


def test_receive_with_headroom(pair):
    fake_tx, fake_rx = pair
    rx = _open(fake_rx, "r2_eth2")
    fake_tx._sock.send(b"frame-data")
    q = queue.SimpleQueue()
    pool = _packet_pool(MAX_PACKET, q)
    pkt = rx.recvmsg(pool, 100)
    assert pkt.headroom() == 100
    assert len(pkt) == len(b"frame-data")
    buf, length = pkt.data(0)
    assert bytes(buf[:length]) == b"frame-data"


def test_receive_without_free_packets_returns_none(pair):
    fake, _ = pair
    sock = _open(fake, "r2_eth2", non_blocking=True)
    q = queue.SimpleQueue()
    pool = PktsHeap("PKTS_HEAP", q, 1, 1, MAX_PACKET)
    held = pool.pkt(0)
    assert sock.recvmsg(pool, 0) is None
    assert held.headroom() == 0


def test_send_failure_returns_zero_and_releases(pair):
    fake_tx, fake_rx = pair
    tx = _open(fake_tx, "r2_eth1")
    fake_rx._sock.close()
    q = queue.SimpleQueue()
    pool = _packet_pool(PARTICLE_SZ, q)
    pkt = pool.pkt(0)
    pkt.append(pool, b"payload")
    assert tx.sendmsg(pool, pkt) == 0
    assert q.qsize() == 1


def test_unknown_interface_raises():
    with pytest.raises(OSError):
        RawSocket("r2net_missing0", False)