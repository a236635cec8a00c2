"""Packets made of chained fixed-size particles, and pools to allocate them from.

A packet hides the fact that its data lives in a chain of particles and
presents it as one buffer. Offsets are always relative to the first byte of
data, which sits just after the headroom of the first particle.
"""

from __future__ import annotations

import abc
from collections import deque
from ipaddress import IPv4Address
from typing import Any, Iterator, Optional, Tuple

_ZERO_IP = IPv4Address("0.0.0.0")

Chunk = Tuple[memoryview, int]


class Particle:
    """A fixed-size raw buffer with a window [head, tail) of valid data."""

    __slots__ = ("raw", "head", "tail", "next")

    def __init__(self, raw: bytearray) -> None:
        self.raw = raw
        self.head = 0
        self.tail = 0
        self.next: Optional[Particle] = None

    def __len__(self) -> int:
        return self.tail - self.head

    def reinit(self, headroom: int) -> None:
        """Empty the particle, leaving ``headroom`` bytes in front of the data."""
        self.head = headroom
        self.tail = headroom
        self.next = None

    def has_next(self) -> bool:
        return self.next is not None

    def data_raw(self, offset: int) -> memoryview:
        """The raw buffer from ``offset`` to its end, ignoring head and tail."""
        if offset >= len(self.raw):
            return memoryview(b"")
        return memoryview(self.raw)[offset:]

    def _data(self, offset: int) -> Optional[Chunk]:
        size = len(self)
        if offset >= size:
            return None
        return memoryview(self.raw)[self.head + offset:self.tail], size - offset

    def _prepend(self, data: memoryview) -> int:
        """Copy as much of the tail end of ``data`` as fits before head."""
        dlen = len(data)
        if dlen > self.head:
            count = self.head
            self.raw[0:count] = data[dlen - count:dlen]
            self.head = 0
            return count
        self.raw[self.head - dlen:self.head] = data
        self.head -= dlen
        return dlen

    def _append(self, data: memoryview) -> int:
        """Copy as much of the front of ``data`` as fits after tail."""
        count = min(len(self.raw) - self.tail, len(data))
        self.raw[self.tail:self.tail + count] = data[:count]
        self.tail += count
        return count

    def _move_tail(self, mv: int) -> int:
        new_tail = self.tail + mv
        if new_tail < self.head or new_tail > len(self.raw):
            return 0
        self.tail = new_tail
        return mv

    def _move_head(self, mv: int) -> int:
        new_head = self.head + mv
        if new_head < 0 or new_head > self.tail:
            return 0
        self.head = new_head
        return mv

    def _last(self) -> Particle:
        p = self
        while p.next is not None:
            p = p.next
        return p


class Packet:
    """Packet metadata plus a chain of particles holding the data.

    A released packet is handed to its release queue, from where the owner
    of the pool gives it back with :meth:`PacketPool.free`.
    """

    def __init__(self, release_queue: Any) -> None:
        self._release_queue = release_queue
        self._particle: Optional[Particle] = None
        self._length = 0
        self._l2 = 0
        self._l2_len = 0
        self._l3 = 0
        self._l3_len = 0
        self.in_ifindex = 0
        self.out_ifindex = 0
        self.out_l3addr = _ZERO_IP

    def __len__(self) -> int:
        return self._length

    def __enter__(self) -> Packet:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    @property
    def _first(self) -> Particle:
        if self._particle is None:
            raise ValueError("packet has no particles")
        return self._particle

    def reinit(self, particle: Particle) -> None:
        """Reset all metadata and make ``particle`` the only particle."""
        self._length = 0
        self._l2 = 0
        self._l2_len = 0
        self._l3 = 0
        self._l3_len = 0
        self.in_ifindex = 0
        self.out_ifindex = 0
        self.out_l3addr = _ZERO_IP
        self._particle = particle

    def release(self) -> None:
        """Hand the packet to its release queue; do not touch it afterwards."""
        self._release_queue.put_nowait(self)

    def has_part(self) -> bool:
        return self._particle is not None

    def headroom(self) -> int:
        return self._first.head

    def particles(self) -> Iterator[Particle]:
        """Iterate over the chain of particles, first to last."""
        p = self._particle
        while p is not None:
            yield p
            p = p.next

    def _detach_particles(self) -> Optional[Particle]:
        first, self._particle = self._particle, None
        return first

    def prepend(self, pool: PacketPool, data: bytes) -> None:
        """Add ``data`` in front of the packet, allocating particles as needed.

        Raises MemoryError if the pool runs out of particles.
        """
        view = memoryview(data)
        remaining = len(view)
        while remaining:
            n = self._first._prepend(view[:remaining])
            if n != remaining:
                part = pool.particle(pool.particle_sz())
                if part is None:
                    raise MemoryError("packet pool has no free particles")
                part.next = self._particle
                self._particle = part
            remaining -= n
        self._length += len(view)

    def append(self, pool: PacketPool, data: bytes) -> None:
        """Add ``data`` at the end of the packet, allocating particles as needed.

        Raises MemoryError if the pool runs out of particles.
        """
        view = memoryview(data)
        offset = 0
        while offset != len(view):
            last = self._first._last()
            n = last._append(view[offset:])
            offset += n
            if n == 0:
                part = pool.particle(0)
                if part is None:
                    raise MemoryError("packet pool has no free particles")
                last.next = part
        self._length += len(view)

    def move_tail(self, mv: int) -> int:
        """Move the end of data in the last particle; returns ``mv`` or 0."""
        if self._first._last()._move_tail(mv) != mv:
            return 0
        self._length += mv
        return mv

    def move_head(self, mv: int) -> int:
        """Move the start of data in the first particle; returns ``mv`` or 0."""
        if self._first._move_head(mv) != mv:
            return 0
        self._length -= mv
        return mv

    def pull_l2(self, length: int) -> int:
        """Take the first ``length`` bytes as the l2 header and skip past it."""
        l2 = self._first.head
        if self.move_head(length) != length:
            return 0
        self._l2 = l2
        self._l2_len = length
        return length

    def push_l2(self, pool: PacketPool, data: bytes) -> None:
        """Prepend ``data`` as the l2 header."""
        self.prepend(pool, data)
        self._l2 = self._first.head
        self._l2_len = len(data)

    def set_l2(self, length: int) -> bool:
        """Mark the first ``length`` bytes as the l2 header, if they are there."""
        first = self._first
        if len(first) < length:
            return False
        self._l2 = first.head
        self._l2_len = length
        return True

    def get_l2(self) -> Chunk:
        """The raw buffer from the l2 header onwards, and the header length."""
        return self._header(self._l2, self._l2_len)

    def pull_l3(self, length: int) -> int:
        """Take the first ``length`` bytes as the l3 header and skip past it."""
        l3 = self._first.head
        if self.move_head(length) != length:
            return 0
        self._l3 = l3
        self._l3_len = length
        return length

    def push_l3(self, pool: PacketPool, data: bytes) -> None:
        """Prepend ``data`` as the l3 header."""
        self.prepend(pool, data)
        self._l3 = self._first.head
        self._l3_len = len(data)

    def set_l3(self, length: int) -> bool:
        """Mark the first ``length`` bytes as the l3 header, if they are there."""
        first = self._first
        if len(first) < length:
            return False
        self._l3 = first.head
        self._l3_len = length
        return True

    def get_l3(self) -> Chunk:
        """The raw buffer from the l3 header onwards, and the header length."""
        return self._header(self._l3, self._l3_len)

    def _header(self, start: int, length: int) -> Chunk:
        if length == 0:
            return memoryview(b""), 0
        d = self._first.data_raw(start)
        if len(d) < length:
            return memoryview(b""), 0
        return d, length

    def data(self, offset: int) -> Optional[Chunk]:
        """The contiguous data at ``offset`` and its length, or None past the end."""
        skipped = 0
        for p in self.particles():
            chunk = p._data(offset - skipped)
            if chunk is not None:
                return chunk
            skipped += len(p)
        return None

    def head(self) -> memoryview:
        """The whole raw buffer of the first particle, writable."""
        return self._first.data_raw(0)

    def slices(self) -> list[Chunk]:
        """The data of each non-empty particle, in order."""
        return [c for c in (p._data(0) for p in self.particles()) if c is not None]


class PacketPool(abc.ABC):
    """A source of packets and particles."""

    @abc.abstractmethod
    def pkt(self, headroom: int) -> Optional[Packet]:
        """A packet with one particle, or None if the pool is exhausted."""

    @abc.abstractmethod
    def particle(self, headroom: int) -> Optional[Particle]:
        """A single particle, or None if the pool is exhausted."""

    @abc.abstractmethod
    def free_pkt(self, pkt: Packet) -> None:
        """Return a packet that holds no particles."""

    @abc.abstractmethod
    def free_part(self, part: Particle) -> None:
        """Return a single unchained particle."""

    @abc.abstractmethod
    def particle_sz(self) -> int:
        """The size of every particle's raw buffer."""

    def free(self, pkt: Packet) -> None:
        """Return all of a packet's particles and then the packet itself."""
        part = pkt._detach_particles()
        while part is not None:
            nxt, part.next = part.next, None
            self.free_part(part)
            part = nxt
        self.free_pkt(pkt)

    def pkt_with_particles(self, part: Particle) -> Optional[Packet]:
        """Build a packet around the chain starting at ``part``.

        Returns None if the pool has no packet to spare.
        """
        pkt = self.pkt(0)
        if pkt is None:
            return None
        spare = pkt._detach_particles()
        if spare is not None:
            self.free_part(spare)
        pkt.reinit(part)
        pkt._length = sum(len(p) for p in pkt.particles())
        return pkt

    def opaque(self) -> int:
        """Pool specific detail for drivers that know the pool layout."""
        return 0


class PktsHeap(PacketPool):
    """A pool whose packets and particles are all preallocated in memory."""

    def __init__(
        self,
        name: str,
        release_queue: Any,
        num_pkts: int,
        num_parts: int,
        particle_sz: int,
    ) -> None:
        if num_parts < num_pkts:
            raise ValueError("a pool needs at least as many particles as packets")
        self.name = name
        self.alloc_fail = 0
        self._particle_sz = particle_sz
        self._pkts: deque[Packet] = deque(
            Packet(release_queue) for _ in range(num_pkts)
        )
        self._particles: deque[Particle] = deque(
            Particle(bytearray(particle_sz)) for _ in range(num_parts)
        )

    def pkt(self, headroom: int) -> Optional[Packet]:
        if not self._pkts:
            self.alloc_fail += 1
            return None
        pkt = self._pkts.popleft()
        part = self.particle(headroom)
        if part is None:
            self.alloc_fail += 1
            self._pkts.appendleft(pkt)
            return None
        pkt.reinit(part)
        return pkt

    def particle(self, headroom: int) -> Optional[Particle]:
        if not self._particles:
            self.alloc_fail += 1
            return None
        part = self._particles.popleft()
        part.reinit(headroom)
        return part

    def free_pkt(self, pkt: Packet) -> None:
        if pkt.has_part():
            raise ValueError("packet still holds particles")
        self._pkts.appendleft(pkt)

    def free_part(self, part: Particle) -> None:
        if part.has_next():
            raise ValueError("particle is still chained")
        self._particles.appendleft(part)

    def particle_sz(self) -> int:
        return self._particle_sz