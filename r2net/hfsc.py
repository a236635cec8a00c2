"""Hierarchical fair service curve packet scheduler.

Classes form a tree under a root class that represents the link. Leaf
classes hold packet queues. Real-time curves are served first, by deadline,
among classes that are eligible; remaining capacity is shared by link-share
curves according to virtual time.
"""

from __future__ import annotations

import bisect
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Tuple

SM_SHIFT = 24
ISM_SHIFT = 10
SM_MASK = (1 << SM_SHIFT) - 1
ISM_MASK = (1 << ISM_SHIFT) - 1
HT_INFINITY = (1 << 64) - 1
HFSC_FREQ = 1_000_000_000


class HfscError(Exception):
    """Raised for invalid class operations."""


@dataclass(frozen=True)
class ServiceCurve:
    """Two-piece linear curve: slope ``m1`` for ``d`` ms, then slope ``m2`` (bits/s)."""

    m1: int = 0
    d: int = 0
    m2: int = 0


@dataclass(frozen=True)
class Curves:
    """The link-share curve plus optional real-time and upper-limit curves."""

    f_sc: ServiceCurve = field(default_factory=ServiceCurve)
    r_sc: Optional[ServiceCurve] = None
    u_sc: Optional[ServiceCurve] = None


def seg_x2y(x: int, sm: int) -> int:
    """``x * sm >> SM_SHIFT``, computed in two halves."""
    return (x >> SM_SHIFT) * sm + (((x & SM_MASK) * sm) >> SM_SHIFT)


def seg_y2x(y: int, ism: int) -> int:
    """Inverse of :func:`seg_x2y` using the inverse slope ``ism``."""
    if y == 0:
        return 0
    if ism == HT_INFINITY:
        return HT_INFINITY
    return (y >> ISM_SHIFT) * ism + (((y & ISM_MASK) * ism) >> ISM_SHIFT)


def m2sm(m: int) -> int:
    """Scaled slope in bytes per nanosecond for a rate of ``m`` bits/s."""
    return (m << SM_SHIFT) // 8 // HFSC_FREQ


def m2ism(m: int) -> int:
    """Scaled inverse slope for a rate of ``m`` bits/s."""
    if m == 0:
        return HT_INFINITY
    return (HFSC_FREQ << ISM_SHIFT) * 8 // m


def d2dx(d: int) -> int:
    """Milliseconds to clock ticks."""
    return d * HFSC_FREQ // 1000


@dataclass(frozen=True)
class _InternalSc:
    sm1: int = 0
    ism1: int = 0
    dx: int = 0
    dy: int = 0
    sm2: int = 0
    ism2: int = 0

    @classmethod
    def from_curve(cls, sc: ServiceCurve) -> _InternalSc:
        dx = d2dx(sc.d)
        return cls(
            sm1=m2sm(sc.m1),
            ism1=m2ism(sc.m1),
            dx=dx,
            dy=seg_x2y(dx, m2sm(sc.m1)),
            sm2=m2sm(sc.m2),
            ism2=m2ism(sc.m2),
        )


@dataclass
class _RuntimeSc:
    x: int = 0
    y: int = 0
    sm1: int = 0
    ism1: int = 0
    dx: int = 0
    dy: int = 0
    sm2: int = 0
    ism2: int = 0

    @classmethod
    def start(cls, isc: _InternalSc, x: int = 0, y: int = 0) -> _RuntimeSc:
        return cls(x, y, isc.sm1, isc.ism1, isc.dx, isc.dy, isc.sm2, isc.ism2)

    def y2x(self, y: int) -> int:
        if y < self.y:
            return self.x
        if y <= self.y + self.dy:
            if self.dy == 0:
                return self.x + self.dx
            return self.x + seg_y2x(y - self.y, self.ism1)
        return self.x + self.dx + seg_y2x(y - self.y - self.dy, self.ism2)

    def x2y(self, x: int) -> int:
        if x <= self.x:
            return self.y
        if x <= self.x + self.dx:
            return self.y + seg_x2y(x - self.x, self.sm1)
        return self.y + self.dy + seg_x2y(x - self.x - self.dx, self.sm2)

    def min_with(self, isc: _InternalSc, x: int, y: int) -> None:
        """Make this curve the minimum of itself and ``isc`` started at (x, y)."""
        if isc.sm1 <= isc.sm2:
            # convex
            if self.x2y(x) < y:
                return
            self.x = x
            self.y = y
            return

        # concave
        y1 = self.x2y(x)
        if y1 <= y:
            return
        y2 = self.x2y(x + isc.dx)
        if y2 >= y + isc.dy:
            self.x = x
            self.y = y
            self.dx = isc.dx
            self.dy = isc.dy
            return

        # the curves intersect
        dx = ((y1 - y) << SM_SHIFT) // (isc.sm1 - isc.sm2)
        if self.x + self.dx > x:
            dx += self.x + self.dx - x
        self.x = x
        self.y = y
        self.dx = dx
        self.dy = seg_x2y(dx, isc.sm1)


class _Timeline:
    """Class indices ordered by (time, index)."""

    def __init__(self) -> None:
        self._keys: List[Tuple[int, int]] = []

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[int]:
        return (index for _, index in self._keys)

    def add(self, when: int, index: int) -> None:
        bisect.insort(self._keys, (when, index))

    def discard(self, when: int, index: int) -> None:
        key = (when, index)
        pos = bisect.bisect_left(self._keys, key)
        if pos < len(self._keys) and self._keys[pos] == key:
            del self._keys[pos]

    def first(self) -> Optional[int]:
        return self._keys[0][1] if self._keys else None

    def last(self) -> Optional[int]:
        return self._keys[-1][1] if self._keys else None


@dataclass
class _Class:
    parent: int
    index: int
    qlimit: int
    leaf: bool
    pvoff: int
    f_isc: _InternalSc
    f_run: _RuntimeSc
    r_isc: Optional[_InternalSc] = None
    u_isc: Optional[_InternalSc] = None
    e_run: _RuntimeSc = field(default_factory=_RuntimeSc)
    d_run: _RuntimeSc = field(default_factory=_RuntimeSc)
    u_run: _RuntimeSc = field(default_factory=_RuntimeSc)
    in_use: bool = True
    qdrops: int = 0
    eligible: int = 0
    deadline: int = 0
    vtime: int = 0
    vmin: int = 0
    vmax: int = 0
    voff: int = 0
    vadj: int = 0
    vperiod: int = 0
    pvperiod: int = 0
    f_bytes: int = 0
    r_bytes: int = 0
    nactive: int = 0
    children: _Timeline = field(default_factory=_Timeline)
    packets: Deque[Any] = field(default_factory=deque)

    @classmethod
    def new(
        cls,
        parent: int,
        index: int,
        qlimit: int,
        is_leaf: bool,
        pvoff: int,
        curves: Curves,
    ) -> _Class:
        f_isc = _InternalSc.from_curve(curves.f_sc)
        c = cls(
            parent=parent,
            index=index,
            qlimit=qlimit,
            leaf=is_leaf,
            pvoff=pvoff,
            f_isc=f_isc,
            f_run=_RuntimeSc.start(f_isc),
        )
        if curves.r_sc is not None:
            c.r_isc = _InternalSc.from_curve(curves.r_sc)
            c.e_run = _RuntimeSc.start(c.r_isc)
            c.d_run = _RuntimeSc.start(c.r_isc)
        if curves.u_sc is not None:
            c.u_isc = _InternalSc.from_curve(curves.u_sc)
            c.u_run = _RuntimeSc.start(c.u_isc)
        return c

    @classmethod
    def dummy(cls) -> _Class:
        c = cls.new(0, 0, 0, False, 0, Curves())
        c.in_use = False
        return c

    def init_ed(self, next_len: int, now: int) -> None:
        if self.r_isc is None:
            return
        self.d_run.min_with(self.r_isc, now, self.f_bytes)
        # concave: eligible equals deadline; convex: linear with slope m2
        self.e_run = replace(self.d_run)
        if self.r_isc.sm1 <= self.r_isc.sm2:
            self.e_run.dx = 0
            self.e_run.dy = 0
        self.update_ed(next_len)

    def update_ed(self, next_len: int) -> None:
        self.eligible = self.e_run.y2x(self.f_bytes)
        self.update_d(next_len)

    def update_d(self, next_len: int) -> None:
        self.deadline = self.d_run.y2x(self.f_bytes + next_len)


class Hfsc:
    """An HFSC scheduler for a link of ``bandwidth`` bits/s.

    ``clock`` returns the current time in nanoseconds.
    """

    def __init__(
        self, bandwidth: int, clock: Optional[Callable[[], int]] = None
    ) -> None:
        self._clock = clock if clock is not None else time.monotonic_ns
        link = ServiceCurve(m1=0, d=0, m2=bandwidth)
        self._classes: List[_Class] = [_Class.dummy()]
        self._class_names: Dict[str, int] = {"dummy": 0}
        self._root = len(self._classes)
        self._classes.append(
            _Class.new(0, self._root, 0, False, 0, Curves(f_sc=link, u_sc=link))
        )
        self._class_names["root"] = self._root
        self._free_index: Deque[int] = deque()
        self._eligible = _Timeline()
        self._pkts_queued = 0

    def pkts_queued(self) -> int:
        return self._pkts_queued

    def has_classes(self) -> bool:
        """Whether the root currently has active children."""
        return len(self._classes[self._root].children) > 0

    def _valid(self, index: int) -> bool:
        return 0 <= index < len(self._classes) and self._classes[index].in_use

    def create_class(
        self,
        name: str,
        parent_name: str,
        qlimit: int,
        is_leaf: bool,
        curves: Curves,
    ) -> None:
        """Add a class under ``parent_name``; a ``qlimit`` of 0 means unlimited."""
        if name in self._class_names:
            raise HfscError("class already exists")
        parent = self._class_names.get(parent_name)
        if parent is None:
            raise HfscError("parent not found")
        if not self._valid(parent):
            raise HfscError(f"invalid parent {parent}")

        pvoff = self._classes[parent].pvoff
        if self._free_index:
            index = self._free_index.popleft()
            self._classes[index] = _Class.new(parent, index, qlimit, is_leaf, pvoff, curves)
        else:
            index = len(self._classes)
            self._classes.append(_Class.new(parent, index, qlimit, is_leaf, pvoff, curves))
        self._class_names[name] = index

    def class_index(self, name: str) -> Optional[int]:
        return self._class_names.get(name)

    def destroy_class(self, index: int) -> int:
        """Remove a class, releasing its queued packets; returns its index."""
        if not self._valid(index):
            raise HfscError(f"invalid class {index}")
        c = self._classes[index]
        if c.packets:
            self._update_v(index, 0, passive=True)
            if c.r_isc is not None:
                self._eligible.discard(c.eligible, c.index)
        for pkt in c.packets:
            pkt.release()
        c.packets.clear()
        self._classes[index] = _Class.dummy()
        self._free_index.append(index)
        return index

    def _get_min_d(self, now: int) -> int:
        deadline = HT_INFINITY
        best = 0
        for index in self._eligible:
            c = self._classes[index]
            if c.eligible > now:
                break
            if c.deadline < deadline:
                best = index
                deadline = c.deadline
        return best

    def _get_min_v(self, parent: int) -> int:
        p = self._classes[parent]
        child = p.children.first()
        if child is None:
            return 0
        ch = self._classes[child]
        if ch.vtime > p.vmin:
            p.vmin = ch.vtime
        found = self._get_min_v(child)
        if found == 0:
            return child if ch.leaf else 0
        return found

    def _update_v(self, index: int, length: int, passive: bool) -> None:
        while True:
            c = self._classes[index]
            pindex = c.parent
            if pindex == 0:
                return
            c.f_bytes += length
            if c.nactive == 0:
                index = pindex
                continue
            if passive:
                c.nactive -= 1
            go_passive = passive and c.nactive == 0
            parent = self._classes[pindex]
            parent.children.discard(c.vtime, c.index)
            if go_passive:
                if c.vtime > parent.vmax:
                    parent.vmax = c.vtime
            else:
                c.vtime = c.f_run.y2x(c.f_bytes) - c.voff + c.vadj
                if c.vtime < parent.vmin:
                    c.vadj += parent.vmin - c.vtime
                    c.vtime = parent.vmin
                parent.children.add(c.vtime, index)
            index = pindex
            passive = go_passive

    def _init_v(self, index: int, active: bool) -> None:
        while True:
            c = self._classes[index]
            pindex = c.parent
            if pindex == 0:
                return
            go_active = active and c.nactive == 0
            if active:
                c.nactive += 1
            if not go_active:
                return

            parent = self._classes[pindex]
            pvmin = parent.vmin
            pvperiod = parent.vperiod
            pnactive = parent.nactive
            max_child = parent.children.last()
            if max_child is not None:
                vt = self._classes[max_child].vtime
                if pvmin != 0:
                    vt = (pvmin + vt) // 2
                if pvperiod != c.pvperiod or vt > c.vtime:
                    c.vtime = vt
            else:
                parent.voff += parent.vmax
                parent.vmax = 0
                parent.vmin = 0
                c.vtime = 0

            c.voff = parent.voff - c.pvoff
            vt = c.vtime + c.voff
            c.f_run.min_with(c.f_isc, vt, c.f_bytes)
            if c.f_run.x == vt:
                c.f_run.x -= c.voff
                c.voff = 0
            c.vadj = 0
            c.vperiod += 1
            c.pvperiod = pvperiod
            if pnactive == 0:
                c.pvperiod += 1
            parent.children.add(c.vtime, c.index)
            index = pindex
            active = True

    def enqueue(self, classid: int, pkt: Any) -> bool:
        """Queue ``pkt`` on a class.

        Returns False if the class queue is full, in which case the packet is
        released.
        """
        if not self._valid(classid):
            raise HfscError(f"invalid class {classid}")
        c = self._classes[classid]
        if c.qlimit != 0 and len(c.packets) >= c.qlimit:
            c.qdrops += 1
            pkt.release()
            return False
        if not c.packets:
            self._init_v(classid, True)
            if c.r_isc is not None:
                c.init_ed(len(pkt), self._clock())
                self._eligible.add(c.eligible, c.index)
        c.packets.append(pkt)
        self._pkts_queued += 1
        return True

    def dequeue(self) -> Optional[Any]:
        """The next packet to send, or None if nothing can be sent."""
        now = self._clock()
        child = self._get_min_d(now)
        realtime = child != 0
        if not realtime:
            child = self._get_min_v(self._root)
            if child == 0:
                return None
        c = self._classes[child]
        if not c.packets:
            return None
        pkt = c.packets.popleft()
        if realtime:
            c.r_bytes += len(pkt)
        if c.packets:
            if c.r_isc is not None:
                next_len = len(c.packets[0])
                if realtime:
                    self._eligible.discard(c.eligible, c.index)
                    c.update_ed(next_len)
                    self._eligible.add(c.eligible, c.index)
                else:
                    c.update_d(next_len)
        elif c.r_isc is not None:
            self._eligible.discard(c.eligible, c.index)
        self._update_v(child, len(pkt), not c.packets)
        self._pkts_queued -= 1
        return pkt