# r2net

Building blocks for a software packet forwarder on Linux. Pure Python,
no dependencies beyond the standard library.

- `r2net.packet` — `Packet`s made of chained fixed-size `Particle`s, with
  headroom for prepending headers and layer 2 / layer 3 header tracking;
  the abstract `PacketPool` and `PktsHeap`, a preallocated pool that
  packets and particles come from and go back to.
- `r2net.hfsc` — `Hfsc`, a Hierarchical Fair Service Curve scheduler with
  link-share, real-time and upper-limit curves (`ServiceCurve`, `Curves`).
  Invalid class operations raise `HfscError`.
- `r2net.perf` — `Perf`, which counts how often a code section ran and its
  average duration in nanoseconds.
- `r2net.efd` — `EventFd`, a small object around a Linux eventfd.
- `r2net.epoll` — `Epoll`, a loop that hands readiness events to an
  `EpollClient`, with an `EventFd` registered to wake it up.
- `r2net.shm` — `shm_open_rw`, `shm_open_ro`, `shm_close` and `shm_unlink`
  for POSIX shared memory regions under `/dev/shm`.
- `r2net.rawsock` — `RawSocket`, an `AF_PACKET` raw socket that receives
  into and sends from pool packets.

## Install

```
pip install .
```

Run the tests with:

```
pip install ".[test]"
pytest
```

## Packets

A packet is released with `Packet.release()` (or by leaving a `with`
block), which puts it on the release queue given to the pool — any object
with a `put_nowait` method, such as `queue.SimpleQueue`. The owner of the
pool then hands it back with `PacketPool.free`, which returns its
particles and the packet itself.

```python
import queue
from r2net.packet import PktsHeap

released = queue.SimpleQueue()
pool = PktsHeap("pool", released, num_pkts=10, num_parts=20, particle_sz=512)

pkt = pool.pkt(100)            # one particle, 100 bytes of headroom
pkt.append(pool, b"payload")   # raises MemoryError if particles run out
pkt.push_l2(pool, bytes(14))   # prepend an Ethernet header
for view, length in pkt.slices():
    ...
pkt.release()
pool.free(released.get_nowait())
```

`pool.pkt()` and `pool.particle()` return `None` when the pool is
exhausted, and count the failure in `PktsHeap.alloc_fail`. `Packet.data(offset)`
returns the contiguous data at an offset and its length; `pull_l2`,
`set_l2`, `get_l2` and their l3 counterparts track header positions;
`move_head` and `move_tail` move the data window and return the amount
moved, or 0 if it would leave the buffer.

## Scheduling

```python
from r2net.hfsc import Hfsc, Curves, ServiceCurve

hfsc = Hfsc(100_000_000)       # link bandwidth in bits/s
hfsc.create_class("bulk", "root", 0, True,
                  Curves(f_sc=ServiceCurve(m1=0, d=0, m2=10_000_000)))
bulk = hfsc.class_index("bulk")
hfsc.enqueue(bulk, pkt)
out = hfsc.dequeue()           # None when nothing is queued
```

Anything with `len()` and `release()` can be queued. A `qlimit` of 0 means
no limit; when a class queue is full, `enqueue` releases the packet and
returns `False`. `destroy_class` releases the packets still queued on the
class. `Hfsc` takes an optional `clock` returning nanoseconds, which
defaults to `time.monotonic_ns`.

## Timing

```python
from r2net.perf import Perf

perf = Perf("rx")
with perf:
    ...
perf.count(), perf.average()
```

## Event loop

```python
from r2net.efd import EventFd
from r2net.epoll import Epoll, EpollClient, EPOLLIN

class Printer(EpollClient):
    def event(self, fd, event):
        print(fd, event)

wakeup = EventFd()
with Epoll(wakeup, 4, -1, Printer()) as loop:
    loop.add(some_fd, EPOLLIN)
    loop.wait()
```

`Epoll.add` makes the descriptor non-blocking. `wait` returns the number of
events, or 0 when interrupted by a signal; writing to the `EventFd` wakes it
up, and the loop drains the event fd before passing the event on.

## What it does not do

The package provides the parts only: there is no forwarding graph, no
interface or route configuration, no command-line tools and no control
interface. Counters are kept as plain attributes (`PktsHeap.alloc_fail`,
`Perf`) rather than exported through shared memory. The raw socket, epoll,
eventfd and shared memory modules need Linux; opening a raw socket also
needs the privileges to do so.