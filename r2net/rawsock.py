"""A raw packet socket bound to one interface, moving data in and out of packets."""

from __future__ import annotations

import errno
import socket
from typing import Optional

from .packet import Packet, PacketPool

ETH_P_ALL = 0x0003
_SOL_PACKET = 263
_PACKET_AUXDATA = 8
_CMSG_SPACE = 32


class RawSocket:
    """An AF_PACKET raw socket receiving every protocol on ``interface``."""

    def __init__(self, interface: str, non_blocking: bool = False) -> None:
        sock = socket.socket(
            socket.AF_PACKET, socket.SOCK_RAW, socket.htons(ETH_P_ALL)
        )
        try:
            socket.if_nametoindex(interface)
            sock.bind((interface, ETH_P_ALL))
            sock.setsockopt(_SOL_PACKET, _PACKET_AUXDATA, 1)
            if non_blocking:
                sock.setblocking(False)
        except BaseException:
            sock.close()
            raise
        self.interface = interface
        self._sock = sock

    def __enter__(self) -> RawSocket:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def fileno(self) -> int:
        return self._sock.fileno()

    def recvmsg(self, pool: PacketPool, headroom: int) -> Optional[Packet]:
        """Receive one frame into a packet from ``pool``.

        Returns None if the pool has no packet. If nothing is waiting on a
        non-blocking socket, the packet comes back empty.
        """
        pkt = pool.pkt(headroom)
        if pkt is None:
            return None
        room = pkt.head()[pkt.headroom():]
        try:
            nbytes, _anc, _flags, _addr = self._sock.recvmsg_into(
                [room], _CMSG_SPACE, socket.MSG_TRUNC
            )
        except (BlockingIOError, InterruptedError):
            return pkt
        except OSError:
            pkt.release()
            raise
        finally:
            room.release()
        if nbytes > 0 and pkt.move_tail(nbytes) != nbytes:
            pkt.release()
            raise OSError(
                errno.EMSGSIZE, f"frame of {nbytes} bytes does not fit in the packet"
            )
        return pkt

    def sendmsg(self, pool: PacketPool, pkt: Packet) -> int:
        """Send the packet's data as one frame; returns bytes sent, 0 on error.

        The packet is released either way.
        """
        try:
            buffers = [view[:length] for view, length in pkt.slices()]
            try:
                return self._sock.sendmsg(buffers)
            except OSError:
                return 0
        finally:
            pkt.release()

    def close(self) -> None:
        self._sock.close()