"""Transport primitives: one payload per connection (TCP) or datagram (UDP).

No socket is reused between attempts: every send pays the full connect or
bind cost, so the numbers reported reflect real per-request cost.
"""

import asyncio
import enum
import socket
from typing import assert_never

from .errors import ConfigurationError


class Protocol(enum.Enum):
    TCP = "tcp"
    UDP = "udp"

    @classmethod
    def parse(cls, value: str) -> "Protocol":
        """Parse a protocol name, case-insensitively."""
        try:
            return cls(value.lower())
        except ValueError:
            raise ConfigurationError(f"unsupported connection type: {value}") from None

    @property
    def socket_type(self) -> int:
        return socket.SOCK_STREAM if self is Protocol.TCP else socket.SOCK_DGRAM

    async def send(self, addr: tuple, payload: bytes) -> int:
        """Send ``payload`` to a resolved socket address.

        Returns the number of bytes sent. Any I/O failure propagates as
        ``OSError``; callers decide whether to count or raise it.
        """
        match self:
            case Protocol.TCP:
                return await _send_tcp(addr, payload)
            case Protocol.UDP:
                return await _send_udp(addr, payload)
            case _:
                assert_never(self)


async def _send_tcp(addr: tuple, payload: bytes) -> int:
    _reader, writer = await asyncio.open_connection(addr[0], addr[1])
    try:
        writer.write(payload)
        await writer.drain()
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except ConnectionError:
            # Peer closed first; the payload was already drained.
            pass
    return len(payload)


async def _send_udp(addr: tuple, payload: bytes) -> int:
    loop = asyncio.get_running_loop()
    family = socket.AF_INET6 if len(addr) == 4 else socket.AF_INET
    with socket.socket(family, socket.SOCK_DGRAM) as sock:
        sock.setblocking(False)
        # Port 0 lets the kernel pick any free local port.
        sock.bind(("", 0))
        await loop.sock_sendto(sock, payload, addr)
    return len(payload)
