"""Listener that prints every received payload as a line of text.

TCP connections are read to EOF; UDP datagrams are read one at a time.
Payloads go to ``sink``; log lines never do.
"""

import asyncio
import logging
from typing import TextIO, assert_never

from .protocol import Protocol

logger = logging.getLogger(__name__)

UDP_RECV_SIZE = 1024


class Listener:
    def __init__(self, address: tuple[str, int], protocol: Protocol, sink: TextIO):
        self.address = address
        self.protocol = protocol
        self.sink = sink
        self.bound_address: tuple | None = None
        self._bound = asyncio.Event()

    async def wait_bound(self) -> tuple:
        """Wait until ``serve()`` has bound its socket; returns the bound address."""
        await self._bound.wait()
        assert self.bound_address is not None
        return self.bound_address

    def _emit(self, data: bytes) -> None:
        self.sink.write(data.decode("utf-8", errors="replace") + "\n")
        self.sink.flush()

    async def serve(self) -> None:
        """Bind and serve forever. Bind failures raise ``OSError``."""
        match self.protocol:
            case Protocol.TCP:
                await self._serve_tcp()
            case Protocol.UDP:
                await self._serve_udp()
            case _:
                assert_never(self.protocol)

    async def _serve_tcp(self) -> None:
        server = await asyncio.start_server(self._handle_connection, self.address[0], self.address[1])
        self.bound_address = server.sockets[0].getsockname()
        logger.info("Listening on tcp://%s:%s", self.bound_address[0], self.bound_address[1])
        self._bound.set()
        async with server:
            await server.serve_forever()

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            data = await reader.read()
        except OSError as e:
            logger.warning("Unable to read stream: %s", e)
        else:
            self._emit(data)
        finally:
            writer.close()

    async def _serve_udp(self) -> None:
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _DatagramSink(self),
            local_addr=self.address,
        )
        self.bound_address = transport.get_extra_info("sockname")
        logger.info("Listening on udp://%s:%s", self.bound_address[0], self.bound_address[1])
        self._bound.set()
        try:
            await loop.create_future()
        finally:
            transport.close()


class _DatagramSink(asyncio.DatagramProtocol):
    def __init__(self, listener: Listener):
        self.listener = listener

    def datagram_received(self, data, addr):
        self.listener._emit(data[:UDP_RECV_SIZE])

    def error_received(self, exc):
        logger.warning("Unable to read datagram: %s", exc)
