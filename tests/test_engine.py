"""Engine tests against real loopback endpoints.

Run with: pytest tests/test_engine.py -v
"""

import asyncio
import socket
import time
from unittest.mock import AsyncMock, patch

import pytest

from gn.engine import WorkerError, WriteEngine, resolve
from gn.errors import ConfigurationError
from gn.policy import (
    ConcurrentCount,
    ConcurrentDuration,
    Count,
    CountOrDuration,
    Duration,
)
from gn.protocol import Protocol


async def bind_socket(protocol: Protocol):
    """Open an endpoint that accepts and discards everything sent to it.

    TCP connections are read to EOF before closing so the backlog never
    fills during long runs. Returns ``(closeable, address)``.
    """
    match protocol:
        case Protocol.TCP:
            async def discard(reader, writer):
                await reader.read()
                writer.close()

            server = await asyncio.start_server(discard, "127.0.0.1", 0)
            return server, server.sockets[0].getsockname()
        case Protocol.UDP:
            loop = asyncio.get_running_loop()
            transport, _ = await loop.create_datagram_endpoint(
                asyncio.DatagramProtocol, local_addr=("127.0.0.1", 0)
            )
            return transport, transport.get_extra_info("sockname")


def unused_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestResolve:
    @pytest.mark.asyncio
    async def test_tuple(self):
        assert await resolve(("127.0.0.1", 5000)) == [("127.0.0.1", 5000)]

    @pytest.mark.asyncio
    async def test_string(self):
        assert await resolve("127.0.0.1:5000", Protocol.UDP) == [("127.0.0.1", 5000)]

    @pytest.mark.asyncio
    async def test_unresolvable(self):
        with pytest.raises(ConfigurationError, match="unable to resolve"):
            await resolve(("host.invalid", 5000))

    @pytest.mark.asyncio
    async def test_duplicates_collapsed_in_resolver_order(self):
        stream = socket.SOCK_STREAM
        infos = [
            (socket.AF_INET, stream, 6, "", ("127.0.0.2", 80)),
            (socket.AF_INET6, stream, 6, "", ("::1", 80, 0, 0)),
            (socket.AF_INET, stream, 6, "", ("127.0.0.2", 80)),
            (socket.AF_INET, stream, 6, "", ("127.0.0.1", 80)),
            (socket.AF_INET6, stream, 6, "", ("::1", 80, 0, 0)),
        ]
        loop = asyncio.get_running_loop()
        with patch.object(loop, "getaddrinfo", AsyncMock(return_value=infos)):
            addrs = await resolve(("example.test", 80))
        assert addrs == [("127.0.0.2", 80), ("::1", 80, 0, 0), ("127.0.0.1", 80)]

    @pytest.mark.asyncio
    async def test_empty_result(self):
        loop = asyncio.get_running_loop()
        with patch.object(loop, "getaddrinfo", AsyncMock(return_value=[])):
            with pytest.raises(ConfigurationError, match="no addresses found"):
                await resolve(("example.test", 80))


async def recording_server():
    """TCP endpoint that keeps every payload it receives."""
    received = []

    async def handle(reader, writer):
        received.append(await reader.read())
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname(), received


async def wait_for_count(received: list, n: int, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while len(received) < n and time.monotonic() < deadline:
        await asyncio.sleep(0.01)


class TestMultipleAddresses:
    """A host that resolves to several addresses is written to in turn."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "policy,per_address",
        [
            (Count(3), 3),
            (ConcurrentCount(2, 5), 4),
        ],
    )
    async def test_each_address_gets_full_policy(self, policy, per_address):
        first, first_addr, first_received = await recording_server()
        second, second_addr, second_received = await recording_server()
        try:
            with patch("gn.engine.resolve", AsyncMock(return_value=[first_addr, second_addr])):
                engine = WriteEngine("example.test:80", b"hey", Protocol.TCP, policy)
                assert await engine.run() == 2 * per_address * 3
            assert engine.stats.success_count == 2 * per_address
            assert engine.stats.failure_count == 0

            await wait_for_count(first_received, per_address)
            await wait_for_count(second_received, per_address)
            assert first_received == [b"hey"] * per_address
            assert second_received == [b"hey"] * per_address
        finally:
            first.close()
            second.close()


class TestWriteCount:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("protocol", [Protocol.TCP, Protocol.UDP])
    @pytest.mark.parametrize(
        "payload,count,expected",
        [
            (b"hello", 1, 5),
            (b"hello", 5, 25),
            (b"wow-there's-a-lot-of-text-here", 3, 90),
            (b"a", 1, 1),
            (b"a", 100, 100),
        ],
    )
    async def test_count(self, protocol, payload, count, expected):
        endpoint, addr = await bind_socket(protocol)
        try:
            engine = WriteEngine(addr, payload, protocol, Count(count))
            assert await engine.run() == expected
            assert engine.stats.success_count == count
            assert engine.stats.failure_count == 0
        finally:
            endpoint.close()

    @pytest.mark.asyncio
    async def test_refused_connections_are_counted(self):
        engine = WriteEngine(("127.0.0.1", unused_port()), b"hello", Protocol.TCP, Count(3))
        assert await engine.run() == 0
        assert engine.stats.success_count == 0
        assert engine.stats.failure_count == 3
        assert engine.stats.total_bytes == 0

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_loop(self):
        send = AsyncMock(side_effect=[5, ConnectionRefusedError(), 5])
        with patch.object(Protocol, "send", send):
            engine = WriteEngine(("127.0.0.1", 5000), b"hello", Protocol.TCP, Count(3))
            assert await engine.run() == 10
        assert send.await_count == 3
        assert engine.stats.success_count == 2
        assert engine.stats.failure_count == 1
        assert engine.stats.success_percentage() == pytest.approx(200 / 3)

    @pytest.mark.asyncio
    async def test_unresolvable_host_sends_nothing(self):
        send = AsyncMock(return_value=5)
        with patch.object(Protocol, "send", send):
            engine = WriteEngine(("host.invalid", 5000), b"hello", Protocol.TCP, Count(3))
            with pytest.raises(ConfigurationError):
                await engine.run()
        send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_throughput_set_after_write(self):
        endpoint, addr = await bind_socket(Protocol.TCP)
        try:
            engine = WriteEngine(addr, b"a", Protocol.TCP, Count(100))
            await engine.run()
            assert engine.throughput != 0.0, "Throughput should be set after writing data"
            assert engine.throughput > 0.0
        finally:
            endpoint.close()


class TestWriteDuration:
    @pytest.mark.asyncio
    async def test_duration(self):
        endpoint, addr = await bind_socket(Protocol.TCP)
        try:
            engine = WriteEngine(addr, b"duration", Protocol.TCP, Duration(2.0))
            start = time.monotonic()
            await engine.run()
            assert int(time.monotonic() - start) == 2
            assert engine.throughput > 0.0
        finally:
            endpoint.close()

    @pytest.mark.asyncio
    async def test_count_reached_first(self):
        endpoint, addr = await bind_socket(Protocol.UDP)
        try:
            engine = WriteEngine(addr, b"abc", Protocol.UDP, CountOrDuration(4, 30.0))
            start = time.monotonic()
            assert await engine.run() == 12
            assert time.monotonic() - start < 30.0
            assert engine.stats.request_count() == 4
        finally:
            endpoint.close()

    @pytest.mark.asyncio
    async def test_duration_reached_first(self):
        endpoint, addr = await bind_socket(Protocol.UDP)
        try:
            engine = WriteEngine(addr, b"abc", Protocol.UDP, CountOrDuration(10**12, 1.0))
            start = time.monotonic()
            await engine.run()
            assert int(time.monotonic() - start) == 1
            assert 0 < engine.stats.request_count() < 10**12
        finally:
            endpoint.close()


class TestWriteConcurrency:
    @pytest.mark.asyncio
    async def test_concurrency_udp(self):
        endpoint, addr = await bind_socket(Protocol.UDP)
        try:
            engine = WriteEngine(addr, b"a", Protocol.UDP, ConcurrentCount(5, 100_000))
            assert await engine.run() == 100_000
            assert engine.throughput > 0.0
        finally:
            endpoint.close()

    @pytest.mark.asyncio
    async def test_concurrency_tcp(self):
        endpoint, addr = await bind_socket(Protocol.TCP)
        try:
            engine = WriteEngine(addr, b"c", Protocol.TCP, ConcurrentCount(5, 1_000))
            assert await engine.run() == 1_000
            assert engine.stats.success_count == 1_000
            assert engine.throughput > 0.0
        finally:
            endpoint.close()

    @pytest.mark.asyncio
    async def test_remainder_is_dropped(self):
        endpoint, addr = await bind_socket(Protocol.TCP)
        try:
            engine = WriteEngine(addr, b"ab", Protocol.TCP, ConcurrentCount(3, 10))
            assert await engine.run() == (10 // 3) * 3 * 2
            assert engine.stats.request_count() == 9
        finally:
            endpoint.close()

    @pytest.mark.asyncio
    async def test_concurrency_with_duration(self):
        endpoint, addr = await bind_socket(Protocol.TCP)
        try:
            payload = b"concurrent_duration"
            engine = WriteEngine(addr, payload, Protocol.TCP, ConcurrentDuration(10, 2.0))
            start = time.monotonic()
            await engine.run()
            assert int(time.monotonic() - start) == 2
            assert engine.throughput > 0.0
            assert engine.stats.total_bytes > len(payload) * 100, "More than 100 requests should be sent"
        finally:
            endpoint.close()

    @pytest.mark.asyncio
    async def test_workers_share_duration_on_udp(self):
        endpoint, addr = await bind_socket(Protocol.UDP)
        try:
            engine = WriteEngine(addr, b"u", Protocol.UDP, ConcurrentDuration(4, 1.0))
            start = time.monotonic()
            await engine.run()
            # Workers run side by side, not one after another.
            assert time.monotonic() - start < 2.0
            assert engine.stats.failure_count == 0
        finally:
            endpoint.close()

    @pytest.mark.asyncio
    async def test_worker_crash_is_fatal(self):
        send = AsyncMock(side_effect=RuntimeError("boom"))
        with patch.object(Protocol, "send", send):
            engine = WriteEngine(("127.0.0.1", 5000), b"x", Protocol.TCP, ConcurrentCount(3, 6))
            with pytest.raises(WorkerError, match="3 of 3 workers") as exc_info:
                await engine.run()
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert engine.stats.request_count() == 0

    @pytest.mark.asyncio
    async def test_worker_io_errors_are_counted(self):
        send = AsyncMock(side_effect=OSError("unreachable"))
        with patch.object(Protocol, "send", send):
            engine = WriteEngine(("127.0.0.1", 5000), b"x", Protocol.UDP, ConcurrentCount(4, 8))
            assert await engine.run() == 0
        assert engine.stats.failure_count == 8
        assert engine.stats.success_count == 0


class TestReport:
    @pytest.mark.asyncio
    async def test_report(self):
        endpoint, addr = await bind_socket(Protocol.UDP)
        try:
            engine = WriteEngine(addr, b"hello", Protocol.UDP, Count(2))
            await engine.run()
            report = engine.report()
        finally:
            endpoint.close()
        assert report["bytes_written"] == 10
        assert report["successful_requests"] == 2
        assert report["failed_requests"] == 0
        assert report["success_percentage"] == 100.0
        assert report["policy"] == {"kind": "Count", "count": 2}
