"""Write engine: resolve a target and run a write policy against it."""

import asyncio
import logging
import socket
import time
from typing import assert_never

from .config import parse_address
from .errors import ConfigurationError
from .policy import (
    ConcurrentCount,
    ConcurrentDuration,
    Count,
    CountOrDuration,
    Duration,
    WritePolicy,
    describe,
)
from .protocol import Protocol
from .statistics import Statistics, Tally

logger = logging.getLogger(__name__)


class WorkerError(Exception):
    """A concurrent worker ended without handing back its counts."""


async def resolve(host: str | tuple[str, int], protocol: Protocol = Protocol.TCP) -> list[tuple]:
    """Resolve ``host`` into the distinct socket addresses it names.

    ``host`` is either ``"host:port"`` or a ``(host, port)`` tuple. Failure to
    resolve is a configuration error, not a write failure.
    """
    if isinstance(host, str):
        host = parse_address(host)
    name, port = host[0], host[1]
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(name, port, type=protocol.socket_type)
    except (socket.gaierror, UnicodeError) as e:
        raise ConfigurationError(f"unable to resolve {name}:{port}: {e}") from e

    addrs = []
    for _family, _type, _proto, _canonname, sockaddr in infos:
        if sockaddr not in addrs:
            addrs.append(sockaddr)
    if not addrs:
        raise ConfigurationError(f"no addresses found for {name}:{port}")
    return addrs


class WriteEngine:
    """Writes a payload to every address a host resolves to.

    One engine runs one invocation. ``stats`` is replaced with a fresh
    ``Statistics`` at the start of each ``run()``.
    """

    def __init__(
        self,
        host: str | tuple[str, int],
        payload: bytes,
        protocol: Protocol = Protocol.TCP,
        policy: WritePolicy = Count(1),
    ):
        self.host = host
        self.payload = bytes(payload)
        self.protocol = protocol
        self.policy = policy
        self.stats = Statistics()

    @property
    def throughput(self) -> float:
        """Bytes per second recorded by the last run.

        Elapsed time is truncated to whole seconds, so short runs report
        ``inf`` (or ``nan`` with no bytes written).
        """
        return self.stats.throughput

    async def run(self) -> int:
        """Execute the policy against every resolved address.

        Returns the total number of bytes written. Per-attempt I/O errors are
        counted as failures; a worker that dies raises ``WorkerError``.
        """
        addrs = await resolve(self.host, self.protocol)
        self.stats = Statistics()
        logger.info(
            "Writing %d bytes to %s over %s with %s",
            len(self.payload),
            self.host,
            self.protocol.value,
            self.policy,
        )

        for addr in addrs:
            logger.debug("Writing to resolved address %s", addr)
            await self._run_policy(addr)

        self.stats.record_throughput()
        logger.info(
            "Wrote %d bytes (%d ok, %d failed) in %d ms",
            self.stats.total_bytes,
            self.stats.success_count,
            self.stats.failure_count,
            self.stats.elapsed(),
        )
        return self.stats.total_bytes

    def report(self) -> dict:
        return {**self.stats.summary(), "policy": describe(self.policy)}

    async def _run_policy(self, addr: tuple) -> None:
        policy = self.policy
        match policy:
            case Count(count):
                self.stats.merge(await self._write_loop(addr, count=count))
            case Duration(duration):
                self.stats.merge(await self._write_loop(addr, duration=duration))
            case CountOrDuration(count, duration):
                self.stats.merge(await self._write_loop(addr, count=count, duration=duration))
            case ConcurrentCount(concurrency, _):
                await self._fan_out(addr, concurrency, count=policy.per_worker)
            case ConcurrentDuration(concurrency, duration):
                await self._fan_out(addr, concurrency, duration=duration)
            case _:
                assert_never(policy)

    async def _fan_out(
        self,
        addr: tuple,
        concurrency: int,
        count: int | None = None,
        duration: float | None = None,
    ) -> None:
        tasks = [
            asyncio.create_task(self._write_loop(addr, count=count, duration=duration))
            for _ in range(concurrency)
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise WorkerError(
                f"{len(errors)} of {concurrency} workers failed to report"
            ) from errors[0]
        for tally in results:
            self.stats.merge(tally)

    async def _write_loop(
        self,
        addr: tuple,
        count: int | None = None,
        duration: float | None = None,
    ) -> Tally:
        """Send until ``count`` attempts are made or ``duration`` has elapsed.

        The deadline is checked before each send; the send that crosses it
        is allowed to finish.
        """
        tally = Tally()
        deadline = None if duration is None else time.monotonic() + duration
        while count is None or tally.attempts < count:
            if deadline is not None and time.monotonic() >= deadline:
                break
            try:
                sent = await self.protocol.send(addr, self.payload)
            except OSError as e:
                logger.debug("Write to %s failed: %s", addr, e)
                tally.record_failure()
            else:
                tally.record_success(sent)
            # A UDP send can complete without suspending; yield so other
            # workers make progress.
            await asyncio.sleep(0)
        return tally
