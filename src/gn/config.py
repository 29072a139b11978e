import argparse
import re
import sys
from dataclasses import dataclass

from .errors import ConfigurationError
from .policy import WritePolicy, from_flags
from .protocol import Protocol

DEFAULT_SERVE_ADDRESS = ("127.0.0.1", 5000)


# Unit multipliers in seconds, following the humantime duration grammar.
_DURATION_UNITS = {
    "nsec": 1e-9, "ns": 1e-9,
    "usec": 1e-6, "us": 1e-6,
    "msec": 1e-3, "ms": 1e-3,
    "seconds": 1, "second": 1, "sec": 1, "secs": 1, "s": 1,
    "minutes": 60, "minute": 60, "min": 60, "mins": 60, "m": 60,
    "hours": 3600, "hour": 3600, "hr": 3600, "hrs": 3600, "h": 3600,
    "days": 86400, "day": 86400, "d": 86400,
    "weeks": 604800, "week": 604800, "w": 604800,
}

_DURATION_PART = re.compile(r"\s*(\d+)\s*([a-zA-Z]+)\s*")


def parse_duration(value: str) -> float:
    """Parse a human-readable duration like ``30s`` or ``1m 30s`` into seconds."""
    if not value or not value.strip():
        raise ConfigurationError("duration must not be empty")
    total = 0.0
    pos = 0
    while pos < len(value):
        m = _DURATION_PART.match(value, pos)
        if m is None:
            raise ConfigurationError(f"invalid duration '{value}': expected <number><unit>")
        number, unit = m.groups()
        if unit not in _DURATION_UNITS:
            raise ConfigurationError(f"invalid duration '{value}': unknown unit '{unit}'")
        total += int(number) * _DURATION_UNITS[unit]
        pos = m.end()
    return total


def parse_address(value: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into a host and integer port."""
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        raise ConfigurationError(f"invalid address '{value}': expected host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port_num = int(port)
    except ValueError:
        raise ConfigurationError(f"invalid port in address '{value}'") from None
    if not 0 <= port_num <= 65535:
        raise ConfigurationError(f"port out of range in address '{value}'")
    return host, port_num


def parse_concurrency(value: str | int) -> int:
    try:
        concurrency = int(value)
    except ValueError:
        raise ConfigurationError(f"concurrency must be a positive integer, got {value}") from None
    if concurrency <= 0:
        raise ConfigurationError(f"concurrency must be a positive integer, got {value}")
    return concurrency


def parse_count(value: str | int) -> int:
    try:
        count = int(value)
    except ValueError:
        raise ConfigurationError(f"count must be a non-negative integer, got {value}") from None
    if count < 0:
        raise ConfigurationError(f"count must be a non-negative integer, got {value}")
    return count


@dataclass(kw_only=True)
class Config:
    log_level: str = "info"
    log_file: str | None = None


@dataclass(kw_only=True)
class WriteConfig(Config):
    host: tuple[str, int]
    payload: bytes
    protocol: Protocol = Protocol.TCP
    count: int = 1
    duration: float | None = None
    concurrency: int | None = None

    def policy(self) -> WritePolicy:
        return from_flags(self.count, self.duration, self.concurrency)


@dataclass(kw_only=True)
class ServeConfig(Config):
    address: tuple[str, int] = DEFAULT_SERVE_ADDRESS
    protocol: Protocol = Protocol.TCP
    output: str | None = None


@dataclass(kw_only=True)
class McpConfig(Config):
    pass


def _arg(parse):
    """Adapt a parser raising ConfigurationError for use as an argparse type."""

    def convert(value):
        try:
            return parse(value)
        except ConfigurationError as e:
            raise argparse.ArgumentTypeError(str(e)) from None

    convert.__name__ = parse.__name__
    return convert


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
    )
    common.add_argument("--log-file", default=None, help="Log to file instead of stderr")

    parser = argparse.ArgumentParser(prog="gn", description="TCP/UDP traffic generator and listener")
    sub = parser.add_subparsers(dest="command", required=True)

    write = sub.add_parser("write", parents=[common], help="Write data over a TCP or UDP socket")
    write.add_argument("--host", required=True, type=_arg(parse_address), help="Target host:port")
    write.add_argument(
        "input",
        nargs="?",
        default="-",
        help="Data to write to the socket. Defaults to reading from stdin.",
    )
    write.add_argument("-c", "--count", type=_arg(parse_count), default=1, help="Number of writes (default: 1)")
    write.add_argument("-d", "--duration", type=_arg(parse_duration), default=None, help="Write for a duration, e.g. 30s")
    write.add_argument("--concurrency", type=_arg(parse_concurrency), default=None, help="Number of concurrent writers")
    write.add_argument("-p", "--protocol", type=_arg(Protocol.parse), default=Protocol.TCP, help="tcp or udp (default: tcp)")

    serve = sub.add_parser("serve", parents=[common], help="Start a listener that prints received payloads")
    serve.add_argument(
        "--address",
        type=_arg(parse_address),
        default=DEFAULT_SERVE_ADDRESS,
        help="Address to bind (default: 127.0.0.1:5000)",
    )
    serve.add_argument("-p", "--protocol", type=_arg(Protocol.parse), default=Protocol.TCP, help="tcp or udp (default: tcp)")
    serve.add_argument("-o", "--output", default=None, help="Append payloads to this file instead of stderr")

    sub.add_parser("mcp", parents=[common], help="Run the MCP stdio server")
    return parser


def parse_args(argv: list[str] | None = None) -> Config:
    args = build_parser().parse_args(argv)
    match args.command:
        case "write":
            if args.input == "-":
                payload = sys.stdin.buffer.read()
            else:
                payload = args.input.encode("utf-8")
            return WriteConfig(
                host=args.host,
                payload=payload,
                protocol=args.protocol,
                count=args.count,
                duration=args.duration,
                concurrency=args.concurrency,
                log_level=args.log_level,
                log_file=args.log_file,
            )
        case "serve":
            return ServeConfig(
                address=args.address,
                protocol=args.protocol,
                output=args.output,
                log_level=args.log_level,
                log_file=args.log_file,
            )
        case _:
            return McpConfig(log_level=args.log_level, log_file=args.log_file)
