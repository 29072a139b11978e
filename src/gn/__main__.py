"""Entry point for the gn traffic generator."""

import asyncio
import logging
import sys
from typing import assert_never

from .config import Config, McpConfig, ServeConfig, WriteConfig, parse_args
from .engine import WorkerError
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def _configure_logging(config: Config) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.log_file:
        handlers = [logging.FileHandler(config.log_file)]

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        handlers=handlers,
    )


async def _write(config: WriteConfig) -> None:
    from .engine import WriteEngine

    engine = WriteEngine(config.host, config.payload, config.protocol, config.policy())
    wrote = await engine.run()
    stats = engine.stats
    print(f"Wrote {wrote} bytes")
    print(f"Throughput: {engine.throughput:.2f} bytes/s")
    print(f"Successful requests: {stats.successful_requests()}")
    print(f"Success rate: {stats.success_percentage():.2f}%")


async def _serve(config: ServeConfig) -> None:
    from .listener import Listener

    if config.output:
        with open(config.output, "a", encoding="utf-8") as sink:
            await Listener(config.address, config.protocol, sink).serve()
    else:
        await Listener(config.address, config.protocol, sys.stderr).serve()


async def _mcp() -> None:
    from mcp.server.stdio import stdio_server

    from .server import create_server

    server = create_server()
    init_options = server.create_initialization_options()

    async with stdio_server() as (read_stream, write_stream):
        logger.info("gn MCP server starting")
        await server.run(read_stream, write_stream, init_options)


async def _run(config: Config) -> None:
    match config:
        case WriteConfig():
            await _write(config)
        case ServeConfig():
            await _serve(config)
        case McpConfig():
            await _mcp()
        case _:
            assert_never(config)


def main(argv: list[str] | None = None) -> int:
    config = parse_args(argv)
    _configure_logging(config)
    try:
        asyncio.run(_run(config))
    except ConfigurationError as e:
        print(f"gn: error: {e}", file=sys.stderr)
        return 2
    except (WorkerError, OSError) as e:
        print(f"gn: error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
