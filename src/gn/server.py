"""MCP server exposing the traffic generator and listener as tools."""

import asyncio
import io
import json
import logging
import traceback

from mcp.server import Server
from mcp.types import TextContent, Tool

logger = logging.getLogger(__name__)

DEFAULT_CAPTURE_TIMEOUT = 5.0

TOOLS = [
    Tool(
        name="write_traffic",
        description="Write a payload to a host over TCP or UDP using a count, duration and/or concurrency policy. Returns bytes written, throughput and success counts.",
        inputSchema={
            "type": "object",
            "properties": {
                "host": {
                    "type": "string",
                    "description": "Target address as host:port (e.g. 127.0.0.1:5000)",
                },
                "payload": {
                    "type": "string",
                    "description": "Data to write. Interpreted as UTF-8 text unless hex=true.",
                },
                "hex": {
                    "type": "boolean",
                    "description": "If true, interpret payload as a hex string",
                    "default": False,
                },
                "protocol": {
                    "type": "string",
                    "enum": ["tcp", "udp"],
                    "description": "Transport protocol (default: tcp)",
                    "default": "tcp",
                },
                "count": {
                    "type": "integer",
                    "description": "Number of writes (default: 1)",
                    "default": 1,
                },
                "duration": {
                    "type": "string",
                    "description": "Write for this long, e.g. '10s' or '1m 30s'",
                },
                "concurrency": {
                    "type": "integer",
                    "description": "Number of concurrent writers",
                },
            },
            "required": ["host", "payload"],
        },
    ),
    Tool(
        name="capture_traffic",
        description="Listen on an address for a fixed time and return every payload received.",
        inputSchema={
            "type": "object",
            "properties": {
                "address": {
                    "type": "string",
                    "description": "Address to bind as host:port",
                },
                "protocol": {
                    "type": "string",
                    "enum": ["tcp", "udp"],
                    "description": "Transport protocol (default: tcp)",
                    "default": "tcp",
                },
                "timeout": {
                    "type": "number",
                    "description": "Listen time in seconds (default: 5)",
                    "default": DEFAULT_CAPTURE_TIMEOUT,
                },
            },
            "required": ["address"],
        },
    ),
    Tool(
        name="parse_policy",
        description="Show which write policy a count/duration/concurrency combination selects.",
        inputSchema={
            "type": "object",
            "properties": {
                "count": {"type": "integer", "description": "Number of writes"},
                "duration": {"type": "string", "description": "Duration, e.g. '10s'"},
                "concurrency": {"type": "integer", "description": "Number of concurrent writers"},
            },
            "required": ["count"],
        },
    ),
]


def _text(content: str) -> list[TextContent]:
    return [TextContent(type="text", text=content)]


def _json(data) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(data, indent=2))]


def create_server() -> Server:
    server = Server("gn")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        try:
            return await _dispatch(name, arguments)
        except Exception as e:
            logger.exception("Tool %s failed", name)
            return _text(f"Error: {e}\n\n{traceback.format_exc()}")

    return server


def _policy_from_args(args: dict):
    from .config import parse_concurrency, parse_count, parse_duration
    from .policy import from_flags

    count = parse_count(args.get("count", 1))
    duration = parse_duration(args["duration"]) if args.get("duration") else None
    concurrency = parse_concurrency(args["concurrency"]) if args.get("concurrency") is not None else None
    return from_flags(count, duration, concurrency)


async def _dispatch(name: str, args: dict) -> list[TextContent]:
    from .config import parse_address
    from .engine import WriteEngine
    from .listener import Listener
    from .policy import describe
    from .protocol import Protocol

    match name:
        case "write_traffic":
            if args.get("hex", False):
                payload = bytes.fromhex(args["payload"])
            else:
                payload = args["payload"].encode("utf-8")
            engine = WriteEngine(
                host=parse_address(args["host"]),
                payload=payload,
                protocol=Protocol.parse(args.get("protocol", "tcp")),
                policy=_policy_from_args(args),
            )
            await engine.run()
            return _json({"host": args["host"], **engine.report()})

        case "capture_traffic":
            sink = io.StringIO()
            listener = Listener(
                parse_address(args["address"]),
                Protocol.parse(args.get("protocol", "tcp")),
                sink,
            )
            timeout = args.get("timeout", DEFAULT_CAPTURE_TIMEOUT)
            try:
                await asyncio.wait_for(listener.serve(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.debug("Capture on %s finished after %ss", args["address"], timeout)
            payloads = sink.getvalue().splitlines()
            return _json({
                "address": args["address"],
                "protocol": listener.protocol.value,
                "payloads": payloads,
                "count": len(payloads),
            })

        case "parse_policy":
            return _json(describe(_policy_from_args(args)))

        case _:
            return _text(f"Unknown tool: {name}")
