#!/usr/bin/env python3
"""
LicitaBR MCP Server

Serves the procurement notice tools (search, details, fetch with statistics,
risk classification and deadline monitoring) over the MCP stdio transport.
"""

import asyncio
import json
import sys

from mcp.server import Server
from mcp.server.stdio import stdio_server
import mcp.types as types

from .core.config import config
from .rpc.tools import ToolError, ToolRegistry, create_tool_registry
from .utils.logger import get_logger, set_log_stream
from .utils.metrics import track_tool_call

logger = get_logger("mcp_server")


def build_server(registry: ToolRegistry) -> Server:
    """Create an MCP server exposing every tool of the registry"""

    server = Server("licitabr-mcp")

    @server.list_tools()
    async def handle_list_tools() -> list[types.Tool]:
        """List available procurement tools"""
        return [
            types.Tool(name=tool.name, description=tool.description, inputSchema=tool.input_schema)
            for tool in registry.list_tools()
        ]

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: dict) -> list[types.TextContent]:
        """Handle tool calls"""
        if name not in registry:
            raise ValueError(f"Unknown tool: {name}")

        with track_tool_call(name) as timer:
            try:
                result = await registry.call(name, arguments)
            except ToolError:
                timer.fail()
                raise

        return [types.TextContent(type="text", text=json.dumps(result, ensure_ascii=False, indent=2))]

    return server


async def serve(registry: ToolRegistry = None):
    """Run the MCP server on stdin/stdout"""

    registry = registry or create_tool_registry()
    server = build_server(registry)
    logger.info(f"Starting MCP stdio server with {len(registry.list_tools())} tools "
                f"(source: {registry.source.name}, env: {config.environment})")

    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await registry.close()


def main():
    # stdout carries the protocol
    set_log_stream(sys.stderr)
    asyncio.run(serve())


if __name__ == "__main__":
    main()
