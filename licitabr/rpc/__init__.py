"""
JSON-RPC / MCP request handling.
"""

from .dispatcher import McpDispatcher, RPCError
from .tools import Tool, ToolError, ToolRegistry, create_tool_registry

__all__ = [
    "McpDispatcher",
    "RPCError",
    "Tool",
    "ToolError",
    "ToolRegistry",
    "create_tool_registry",
]
