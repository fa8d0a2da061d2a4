"""MCP Server - Tool registry, dispatch, and the MCP protocol.

The MCP Server registers the Airtable tools, routes calls to the domain
adapter, and speaks JSON-RPC to clients over stdio or SSE.
"""

from mcp_server.registry import ToolRegistry
from mcp_server.router import DispatchError, ToolRouter
from mcp_server.protocol import InvalidParamsError, MCPServer, MCPSession, create_mcp_server
from mcp_server.transports.base import Transport, TransportError

__all__ = [
    "ToolRegistry",
    "ToolRouter",
    "DispatchError",
    "MCPServer",
    "MCPSession",
    "InvalidParamsError",
    "create_mcp_server",
    "Transport",
    "TransportError",
]
