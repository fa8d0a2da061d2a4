"""Transports binding an MCP session to a concrete channel.

The stdio and sse modules are imported directly by their users; only the
shared interface is re-exported here.
"""

from mcp_server.transports.base import Transport, TransportError

__all__ = ["Transport", "TransportError"]
