"""Shared utilities and base classes for the Airtable MCP Server."""

from shared.models import (
    ToolDefinition,
    ToolCall,
    ToolResult,
    TextContent,
    JSONRPCRequest,
    JSONRPCResponse,
    ErrorCode,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "ToolDefinition",
    "ToolCall",
    "ToolResult",
    "TextContent",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "ErrorCode",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
