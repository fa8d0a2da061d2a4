"""Tool Router for MCP Server.

Routes tool calls to appropriate domain adapters.
Handles lookup, validation, and execution.
"""

import time
from typing import Any, Awaitable, Callable, Optional

from shared.logging import get_logger
from shared.models import ToolCall, ToolResult
from mcp_server.registry import ToolRegistry

logger = get_logger(__name__)


# Type alias for adapter execute functions
AdapterExecutor = Callable[[str, dict[str, Any]], Awaitable[ToolResult]]


class DispatchError(Exception):
    """A tool call cannot be routed to any adapter."""
    pass


class ToolRouter:
    """
    Routes tool calls to appropriate domain adapters.

    Responsibilities:
    - Reject unknown tools before any adapter runs
    - Validate tool calls against schemas
    - Route to appropriate adapter
    - Turn any failure into an error result
    """

    def __init__(self, registry: Optional[ToolRegistry] = None) -> None:
        self.registry = registry if registry is not None else ToolRegistry()
        self._adapters: dict[str, AdapterExecutor] = {}

    def register_adapter(self, domain: str, executor: AdapterExecutor) -> None:
        """
        Register a domain adapter.

        Args:
            domain: Domain name
            executor: Coroutine function that executes tools for this domain
        """
        self._adapters[domain] = executor
        logger.info("Adapter registered", domain=domain)

    def resolve(self, tool_name: str) -> AdapterExecutor:
        """
        Find the adapter for a tool.

        Raises:
            DispatchError: If the tool or its domain adapter is unknown
        """
        tool = self.registry.get(tool_name)
        if not tool:
            raise DispatchError(f"Unknown tool: {tool_name}")

        adapter = self._adapters.get(tool.domain)
        if not adapter:
            raise DispatchError(f"No adapter registered for domain '{tool.domain}'")

        return adapter

    async def execute(self, call: ToolCall) -> ToolResult:
        """
        Execute a tool call.

        This is the main entry point for tool execution. It never raises:
        every failure becomes a ToolResult with isError set.

        Args:
            call: Tool call request

        Returns:
            Tool execution result
        """
        start_time = time.time()
        tool_name = call.tool_name

        logger.debug("Executing tool", tool=tool_name)

        try:
            adapter = self.resolve(tool_name)
        except DispatchError as e:
            logger.warning("Tool dispatch failed", tool=tool_name, error=str(e))
            return ToolResult.error(f"Error: {e}")

        is_valid, errors = self.registry.validate_input(tool_name, call.arguments)
        if not is_valid:
            return ToolResult.error(f"Error: Validation failed: {'; '.join(errors)}")

        try:
            result = await adapter(tool_name, call.arguments)
        except Exception as e:
            logger.error(
                "Tool execution failed",
                tool=tool_name,
                error=str(e),
                exc_info=True
            )
            result = ToolResult.error(f"Error: {e}")

        logger.info(
            "Tool executed",
            tool=tool_name,
            is_error=result.is_error,
            execution_time_ms=round((time.time() - start_time) * 1000, 2)
        )

        return result
