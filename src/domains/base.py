"""Base classes for domain adapters.

All adapters must:
- Translate MCP calls to backend API requests
- Normalize responses into MCP tool results
- Keep no per-call state
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from shared.models import DomainConfig, ToolDefinition, ToolResult


ActionHandler = Callable[[dict[str, Any]], Awaitable[ToolResult]]


def to_pretty_json(data: Any) -> str:
    """Serialize a payload the way tool results present it."""
    return json.dumps(data, indent=2, ensure_ascii=False)


class BaseAdapter(ABC):
    """
    Base class for domain adapters.

    Each adapter:
    - Handles one domain only
    - Translates MCP calls to backend APIs
    - Is stateless between calls
    """

    def __init__(self, config: DomainConfig) -> None:
        self.domain = config.name
        self.description = config.description
        self._tools: dict[str, ToolDefinition] = {}

    @property
    @abstractmethod
    def tools(self) -> list[ToolDefinition]:
        """Return all tool definitions for this domain, in advertised order."""
        pass

    @abstractmethod
    async def execute(self, action: str, parameters: dict[str, Any]) -> ToolResult:
        """
        Execute a tool action.

        Args:
            action: Tool name
            parameters: Tool arguments

        Returns:
            Tool execution result
        """
        pass

    def _success(self, data: Any = None, message: Optional[str] = None) -> ToolResult:
        """Create a success result, optionally prefixed by a sentence."""
        text = to_pretty_json(data)
        if message:
            text = f"{message}:\n{text}"
        return ToolResult.text(text)

    def _error(self, message: str) -> ToolResult:
        """Create an error result."""
        return ToolResult.error(f"Error: {message}")

    def _not_found(self, action: str) -> ToolResult:
        """Create a not found result."""
        return self._error(f"Unknown tool: {action}")


class MockAdapter(BaseAdapter):
    """
    Mock adapter for testing.

    Returns predefined responses for tools.
    """

    def __init__(
        self,
        config: DomainConfig,
        tools: list[ToolDefinition],
        responses: Optional[dict[str, Any]] = None
    ) -> None:
        super().__init__(config)
        self._tool_list = tools
        self._responses = responses or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    @property
    def tools(self) -> list[ToolDefinition]:
        return self._tool_list

    async def execute(self, action: str, parameters: dict[str, Any]) -> ToolResult:
        self.calls.append((action, parameters))
        response = self._responses.get(action)
        if isinstance(response, Exception):
            raise response
        if action in self._responses:
            return self._success(response)
        return self._error(f"No mock response for action: {action}")
