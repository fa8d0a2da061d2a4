"""Tool Registry for MCP Server.

Holds the advertised tool catalog. Registration order is the order sent to
clients in `tools/list`, and each tool's argument schema is checked and
compiled once, when the tool is registered.
"""

from typing import Any, Optional

from jsonschema import Draft7Validator

from shared.logging import get_logger
from shared.models import ToolDefinition
from shared.schema import collect_errors, compile_schema

logger = get_logger(__name__)


class ToolRegistry:
    """
    Central registry for all MCP tools.

    Responsibilities:
    - Reject duplicate names and malformed argument schemas at startup
    - List tools in registration order
    - Validate call arguments against the compiled schema
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._validators: dict[str, Draft7Validator] = {}

    def register(self, tool: ToolDefinition) -> None:
        """
        Register a tool in the registry.

        Raises:
            ValueError: If tool name is already registered
            jsonschema.SchemaError: If the tool's input schema is malformed
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")

        self._validators[tool.name] = compile_schema(tool.input_schema)
        self._tools[tool.name] = tool

        logger.debug(
            "Tool registered",
            tool=tool.name,
            domain=tool.domain,
            execution_type=tool.execution_type.value
        )

    def register_many(self, tools: list[ToolDefinition]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, tool_name: str) -> Optional[ToolDefinition]:
        return self._tools.get(tool_name)

    def validate_input(
        self,
        tool_name: str,
        arguments: dict[str, Any]
    ) -> tuple[bool, list[str]]:
        """
        Validate call arguments against the tool's declared schema.

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        validator = self._validators.get(tool_name)
        if validator is None:
            return False, [f"Tool '{tool_name}' not found"]

        errors = collect_errors(validator, arguments)
        return not errors, errors

    def get_tools_for_mcp(self) -> list[dict[str, Any]]:
        """Tool descriptors in MCP `tools/list` format."""
        return [tool.to_mcp() for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)
