"""Core data models for the Airtable MCP Server.

This module defines the shared data structures used across the server:
tool definitions, tool calls and results, and the JSON-RPC 2.0 envelope
that carries them over every transport.
"""

from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


MCP_PROTOCOL_VERSION = "2024-11-05"


class ExecutionType(str, Enum):
    """Type of tool execution - read operations vs write operations."""
    READ = "read"
    WRITE = "write"


class ToolDefinition(BaseModel):
    """
    Complete definition of an MCP tool.

    Tools are declarative and discoverable. The name is the stable
    identifier advertised to clients; the domain selects the adapter
    that executes it.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Unique tool name")
    domain: str = Field(..., description="Domain namespace")
    description: str = Field(..., description="Clear description for LLM usage")

    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON Schema for input validation"
    )

    execution_type: ExecutionType = Field(default=ExecutionType.READ)

    def to_mcp(self) -> dict[str, Any]:
        """Return the descriptor in MCP `tools/list` format."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


class ToolCall(BaseModel):
    """A request to execute a specific tool."""
    tool_name: str = Field(..., description="Tool name")
    arguments: dict[str, Any] = Field(default_factory=dict)


class TextContent(BaseModel):
    """A text content block in a tool result."""
    type: Literal["text"] = "text"
    text: str


class ToolResult(BaseModel):
    """
    Result of a tool execution.

    Serialized with `isError` to match the MCP `tools/call` result.
    """
    model_config = ConfigDict(populate_by_name=True)

    content: list[TextContent] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def text(cls, text: str) -> "ToolResult":
        """Create a successful single-block result."""
        return cls(content=[TextContent(text=text)])

    @classmethod
    def error(cls, text: str) -> "ToolResult":
        """Create an error single-block result."""
        return cls(content=[TextContent(text=text)], is_error=True)

    @property
    def first_text(self) -> str:
        return self.content[0].text if self.content else ""

    def to_mcp(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ErrorCode:
    """Standard JSON-RPC 2.0 error codes."""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


RequestId = Union[int, str]


class JSONRPCRequest(BaseModel):
    """
    A JSON-RPC 2.0 request or notification.

    Requests without an id are notifications and receive no response.
    """
    jsonrpc: Literal["2.0"] = "2.0"
    id: Optional[RequestId] = None
    method: str
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def _null_params(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def is_notification(self) -> bool:
        return self.id is None


class JSONRPCError(BaseModel):
    """Error member of a JSON-RPC response."""
    code: int
    message: str
    data: Optional[Any] = None


class JSONRPCResponse(BaseModel):
    """A JSON-RPC 2.0 response carrying either a result or an error."""
    jsonrpc: Literal["2.0"] = "2.0"
    id: Optional[RequestId] = None
    result: Optional[Any] = None
    error: Optional[JSONRPCError] = None

    @classmethod
    def success(cls, request_id: Optional[RequestId], result: Any) -> "JSONRPCResponse":
        return cls(id=request_id, result=result)

    @classmethod
    def failure(
        cls,
        request_id: Optional[RequestId],
        code: int,
        message: str,
        data: Any = None
    ) -> "JSONRPCResponse":
        return cls(id=request_id, error=JSONRPCError(code=code, message=message, data=data))

    def to_dict(self) -> dict[str, Any]:
        """Wire form: exactly one of result/error, id always present."""
        payload: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.model_dump(exclude_none=True)
        else:
            payload["result"] = self.result if self.result is not None else {}
        return payload


class ServerInfo(BaseModel):
    """Identity advertised in the `initialize` handshake."""
    name: str
    version: str


class DomainConfig(BaseModel):
    """Configuration for an application domain."""
    name: str
    description: str
