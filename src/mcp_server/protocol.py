"""MCP protocol handling.

MCPServer owns the server identity and the JSON-RPC dispatch path shared
by every transport and by the REST facade. MCPSession binds that path to
one connected client and one transport.
"""

import asyncio
import json
import uuid
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from pydantic import ValidationError

from shared.logging import bind_context, get_logger
from shared.models import (
    MCP_PROTOCOL_VERSION,
    ErrorCode,
    JSONRPCRequest,
    JSONRPCResponse,
    ServerInfo,
    ToolCall,
)
from mcp_server.registry import ToolRegistry
from mcp_server.router import ToolRouter
from mcp_server.transports.base import Transport, TransportError

if TYPE_CHECKING:
    from domains.airtable.client import AirtableClient
    from shared.config import Settings

logger = get_logger(__name__)


class InvalidParamsError(Exception):
    """Request params do not match what the method expects."""
    pass


MethodHandler = Callable[[dict[str, Any]], Awaitable[Any]]


class MCPServer:
    """
    Protocol-level MCP server.

    Answers initialize, ping, tools/list and tools/call. Holds no
    per-client state, so one instance serves every session.
    """

    def __init__(
        self,
        router: ToolRouter,
        name: str = "airtable-mcp-server",
        version: str = "0.3.1"
    ) -> None:
        self.router = router
        self.info = ServerInfo(name=name, version=version)
        self.capabilities: dict[str, Any] = {"tools": {}}

        self._handlers: dict[str, MethodHandler] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    @property
    def registry(self) -> ToolRegistry:
        return self.router.registry

    def get_server_info(self) -> dict[str, Any]:
        """Identity and capabilities, as returned by `initialize`."""
        return {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": self.capabilities,
            "serverInfo": self.info.model_dump(),
        }

    async def handle_request(self, request: JSONRPCRequest) -> JSONRPCResponse:
        """
        Dispatch one JSON-RPC request.

        Args:
            request: Parsed request

        Returns:
            Response carrying a result or a JSON-RPC error
        """
        handler = self._handlers.get(request.method)
        if handler is None:
            return JSONRPCResponse.failure(
                request.id,
                ErrorCode.METHOD_NOT_FOUND,
                f"Method not found: {request.method}"
            )

        try:
            result = await handler(request.params)
        except InvalidParamsError as e:
            return JSONRPCResponse.failure(request.id, ErrorCode.INVALID_PARAMS, str(e))
        except Exception as e:
            logger.error(
                "Request handler failed",
                method=request.method,
                error=str(e),
                exc_info=True
            )
            return JSONRPCResponse.failure(
                request.id, ErrorCode.INTERNAL_ERROR, "Internal error", str(e)
            )

        return JSONRPCResponse.success(request.id, result)

    async def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        return self.get_server_info()

    async def _ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _list_tools(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": self.registry.get_tools_for_mcp()}

    async def _call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidParamsError("tools/call requires a string 'name'")

        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise InvalidParamsError("tools/call 'arguments' must be an object")

        result = await self.router.execute(ToolCall(tool_name=name, arguments=arguments))
        return result.to_mcp()


class MCPSession:
    """
    One client's binding to the MCP server.

    A session lives exactly as long as its transport. Each inbound request
    is handled in its own task so a slow remote call does not hold up the
    rest of the connection.
    """

    def __init__(self, server: MCPServer, session_id: Optional[str] = None) -> None:
        self.server = server
        self.session_id = session_id or uuid.uuid4().hex
        self.initialized = False
        self.client_info: dict[str, Any] = {}
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> set[asyncio.Task]:
        """Requests still being processed."""
        return set(self._pending)

    async def handle_message(
        self,
        message: Union[str, bytes, dict[str, Any]]
    ) -> Optional[JSONRPCResponse]:
        """
        Handle one raw inbound message.

        Returns:
            The response to send, or None for notifications
        """
        if isinstance(message, (str, bytes)):
            try:
                message = json.loads(message)
            except ValueError as e:
                return JSONRPCResponse.failure(None, ErrorCode.PARSE_ERROR, "Parse error", str(e))

        if not isinstance(message, dict):
            return JSONRPCResponse.failure(
                None, ErrorCode.INVALID_REQUEST, "Invalid request: expected a JSON object"
            )

        try:
            request = JSONRPCRequest.model_validate(message)
        except ValidationError as e:
            request_id = message.get("id")
            if not isinstance(request_id, (int, str)):
                request_id = None
            return JSONRPCResponse.failure(
                request_id, ErrorCode.INVALID_REQUEST, "Invalid request", str(e)
            )

        if request.is_notification:
            self._handle_notification(request)
            return None

        if request.method == "initialize":
            client_info = request.params.get("clientInfo")
            self.client_info = client_info if isinstance(client_info, dict) else {}
            logger.info(
                "Client initializing",
                session_id=self.session_id,
                client=self.client_info.get("name")
            )

        return await self.server.handle_request(request)

    def _handle_notification(self, request: JSONRPCRequest) -> None:
        if request.method == "notifications/initialized":
            self.initialized = True
        logger.debug("Notification received", session_id=self.session_id, method=request.method)

    async def run(self, transport: Transport) -> None:
        """
        Serve the transport until it closes.

        Requests still in flight when the transport closes are left to
        finish; their responses are dropped.
        """
        logger.info("Session started", session_id=self.session_id, transport=transport.kind)
        try:
            async for message in transport.receive():
                task = asyncio.create_task(self._respond(message, transport))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
        finally:
            logger.info(
                "Session closed",
                session_id=self.session_id,
                transport=transport.kind,
                pending=len(self._pending)
            )

    async def _respond(
        self,
        message: Union[str, bytes, dict[str, Any]],
        transport: Transport
    ) -> None:
        # Runs in its own task, so the binding stays with this request
        bind_context(session_id=self.session_id, transport=transport.kind)
        try:
            response = await self.handle_message(message)
        except Exception as e:
            logger.error(
                "Message handling failed",
                session_id=self.session_id,
                error=str(e),
                exc_info=True
            )
            response = JSONRPCResponse.failure(
                _request_id(message), ErrorCode.INTERNAL_ERROR, "Internal error", str(e)
            )
        if response is None:
            return

        try:
            await transport.send(response.to_dict())
        except TransportError as e:
            logger.info(
                "Dropping response for closed transport",
                session_id=self.session_id,
                request_id=response.id,
                error=str(e)
            )


def _request_id(message: Any) -> Optional[Union[int, str]]:
    """Best-effort id of a raw message, for answering one that failed mid-handling."""
    if isinstance(message, (str, bytes)):
        try:
            message = json.loads(message)
        except ValueError:
            return None
    request_id = message.get("id") if isinstance(message, dict) else None
    return request_id if isinstance(request_id, (int, str)) else None


def create_mcp_server(settings: "Settings", airtable_client: "AirtableClient") -> MCPServer:
    """
    Build the MCP server with every domain registered.

    This is called once at startup by both the stdio and HTTP entry points.
    """
    from domains import load_all_domains

    router = ToolRouter(ToolRegistry())
    load_all_domains(router, airtable_client)

    return MCPServer(router, name=settings.server_name, version=settings.server_version)
