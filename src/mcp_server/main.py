"""MCP Server - FastAPI Application.

Serves the Airtable tools over HTTP:
- an SSE stream per MCP client, with a message endpoint to post requests
- a plain REST facade over the same dispatch path
- health and identity endpoints
"""

import asyncio
import json
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.config import Settings, get_settings
from shared.logging import get_logger, install_loop_exception_logging, setup_logging
from shared.models import ErrorCode, JSONRPCRequest
from domains.airtable.client import AirtableClient
from mcp_server.protocol import MCPServer, create_mcp_server
from mcp_server.transports.base import TransportError
from mcp_server.transports.sse import SSEConnectionManager, SSETransport

logger = get_logger(__name__)


AVAILABLE_ENDPOINTS = [
    "GET /health",
    "GET /info",
    "GET /sse",
    "POST /messages?sessionId=<id>",
    "GET /api/tools",
    "POST /api/tools/:toolName",
    "POST /api/mcp",
]


# Request/Response Models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    service: str
    version: str


class MCPPassthroughRequest(BaseModel):
    """Arbitrary MCP method call for the generic endpoint."""
    method: str = Field(..., description="MCP method, e.g. tools/list")
    params: Optional[dict[str, Any]] = Field(default=None)


class EventStreamResponse(StreamingResponse):
    """Streams one SSE connection and closes it however the response ends."""

    def __init__(self, transport: SSETransport, **kwargs: Any) -> None:
        super().__init__(transport.events(), media_type="text/event-stream", **kwargs)
        self.transport = transport

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.transport.close()


# Global instances
_settings: Optional[Settings] = None
_airtable: Optional[AirtableClient] = None
_server: Optional[MCPServer] = None
_connections: Optional[SSEConnectionManager] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global _settings, _airtable, _server, _connections

    # Startup
    _settings = get_settings()
    setup_logging(_settings.log_level, json_output=_settings.environment == "production")
    install_loop_exception_logging(asyncio.get_running_loop())

    logger.info("Starting Airtable MCP Server")

    _airtable = AirtableClient(_settings.airtable)
    if not _airtable.is_configured:
        logger.warning("AIRTABLE_API_KEY is not set; Airtable tool calls will fail")

    _server = create_mcp_server(_settings, _airtable)
    _connections = SSEConnectionManager(
        _server,
        message_path=_settings.mcp_server.message_path,
        heartbeat_interval=_settings.mcp_server.heartbeat_interval,
    )

    logger.info(
        "Airtable MCP Server started",
        port=_settings.mcp_server.port,
        tool_count=len(_server.registry),
        airtable_api_key="set" if _airtable.is_configured else "missing",
    )

    yield

    # Shutdown
    logger.info("Shutting down Airtable MCP Server", open_streams=len(_connections))
    await _connections.close_all()
    await _airtable.close()


# Create FastAPI app
app = FastAPI(
    title="Airtable MCP Server",
    description="Airtable tools over the Model Context Protocol",
    version="0.3.1",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=".*",
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Cache-Control"],
)


def get_mcp_server() -> MCPServer:
    """Dependency returning the initialized MCP server."""
    if _server is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server not initialized"
        )
    return _server


def get_connections() -> SSEConnectionManager:
    """Dependency returning the SSE connection manager."""
    if _connections is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server not initialized"
        )
    return _connections


def _request_id() -> int:
    return int(time.time() * 1000)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Unmatched routes answer 404 with the list of known routes."""
    if exc.status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={
                "error": "Not Found",
                "message": f"Endpoint {request.method} {request.url.path} not found",
                "availableEndpoints": AVAILABLE_ENDPOINTS,
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """The MCP pass-through answers malformed bodies in JSON-RPC form."""
    if request.url.path != "/api/mcp":
        return await request_validation_exception_handler(request, exc)

    errors = jsonable_encoder(exc.errors())
    if any(error.get("type") == "json_invalid" for error in errors):
        code, message = ErrorCode.PARSE_ERROR, "Parse error"
    else:
        code, message = ErrorCode.INVALID_REQUEST, "Invalid request"

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "jsonrpc": "2.0",
            "id": None,
            "error": {"code": code, "message": message, "data": errors},
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Last-resort handler for anything a route did not catch."""
    logger.error("Unhandled error", path=request.url.path, error=str(exc), exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal Server Error", "message": str(exc)},
    )


@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check(server: MCPServer = Depends(get_mcp_server)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        service=server.info.name,
        version=server.info.version,
    )


@app.get("/info", tags=["System"])
async def server_info(server: MCPServer = Depends(get_mcp_server)):
    """Server identity and capabilities."""
    return server.get_server_info()


@app.get("/sse", tags=["MCP"])
async def sse_stream(
    request: Request,
    connections: SSEConnectionManager = Depends(get_connections)
):
    """
    Open an MCP session over Server-Sent Events.

    The stream announces the endpoint to post messages to, then carries
    responses and periodic pings until the client disconnects.
    """
    transport = connections.connect(is_disconnected=request.is_disconnected)

    return EventStreamResponse(
        transport,
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.post("/messages", tags=["MCP"], status_code=status.HTTP_202_ACCEPTED)
async def post_message(
    request: Request,
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    connections: SSEConnectionManager = Depends(get_connections)
):
    """Deliver one JSON-RPC message to an open SSE session."""
    transport = connections.get(session_id) if session_id else None
    if transport is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "Session not found", "sessionId": session_id},
        )

    body = await request.body()
    try:
        message = json.loads(body)
    except ValueError as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid JSON", "message": str(e)},
        )

    try:
        await transport.deliver(message)
    except TransportError as e:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "Session closed", "message": str(e)},
        )

    return Response(content="Accepted", status_code=status.HTTP_202_ACCEPTED)


@app.get("/api/tools", tags=["REST"])
async def rest_list_tools(server: MCPServer = Depends(get_mcp_server)):
    """List available tools."""
    try:
        response = await server.handle_request(
            JSONRPCRequest(id=_request_id(), method="tools/list")
        )
        return response.result
    except Exception as e:
        logger.error("Error listing tools", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to list tools", "message": str(e)},
        )


@app.post("/api/tools/{tool_name}", tags=["REST"])
async def rest_call_tool(
    tool_name: str,
    arguments: Optional[dict[str, Any]] = Body(default=None),
    server: MCPServer = Depends(get_mcp_server)
):
    """Call one tool; the request body is its arguments."""
    logger.info("Calling tool", tool=tool_name)

    try:
        response = await server.handle_request(
            JSONRPCRequest(
                id=_request_id(),
                method="tools/call",
                params={"name": tool_name, "arguments": arguments or {}},
            )
        )
    except Exception as e:
        logger.error("Error calling tool", tool=tool_name, error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Tool execution failed", "message": str(e), "tool": tool_name},
        )

    if response.error is not None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Tool execution failed",
                "details": response.error.model_dump(exclude_none=True),
            },
        )

    return response.result


@app.post("/api/mcp", tags=["REST"])
async def rest_mcp_request(
    body: MCPPassthroughRequest,
    server: MCPServer = Depends(get_mcp_server)
):
    """Pass an arbitrary MCP method call through to the server."""
    try:
        response = await server.handle_request(
            JSONRPCRequest(id=_request_id(), method=body.method, params=body.params or {})
        )
    except Exception as e:
        logger.error("MCP request error", method=body.method, error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "jsonrpc": "2.0",
                "id": None,
                "error": {
                    "code": ErrorCode.INTERNAL_ERROR,
                    "message": "Internal error",
                    "data": str(e),
                },
            },
        )

    if response.error is not None:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=response.to_dict())

    return response.to_dict()


def main():
    """Run the MCP Server over HTTP."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "mcp_server.main:app",
        host=settings.mcp_server.host,
        port=settings.mcp_server.port,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=settings.mcp_server.shutdown_timeout,
    )


if __name__ == "__main__":
    main()
