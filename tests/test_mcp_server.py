"""Tests for MCP Server components."""

import asyncio
import io
import json

import pytest
from unittest.mock import AsyncMock, Mock

from shared.models import (
    MCP_PROTOCOL_VERSION,
    DomainConfig,
    ErrorCode,
    ExecutionType,
    JSONRPCRequest,
    ToolCall,
    ToolDefinition,
    ToolResult,
)
from domains.base import MockAdapter
from mcp_server.transports.base import TransportError


def echo_tool(**overrides):
    fields = {
        "name": "echo",
        "domain": "test",
        "description": "Echo the message back",
        "input_schema": {
            "type": "object",
            "properties": {"message": {"type": "string"}},
            "required": ["message"],
        },
    }
    fields.update(overrides)
    return ToolDefinition(**fields)


def make_mock_server(responses=None):
    from mcp_server.protocol import MCPServer
    from mcp_server.router import ToolRouter

    tool = echo_tool()
    adapter = MockAdapter(
        DomainConfig(name="test", description="Test domain"),
        [tool],
        responses if responses is not None else {"echo": {"said": "hi"}},
    )
    router = ToolRouter()
    router.registry.register(tool)
    router.register_adapter("test", adapter.execute)
    return MCPServer(router, name="test-server", version="9.9.9"), adapter


def request(method, request_id=1, params=None):
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return json.dumps(message)


class TestToolRegistry:
    """Tests for the ToolRegistry."""

    def test_register_tool(self):
        from mcp_server.registry import ToolRegistry

        registry = ToolRegistry()
        registry.register(echo_tool())

        assert registry.get("echo") is not None
        assert len(registry) == 1

    def test_register_duplicate_tool_raises(self):
        from mcp_server.registry import ToolRegistry

        registry = ToolRegistry()
        registry.register(echo_tool())

        with pytest.raises(ValueError, match="already registered"):
            registry.register(echo_tool())

    def test_list_tools_keeps_registration_order(self):
        from mcp_server.registry import ToolRegistry

        registry = ToolRegistry()
        registry.register_many([
            echo_tool(name="zeta"),
            echo_tool(name="alpha", domain="other"),
            echo_tool(name="mid"),
        ])

        assert [t["name"] for t in registry.get_tools_for_mcp()] == ["zeta", "alpha", "mid"]

    def test_validate_input(self):
        from mcp_server.registry import ToolRegistry

        registry = ToolRegistry()
        registry.register(echo_tool())

        assert registry.validate_input("echo", {"message": "hi"}) == (True, [])

        is_valid, errors = registry.validate_input("echo", {"message": 3})
        assert not is_valid
        assert errors[0].startswith("message:")

        is_valid, errors = registry.validate_input("missing", {})
        assert not is_valid

    def test_malformed_schema_rejected_at_registration(self):
        from jsonschema import SchemaError
        from mcp_server.registry import ToolRegistry

        registry = ToolRegistry()

        with pytest.raises(SchemaError):
            registry.register(echo_tool(input_schema={"type": "object", "required": "message"}))

        assert registry.get("echo") is None
        assert len(registry) == 0

    def test_catalog_schemas_compile(self):
        from mcp_server.registry import ToolRegistry
        from domains.airtable.tools import AIRTABLE_TOOLS

        registry = ToolRegistry()
        registry.register_many(list(AIRTABLE_TOOLS))

        assert len(registry) == 10
        assert {registry.get(t.name).domain for t in AIRTABLE_TOOLS} == {"airtable"}

    def test_tools_for_mcp(self):
        from mcp_server.registry import ToolRegistry

        registry = ToolRegistry()
        registry.register(echo_tool(execution_type=ExecutionType.WRITE))

        assert registry.get_tools_for_mcp() == [{
            "name": "echo",
            "description": "Echo the message back",
            "inputSchema": echo_tool().input_schema,
        }]


class TestToolRouter:
    """Tests for the tool router."""

    @pytest.mark.asyncio
    async def test_execute_unknown_tool(self):
        server, adapter = make_mock_server()

        result = await server.router.execute(ToolCall(tool_name="nope"))

        assert result.is_error
        assert result.first_text == "Error: Unknown tool: nope"
        assert adapter.calls == []

    @pytest.mark.asyncio
    async def test_execute_with_validation_error(self):
        server, adapter = make_mock_server()

        result = await server.router.execute(ToolCall(tool_name="echo", arguments={}))

        assert result.is_error
        assert result.first_text.startswith("Error: Validation failed:")
        assert adapter.calls == []

    @pytest.mark.asyncio
    async def test_execute_success(self):
        server, adapter = make_mock_server()

        result = await server.router.execute(
            ToolCall(tool_name="echo", arguments={"message": "hi"})
        )

        assert not result.is_error
        assert json.loads(result.first_text) == {"said": "hi"}
        assert adapter.calls == [("echo", {"message": "hi"})]

    @pytest.mark.asyncio
    async def test_adapter_exception_becomes_error_result(self):
        server, _ = make_mock_server({"echo": RuntimeError("backend exploded")})

        result = await server.router.execute(
            ToolCall(tool_name="echo", arguments={"message": "hi"})
        )

        assert result.is_error
        assert result.first_text == "Error: backend exploded"

    @pytest.mark.asyncio
    async def test_missing_adapter(self):
        from mcp_server.router import DispatchError, ToolRouter

        router = ToolRouter()
        router.registry.register(echo_tool())

        with pytest.raises(DispatchError, match="No adapter"):
            router.resolve("echo")

        result = await router.execute(ToolCall(tool_name="echo", arguments={"message": "x"}))
        assert result.is_error


class TestJSONRPCModels:
    """Tests for the JSON-RPC envelope."""

    def test_response_has_exactly_one_member(self):
        from shared.models import JSONRPCResponse

        ok = JSONRPCResponse.success(1, {"tools": []}).to_dict()
        assert ok == {"jsonrpc": "2.0", "id": 1, "result": {"tools": []}}

        failed = JSONRPCResponse.failure(None, ErrorCode.PARSE_ERROR, "Parse error").to_dict()
        assert failed == {
            "jsonrpc": "2.0",
            "id": None,
            "error": {"code": -32700, "message": "Parse error"},
        }

    def test_null_params_become_empty(self):
        parsed = JSONRPCRequest.model_validate(
            {"jsonrpc": "2.0", "id": "a", "method": "ping", "params": None}
        )
        assert parsed.params == {}
        assert not parsed.is_notification

    def test_tool_result_wire_form(self):
        assert ToolResult.error("Error: x").to_mcp() == {
            "content": [{"type": "text", "text": "Error: x"}],
            "isError": True,
        }


class TestMCPProtocol:
    """Tests for message handling in MCPServer and MCPSession."""

    def setup_method(self):
        from mcp_server.protocol import MCPSession

        self.server, self.adapter = make_mock_server()
        self.session = MCPSession(self.server, session_id="s1")

    @pytest.mark.asyncio
    async def test_initialize(self):
        response = await self.session.handle_message(request(
            "initialize",
            params={
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": "inspector", "version": "1.0"},
            },
        ))

        result = response.to_dict()["result"]
        assert result["protocolVersion"] == "2024-11-05"
        assert result["capabilities"] == {"tools": {}}
        assert result["serverInfo"] == {"name": "test-server", "version": "9.9.9"}
        assert self.session.client_info["name"] == "inspector"

    @pytest.mark.asyncio
    async def test_initialized_notification(self):
        response = await self.session.handle_message(
            {"jsonrpc": "2.0", "method": "notifications/initialized"}
        )

        assert response is None
        assert self.session.initialized

    @pytest.mark.asyncio
    async def test_ping(self):
        response = await self.session.handle_message(request("ping", request_id="p-1"))
        assert response.to_dict() == {"jsonrpc": "2.0", "id": "p-1", "result": {}}

    @pytest.mark.asyncio
    async def test_tools_list(self):
        response = await self.session.handle_message(request("tools/list"))

        tools = response.to_dict()["result"]["tools"]
        assert [t["name"] for t in tools] == ["echo"]
        assert "inputSchema" in tools[0]

    @pytest.mark.asyncio
    async def test_tools_call(self):
        response = await self.session.handle_message(request(
            "tools/call", params={"name": "echo", "arguments": {"message": "hi"}}
        ))

        result = response.to_dict()["result"]
        assert result["isError"] is False
        assert json.loads(result["content"][0]["text"]) == {"said": "hi"}

    @pytest.mark.asyncio
    async def test_tools_call_unknown_tool_is_a_result(self):
        response = await self.session.handle_message(request(
            "tools/call", params={"name": "nope", "arguments": {}}
        ))

        payload = response.to_dict()
        assert "error" not in payload
        assert payload["result"]["isError"] is True
        assert payload["result"]["content"][0]["text"] == "Error: Unknown tool: nope"

    @pytest.mark.asyncio
    async def test_tools_call_without_name(self):
        response = await self.session.handle_message(request("tools/call", params={}))
        assert response.error.code == ErrorCode.INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_tools_call_bad_arguments(self):
        response = await self.session.handle_message(request(
            "tools/call", params={"name": "echo", "arguments": ["hi"]}
        ))
        assert response.error.code == ErrorCode.INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_unknown_method(self):
        response = await self.session.handle_message(request("resources/list", request_id=7))

        assert response.id == 7
        assert response.error.code == ErrorCode.METHOD_NOT_FOUND
        assert "resources/list" in response.error.message

    @pytest.mark.asyncio
    async def test_parse_error(self):
        response = await self.session.handle_message("{not json")

        assert response.id is None
        assert response.error.code == ErrorCode.PARSE_ERROR

    @pytest.mark.asyncio
    async def test_non_object_message(self):
        response = await self.session.handle_message("[1, 2]")
        assert response.error.code == ErrorCode.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_invalid_request_keeps_id(self):
        response = await self.session.handle_message({"jsonrpc": "2.0", "id": 4, "method": 12})

        assert response.id == 4
        assert response.error.code == ErrorCode.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_handler_failure_is_internal_error(self):
        self.server._handlers["ping"] = AsyncMock(side_effect=KeyError("boom"))

        response = await self.session.handle_message(request("ping"))

        assert response.error.code == ErrorCode.INTERNAL_ERROR
        assert "boom" in response.error.data

    @pytest.mark.asyncio
    async def test_initialize_with_non_object_client_info(self):
        response = await self.session.handle_message(request(
            "initialize", params={"protocolVersion": MCP_PROTOCOL_VERSION, "clientInfo": "cli"}
        ))

        assert response.to_dict()["result"]["protocolVersion"] == "2024-11-05"
        assert self.session.client_info == {}

    @pytest.mark.asyncio
    async def test_escaping_failure_still_answers(self):
        transport = Mock(kind="stdio")
        transport.send = AsyncMock()
        self.session.handle_message = AsyncMock(side_effect=AttributeError("no get"))

        await self.session._respond(request("initialize", 5), transport)

        transport.send.assert_awaited_once()
        payload = transport.send.await_args.args[0]
        assert payload["id"] == 5
        assert payload["error"]["code"] == ErrorCode.INTERNAL_ERROR
        assert payload["error"]["data"] == "no get"

    @pytest.mark.asyncio
    async def test_response_for_closed_transport_is_dropped(self):
        from mcp_server.transports.sse import SSETransport

        transport = SSETransport("s1", "/messages?sessionId=s1")
        await transport.close()

        await self.session._respond(request("ping"), transport)


class TestStdioTransport:
    """Tests for newline-delimited JSON over pipes."""

    @pytest.mark.asyncio
    async def test_session_over_pipes(self):
        from mcp_server.protocol import MCPSession
        from mcp_server.transports.stdio import StdioTransport

        server, _ = make_mock_server()
        reader = asyncio.StreamReader()
        reader.feed_data(
            (request("initialize", 1, {"clientInfo": {"name": "cli"}}) + "\n").encode()
            + b'{"jsonrpc": "2.0", "method": "notifications/initialized"}\n'
            + b"\n"
            + (request("tools/list", 2) + "\n").encode()
        )
        reader.feed_eof()
        output = io.StringIO()

        transport = StdioTransport(reader=reader, output=output)
        session = MCPSession(server)
        await session.run(transport)
        await asyncio.gather(*session.pending)

        responses = sorted(
            (json.loads(line) for line in output.getvalue().splitlines()),
            key=lambda r: r["id"],
        )
        assert [r["id"] for r in responses] == [1, 2]
        assert responses[0]["result"]["serverInfo"]["name"] == "test-server"
        assert responses[1]["result"]["tools"][0]["name"] == "echo"
        assert session.initialized

    @pytest.mark.asyncio
    async def test_eof_leaves_output_open(self):
        from mcp_server.transports.stdio import StdioTransport

        reader = asyncio.StreamReader()
        reader.feed_eof()
        output = io.StringIO()
        transport = StdioTransport(reader=reader, output=output)

        assert [m async for m in transport.receive()] == []

        await transport.send({"jsonrpc": "2.0", "id": 1, "result": {}})
        assert json.loads(output.getvalue()) == {"jsonrpc": "2.0", "id": 1, "result": {}}

    @pytest.mark.asyncio
    async def test_send_after_close(self):
        from mcp_server.transports.stdio import StdioTransport

        transport = StdioTransport(reader=asyncio.StreamReader(), output=io.StringIO())
        await transport.close()

        with pytest.raises(TransportError):
            await transport.send({"jsonrpc": "2.0", "id": 1, "result": {}})

    @pytest.mark.asyncio
    async def test_broken_output(self):
        from mcp_server.transports.stdio import StdioTransport

        output = io.StringIO()
        output.close()
        transport = StdioTransport(reader=asyncio.StreamReader(), output=output)

        with pytest.raises(TransportError):
            await transport.send({"jsonrpc": "2.0", "id": 1, "result": {}})
        assert transport.closed

    @pytest.mark.asyncio
    async def test_undecodable_line_gets_parse_error(self):
        from mcp_server.protocol import MCPSession
        from mcp_server.transports.stdio import StdioTransport

        server, _ = make_mock_server()
        reader = asyncio.StreamReader()
        reader.feed_data(b"\xff\xfe garbage\n" + (request("ping", 7) + "\n").encode())
        reader.feed_eof()
        output = io.StringIO()

        session = MCPSession(server)
        await session.run(StdioTransport(reader=reader, output=output))
        await asyncio.gather(*session.pending)

        responses = {r["id"]: r for r in map(json.loads, output.getvalue().splitlines())}
        assert responses[None]["error"]["code"] == ErrorCode.PARSE_ERROR
        assert responses[7] == {"jsonrpc": "2.0", "id": 7, "result": {}}

    @pytest.mark.asyncio
    async def test_oversized_line_skipped(self):
        from mcp_server.protocol import MCPSession
        from mcp_server.transports.stdio import StdioTransport

        server, _ = make_mock_server()
        reader = asyncio.StreamReader(limit=64)
        reader.feed_data(b"x" * 200 + b"\n" + (request("ping", 8) + "\n").encode())
        reader.feed_eof()
        output = io.StringIO()

        session = MCPSession(server)
        await session.run(StdioTransport(reader=reader, output=output))
        await asyncio.gather(*session.pending)

        responses = {r["id"]: r for r in map(json.loads, output.getvalue().splitlines())}
        assert responses[None]["error"]["code"] == ErrorCode.PARSE_ERROR
        assert responses[8]["result"] == {}

    @pytest.mark.asyncio
    async def test_send_drains_stream_writer(self):
        from mcp_server.transports.stdio import StdioTransport

        writer = Mock()
        writer.drain = AsyncMock()
        transport = StdioTransport(reader=asyncio.StreamReader(), writer=writer)

        await transport.send({"jsonrpc": "2.0", "id": 1, "result": {}})

        writer.write.assert_called_once_with(b'{"jsonrpc": "2.0", "id": 1, "result": {}}\n')
        writer.drain.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stream_writer_failure(self):
        from mcp_server.transports.stdio import StdioTransport

        writer = Mock()
        writer.drain = AsyncMock(side_effect=ConnectionResetError("pipe closed"))
        transport = StdioTransport(reader=asyncio.StreamReader(), writer=writer)

        with pytest.raises(TransportError, match="pipe closed"):
            await transport.send({"jsonrpc": "2.0", "id": 1, "result": {}})
        assert transport.closed

    @pytest.mark.asyncio
    async def test_serve_stdio_returns_on_eof(self):
        from mcp_server.transports.stdio import serve_stdio

        server, _ = make_mock_server()
        reader = asyncio.StreamReader()
        reader.feed_data(b'{"jsonrpc": "2.0", "method": "notifications/initialized"}\n')
        reader.feed_eof()
        output = io.StringIO()

        await asyncio.wait_for(serve_stdio(server, reader=reader, output=output), timeout=1)

        assert output.getvalue() == ""


async def next_event(events, timeout=1.0):
    return await asyncio.wait_for(events.__anext__(), timeout)


def event_payload(event):
    lines = event.strip().splitlines()
    name = lines[0].removeprefix("event: ")
    data = "\n".join(line.removeprefix("data: ") for line in lines[1:])
    return name, data


class TestSSETransport:
    """Tests for streaming connections and their heartbeats."""

    def test_format_sse(self):
        from mcp_server.transports.sse import format_sse

        assert format_sse({"a": 1}, "message") == 'event: message\ndata: {"a": 1}\n\n'
        assert format_sse("/messages?sessionId=x", "endpoint") == (
            "event: endpoint\ndata: /messages?sessionId=x\n\n"
        )
        assert format_sse("one\ntwo") == "data: one\ndata: two\n\n"

    @pytest.mark.asyncio
    async def test_stream_preamble_and_round_trip(self):
        from mcp_server.transports.sse import SSEConnectionManager

        server, _ = make_mock_server()
        manager = SSEConnectionManager(server, heartbeat_interval=30)
        transport = manager.connect()
        events = transport.events()

        name, data = event_payload(await next_event(events))
        assert name == "connection"
        assert json.loads(data) == {"type": "connection", "status": "connected"}

        name, data = event_payload(await next_event(events))
        assert name == "endpoint"
        assert data == f"/messages?sessionId={transport.session_id}"

        await transport.deliver({"jsonrpc": "2.0", "id": 1, "method": "ping"})
        name, data = event_payload(await next_event(events))
        assert name == "message"
        assert json.loads(data) == {"jsonrpc": "2.0", "id": 1, "result": {}}

        await events.aclose()
        assert transport.closed
        assert transport.session_id not in manager

    @pytest.mark.asyncio
    async def test_heartbeat_pings(self):
        from mcp_server.transports.sse import SSEConnectionManager

        server, _ = make_mock_server()
        manager = SSEConnectionManager(server, heartbeat_interval=0.01)
        transport = manager.connect()
        events = transport.events()
        await next_event(events)
        await next_event(events)

        name, data = event_payload(await next_event(events))
        assert name == "ping"
        assert json.loads(data)["type"] == "ping"
        assert "timestamp" in json.loads(data)

        await manager.close_all()
        await events.aclose()

    @pytest.mark.asyncio
    async def test_closed_connection_stops_heartbeat_others_continue(self):
        from mcp_server.transports.sse import SSEConnectionManager

        server, _ = make_mock_server()
        manager = SSEConnectionManager(server, heartbeat_interval=0.01)

        first = manager.connect()
        first_events = first.events()
        await next_event(first_events)
        second = manager.connect()
        second_events = second.events()
        await next_event(second_events)
        await next_event(first_events)
        await next_event(second_events)

        await first.close()
        await asyncio.gather(first.heartbeat_task, return_exceptions=True)

        assert first.heartbeat_task.cancelled()
        assert first.session_id not in manager
        assert second.session_id in manager

        with pytest.raises(TransportError):
            await first.deliver({"jsonrpc": "2.0", "id": 1, "method": "ping"})

        pings = 0
        while pings < 2:
            name, _ = event_payload(await next_event(second_events))
            if name == "ping":
                pings += 1
        assert not second.heartbeat_task.done()

        await manager.close_all()
        assert len(manager) == 0
        await asyncio.gather(second.heartbeat_task, return_exceptions=True)
        assert second.heartbeat_task.done()

        await first_events.aclose()
        await second_events.aclose()

    @pytest.mark.asyncio
    async def test_disconnect_probe_closes_connection(self):
        from mcp_server.transports.sse import SSEConnectionManager

        server, _ = make_mock_server()
        manager = SSEConnectionManager(server, heartbeat_interval=0.01)
        transport = manager.connect(is_disconnected=AsyncMock(return_value=True))

        received = [event async for event in transport.events()]

        assert [event_payload(e)[0] for e in received] == ["connection", "endpoint"]
        assert transport.closed
        assert transport.session_id not in manager
        await asyncio.wait_for(transport.session_task, timeout=1)

    @pytest.mark.asyncio
    async def test_unopened_stream_is_closed(self):
        from mcp_server.transports.sse import SSEConnectionManager

        server, _ = make_mock_server()
        manager = SSEConnectionManager(server, heartbeat_interval=0.01)
        transport = manager.connect()

        await asyncio.wait_for(transport.heartbeat_task, timeout=1)

        assert transport.closed
        assert transport.session_id not in manager
        await asyncio.wait_for(transport.session_task, timeout=1)

    @pytest.mark.asyncio
    async def test_in_flight_result_dropped_after_close(self):
        from mcp_server.transports.sse import SSEConnectionManager

        server, _ = make_mock_server()
        release = asyncio.Event()

        async def slow_ping(params):
            await release.wait()
            return {}

        server._handlers["ping"] = slow_ping
        manager = SSEConnectionManager(server, heartbeat_interval=30)
        transport = manager.connect()

        await transport.deliver({"jsonrpc": "2.0", "id": 1, "method": "ping"})
        await asyncio.sleep(0.01)
        await transport.close()
        await asyncio.wait_for(transport.session_task, timeout=1)

        release.set()
        await asyncio.sleep(0.01)

        assert transport.closed
