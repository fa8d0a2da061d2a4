"""Server-Sent Events transport.

Each GET on the streaming endpoint opens one SSETransport bound to its own
MCPSession. The client posts JSON-RPC messages to the advertised endpoint;
responses are pushed back on the stream as `message` events. A heartbeat
task per connection emits `ping` events to keep intermediaries from
timing the stream out.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from shared.logging import get_logger
from mcp_server.protocol import MCPServer, MCPSession
from mcp_server.transports.base import InboundMessage, Transport, TransportError

logger = get_logger(__name__)


DisconnectProbe = Callable[[], Awaitable[bool]]


def format_sse(data: Any, event: Optional[str] = None) -> str:
    """Format a payload as one Server-Sent Event."""
    payload = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    lines = [f"event: {event}"] if event else []
    lines.extend(f"data: {line}" for line in payload.splitlines() or [""])
    return "\n".join(lines) + "\n\n"


class SSETransport(Transport):
    """
    One streaming client connection.

    The connection owns its heartbeat task. Every exit path (client
    disconnect, failed heartbeat, server shutdown) goes through `close()`,
    which cancels the heartbeat and ends the session loop.
    """

    kind = "sse"

    def __init__(
        self,
        session_id: str,
        endpoint: str,
        heartbeat_interval: float = 30.0,
        is_disconnected: Optional[DisconnectProbe] = None,
        on_close: Optional[Callable[["SSETransport"], None]] = None
    ) -> None:
        self.session_id = session_id
        self.endpoint = endpoint
        self.heartbeat_interval = heartbeat_interval
        self.session_task: Optional[asyncio.Task] = None

        self._is_disconnected = is_disconnected
        self._on_close = on_close
        self._inbound: asyncio.Queue[Optional[InboundMessage]] = asyncio.Queue()
        self._outbound: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._streaming = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def heartbeat_task(self) -> Optional[asyncio.Task]:
        return self._heartbeat_task

    def start(self) -> None:
        """Start the heartbeat, which also closes a stream that is never opened."""
        if self._heartbeat_task is None and not self._closed:
            self._heartbeat_task = asyncio.create_task(self._heartbeat())

    async def deliver(self, message: InboundMessage) -> None:
        """
        Queue a message posted by the client for the session.

        Raises:
            TransportError: If the connection is closed
        """
        if self._closed:
            raise TransportError(f"Session {self.session_id} is closed")
        await self._inbound.put(message)

    async def receive(self) -> AsyncIterator[InboundMessage]:
        while True:
            message = await self._inbound.get()
            if message is None:
                return
            yield message

    async def send(self, message: dict[str, Any]) -> None:
        if self._closed:
            raise TransportError(f"Session {self.session_id} is closed")
        await self._outbound.put(format_sse(message, "message"))

    async def events(self) -> AsyncIterator[str]:
        """
        The event stream written to the client.

        Starts with the connection acknowledgement and the message
        endpoint, then relays responses and heartbeats until closed.
        """
        self._streaming = True
        self.start()

        try:
            yield format_sse({"type": "connection", "status": "connected"}, "connection")
            yield format_sse(self.endpoint, "endpoint")

            while True:
                event = await self._outbound.get()
                if event is None:
                    break
                yield event
        finally:
            await self.close()

    async def _heartbeat(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.heartbeat_interval)
            if self._closed:
                break

            if not self._streaming:
                logger.info("SSE stream never opened", session_id=self.session_id)
                await self.close()
                break

            if self._is_disconnected is not None and await self._is_disconnected():
                logger.info("SSE heartbeat found client gone", session_id=self.session_id)
                await self.close()
                break

            timestamp = datetime.now(timezone.utc).isoformat()
            await self._outbound.put(format_sse({"type": "ping", "timestamp": timestamp}, "ping"))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._heartbeat_task is not None and self._heartbeat_task is not asyncio.current_task():
            self._heartbeat_task.cancel()
            logger.debug("SSE heartbeat cancelled", session_id=self.session_id)

        self._inbound.put_nowait(None)
        self._outbound.put_nowait(None)

        if self._on_close is not None:
            self._on_close(self)

        logger.info("SSE connection closed", session_id=self.session_id)


class SSEConnectionManager:
    """
    Registry of live streaming connections, keyed by session id.

    Connections share nothing but the stateless MCPServer.
    """

    def __init__(
        self,
        server: MCPServer,
        message_path: str = "/messages",
        heartbeat_interval: float = 30.0
    ) -> None:
        self.server = server
        self.message_path = message_path
        self.heartbeat_interval = heartbeat_interval
        self._connections: dict[str, SSETransport] = {}

    def connect(self, is_disconnected: Optional[DisconnectProbe] = None) -> SSETransport:
        """Open a connection with its own session and start serving it."""
        session = MCPSession(self.server)
        transport = SSETransport(
            session_id=session.session_id,
            endpoint=f"{self.message_path}?sessionId={session.session_id}",
            heartbeat_interval=self.heartbeat_interval,
            is_disconnected=is_disconnected,
            on_close=self._forget,
        )
        self._connections[session.session_id] = transport
        transport.session_task = asyncio.create_task(session.run(transport))
        transport.start()

        logger.info("SSE client connected", session_id=session.session_id, active=len(self))
        return transport

    def get(self, session_id: str) -> Optional[SSETransport]:
        return self._connections.get(session_id)

    def _forget(self, transport: SSETransport) -> None:
        self._connections.pop(transport.session_id, None)
        logger.info("SSE client disconnected", session_id=transport.session_id, active=len(self))

    async def close_all(self) -> None:
        """Close every open connection (server shutdown)."""
        for transport in list(self._connections.values()):
            await transport.close()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._connections
