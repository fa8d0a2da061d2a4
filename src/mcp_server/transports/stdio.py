"""Stdio transport: one MCP session over the process's stdin/stdout.

Messages are newline-delimited JSON. Stdout carries protocol frames only;
logging must go to stderr.
"""

import asyncio
import json
import signal
import sys
from typing import Any, AsyncIterator, Optional, TextIO

from shared.config import Settings, get_settings
from shared.logging import get_logger, install_loop_exception_logging, setup_logging
from domains.airtable.client import AirtableClient, ConfigurationError
from mcp_server.protocol import MCPServer, MCPSession, create_mcp_server
from mcp_server.transports.base import Transport, TransportError

logger = get_logger(__name__)

# Generous line limit; tool arguments may carry large field payloads
STREAM_LIMIT = 16 * 1024 * 1024

# Stands in for a line dropped for exceeding STREAM_LIMIT; answered as a parse error
DISCARDED_FRAME = b""


class StdioTransport(Transport):
    """
    Line-delimited JSON over a pair of pipes.

    End of input stops `receive()` but leaves output open until `close()`,
    so responses already being computed can still be written.

    Frames are handed to the session undecoded: a line that is not valid
    UTF-8 or not valid JSON gets a parse error response, and reading
    continues with the next line.

    Args:
        reader: Inbound stream. Connected to stdin by `start()` if omitted.
        writer: Outbound stream. Connected to stdout by `start()` if omitted.
        output: Text stream written to instead of a pipe, for tests.
    """

    kind = "stdio"

    def __init__(
        self,
        reader: Optional[asyncio.StreamReader] = None,
        writer: Optional[asyncio.StreamWriter] = None,
        output: Optional[TextIO] = None
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._output = output
        self._owns_writer = False
        self._closed = False

    async def start(self) -> None:
        """Attach to the process stdin and stdout where no stream was given."""
        loop = asyncio.get_running_loop()

        if self._reader is None:
            reader = asyncio.StreamReader(limit=STREAM_LIMIT)
            await loop.connect_read_pipe(
                lambda: asyncio.StreamReaderProtocol(reader), sys.stdin
            )
            self._reader = reader

        if self._writer is None and self._output is None:
            transport, protocol = await loop.connect_write_pipe(
                lambda: asyncio.StreamReaderProtocol(asyncio.StreamReader()), sys.stdout
            )
            self._writer = asyncio.StreamWriter(transport, protocol, None, loop)
            self._owns_writer = True

    @property
    def closed(self) -> bool:
        return self._closed

    async def receive(self) -> AsyncIterator[bytes]:
        if self._reader is None:
            raise TransportError("Stdio transport not started")

        while not self._closed:
            try:
                line = await self._reader.readline()
            except ValueError as e:
                # The reader has already skipped past the oversized line
                logger.warning("Discarding oversized stdin line", error=str(e))
                yield DISCARDED_FRAME
                continue

            if not line:
                logger.info("Stdin closed")
                break

            frame = line.strip()
            if frame:
                yield frame

    async def send(self, message: dict[str, Any]) -> None:
        if self._closed:
            raise TransportError("Stdio transport is closed")

        data = json.dumps(message, ensure_ascii=False) + "\n"
        try:
            if self._writer is not None:
                self._writer.write(data.encode("utf-8"))
                await self._writer.drain()
            else:
                self._output.write(data)
                self._output.flush()
        except (OSError, ValueError, RuntimeError) as e:
            self._closed = True
            raise TransportError(f"Failed to write to stdout: {e}") from e

    async def close(self) -> None:
        self._closed = True
        if self._owns_writer and self._writer is not None:
            self._writer.close()


async def serve_stdio(
    server: MCPServer,
    reader: Optional[asyncio.StreamReader] = None,
    writer: Optional[asyncio.StreamWriter] = None,
    output: Optional[TextIO] = None
) -> None:
    """
    Serve a single MCP session over stdio until stdin closes.

    Requests still running at end of input are cancelled along with the
    process; their responses are never written.
    """
    transport = StdioTransport(reader=reader, writer=writer, output=output)
    await transport.start()

    session = MCPSession(server)
    try:
        await session.run(transport)
    finally:
        await transport.close()


def run_stdio(settings: Optional[Settings] = None) -> None:
    """Entry point for pipe mode: configure, build the server and serve stdin."""
    settings = settings or get_settings()

    # Stdout belongs to the protocol
    setup_logging(settings.log_level, stream=sys.stderr)

    client = AirtableClient(settings.airtable)
    try:
        client.ensure_configured()
    except ConfigurationError as e:
        logger.error("Cannot start stdio server", error=str(e))
        sys.exit(1)

    server = create_mcp_server(settings, client)

    async def _main() -> None:
        loop = asyncio.get_running_loop()
        install_loop_exception_logging(loop)

        main_task = asyncio.current_task()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, main_task.cancel)
            except NotImplementedError:
                # Windows event loops do not support signal handlers
                pass

        logger.info(
            "Airtable MCP Server running on stdio",
            tool_count=len(server.registry),
        )
        try:
            await serve_stdio(server)
        finally:
            await client.close()

    try:
        asyncio.run(_main())
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Shutting down Airtable MCP Server")
