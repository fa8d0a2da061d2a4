"""Transport interface shared by the stdio and SSE channels."""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Union


InboundMessage = Union[str, bytes, dict[str, Any]]


class TransportError(Exception):
    """The channel can no longer carry messages."""
    pass


class Transport(ABC):
    """
    A bidirectional message channel for one MCP session.

    Implementations yield raw inbound messages from `receive()` until the
    channel closes, and raise TransportError from `send()` once it has.
    """

    kind: str = "unknown"

    @abstractmethod
    def receive(self) -> AsyncIterator[InboundMessage]:
        """Iterate inbound messages until the channel closes."""
        pass

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """
        Emit one outbound JSON-RPC message.

        Raises:
            TransportError: If the channel is closed
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        pass

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass
