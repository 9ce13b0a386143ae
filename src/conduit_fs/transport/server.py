"""Server transport protocol: message passing between the server and its clients."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator


@dataclass
class ClientMessage:
    """Message from a client with explicit connection context."""

    client_id: str
    payload: dict[str, Any]
    timestamp: float
    metadata: dict[str, Any] | None = None


class ServerTransport(ABC):
    """Transport for a server talking to its clients.

    Focuses purely on message passing. Client lifecycle and protocol state
    belong to the session layer.
    """

    @abstractmethod
    async def send(self, client_id: str, message: dict[str, Any]) -> None:
        """Send a JSON-RPC message to a specific client.

        Raises:
            ValueError: If the message cannot be serialized.
            ConnectionError: If the client can no longer be reached.
        """
        ...

    @abstractmethod
    def client_messages(self) -> AsyncIterator[ClientMessage]:
        """Stream of messages from all clients with explicit client context.

        The iterator ends when the transport closes.
        """
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True if the transport can still receive and send messages."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the transport and release its streams."""
        ...
