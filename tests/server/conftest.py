import asyncio
import time
from typing import Any, AsyncIterator

import pytest

from conduit_fs.config import ServerConfig
from conduit_fs.server.filesystem import FilesystemServer
from conduit_fs.transport.server import ClientMessage, ServerTransport


class MockServerTransport(ServerTransport):
    """In-memory transport: tests push client messages and read what was sent."""

    def __init__(self):
        self.sent_messages: list[tuple[str, dict[str, Any]]] = []
        self._incoming: asyncio.Queue[ClientMessage | None] = asyncio.Queue()
        self.closed = False

    def receive_message(
        self, payload: dict[str, Any], client_id: str = "client-1"
    ) -> None:
        """Simulate a message arriving from a client."""
        self._incoming.put_nowait(
            ClientMessage(client_id=client_id, payload=payload, timestamp=time.time())
        )

    def finish(self) -> None:
        """Simulate the client closing its end."""
        self._incoming.put_nowait(None)

    @property
    def is_open(self) -> bool:
        return not self.closed

    async def send(self, client_id: str, message: dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionError("Transport closed")
        self.sent_messages.append((client_id, message))

    async def client_messages(self) -> AsyncIterator[ClientMessage]:
        while True:
            message = await self._incoming.get()
            if message is None:
                return
            yield message

    async def close(self) -> None:
        self.closed = True

    def find(self, predicate) -> dict[str, Any] | None:
        for _, message in self.sent_messages:
            if predicate(message):
                return message
        return None

    async def wait_for(self, predicate, timeout: float = 5.0) -> dict[str, Any]:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            message = self.find(predicate)
            if message is not None:
                return message
            await asyncio.sleep(0.01)
        raise AssertionError("Expected message was never sent")

    async def response(self, request_id: int, timeout: float = 5.0) -> dict[str, Any]:
        return await self.wait_for(
            lambda m: m.get("id") == request_id and "method" not in m, timeout
        )


@pytest.fixture
def root(tmp_path):
    data = (tmp_path / "data").resolve()
    data.mkdir()
    return data


@pytest.fixture
def server(root):
    return FilesystemServer(ServerConfig(allowed_dirs=[root], watch=False))


@pytest.fixture
def transport():
    return MockServerTransport()
