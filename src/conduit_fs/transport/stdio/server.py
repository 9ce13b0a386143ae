import asyncio
import logging
import sys
import time
from typing import Any, AsyncIterator, TextIO

from conduit_fs.transport.server import ClientMessage, ServerTransport
from conduit_fs.transport.stdio.shared import parse_json_message, serialize_message

logger = logging.getLogger(__name__)


class StdioServerTransport(ServerTransport):
    """Stdio server transport for 1:1 client-server communication.

    Reads newline-delimited JSON-RPC messages from stdin and writes responses
    to stdout. The client manages our process lifecycle by launching us as a
    subprocess; end of input closes the transport.

    Args:
        reader: Pre-built stream to read from instead of stdin.
        stdout: Text stream to write to instead of sys.stdout.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        self._client_id = "stdio-client"
        self._stdin_reader = reader
        self._stdout = stdout if stdout is not None else sys.stdout
        self._open = True

    async def _setup_stdin_reader(self) -> asyncio.StreamReader:
        """Set up async stdin reader using protocol."""
        if self._stdin_reader is not None:
            return self._stdin_reader

        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await asyncio.get_running_loop().connect_read_pipe(lambda: protocol, sys.stdin)
        self._stdin_reader = reader
        return reader

    @property
    def is_open(self) -> bool:
        return self._open

    async def send(self, client_id: str, message: dict[str, Any]) -> None:
        """Send message to the client via stdout.

        Args:
            client_id: Ignored for stdio (always 1:1 relationship)
            message: JSON-RPC message to send

        Raises:
            ValueError: If message is invalid
            ConnectionError: If stdout is closed or write fails
        """
        if not self._open:
            raise ConnectionError("Cannot send: transport is closed")

        json_str = serialize_message(message)
        try:
            self._stdout.write(json_str + "\n")
            self._stdout.flush()
        except (OSError, ValueError) as e:
            raise ConnectionError(f"Failed to send message: {e}") from e

    def client_messages(self) -> AsyncIterator[ClientMessage]:
        """Stream of messages from the client with explicit client context.

        Yields:
            ClientMessage: Message with client ID and metadata
        """
        return self._client_message_iterator()

    async def _client_message_iterator(self) -> AsyncIterator[ClientMessage]:
        """Async iterator implementation for client messages."""
        reader = await self._setup_stdin_reader()

        while self._open:
            try:
                line_bytes = await reader.readline()
            except (OSError, ValueError) as e:
                raise ConnectionError(f"Failed to read from stdin: {e}") from e

            if not line_bytes:
                logger.info("stdin closed, shutting down transport")
                self._open = False
                return

            line = line_bytes.decode("utf-8", errors="replace")
            message = parse_json_message(line)
            if message is None:
                if line.strip():
                    logger.warning(f"Invalid JSON received: {line.strip()}")
                continue

            yield ClientMessage(
                client_id=self._client_id,
                payload=message,
                timestamp=time.time(),
            )

    async def close(self) -> None:
        """Close the transport. stdout stays open for the process to exit cleanly."""
        self._open = False
        try:
            self._stdout.flush()
        except (OSError, ValueError) as e:
            logger.debug(f"Failed to flush stdout on close: {e}")
