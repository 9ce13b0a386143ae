"""JSON-RPC server session for the filesystem server.

Routes client requests to the tool and resource managers, runs each request
as its own task, and pushes resource change notifications coming from the
index's watch thread back onto the event loop.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from conduit_fs.filesystem.errors import FilesystemError, IOFailure
from conduit_fs.protocol.base import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    Error,
    Notification,
    Request,
    Result,
)
from conduit_fs.protocol.common import EmptyResult, PingRequest
from conduit_fs.protocol.initialization import (
    InitializedNotification,
    InitializeRequest,
    InitializeResult,
)
from conduit_fs.protocol.jsonrpc import (
    JSONRPCError,
    JSONRPCNotification,
    JSONRPCResponse,
    RequestId,
    is_notification,
    is_request,
    is_response,
)
from conduit_fs.protocol.resources import (
    ListResourcesRequest,
    ReadResourceRequest,
    ResourceListChangedNotification,
    ResourceUpdatedNotification,
    SubscribeRequest,
    UnsubscribeRequest,
)
from conduit_fs.protocol.tools import CallToolRequest, ListToolsRequest
from conduit_fs.server.filesystem import FilesystemServer
from conduit_fs.transport.server import ClientMessage, ServerTransport

logger = logging.getLogger(__name__)

RequestHandler = Callable[[str, Any], Awaitable[Result | Error]]
NotificationHandler = Callable[[str, Any], Awaitable[None]]


class ServerSession:
    """Serves a FilesystemServer over a ServerTransport.

    Protocol errors use JSON-RPC codes: unknown methods and unknown tools get
    METHOD_NOT_FOUND, malformed params and rejected resource URIs get
    INVALID_PARAMS, and anything else a handler raises becomes INTERNAL_ERROR.
    Tool failures are not protocol errors; they arrive as results with
    `isError` set.
    """

    def __init__(self, transport: ServerTransport, server: FilesystemServer):
        self.transport = transport
        self.server = server

        self._request_handlers: dict[str, tuple[type[Request], RequestHandler]] = {}
        self._notification_handlers: dict[
            str, tuple[type[Notification], NotificationHandler]
        ] = {}

        self._clients: set[str] = set()
        self._initialized_clients: set[str] = set()
        self._in_flight: dict[tuple[str, RequestId], asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[None]] = set()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._listing: set[str] = set()

        self._register_handlers()

    def _register_handlers(self) -> None:
        tools = self.server.tools
        resources = self.server.resources
        self._request_handlers = {
            "initialize": (InitializeRequest, self._handle_initialize),
            "ping": (PingRequest, self._handle_ping),
            "tools/list": (ListToolsRequest, tools.handle_list),
            "tools/call": (CallToolRequest, tools.handle_call),
            "resources/list": (ListResourcesRequest, resources.handle_list_resources),
            "resources/read": (ReadResourceRequest, resources.handle_read),
            "resources/subscribe": (SubscribeRequest, resources.handle_subscribe),
            "resources/unsubscribe": (
                UnsubscribeRequest,
                resources.handle_unsubscribe,
            ),
        }
        self._notification_handlers = {
            "notifications/initialized": (
                InitializedNotification,
                self._handle_initialized,
            ),
        }

    def is_client_initialized(self, client_id: str) -> bool:
        return client_id in self._initialized_clients

    # ================================
    # Lifecycle
    # ================================

    async def run(self) -> None:
        """Serve until the transport stops delivering messages.

        Requests still in flight when input ends are allowed to finish so
        their responses go out before the server closes.
        """
        self._loop = asyncio.get_running_loop()
        await self.server.start()
        self._listing = self._current_listing()
        self.server.index.subscribe(self._on_index_change)

        try:
            await self._message_loop()
            await self._drain()
        finally:
            self.server.index.unsubscribe(self._on_index_change)
            for task in list(self._in_flight.values()):
                task.cancel()
            for client_id in self._clients:
                self.server.resources.cleanup_client(client_id)
            await self.server.close()
            await self.transport.close()

    async def _message_loop(self) -> None:
        """Hand each message to its handler. Bad messages never stop the loop."""
        try:
            async for client_message in self.transport.client_messages():
                try:
                    await self._handle_client_message(client_message)
                except Exception as e:
                    logger.error(
                        f"Error handling message from {client_message.client_id}: {e}",
                        exc_info=True,
                    )
        except ConnectionError as e:
            logger.error(f"Transport error: {e}")

    async def _drain(self) -> None:
        while self._in_flight or self._background:
            pending = [*self._in_flight.values(), *self._background]
            await asyncio.gather(*pending, return_exceptions=True)

    # ================================
    # Routing
    # ================================

    async def _handle_client_message(self, client_message: ClientMessage) -> None:
        payload = client_message.payload
        client_id = client_message.client_id
        self._clients.add(client_id)

        if is_request(payload):
            await self._handle_request(client_id, payload)
        elif is_notification(payload):
            await self._handle_notification(client_id, payload)
        elif is_response(payload):
            logger.debug(f"Ignoring response from {client_id}: {payload.get('id')}")
        else:
            logger.warning(f"Invalid message from {client_id}: {payload}")
            if "id" in payload:
                error = Error(code=INVALID_REQUEST, message="Invalid request")
                await self._send_error(client_id, error, payload["id"])

    async def _handle_request(self, client_id: str, payload: dict[str, Any]) -> None:
        """Parse the request and run its handler as a background task."""
        method = payload["method"]
        request_id = payload["id"]

        route = self._request_handlers.get(method)
        if route is None:
            error = Error(code=METHOD_NOT_FOUND, message=f"Unknown method: {method}")
            await self._send_error(client_id, error, request_id)
            return

        request_type, handler = route
        try:
            request = request_type.from_protocol(payload)
        except ValidationError as e:
            error = Error(
                code=INVALID_PARAMS,
                message=f"Invalid params for {method}",
                data=e.errors(include_url=False, include_context=False),
            )
            await self._send_error(client_id, error, request_id)
            return

        key = (client_id, request_id)
        task = asyncio.create_task(
            self._execute_request_handler(handler, client_id, request, request_id),
            name=f"handle_{method}_{client_id}_{request_id}",
        )
        self._in_flight[key] = task
        task.add_done_callback(lambda t: self._in_flight.pop(key, None))

    async def _execute_request_handler(
        self,
        handler: RequestHandler,
        client_id: str,
        request: Request,
        request_id: RequestId,
    ) -> None:
        try:
            result_or_error = await handler(client_id, request)
        except KeyError as e:
            result_or_error = Error(code=METHOD_NOT_FOUND, message=_key_message(e))
        except IOFailure as e:
            result_or_error = Error(code=INTERNAL_ERROR, message=e.message)
        except FilesystemError as e:
            result_or_error = Error(code=INVALID_PARAMS, message=e.message)
        except Exception as e:
            logger.error(f"Handler for {request.method} failed: {e}", exc_info=True)
            result_or_error = Error(code=INTERNAL_ERROR, message=f"Handler error: {e}")

        if isinstance(result_or_error, Error):
            response = JSONRPCError.from_error(result_or_error, request_id).to_wire()
        else:
            response = JSONRPCResponse.from_result(
                result_or_error, request_id
            ).to_wire()
        await self._send(client_id, response)

    async def _handle_notification(
        self, client_id: str, payload: dict[str, Any]
    ) -> None:
        method = payload["method"]
        route = self._notification_handlers.get(method)
        if route is None:
            logger.debug(f"Unknown notification '{method}' from {client_id}")
            return

        notification_type, handler = route
        try:
            notification = notification_type.from_protocol(payload)
        except ValidationError as e:
            logger.warning(f"Invalid notification '{method}' from {client_id}: {e}")
            return
        await handler(client_id, notification)

    async def _send(self, client_id: str, message: dict[str, Any]) -> None:
        try:
            await self.transport.send(client_id, message)
        except (ConnectionError, ValueError) as e:
            logger.error(f"Failed to send message to {client_id}: {e}")

    async def _send_error(
        self, client_id: str, error: Error, request_id: RequestId | None
    ) -> None:
        response = JSONRPCError.from_error(error, request_id).to_wire()
        await self._send(client_id, response)

    # ================================
    # Protocol handlers
    # ================================

    async def _handle_initialize(
        self, client_id: str, request: InitializeRequest
    ) -> InitializeResult:
        """Answer the handshake with the server's capabilities."""
        logger.info(
            f"Client {request.client_info.name} {request.client_info.version} "
            f"connected with protocol {request.protocol_version}"
        )
        return InitializeResult(
            capabilities=self.server.capabilities,
            server_info=self.server.info,
            instructions=self.server.config.instructions,
        )

    async def _handle_initialized(
        self, client_id: str, notification: InitializedNotification
    ) -> None:
        self._initialized_clients.add(client_id)

    async def _handle_ping(self, client_id: str, request: PingRequest) -> EmptyResult:
        return EmptyResult()

    # ================================
    # Resource change notifications
    # ================================

    def _current_listing(self) -> set[str]:
        return {entry.uri for entry in self.server.index.entries()}

    def _on_index_change(self, uri: str) -> None:
        """Index callback. Runs on whichever thread changed the index."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._schedule_publish, uri)
        except RuntimeError as e:
            logger.debug(f"Dropping change for {uri}, event loop closed: {e}")

    def _schedule_publish(self, uri: str) -> None:
        task = asyncio.create_task(self._publish_change(uri), name=f"publish_{uri}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _publish_change(self, uri: str) -> None:
        for client_id, subscribed in self.server.resources.affected_subscriptions(uri):
            notification = ResourceUpdatedNotification(uri=subscribed)
            await self._send(
                client_id, JSONRPCNotification.from_notification(notification).to_wire()
            )

        listing = self._current_listing()
        if listing == self._listing:
            return
        self._listing = listing
        list_changed = JSONRPCNotification.from_notification(
            ResourceListChangedNotification()
        ).to_wire()
        for client_id in sorted(self._clients):
            await self._send(client_id, list_changed)


def _key_message(error: KeyError) -> str:
    return str(error.args[0]) if error.args else "Not found"
