"""Client-aware resource manager backed by the live resource index."""

import logging
from typing import Awaitable, Callable

from conduit_fs.filesystem.index import ResourceIndex
from conduit_fs.protocol.common import EmptyResult
from conduit_fs.protocol.resources import (
    ListResourcesRequest,
    ListResourcesResult,
    ReadResourceRequest,
    ReadResourceResult,
    Resource,
    SubscribeRequest,
    UnsubscribeRequest,
)

# Type aliases for resource handlers
ResourceHandler = Callable[[str, ReadResourceRequest], Awaitable[ReadResourceResult]]
SubscriptionCallback = Callable[[str, str], Awaitable[None]]  # (client_id, uri)

FILE_SCHEME = "file://"


class ResourceManager:
    """Lists indexed files, reads them, and tracks per-client subscriptions.

    The listing comes straight from the ResourceIndex, so it reflects
    filesystem changes without re-registration. Reads are delegated to a
    single handler that understands `file://` URIs.
    """

    def __init__(self, index: ResourceIndex | None = None):
        self.index = index
        self.read_handler: ResourceHandler | None = None

        self._client_subscriptions: dict[str, set[str]] = {}  # client_id -> {uri, ...}

        self.subscribe_handler: SubscriptionCallback | None = None
        self.unsubscribe_handler: SubscriptionCallback | None = None
        self.logger = logging.getLogger("conduit_fs.server.managers.resources")

    def subscribers(self, uri: str) -> list[str]:
        """IDs of the clients subscribed to `uri`."""
        return [
            client_id
            for client_id, uris in self._client_subscriptions.items()
            if uri in uris
        ]

    def affected_subscriptions(self, uri: str) -> list[tuple[str, str]]:
        """(client_id, subscribed uri) pairs touched by a change at `uri`.

        A change to a directory touches every subscription beneath it, since
        deleting or moving the directory takes its files along.
        """
        prefix = uri.rstrip("/") + "/"
        return [
            (client_id, subscribed)
            for client_id, uris in self._client_subscriptions.items()
            for subscribed in sorted(uris)
            if subscribed == uri or subscribed.startswith(prefix)
        ]

    def get_client_subscriptions(self, client_id: str) -> set[str]:
        return set(self._client_subscriptions.get(client_id, set()))

    def cleanup_client(self, client_id: str) -> None:
        """Remove all subscriptions for a client."""
        self._client_subscriptions.pop(client_id, None)

    # ===============================
    # Protocol handlers
    # ===============================

    async def handle_list_resources(
        self, client_id: str, request: ListResourcesRequest
    ) -> ListResourcesResult:
        """Lists every file currently in the index."""
        if self.index is None:
            return ListResourcesResult(resources=[])

        resources = [
            Resource(
                uri=entry.uri,
                name=entry.name,
                description=f"File: {entry.path}",
                mime_type=entry.mime_type,
            )
            for entry in self.index.entries()
        ]
        return ListResourcesResult(resources=resources)

    async def handle_read(
        self, client_id: str, request: ReadResourceRequest
    ) -> ReadResourceResult:
        """Reads a resource by URI.

        Raises:
            KeyError: If no read handler is configured.
            Exception: Any exception from the read handler.
        """
        if self.read_handler is None:
            raise KeyError(f"Unknown resource: {request.uri}")
        return await self.read_handler(client_id, request)

    async def handle_subscribe(
        self, client_id: str, request: SubscribeRequest
    ) -> EmptyResult:
        """Subscribes client to resource change notifications.

        Files that do not exist yet can be subscribed to; the client hears about
        them once they are created.

        Raises:
            KeyError: If the URI is not a `file://` URI.
        """
        uri = request.uri
        if not uri.startswith(FILE_SCHEME):
            raise KeyError(f"Cannot subscribe to unknown resource: {uri}")

        client_subscriptions = self._client_subscriptions.setdefault(client_id, set())
        client_subscriptions.add(uri)

        if self.subscribe_handler:
            try:
                await self.subscribe_handler(client_id, uri)
            except Exception as e:
                self.logger.warning(
                    f"Error in subscribe handler for {client_id}: {uri}: {e}"
                )

        return EmptyResult()

    async def handle_unsubscribe(
        self, client_id: str, request: UnsubscribeRequest
    ) -> EmptyResult:
        """Unsubscribes client from resource change notifications.

        Raises:
            KeyError: If client not currently subscribed to the resource
        """
        uri = request.uri
        client_subscriptions = self._client_subscriptions.get(client_id, set())

        if uri not in client_subscriptions:
            raise KeyError(f"Client not subscribed to resource: {uri}")

        self._client_subscriptions[client_id].remove(uri)

        if self.unsubscribe_handler:
            try:
                await self.unsubscribe_handler(client_id, uri)
            except Exception as e:
                self.logger.warning(
                    f"Error in unsubscribe handler for {client_id}: {uri}: {e}"
                )

        return EmptyResult()
