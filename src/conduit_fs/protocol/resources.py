"""
Resource discovery, reading and change subscriptions.

Every regular file under the allowed directories is a resource, identified by
its `file://` URI. The server keeps the listing live from filesystem change
notifications and pushes `notifications/resources/updated` to subscribers.
"""

from typing import Literal

from pydantic import Field

from conduit_fs.protocol.base import Notification, ProtocolModel, Request, Result
from conduit_fs.protocol.common import EmptyResult
from conduit_fs.protocol.content import BlobResourceContents, TextResourceContents


class Resource(ProtocolModel):
    """
    A file the server can read.
    """

    uri: str
    name: str
    description: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")
    size: int | None = None


class ListResourcesRequest(Request):
    method: Literal["resources/list"] = "resources/list"
    cursor: str | None = None

    @classmethod
    def expected_result_type(cls) -> type["ListResourcesResult"]:
        return ListResourcesResult


class ListResourcesResult(Result):
    resources: list[Resource]
    next_cursor: str | None = Field(default=None, alias="nextCursor")


class ReadResourceRequest(Request):
    method: Literal["resources/read"] = "resources/read"
    uri: str

    @classmethod
    def expected_result_type(cls) -> type["ReadResourceResult"]:
        return ReadResourceResult


class ReadResourceResult(Result):
    contents: list[TextResourceContents | BlobResourceContents]


class SubscribeRequest(Request):
    """
    Ask for `notifications/resources/updated` whenever the resource changes.
    """

    method: Literal["resources/subscribe"] = "resources/subscribe"
    uri: str

    @classmethod
    def expected_result_type(cls) -> type[EmptyResult]:
        return EmptyResult


class UnsubscribeRequest(Request):
    method: Literal["resources/unsubscribe"] = "resources/unsubscribe"
    uri: str

    @classmethod
    def expected_result_type(cls) -> type[EmptyResult]:
        return EmptyResult


class ResourceUpdatedNotification(Notification):
    """
    Sent to subscribers when a resource was created, modified or deleted.
    """

    method: Literal["notifications/resources/updated"] = (
        "notifications/resources/updated"
    )
    uri: str


class ResourceListChangedNotification(Notification):
    """
    Sent when resources appear or disappear from the listing.
    """

    method: Literal["notifications/resources/list_changed"] = (
        "notifications/resources/list_changed"
    )
