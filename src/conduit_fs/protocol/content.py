from typing import Literal

from pydantic import Field

from conduit_fs.protocol.base import ProtocolModel


class ResourceContents(ProtocolModel):
    """
    Base information for any resource content.

    For this server a resource is a file under one of the allowed directories,
    identified by its `file://` URI.
    """

    uri: str
    """
    The URI that identifies this specific resource.

    Kept as a plain string: file URIs are built from the canonical path
    without percent-encoding and must round-trip unchanged.
    """

    mime_type: str | None = Field(default=None, alias="mimeType")
    """
    Content type of the resource, when known.
    """


class TextResourceContents(ResourceContents):
    """
    Resource contents as readable text.
    """

    text: str
    """
    The text content of the resource.
    """


class BlobResourceContents(ResourceContents):
    """
    Resource contents as binary data, for files that are not valid UTF-8.
    """

    blob: str
    """
    Base64-encoded binary data.
    """


class TextContent(ProtocolModel):
    """
    Plain text content for tool results.

    Every filesystem tool answers with a single text block: file contents,
    a listing, a diff, a JSON tree or an error message.
    """

    type: Literal["text"] = "text"
    text: str
    """The text content."""


ContentList = list[TextContent]
