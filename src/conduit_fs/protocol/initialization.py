from typing import Any, Literal

from pydantic import Field

from conduit_fs.protocol.base import (
    PROTOCOL_VERSION,
    Notification,
    ProtocolModel,
    Request,
    Result,
)


class Implementation(ProtocolModel):
    """Name and version string of the server or client."""

    name: str
    version: str


class ClientCapabilities(ProtocolModel):
    """
    Capabilities that the client supports. Sent during initialization.
    """

    experimental: dict[str, Any] | None = None
    roots: dict[str, Any] | None = None
    sampling: dict[str, Any] | None = None


class ResourcesCapability(ProtocolModel):
    """Capabilities for resource access and change monitoring."""

    subscribe: bool | None = None
    """
    Whether clients can subscribe to resource change updates.
    """

    list_changed: bool | None = Field(default=None, alias="listChanged")
    """
    Whether the server sends notifications when resources change.
    """


class ToolsCapability(ProtocolModel):
    """Capabilities for tool execution and change notifications."""

    list_changed: bool | None = Field(default=None, alias="listChanged")


class ServerCapabilities(ProtocolModel):
    """Capabilities that the server supports, sent during initialization."""

    resources: ResourcesCapability | None = None
    """
    Resource access capabilities.
    """
    tools: ToolsCapability | None = None
    """
    Tool execution capabilities.
    """


class InitializedNotification(Notification):
    """
    Confirms successful MCP connection initialization.

    Sent by the client after processing the server's InitializeResult.
    """

    method: Literal["notifications/initialized"] = "notifications/initialized"


class InitializeRequest(Request):
    """
    Initial handshake request to establish MCP connection.
    """

    method: Literal["initialize"] = "initialize"
    protocol_version: str = Field(default=PROTOCOL_VERSION, alias="protocolVersion")
    client_info: Implementation = Field(alias="clientInfo")
    capabilities: ClientCapabilities = Field(default_factory=ClientCapabilities)

    @classmethod
    def expected_result_type(cls) -> type["InitializeResult"]:
        return InitializeResult


class InitializeResult(Result):
    """
    Server's response to initialization, completing the MCP handshake.
    """

    protocol_version: str = Field(default=PROTOCOL_VERSION, alias="protocolVersion")
    capabilities: ServerCapabilities
    server_info: Implementation = Field(alias="serverInfo")
    instructions: str | None = None
