"""
Tool discovery and invocation.

Tools are the operations a caller can run against the server: one per
filesystem operation. The caller lists them, then invokes one by name with a
flat argument bag.
"""

from typing import Any, Literal

from pydantic import Field

from conduit_fs.protocol.base import ProtocolModel, Request, Result
from conduit_fs.protocol.content import TextContent


class JSONSchema(ProtocolModel):
    """
    JSON Schema describing a tool's argument bag.
    """

    type: Literal["object"] = "object"
    properties: dict[str, Any] | None = None
    required: list[str] | None = None
    additional_properties: bool | None = Field(
        default=None, alias="additionalProperties"
    )


class Tool(ProtocolModel):
    """
    Definition of a tool the caller can invoke.
    """

    name: str
    """
    Unique tool name, e.g. `read_file`.
    """

    description: str | None = None
    """
    Human-readable explanation of what the tool does, shown to the LLM.
    """

    input_schema: JSONSchema = Field(alias="inputSchema")
    """
    Schema for the tool's arguments.
    """


class ListToolsRequest(Request):
    """
    Request for the list of tools the server provides.
    """

    method: Literal["tools/list"] = "tools/list"
    cursor: str | None = None

    @classmethod
    def expected_result_type(cls) -> type["ListToolsResult"]:
        return ListToolsResult


class ListToolsResult(Result):
    tools: list[Tool]
    next_cursor: str | None = Field(default=None, alias="nextCursor")


class CallToolRequest(Request):
    """
    Invoke a tool by name.
    """

    method: Literal["tools/call"] = "tools/call"
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def expected_result_type(cls) -> type["CallToolResult"]:
        return CallToolResult


class CallToolResult(Result):
    """
    Outcome of a tool call.

    Domain failures (path outside the allowed roots, edit text not found, I/O
    errors) are reported here with `is_error=True` rather than as protocol
    errors, so the LLM can read the message and recover.
    """

    content: list[TextContent]
    is_error: bool = Field(default=False, alias="isError")
