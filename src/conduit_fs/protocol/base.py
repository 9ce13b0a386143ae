"""
Base types shared by every MCP message.

Requests and notifications travel as `{"method": ..., "params": {...}}`,
results as the bare `result` object of a JSON-RPC response. Each model knows
how to read itself from the wire (`from_protocol`) and write itself back
(`to_protocol`), so sessions never touch raw dictionaries beyond routing.
"""

from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field

PROTOCOL_VERSION = "2025-06-18"
JSONRPC_VERSION = "2.0"

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

Role = Literal["user", "assistant"]


class ProtocolModel(BaseModel):
    """
    Base class for all protocol models.

    Fields use snake_case in Python and camelCase aliases on the wire. Either
    name is accepted when constructing a model.
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_protocol(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class _MethodMessage(ProtocolModel):
    method: str

    metadata: dict[str, Any] | None = Field(default=None, alias="_meta")
    """
    Protocol-level metadata carried in `params._meta`.
    """

    @classmethod
    def from_protocol(cls, data: dict[str, Any]) -> Self:
        """Build the model from a JSON-RPC message with `method` and `params`."""
        params = data.get("params") or {}
        return cls.model_validate({**params, "method": data["method"]})

    def to_protocol(self) -> dict[str, Any]:
        params = self.model_dump(
            by_alias=True, exclude_none=True, exclude={"method"}, mode="json"
        )
        if not params.get("_meta"):
            params.pop("_meta", None)
        message: dict[str, Any] = {"method": self.method}
        if params:
            message["params"] = params
        return message


class Request(_MethodMessage):
    """
    A message that expects a response.
    """

    @classmethod
    def expected_result_type(cls) -> type["Result"]:
        return Result


class Notification(_MethodMessage):
    """
    A one-way message. No response is sent.
    """


class Result(ProtocolModel):
    """
    The successful outcome of a request.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    metadata: dict[str, Any] | None = Field(default=None, alias="_meta")

    @classmethod
    def from_protocol(cls, data: dict[str, Any]) -> Self:
        """Build the result from a JSON-RPC response payload."""
        return cls.model_validate(data["result"])


class Error(ProtocolModel):
    """
    The failed outcome of a request, sent as a JSON-RPC error object.
    """

    code: int
    message: str
    data: Any | None = None

    @classmethod
    def from_protocol(cls, data: dict[str, Any]) -> Self:
        return cls.model_validate(data["error"])
