"""JSON-RPC envelopes around MCP requests, results, errors and notifications."""

from typing import Any, Self

from pydantic import BaseModel

from conduit_fs.protocol.base import JSONRPC_VERSION, Error, Notification, Result

RequestId = str | int


class JSONRPCResponse(BaseModel):
    id: RequestId
    result: dict[str, Any]

    @classmethod
    def from_result(cls, result: Result, request_id: RequestId) -> Self:
        return cls(id=request_id, result=result.to_protocol())

    def to_wire(self) -> dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, "id": self.id, "result": self.result}


class JSONRPCError(BaseModel):
    id: RequestId | None
    error: dict[str, Any]

    @classmethod
    def from_error(cls, error: Error, request_id: RequestId | None) -> Self:
        return cls(id=request_id, error=error.to_protocol())

    def to_wire(self) -> dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, "id": self.id, "error": self.error}


class JSONRPCNotification(BaseModel):
    payload: dict[str, Any]

    @classmethod
    def from_notification(cls, notification: Notification) -> Self:
        return cls(payload=notification.to_protocol())

    def to_wire(self) -> dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, **self.payload}


def is_request(payload: dict[str, Any]) -> bool:
    """A request carries a method and an id."""
    return isinstance(payload.get("method"), str) and "id" in payload


def is_notification(payload: dict[str, Any]) -> bool:
    """A notification carries a method but no id."""
    return isinstance(payload.get("method"), str) and "id" not in payload


def is_response(payload: dict[str, Any]) -> bool:
    return "method" not in payload and ("result" in payload or "error" in payload)
