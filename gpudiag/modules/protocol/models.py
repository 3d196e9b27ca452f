"""JSON-RPC 2.0 message models and the gateway's error taxonomy."""

from enum import IntEnum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr

RequestId = Optional[Union[StrictInt, StrictStr]]


class ErrorCode(IntEnum):
    """Stable error codes returned to callers."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    NOT_INITIALIZED = -32002
    UNKNOWN_TOOL = -31001
    AGGREGATE_FAILURE = -31002
    TARGET_NOT_FOUND = -31003
    DISCOVERY_FAILURE = -31004


class ProtocolError(Exception):
    """An error that maps directly onto a JSON-RPC error object."""

    def __init__(self, code: ErrorCode, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


class ProtocolRequest(BaseModel):
    """Incoming request or notification."""

    model_config = ConfigDict(extra="ignore")

    jsonrpc: Literal["2.0"]
    method: StrictStr
    id: RequestId = None
    params: Optional[Dict[str, Any]] = None

    @property
    def is_notification(self) -> bool:
        """True when the id member is absent (an explicit null is still a request)."""
        return "id" not in self.model_fields_set


class ProtocolResponse(BaseModel):
    """Outgoing response. Exactly one of result and error is set."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId = None
    result: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, request_id: RequestId, result: Any) -> "ProtocolResponse":
        return cls(id=request_id, result=result if result is not None else {})

    @classmethod
    def failure(
        cls, request_id: RequestId, code: ErrorCode, message: str, data: Any = None
    ) -> "ProtocolResponse":
        error: Dict[str, Any] = {"code": int(code), "message": message}
        if data is not None:
            error["data"] = data
        return cls(id=request_id, error=error)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            body["error"] = self.error
        else:
            body["result"] = self.result
        return body
