"""
JSON-RPC envelopes — the canonical request shape and the legacy flat dialect.
"""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, StrictInt, StrictStr

JSONRPC_VERSION = "2.0"

RequestId = Union[StrictStr, StrictInt]


class JsonRpcRequest(BaseModel):
    jsonrpc: Literal["2.0"]
    id: Optional[RequestId] = None
    method: StrictStr = Field(min_length=1)
    params: Optional[dict[str, Any]] = None

    @property
    def is_notification(self) -> bool:
        return self.id is None


class LegacyRequest(BaseModel):
    """Flat `{id?, tool, arguments?}` body sent by older clients."""
    id: Optional[RequestId] = None
    tool: StrictStr = Field(min_length=1)
    arguments: Any = None


class JsonRpcError(BaseModel):
    code: int
    message: str
    data: Optional[Any] = None


class JsonRpcResponse(BaseModel):
    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: Optional[RequestId] = None
    result: Optional[Any] = None
    error: Optional[JsonRpcError] = None

    def to_wire(self) -> dict[str, Any]:
        body: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            body["error"] = self.error.model_dump(exclude_none=True)
        else:
            body["result"] = self.result
        return body
