"""
MCP protocol constants and JSON-RPC response builders.
"""

from typing import Any, Optional

from tgbridge.models.envelope import JsonRpcError, JsonRpcResponse, RequestId

SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")
SERVER_NAME = "tgbridge"

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


def negotiate_protocol_version(version: Optional[str]) -> str:
    """Echo a supported client version, else offer our newest one."""
    if version in SUPPORTED_PROTOCOL_VERSIONS:
        return version  # type: ignore[return-value]
    return SUPPORTED_PROTOCOL_VERSIONS[0]


def rpc_result(request_id: Optional[RequestId], result: Any) -> dict[str, Any]:
    return JsonRpcResponse(id=request_id, result=result).to_wire()


def rpc_error(request_id: Optional[RequestId], code: int, message: str, data: Any = None) -> dict[str, Any]:
    return JsonRpcResponse(id=request_id, error=JsonRpcError(code=code, message=message, data=data)).to_wire()
