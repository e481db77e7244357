"""
Envelope normalization — every inbound body becomes one JsonRpcRequest.

Accepted dialects:
- canonical JSON-RPC 2.0 `{jsonrpc, id?, method, params?}`, with method
  aliases rewritten to their canonical names;
- legacy `{id?, tool, arguments?}`, wrapped into a `tools/call` request when
  legacy support is enabled.
"""

import json
import uuid
from typing import Any

from pydantic import ValidationError

from tgbridge.errors import BridgeError, ErrorKind
from tgbridge.models.envelope import JSONRPC_VERSION, JsonRpcRequest, LegacyRequest

TOOLS_CALL = "tools/call"
TOOLS_LIST = "tools/list"

METHOD_ALIASES: dict[str, str] = {
    "call_tool": TOOLS_CALL,
    "list_tools": TOOLS_LIST,
}


def normalize_method(method: str) -> str:
    return METHOD_ALIASES.get(method, method)


def _parse_json(raw: Any) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise BridgeError(ErrorKind.MALFORMED_PAYLOAD, "Body must be valid UTF-8 JSON") from e
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise BridgeError(ErrorKind.MALFORMED_PAYLOAD, "Body must be valid JSON", details={"error": str(e)}) from e
    return raw


def normalize_message(raw: Any, allow_legacy: bool = True) -> JsonRpcRequest:
    """Return the canonical request for a raw body or parsed structure."""
    candidate = _parse_json(raw)

    try:
        request = JsonRpcRequest.model_validate(candidate)
    except ValidationError:
        pass
    else:
        return request.model_copy(update={"method": normalize_method(request.method)})

    try:
        legacy = LegacyRequest.model_validate(candidate)
    except ValidationError:
        raise BridgeError(ErrorKind.MALFORMED_PAYLOAD, "Invalid JSON-RPC payload") from None

    if not allow_legacy:
        raise BridgeError(ErrorKind.LEGACY_DIALECT_DISABLED, "Legacy payloads are disabled")

    arguments = legacy.arguments if isinstance(legacy.arguments, dict) else {}
    return JsonRpcRequest(
        jsonrpc=JSONRPC_VERSION,
        id=legacy.id if legacy.id is not None else str(uuid.uuid4()),
        method=TOOLS_CALL,
        params={"name": legacy.tool, "arguments": arguments},
    )
