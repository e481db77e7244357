"""
Tool dispatcher — MCP methods and the Telegram tool catalogue.

Protocol problems (unknown method, unknown tool, malformed params) become
JSON-RPC errors. Failures inside a tool become `isError` results whose text
is the structured error body.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ValidationError

from tgbridge.errors import BridgeError, ErrorKind, to_error_response
from tgbridge.log import get_logger
from tgbridge.models.envelope import JsonRpcRequest
from tgbridge.models.telegram import (
    EmptyInput,
    FetchInput,
    GetChatInput,
    GetUpdatesInput,
    SearchInput,
    SendDocumentInput,
    SendMessageInput,
    ToolInfo,
)
from tgbridge.protocol import (
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    SERVER_NAME,
    negotiate_protocol_version,
    rpc_error,
    rpc_result,
)
from tgbridge.transport.envelope import TOOLS_CALL, TOOLS_LIST
from tgbridge.transport.http import TelegramClient
from tgbridge.version import __version__

ToolHandler = Callable[[Any], Awaitable[Any]]


@dataclass
class Tool:
    name: str
    input_model: type[BaseModel]
    handler: ToolHandler
    title: Optional[str] = None
    description: Optional[str] = None

    def info(self) -> ToolInfo:
        return ToolInfo(
            name=self.name,
            title=self.title,
            description=self.description,
            input_schema=self.input_model.model_json_schema(),
        )


def _text_content(payload: Any) -> dict[str, Any]:
    return {"type": "text", "text": json.dumps(payload, indent=2, ensure_ascii=False)}


def success_result(payload: Any) -> dict[str, Any]:
    return {"content": [_text_content(payload)]}


def error_result(error: dict[str, Any]) -> dict[str, Any]:
    return {"isError": True, "content": [_text_content(error)]}


class ToolDispatcher:
    def __init__(
        self,
        client: TelegramClient,
        *,
        version: str = __version__,
        logger: Optional[logging.Logger] = None,
    ):
        self._client = client
        self._version = version
        self._started = time.monotonic()
        self._log = get_logger(__name__, logger)
        self._tools: dict[str, Tool] = {}
        self._methods: dict[str, Callable[[JsonRpcRequest], Awaitable[Any]]] = {
            "initialize": self._initialize,
            "ping": self._ping,
            TOOLS_LIST: self._tools_list,
            TOOLS_CALL: self._tools_call,
        }
        self._register_builtin_tools()

    def register(
        self,
        name: str,
        input_model: type[BaseModel],
        handler: ToolHandler,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Tool:
        tool = Tool(name=name, input_model=input_model, handler=handler, title=title, description=description)
        self._tools[name] = tool
        return tool

    def tools(self) -> list[Tool]:
        return list(self._tools.values())

    def uptime(self) -> int:
        return round(time.monotonic() - self._started)

    async def handle(self, request: JsonRpcRequest) -> Optional[dict[str, Any]]:
        """Process one canonical request; returns the response, or None for notifications."""
        if request.method.startswith("notifications/"):
            self._log.debug(f"Notification {request.method} received")
            return None

        method = self._methods.get(request.method)
        if method is None:
            response = rpc_error(request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}")
        else:
            try:
                response = rpc_result(request.id, await method(request))
            except BridgeError as e:
                response = rpc_error(request.id, INVALID_PARAMS, e.message, e.details)

        if request.id is None:
            return None
        return response

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        tool = self._tools.get(name)
        if tool is None:
            raise BridgeError(ErrorKind.BAD_REQUEST, f"Tool {name} not found")

        started = time.monotonic()
        try:
            parsed = tool.input_model.model_validate(arguments)
            payload = await tool.handler(parsed)
        except ValidationError as e:
            error = BridgeError(
                ErrorKind.BAD_REQUEST,
                f"Invalid arguments for {name}",
                details={"errors": json.loads(e.json(include_url=False))},
            )
            self._log.warning(f"{name} rejected invalid arguments")
            return error_result(error.to_response())
        except BridgeError as e:
            self._log.error(f"{name} failed: kind={e.kind.value} status={e.status} message={e.message}")
            return error_result(e.to_response())
        except Exception as e:
            self._log.exception(f"{name} failed unexpectedly")
            return error_result(to_error_response(e))

        self._log.debug(f"{name} completed in {time.monotonic() - started:.3f}s")
        return success_result(payload)

    async def _initialize(self, request: JsonRpcRequest) -> dict[str, Any]:
        params = request.params or {}
        return {
            "protocolVersion": negotiate_protocol_version(params.get("protocolVersion")),
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": SERVER_NAME, "version": self._version},
        }

    async def _ping(self, request: JsonRpcRequest) -> dict[str, Any]:
        return {}

    async def _tools_list(self, request: JsonRpcRequest) -> dict[str, Any]:
        return {
            "tools": [
                tool.info().model_dump(by_alias=True, exclude_none=True) for tool in self._tools.values()
            ]
        }

    async def _tools_call(self, request: JsonRpcRequest) -> dict[str, Any]:
        params = request.params or {}
        name = params.get("name")
        arguments = params.get("arguments")
        if not isinstance(name, str) or not name:
            raise BridgeError(ErrorKind.BAD_REQUEST, "params.name must be a non-empty string")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise BridgeError(ErrorKind.BAD_REQUEST, "params.arguments must be an object")
        return await self.call_tool(name, arguments)

    def _register_builtin_tools(self) -> None:
        self.register(
            "telegram.send_message",
            SendMessageInput,
            self._send_message,
            title="Send Telegram message",
            description="Send a text message to a user, group or channel",
        )
        self.register(
            "telegram.send_document",
            SendDocumentInput,
            self._send_document,
            title="Send Telegram document",
            description="Send a document (https URL or base64 data URI) to a chat",
        )
        self.register(
            "telegram.get_updates",
            GetUpdatesInput,
            self._get_updates,
            title="Fetch Telegram updates",
            description="Fetch recent bot updates via getUpdates",
        )
        self.register(
            "telegram.get_chat",
            GetChatInput,
            self._get_chat,
            title="Resolve Telegram chat",
            description="Look up a chat, resolving @username to chat_id",
        )
        self.register(
            "system.health",
            EmptyInput,
            self._health,
            title="Health check",
            description="Report MCP server liveness",
        )
        self.register(
            "search",
            SearchInput,
            self._search,
            title="Search",
            description="Stub search tool for ChatGPT compatibility",
        )
        self.register(
            "fetch",
            FetchInput,
            self._fetch,
            title="Fetch",
            description="Stub fetch tool for ChatGPT compatibility",
        )

    async def _send_message(self, args: SendMessageInput) -> dict[str, Any]:
        message = await self._client.send_message(
            args.chat_id,
            args.text,
            parse_mode=args.parse_mode,
            disable_web_page_preview=args.disable_web_page_preview,
            disable_notification=args.disable_notification,
        )
        return {
            "ok": True,
            "message_id": message.message_id,
            "date": message.date,
            "chat": message.chat.model_dump(exclude_none=True),
        }

    async def _send_document(self, args: SendDocumentInput) -> dict[str, Any]:
        message = await self._client.send_document(args.chat_id, args.file, args.filename, args.caption)
        return {
            "ok": True,
            "message_id": message.message_id,
            "document": message.document.model_dump(exclude_none=True) if message.document else None,
        }

    async def _get_updates(self, args: GetUpdatesInput) -> dict[str, Any]:
        updates = await self._client.get_updates(args.offset, args.timeout, args.limit)
        return {"ok": True, "updates": updates}

    async def _get_chat(self, args: GetChatInput) -> dict[str, Any]:
        chat = await self._client.get_chat(args.chat_id_or_username)
        return {"ok": True, "chat": chat.model_dump(exclude_none=True)}

    async def _health(self, args: EmptyInput) -> dict[str, Any]:
        return {"ok": True, "uptimeSec": self.uptime(), "version": self._version}

    async def _search(self, args: SearchInput) -> dict[str, Any]:
        return {
            "results": [
                {
                    "id": "stub-search-result",
                    "title": f'Stub result for "{args.query}"',
                    "url": "https://example.com",
                }
            ]
        }

    async def _fetch(self, args: FetchInput) -> dict[str, Any]:
        return {
            "id": args.id,
            "title": "Stub document",
            "text": "This is placeholder text.",
            "url": "https://example.com/doc",
            "metadata": {"source": "stub"},
        }
