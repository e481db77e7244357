"""
HTTP surface — SSE channel, message submission, health and diagnostics.

GET  /sse       open a session; streams `endpoint`, `message` and `ping` events
POST /messages  submit one request for a session; answers 202 immediately
GET  /healthz   liveness, uptime and version
GET  /sessions  open sessions (non-production only)
GET  /tools     registered tools (non-production only)
"""

import logging
import secrets
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from tgbridge.config import Settings
from tgbridge.errors import BridgeError, ErrorKind, to_error_response
from tgbridge.log import request_id_var
from tgbridge.sessions import SessionRegistry
from tgbridge.tools import ToolDispatcher
from tgbridge.transport.http import TelegramClient
from tgbridge.transport.sse import SSE_HEADERS, SseChannel

logger = logging.getLogger("tgbridge.server")


class RequestIdMiddleware:
    """Binds a request id to the logging context and echoes it as X-Request-Id."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers") or [])
        request_id = headers.get(b"x-request-id", b"").decode("latin-1") or uuid.uuid4().hex

        async def send_with_request_id(message):
            if message["type"] == "http.response.start":
                message["headers"] = list(message.get("headers") or []) + [(b"x-request-id", request_id.encode("latin-1"))]
            await send(message)

        token = request_id_var.set(request_id)
        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            request_id_var.reset(token)


def require_bearer(request: Request) -> None:
    """Reject the request unless it carries the configured bearer token."""
    expected: Optional[str] = request.app.state.settings.auth_bearer
    if not expected:
        return
    header = request.headers.get("authorization", "")
    if not header.startswith("Bearer "):
        raise BridgeError(ErrorKind.UNAUTHORIZED, "Missing or invalid authorization header")
    token = header[len("Bearer "):].strip()
    if not secrets.compare_digest(token.encode(), expected.encode()):
        raise BridgeError(ErrorKind.UNAUTHORIZED, "Unauthorized")


async def read_limited_body(request: Request, limit: int) -> bytes:
    """Read the request body, refusing anything larger than `limit` bytes."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise BridgeError(ErrorKind.TOO_LARGE, "Request body too large", details={"max_bytes": limit})

    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            raise BridgeError(ErrorKind.TOO_LARGE, "Request body too large", details={"max_bytes": limit})
        chunks.append(chunk)
    return b"".join(chunks)


def create_app(
    settings: Settings,
    client: Optional[TelegramClient] = None,
    dispatcher: Optional[ToolDispatcher] = None,
) -> FastAPI:
    """Build the application. `client`/`dispatcher` may be injected for tests."""
    client = client or TelegramClient.from_settings(settings)
    dispatcher = dispatcher or ToolDispatcher(client, version=settings.version)
    registry = SessionRegistry(
        dispatcher.handle,
        keepalive_interval=settings.keepalive_interval,
        allow_legacy=settings.allow_legacy_body,
    )
    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"tgbridge {settings.version} started ({len(dispatcher.tools())} tools)")
        yield
        await registry.aclose()
        await client.aclose()
        logger.info("tgbridge shut down")

    app = FastAPI(title="tgbridge", version=settings.version, lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.dispatcher = dispatcher
    app.state.client = client
    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError):
        logger.warning(f"{request.method} {request.url.path} failed: kind={exc.kind.value} message={exc.message}")
        return JSONResponse(status_code=exc.status, content=exc.to_response())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content=to_error_response(exc))

    @app.get("/healthz")
    async def healthz():
        return {
            "ok": True,
            "uptimeSec": round(time.monotonic() - started_at),
            "version": settings.version,
        }

    @app.get("/sse", dependencies=[Depends(require_bearer)])
    async def open_sse(session_hint: Optional[str] = Query(None, alias="sessionId")):
        async def stream():
            channel = SseChannel()
            session = registry.open(channel, hint=session_hint)
            try:
                async for frame in channel.frames():
                    yield frame
            finally:
                registry.close(session.id)

        return StreamingResponse(stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.post("/messages", dependencies=[Depends(require_bearer)])
    async def post_message(request: Request, session_id: Optional[str] = Query(None, alias="sessionId")):
        session_id = session_id or request.headers.get("x-session-id")
        if not session_id:
            raise BridgeError(ErrorKind.BAD_REQUEST, "sessionId query parameter is required")

        body = await read_limited_body(request, settings.max_body_bytes)
        try:
            registry.route(session_id, body)
        except BridgeError as e:
            logger.error(f"Failed to handle MCP message for session {session_id}: kind={e.kind.value}")
            raise
        return PlainTextResponse("Accepted", status_code=202)

    if settings.app_env != "production":

        @app.get("/sessions", dependencies=[Depends(require_bearer)])
        async def list_sessions():
            return {"ok": True, "sessions": [s.describe() for s in registry.list()]}

        @app.get("/tools", dependencies=[Depends(require_bearer)])
        async def list_tools():
            return {
                "ok": True,
                "tools": [t.info().model_dump(include={"name", "title", "description"}) for t in dispatcher.tools()],
            }

    return app
