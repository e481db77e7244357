"""
Session registry — one entry per open SSE channel.

Every registry mutation happens without an intervening await, so concurrent
open/route/close calls on the event loop never observe a half-updated
registry. Results are delivered over the channel asynchronously; results for
sessions that closed in the meantime are logged and dropped.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from tgbridge.errors import BridgeError, ErrorKind
from tgbridge.log import get_logger, request_id_var
from tgbridge.models.envelope import JsonRpcRequest
from tgbridge.protocol import INTERNAL_ERROR, rpc_error
from tgbridge.transport.envelope import normalize_message
from tgbridge.transport.sse import ChannelError, SseChannel

DEFAULT_ENDPOINT_PATH = "/messages"
DEFAULT_KEEPALIVE_INTERVAL = 25.0

RequestHandler = Callable[[JsonRpcRequest], Awaitable[Optional[dict[str, Any]]]]


@dataclass(eq=False)
class Session:
    id: str
    channel: SseChannel
    created_at: float = field(default_factory=time.time)
    last_seen_at: float = field(default_factory=time.time)
    client_hint: Optional[str] = None
    keepalive: Optional[asyncio.Task] = None

    def touch(self) -> None:
        self.last_seen_at = time.time()

    def describe(self) -> dict[str, Any]:
        return {
            "sessionId": self.id,
            "createdAt": _iso(self.created_at),
            "lastSeenAt": _iso(self.last_seen_at),
        }


def _iso(ts: float) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(ts))


class SessionRegistry:
    def __init__(
        self,
        handler: RequestHandler,
        *,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        allow_legacy: bool = True,
        endpoint_path: str = DEFAULT_ENDPOINT_PATH,
        logger: Optional[logging.Logger] = None,
    ):
        self._handler = handler
        self._keepalive_interval = keepalive_interval
        self._allow_legacy = allow_legacy
        self._endpoint_path = endpoint_path
        self._log = get_logger(__name__, logger)
        self._sessions: dict[str, Session] = {}
        self._inflight: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def list(self) -> list[Session]:
        return list(self._sessions.values())

    def endpoint_for(self, session_id: str) -> str:
        return f"{self._endpoint_path}?sessionId={session_id}"

    def open(self, channel: SseChannel, hint: Optional[str] = None) -> Session:
        """Register a channel, start its keepalive and announce the endpoint."""
        session_id = uuid.uuid4().hex
        while session_id in self._sessions:
            session_id = uuid.uuid4().hex

        session = Session(id=session_id, channel=channel, client_hint=hint)
        self._sessions[session_id] = session
        session.keepalive = asyncio.get_running_loop().create_task(self._keepalive(session))

        try:
            channel.send("endpoint", self.endpoint_for(session_id))
        except ChannelError:
            self.close(session_id)
            raise

        self._log.info(f"SSE session {session_id} established" + (f" (client hint {hint!r})" if hint else ""))
        return session

    def route(self, session_id: str, raw: Any) -> JsonRpcRequest:
        """Normalize `raw` and hand it to the session's handler.

        Returns once the request is accepted; the result arrives later as a
        `message` event on the session's channel.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise BridgeError(ErrorKind.SESSION_NOT_FOUND, "Session not found", details={"sessionId": session_id})

        request = normalize_message(raw, allow_legacy=self._allow_legacy)
        session.touch()

        task = asyncio.get_running_loop().create_task(self._process(session, request))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return request

    def close(self, session_id: str) -> bool:
        """Remove a session. Safe to call more than once."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        if session.keepalive is not None:
            session.keepalive.cancel()
        session.channel.close()
        self._log.info(f"SSE session {session_id} closed")
        return True

    async def aclose(self, grace: float = 5.0) -> None:
        keepalives = [s.keepalive for s in self._sessions.values() if s.keepalive is not None]
        for session_id in list(self._sessions):
            self.close(session_id)
        await asyncio.gather(*keepalives, return_exceptions=True)
        if self._inflight:
            await asyncio.wait(set(self._inflight), timeout=grace)

    async def _process(self, session: Session, request: JsonRpcRequest) -> None:
        request_id_var.set(str(request.id) if request.id is not None else uuid.uuid4().hex[:8])
        try:
            response = await self._handler(request)
        except Exception:
            self._log.exception(f"Unhandled error while processing {request.method} for session {session.id}")
            if request.id is None:
                return
            response = rpc_error(request.id, INTERNAL_ERROR, "Internal error during request dispatch.")

        if response is None:
            return
        if self._sessions.get(session.id) is not session:
            self._log.info(f"Session {session.id} is gone; discarding result for request {request.id}")
            return
        try:
            session.channel.send("message", response)
        except ChannelError as e:
            self._log.warning(f"Failed to deliver result to session {session.id}: {e}")
            self.close(session.id)

    async def _keepalive(self, session: Session) -> None:
        while True:
            await asyncio.sleep(self._keepalive_interval)
            try:
                session.channel.send("ping", {})
            except ChannelError as e:
                self._log.warning(f"Failed to send keepalive ping for session {session.id}: {e}")
