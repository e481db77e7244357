"""
Server-Sent Events channel — a per-connection outbound frame queue.

The HTTP layer drains `frames()` into a streaming response; everything else
only calls `send()`, which never blocks.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Optional

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

DEFAULT_BACKLOG = 256


class ChannelError(Exception):
    pass


class ChannelClosed(ChannelError):
    pass


def encode_event(event: str, data: Any) -> bytes:
    """Frame one SSE event. Non-string data is JSON encoded."""
    text = data if isinstance(data, str) else json.dumps(data, separators=(",", ":"))
    lines = [f"event: {event}"] + [f"data: {line}" for line in text.split("\n")]
    return ("\n".join(lines) + "\n\n").encode("utf-8")


class SseChannel:
    def __init__(self, backlog: int = DEFAULT_BACKLOG):
        self._backlog = backlog
        self._queue: asyncio.Queue[Optional[bytes]] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: str, data: Any) -> None:
        if self._closed:
            raise ChannelClosed("channel is closed")
        if self._queue.qsize() >= self._backlog:
            raise ChannelError(f"channel backlog exceeded ({self._backlog} frames)")
        self._queue.put_nowait(encode_event(event, data))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[bytes]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame
