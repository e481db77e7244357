import json
from typing import Any, Optional, Union

import httpx
import pytest

from tgbridge.config import Settings
from tgbridge.ratelimit import RateLimiter
from tgbridge.transport.http import TelegramClient

TOKEN = "TEST_TOKEN"


class FakeTelegram:
    """httpx.MockTransport handler that replays queued Bot API answers per method."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, httpx.Request]] = []
        self._replies: dict[str, list[Union[tuple[int, Any], Exception]]] = {}

    def reply(self, method: str, status: int = 200, body: Any = None) -> "FakeTelegram":
        self._replies.setdefault(method, []).append((status, body))
        return self

    def ok(self, method: str, result: Any) -> "FakeTelegram":
        return self.reply(method, 200, {"ok": True, "result": result})

    def fail(self, method: str, status: int, description: str, **extra: Any) -> "FakeTelegram":
        return self.reply(method, status, {"ok": False, "error_code": status, "description": description, **extra})

    def raise_(self, method: str, exc: Exception) -> "FakeTelegram":
        self._replies.setdefault(method, []).append(exc)
        return self

    def methods(self) -> list[str]:
        return [m for m, _ in self.calls]

    def body(self, index: int = -1) -> Any:
        return json.loads(self.calls[index][1].content)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        self.calls.append((method, request))
        queue = self._replies.get(method)
        if not queue:
            return httpx.Response(404, json={"ok": False, "error_code": 404, "description": "Not Found"})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        status, body = reply
        return httpx.Response(status, json=body)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_client(
    fake: FakeTelegram,
    allowed: tuple = (),
    max_retries: int = 2,
    sleep: Optional[SleepRecorder] = None,
    max_document_bytes: int = 1024 * 1024,
) -> TelegramClient:
    return TelegramClient(
        TOKEN,
        allowed,
        max_retries=max_retries,
        max_document_bytes=max_document_bytes,
        transport=httpx.MockTransport(fake),
        limiter=RateLimiter(100, autostart=False),
        sleep=sleep or SleepRecorder(),
    )


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {"telegram_bot_token": TOKEN, "app_env": "test"}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def fake_telegram() -> FakeTelegram:
    return FakeTelegram()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


def parse_frame(frame: bytes) -> tuple[str, str]:
    """Split one SSE frame into (event, data)."""
    event, data = "message", []
    for line in frame.decode("utf-8").strip("\n").split("\n"):
        if line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data.append(line[len("data:"):].strip())
    return event, "\n".join(data)
