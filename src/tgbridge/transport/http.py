"""
Telegram Bot API client — rate limited, retried, with classified errors.

Each call acquires the limiter, posts to `/bot<token>/<method>` and unwraps
the `{ "ok": true, "result": ... }` body. Timeouts, connection errors and
5xx answers are retried with exponential backoff; everything else fails
immediately. Retries carry no deduplication token, so a request whose
response was lost may be applied twice by Telegram.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt, wait_exponential

from tgbridge.config import TELEGRAM_API_URL, Settings
from tgbridge.errors import BridgeError, ErrorKind, provider_error
from tgbridge.files import DEFAULT_CONTENT_TYPE, resolve_file_input
from tgbridge.log import get_logger
from tgbridge.models.telegram import ParseMode, TelegramChat, TelegramMessage
from tgbridge.ratelimit import RateLimiter
from tgbridge.sanitize import sanitize_text, strip_control_characters
from tgbridge.version import __version__

ChatId = Union[int, str]

UPDATE_KEYS = ("update_id", "message", "edited_message", "channel_post", "edited_channel_post")


class ChatAccessPolicy:
    """Allow-list of chat ids; an empty list allows every chat."""

    def __init__(self, allowed: Iterable[Union[int, str]] = ()):
        self._allowed = frozenset(str(chat_id) for chat_id in allowed)

    @property
    def unrestricted(self) -> bool:
        return not self._allowed

    def is_allowed(self, chat_id: ChatId) -> bool:
        return self.unrestricted or str(chat_id) in self._allowed

    def ensure(self, chat_id: ChatId) -> None:
        """Reject `chat_id` unless allowed. Call only with resolved ids, never @aliases."""
        if not self.is_allowed(chat_id):
            raise BridgeError(
                ErrorKind.DESTINATION_NOT_ALLOWED,
                f"Chat {chat_id} is not allowed",
                details={"chat_id": str(chat_id)},
            )


@dataclass
class _Attempt:
    """Outcome of a single HTTP attempt."""
    ok: bool
    result: Any = None
    status: Optional[int] = None
    description: Optional[str] = None
    retryable: bool = False
    retry_after: Optional[int] = None


class TelegramClient:
    def __init__(
        self,
        token: str,
        allowed_chat_ids: Iterable[Union[int, str]] = (),
        *,
        base_url: str = TELEGRAM_API_URL,
        timeout: float = 15.0,
        max_retries: int = 2,
        retry_base_delay: float = 0.3,
        rate_limit_per_second: int = 25,
        max_document_bytes: int = 15 * 1024 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        limiter: Optional[RateLimiter] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.policy = ChatAccessPolicy(allowed_chat_ids)
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._max_document_bytes = max_document_bytes
        self._timeout = timeout
        self._sleep = sleep
        self._log = get_logger(__name__, logger)
        self._limiter = limiter or RateLimiter(rate_limit_per_second, 1.0)
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/bot{token}/",
            headers={"User-Agent": f"tgbridge/{__version__}", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
            trust_env=False,
        )
        self._download_client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
            trust_env=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "TelegramClient":
        tg = settings.telegram
        return cls(
            settings.telegram_bot_token,
            settings.allowed_chat_ids,
            base_url=tg.base_url,
            timeout=tg.timeout,
            max_retries=tg.max_retries,
            retry_base_delay=tg.retry_base_delay,
            rate_limit_per_second=tg.rate_limit_per_second,
            max_document_bytes=tg.max_document_bytes,
            **kwargs,
        )

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    async def send_message(
        self,
        chat_id: ChatId,
        text: str,
        parse_mode: ParseMode = "HTML",
        disable_web_page_preview: bool = True,
        disable_notification: bool = False,
    ) -> TelegramMessage:
        resolved = await self.resolve_chat_id(chat_id)
        self.policy.ensure(resolved)

        payload = {
            "chat_id": resolved,
            "text": sanitize_text(text, parse_mode),
            "parse_mode": parse_mode,
            "disable_web_page_preview": disable_web_page_preview,
            "disable_notification": disable_notification,
        }
        self._log.debug(f"Sending message to chat {resolved}")
        result = await self._request("sendMessage", json=payload)
        message = TelegramMessage.model_validate(result)
        self._log.info(f"Message {message.message_id} delivered to chat {resolved}")
        return message

    async def send_document(
        self,
        chat_id: ChatId,
        file: str,
        filename: str = "document.pdf",
        caption: Optional[str] = None,
    ) -> TelegramMessage:
        resolved = await self.resolve_chat_id(chat_id)
        self.policy.ensure(resolved)

        document = await resolve_file_input(
            file,
            filename,
            self._max_document_bytes,
            client=self._download_client,
            timeout=self._timeout,
        )
        data = {"chat_id": str(resolved)}
        if caption:
            data["caption"] = strip_control_characters(caption)
        files = {
            "document": (document.filename, document.buffer, document.content_type or DEFAULT_CONTENT_TYPE),
        }

        self._log.debug(f"Uploading {document.filename} ({len(document.buffer)} bytes) to chat {resolved}")
        result = await self._request("sendDocument", data=data, files=files)
        message = TelegramMessage.model_validate(result)
        self._log.info(f"Document sent to chat {resolved} as message {message.message_id}")
        return message

    async def get_updates(self, offset: Optional[int] = None, timeout: int = 0, limit: int = 50) -> list[Any]:
        payload: dict[str, Any] = {"timeout": timeout, "limit": limit}
        if offset is not None:
            payload["offset"] = offset
        result = await self._request("getUpdates", json=payload)
        if not isinstance(result, list):
            return []
        self._log.debug(f"Fetched {len(result)} updates")
        return [
            {key: update[key] for key in UPDATE_KEYS if key in update} if isinstance(update, dict) else update
            for update in result
        ]

    async def get_chat(self, chat_id_or_username: ChatId) -> TelegramChat:
        result = await self._request("getChat", json={"chat_id": chat_id_or_username})
        chat = TelegramChat.model_validate(result)
        self.policy.ensure(chat.id)
        self._log.debug(f"Resolved {chat_id_or_username} to chat {chat.id}")
        return chat

    async def resolve_chat_id(self, chat_id: ChatId) -> ChatId:
        """Turn an @username into its numeric id; other ids pass through."""
        if isinstance(chat_id, str) and chat_id.startswith("@"):
            chat = await self.get_chat(chat_id)
            return chat.id
        return chat_id

    def _log_retry(self, method: str) -> Callable[[RetryCallState], None]:
        def before_sleep(state: RetryCallState) -> None:
            outcome = state.outcome.result()
            self._log.warning(
                f"Retrying {method} after transient error "
                f"(attempt={state.attempt_number}, status={outcome.status}, "
                f"delay={state.next_action.sleep:.2f}s): {outcome.description}"
            )
        return before_sleep

    async def _request(self, method: str, **kwargs: Any) -> Any:
        outcome = _Attempt(ok=False)
        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=self._retry_base_delay),
            retry=retry_if_result(lambda o: not o.ok and o.retryable),
            before_sleep=self._log_retry(method),
            retry_error_callback=lambda state: state.outcome.result(),
            sleep=self._sleep,
        )
        async for attempt in retrying:
            with attempt:
                await self._limiter.acquire()
                outcome = await self._attempt(method, **kwargs)
            attempts = attempt.retry_state.attempt_number
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(outcome)

        if outcome.ok:
            return outcome.result

        details: dict[str, Any] = {"method": method, "attempts": attempts}
        if outcome.retry_after is not None:
            details["retry_after"] = outcome.retry_after
        self._log.error(f"Telegram {method} failed (status={outcome.status}): {outcome.description}")
        raise provider_error(outcome.status, outcome.description, details)

    async def _attempt(self, method: str, **kwargs: Any) -> _Attempt:
        try:
            resp = await self._client.post(method, **kwargs)
        except httpx.TransportError as e:
            return _Attempt(ok=False, description=str(e) or type(e).__name__, retryable=True)

        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}

        parameters = body.get("parameters")
        retry_after = parameters.get("retry_after") if isinstance(parameters, dict) else None
        if resp.status_code >= 400:
            return _Attempt(
                ok=False,
                status=resp.status_code,
                description=body.get("description") or resp.text[:200] or f"HTTP {resp.status_code}",
                retryable=resp.status_code >= 500,
                retry_after=retry_after,
            )

        if not body.get("ok") or "result" not in body:
            status = body.get("error_code")
            status = status if isinstance(status, int) else None
            return _Attempt(
                ok=False,
                status=status,
                description=body.get("description") or "Unexpected response from Telegram",
                retryable=status is not None and status >= 500,
                retry_after=retry_after,
            )

        return _Attempt(ok=True, result=body["result"])

    async def aclose(self) -> None:
        await self._limiter.aclose()
        await self._client.aclose()
        await self._download_client.aclose()

