"""
tgbridge error types — one tagged error carrying an ErrorKind.

Provider failures are mapped to kinds by `classify_failure`, a pure ordered
decision list that never returns an unclassified result.
"""

import re
from enum import Enum
from typing import Any, NamedTuple, Optional


class ErrorKind(str, Enum):
    MALFORMED_PAYLOAD = "malformed_payload"
    LEGACY_DIALECT_DISABLED = "legacy_dialect_disabled"
    UNAUTHORIZED = "unauthorized"
    SESSION_NOT_FOUND = "session_not_found"
    DESTINATION_NOT_ALLOWED = "destination_not_allowed"
    DESTINATION_NOT_FOUND = "destination_not_found"
    FORBIDDEN = "forbidden"
    BAD_REQUEST = "bad_request"
    RATE_LIMITED = "rate_limited"
    PROVIDER_INTERNAL_ERROR = "provider_internal_error"
    DELIVERY_FAILED = "delivery_failed"
    INVALID_SOURCE = "invalid_source"
    TOO_LARGE = "too_large"
    DOWNLOAD_FAILED = "download_failed"
    INTERNAL_ERROR = "internal_error"

    @property
    def status(self) -> int:
        return _KIND_STATUS[self]


_KIND_STATUS: dict[ErrorKind, int] = {
    ErrorKind.MALFORMED_PAYLOAD: 400,
    ErrorKind.LEGACY_DIALECT_DISABLED: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.SESSION_NOT_FOUND: 404,
    ErrorKind.DESTINATION_NOT_ALLOWED: 403,
    ErrorKind.DESTINATION_NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.PROVIDER_INTERNAL_ERROR: 502,
    ErrorKind.DELIVERY_FAILED: 502,
    ErrorKind.INVALID_SOURCE: 400,
    ErrorKind.TOO_LARGE: 413,
    ErrorKind.DOWNLOAD_FAILED: 502,
    ErrorKind.INTERNAL_ERROR: 500,
}


class BridgeError(Exception):
    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status = status if status is not None else kind.status
        self.details = details

    def __repr__(self) -> str:
        return f"BridgeError(kind={self.kind.value!r}, status={self.status}, message={self.message!r})"

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "ok": False,
            "status": self.status,
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body


class Classification(NamedTuple):
    kind: ErrorKind
    status: int
    hint: Optional[str] = None


NOT_ALLOWED_PATTERN = re.compile(r"\bchat\b.*\bis not allowed\b", re.IGNORECASE)
NOT_FOUND_PATTERN = re.compile(r"(chat|user) not found", re.IGNORECASE)
BLOCKED_PATTERN = re.compile(r"blocked by the user|user is deactivated", re.IGNORECASE)

NOT_FOUND_HINT = (
    "Check the chat_id. The bot must be a member of the group or channel, "
    "and private users must have started a conversation with the bot."
)
BLOCKED_HINT = "The user blocked the bot. They must unblock it before messages can be delivered."


def classify_failure(status: Optional[int], description: Optional[str] = None) -> Classification:
    """Map a raw provider failure to exactly one ErrorKind.

    Rules are evaluated in order; the last one is the catch-all.
    """
    text = description or ""
    if status == 403 and NOT_ALLOWED_PATTERN.search(text):
        return Classification(ErrorKind.DESTINATION_NOT_ALLOWED, 403)
    if NOT_FOUND_PATTERN.search(text):
        return Classification(ErrorKind.DESTINATION_NOT_FOUND, 404, NOT_FOUND_HINT)
    if BLOCKED_PATTERN.search(text):
        return Classification(ErrorKind.DESTINATION_NOT_FOUND, 404, BLOCKED_HINT)
    if status == 403:
        return Classification(ErrorKind.FORBIDDEN, 403)
    if status == 400:
        return Classification(ErrorKind.BAD_REQUEST, 400)
    if status == 429:
        return Classification(ErrorKind.RATE_LIMITED, 429)
    if status is not None and status >= 500:
        return Classification(ErrorKind.PROVIDER_INTERNAL_ERROR, 502)
    return Classification(ErrorKind.DELIVERY_FAILED, 502)


def provider_error(
    status: Optional[int],
    description: Optional[str],
    details: Optional[dict[str, Any]] = None,
) -> BridgeError:
    """Build the BridgeError for a classified provider failure."""
    classification = classify_failure(status, description)
    merged: dict[str, Any] = dict(details or {})
    if status is not None:
        merged.setdefault("provider_status", status)
    if classification.hint:
        merged["hint"] = classification.hint
    return BridgeError(
        classification.kind,
        description or "Telegram API request failed",
        status=classification.status,
        details=merged or None,
    )


def to_error_response(exc: BaseException) -> dict[str, Any]:
    """Render any exception as a structured error body."""
    if isinstance(exc, BridgeError):
        return exc.to_response()
    return BridgeError(ErrorKind.INTERNAL_ERROR, "Internal server error").to_response()
