"""
tgbridge — MCP (JSON-RPC over SSE) bridge to the Telegram Bot API.

Multiplexes client sessions over long-lived SSE channels, normalizes request
envelopes and forwards tool calls to a rate-limited, retrying Bot API client.
"""

from tgbridge.version import __version__
from tgbridge.config import ConfigError, Settings
from tgbridge.errors import BridgeError, ErrorKind, classify_failure
from tgbridge.ratelimit import RateLimiter
from tgbridge.sessions import Session, SessionRegistry
from tgbridge.tools import ToolDispatcher
from tgbridge.transport.envelope import normalize_message
from tgbridge.transport.http import ChatAccessPolicy, TelegramClient

__all__ = [
    "__version__",
    "Settings",
    "ConfigError",
    "BridgeError",
    "ErrorKind",
    "classify_failure",
    "RateLimiter",
    "Session",
    "SessionRegistry",
    "ToolDispatcher",
    "normalize_message",
    "ChatAccessPolicy",
    "TelegramClient",
]
