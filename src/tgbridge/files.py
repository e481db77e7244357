"""
Document source resolution — data URIs and http(s) downloads into bounded bytes.
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote, urlsplit

import httpx

from tgbridge.errors import BridgeError, ErrorKind
from tgbridge.sanitize import strip_control_characters

logger = logging.getLogger("tgbridge.files")

DATA_URI = re.compile(r"^data:(?P<mime>[^,]*?);base64,(?P<data>.+)$", re.DOTALL)
UNSAFE_FILENAME_CHARS = re.compile(r"[^\w\-.]+", re.ASCII)
DOWNLOAD_TIMEOUT = 15.0
DEFAULT_FILENAME = "document"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class ResolvedFile:
    buffer: bytes
    filename: str
    content_type: Optional[str] = None


def sanitize_filename(name: str, fallback: str = DEFAULT_FILENAME) -> str:
    """Reduce `name` to a safe basename."""
    base = re.split(r"[\\/]", strip_control_characters(name or ""))[-1]
    base = UNSAFE_FILENAME_CHARS.sub("_", base).strip(".")
    return base or fallback


def _decoded_length(data: str) -> int:
    stripped = data.rstrip("=")
    return len(stripped) * 3 // 4


def _resolve_data_uri(reference: str, filename: str, max_bytes: int) -> ResolvedFile:
    match = DATA_URI.match(reference)
    if not match:
        raise BridgeError(ErrorKind.INVALID_SOURCE, "Invalid data URI provided for file upload")

    data = "".join(match.group("data").split())
    if _decoded_length(data) > max_bytes:
        raise BridgeError(ErrorKind.TOO_LARGE, "File exceeds allowed size limit", details={"max_bytes": max_bytes})
    try:
        buffer = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise BridgeError(ErrorKind.INVALID_SOURCE, "Data URI payload is not valid base64") from e
    if len(buffer) > max_bytes:
        raise BridgeError(ErrorKind.TOO_LARGE, "File exceeds allowed size limit", details={"max_bytes": max_bytes})

    return ResolvedFile(
        buffer=buffer,
        filename=sanitize_filename(filename),
        content_type=match.group("mime").split(";", 1)[0].strip() or DEFAULT_CONTENT_TYPE,
    )


async def _download(
    url: str,
    filename: str,
    max_bytes: int,
    client: Optional[httpx.AsyncClient],
    timeout: float,
) -> ResolvedFile:
    own_client = client is None
    http = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True, trust_env=False)
    try:
        async with http.stream("GET", url, timeout=timeout) as resp:
            if resp.status_code >= 400:
                raise BridgeError(
                    ErrorKind.DOWNLOAD_FAILED,
                    "Failed to download document from provided URL",
                    details={"status": resp.status_code},
                )
            declared = resp.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise BridgeError(ErrorKind.TOO_LARGE, "File exceeds allowed size limit", details={"max_bytes": max_bytes})

            chunks: list[bytes] = []
            received = 0
            async for chunk in resp.aiter_bytes():
                received += len(chunk)
                if received > max_bytes:
                    raise BridgeError(ErrorKind.TOO_LARGE, "File exceeds allowed size limit", details={"max_bytes": max_bytes})
                chunks.append(chunk)
            content_type = resp.headers.get("content-type")
    except httpx.HTTPError as e:
        logger.warning(f"Download of {url} failed: {e}")
        raise BridgeError(ErrorKind.DOWNLOAD_FAILED, "Failed to download document from provided URL") from e
    finally:
        if own_client:
            await http.aclose()

    url_name = unquote(urlsplit(url).path.rsplit("/", 1)[-1])
    return ResolvedFile(
        buffer=b"".join(chunks),
        filename=sanitize_filename(filename or url_name),
        content_type=content_type,
    )


async def resolve_file_input(
    reference: str,
    filename: str,
    max_bytes: int,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> ResolvedFile:
    """Turn a data URI or http(s) URL into a ResolvedFile no larger than `max_bytes`."""
    if reference.startswith("data:"):
        return _resolve_data_uri(reference, filename, max_bytes)

    parts = urlsplit(reference)
    if parts.scheme not in ("http", "https"):
        raise BridgeError(ErrorKind.INVALID_SOURCE, "Only http(s) URLs or base64 data URIs are supported")
    if not parts.netloc:
        raise BridgeError(ErrorKind.INVALID_SOURCE, "File must be a valid http(s) URL")
    return await _download(reference, filename, max_bytes, client, timeout)
