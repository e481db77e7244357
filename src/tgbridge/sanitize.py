"""
Outbound text sanitization per Telegram parse mode.
"""

import re

import nh3

MARKDOWN_V2_SPECIAL_CHARS = "_*[]()~`>#+-=|{}.!"
MARKDOWN_V2_ESCAPE = re.compile("([" + re.escape(MARKDOWN_V2_SPECIAL_CHARS) + "])")

# Tags Telegram renders in HTML parse mode.
HTML_ALLOWED_TAGS = {
    "a", "b", "strong", "i", "em", "u", "ins", "s", "strike", "del",
    "code", "pre", "span", "blockquote", "tg-spoiler", "br",
}
HTML_ALLOWED_ATTRIBUTES = {
    "a": {"href", "title"},
    "span": {"class"},
    "code": {"class"},
    "pre": {"class"},
}


def strip_control_characters(value: str) -> str:
    """Drop C0 controls (except newline and carriage return) and DEL."""
    return "".join(ch for ch in value if ch in "\n\r" or (ord(ch) >= 32 and ord(ch) != 127))


def escape_markdown_v2(value: str) -> str:
    return MARKDOWN_V2_ESCAPE.sub(r"\\\1", value)


def sanitize_html(value: str) -> str:
    return nh3.clean(
        value,
        tags=HTML_ALLOWED_TAGS,
        attributes=HTML_ALLOWED_ATTRIBUTES,
        link_rel=None,
    )


def sanitize_text(text: str, parse_mode: str) -> str:
    clean = strip_control_characters(text)
    if parse_mode == "HTML":
        return sanitize_html(clean)
    if parse_mode == "MarkdownV2":
        return escape_markdown_v2(clean)
    return clean
