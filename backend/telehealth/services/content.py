"""Chat content checks: length/emptiness validation, HTML sanitization, AI mention handling."""

import re

from telehealth.core.errors import InvalidArgument

MAX_MESSAGE_LENGTH = 5000

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_IFRAME_RE = re.compile(r"<iframe\b[^<]*(?:(?!</iframe>)<[^<]*)*</iframe>", re.IGNORECASE)
_JS_URI_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+\s*=", re.IGNORECASE)

_PATTERNS = (_SCRIPT_RE, _IFRAME_RE, _JS_URI_RE, _EVENT_HANDLER_RE)


def validate_content(content: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Raise InvalidArgument unless the text is non-blank and within the length limit."""
    if content is None or not content.strip():
        raise InvalidArgument("Message content cannot be empty")
    if len(content) > max_length:
        raise InvalidArgument(
            f"Message content exceeds maximum length of {max_length} characters"
        )
    return content


def sanitize_content(content: str) -> str:
    """
    Strip script/iframe elements, ``javascript:`` URIs and inline event
    handlers, then trim. Removal repeats until nothing matches, since taking
    one match out can join its neighbours into a new one
    (``javajavascript:script:``); the result is therefore a fixed point and
    sanitizing it again changes nothing.
    """
    cleaned = content
    while True:
        previous = cleaned
        for pattern in _PATTERNS:
            cleaned = pattern.sub("", cleaned)
        cleaned = cleaned.strip()
        if cleaned == previous:
            return cleaned


def prepare_content(content: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Validate, sanitize, and make sure something is left to store."""
    validate_content(content, max_length)
    sanitized = sanitize_content(content)
    if not sanitized:
        raise InvalidArgument("Message content is empty after sanitization")
    return sanitized


def has_mention(content: str, trigger: str = "@ai") -> bool:
    """Case-sensitive literal substring match."""
    return trigger in content


def strip_mention(content: str, trigger: str = "@ai") -> str:
    return content.replace(trigger, "").strip()
