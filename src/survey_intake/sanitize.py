"""Free-text sanitization applied to every answer before persistence.

``bleach`` strips all markup; the regex passes afterwards remove what
survives as plain text but is still dangerous when echoed into an HTML
e-mail or admin view (inline handlers, ``javascript:`` URLs).
"""

import re
from typing import Any

import bleach

from survey_intake.constants import MAX_TEXT_LENGTH

_SCRIPT_BLOCK_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_EVENT_HANDLER_RE = re.compile(r"\bon\w+\s*=\s*(\"[^\"]*\"|'[^']*'|[^\s>]*)", re.IGNORECASE)
_JS_PROTOCOL_RE = re.compile(r"javascript\s*:", re.IGNORECASE)
_DATA_HTML_RE = re.compile(r"data\s*:\s*text/html", re.IGNORECASE)


def sanitize_text(value: str, max_length: int = MAX_TEXT_LENGTH) -> str:
    """Strip markup and script vectors, trim, and cap the length."""
    # Drop script/style bodies entirely; bleach would keep their text.
    cleaned = _SCRIPT_BLOCK_RE.sub("", value)
    cleaned = bleach.clean(cleaned, tags=set(), attributes={}, strip=True)
    # bleach escapes bare ampersands; angle brackets stay escaped.
    cleaned = cleaned.replace("&amp;", "&")
    cleaned = _EVENT_HANDLER_RE.sub("", cleaned)
    cleaned = _JS_PROTOCOL_RE.sub("", cleaned)
    cleaned = _DATA_HTML_RE.sub("", cleaned)
    cleaned = cleaned.strip()
    return cleaned[:max_length]


def sanitize_answer_value(value: Any) -> Any:
    """Sanitize strings and string lists; numbers pass through.

    List items are never dropped: one that sanitizes down to an empty string
    stays in place so the validator rejects it instead of silently
    accepting the rest of the list.
    """
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, list):
        return [sanitize_text(v) if isinstance(v, str) else v for v in value]
    return value
