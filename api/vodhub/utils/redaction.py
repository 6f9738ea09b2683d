"""Simple redaction helpers for logs and diagnostics."""

from __future__ import annotations

import re

_URL_USERINFO_RE = re.compile(r"([a-z][a-z0-9+.-]*://)([^@/\s]+)@", re.IGNORECASE)
_QUERY_SECRET_RE = re.compile(
    r"(?i)(token|secret|password|api_key|apikey|access_token|auth_key|sign|signature|key)=([^&\s\"]+)"
)
_BEARER_RE = re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~-]+)")

MAX_LOGGED_URL_LENGTH = 240


def redact_secrets(text: str) -> str:
    """Redact common secret patterns from a log string."""
    if not text:
        return text
    redacted = _URL_USERINFO_RE.sub(r"\1***@", text)
    redacted = _QUERY_SECRET_RE.sub(r"\1=***", redacted)
    redacted = _BEARER_RE.sub(r"\1***", redacted)
    return redacted


def loggable_url(url: str) -> str:
    """Redact and truncate an upstream URL before it reaches a log line."""
    redacted = redact_secrets(url or "")
    if len(redacted) > MAX_LOGGED_URL_LENGTH:
        return redacted[:MAX_LOGGED_URL_LENGTH] + "..."
    return redacted
