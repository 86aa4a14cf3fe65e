"""Helpers that scrub secrets out of user-visible error text."""

from __future__ import annotations

import re
from typing import Iterable

__all__ = ["sanitize_error_message", "http_error_message", "REDACTED"]

REDACTED = "[redacted]"

_BEARER_PATTERN = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/=-]+")
_KEY_PATTERN = re.compile(r"\b(?:sk|pk|rk)-[A-Za-z0-9_-]{8,}")
_QUERY_SECRET_PATTERN = re.compile(
    r"(?i)\b(api[_-]?key|key|token|access_token|x-subscription-token)=([^&\s\"']+)"
)
_HEADER_SECRET_PATTERN = re.compile(
    r"(?i)\b(x-subscription-token|x-api-key|authorization|api-key)[\"']?\s*[:=]\s*[\"']?([^\s,\"'}]+)"
)

_HTTP_MESSAGES: dict[int, str] = {
    400: "Bad request. Please check your input and try again.",
    401: "Authentication failed. Please check your API key in settings.",
    403: "Access forbidden. Please check your API key and permissions.",
    404: "Resource not found. Please check the URL or model name.",
    429: "Rate limit exceeded. Please wait and try again.",
    500: "Server error. Please try again later.",
    502: "Server error. Please try again later.",
    503: "Server error. Please try again later.",
    504: "Gateway timeout. The request took too long. Please try again.",
}


def http_error_message(status: int) -> str:
    """Return a friendly description for an HTTP status code."""

    return _HTTP_MESSAGES.get(status, f"API error ({status}). Please try again.")


def sanitize_error_message(text: object, *, secrets: Iterable[str | None] = ()) -> str:
    """Strip API keys, bearer tokens and key-bearing query strings from ``text``."""

    message = str(text or "").strip()
    for secret in secrets:
        if secret and len(secret) >= 4:
            message = message.replace(secret, REDACTED)
    message = _BEARER_PATTERN.sub(f"Bearer {REDACTED}", message)
    message = _KEY_PATTERN.sub(REDACTED, message)
    message = _QUERY_SECRET_PATTERN.sub(lambda match: f"{match.group(1)}={REDACTED}", message)
    message = _HEADER_SECRET_PATTERN.sub(lambda match: f"{match.group(1)}: {REDACTED}", message)
    return message
