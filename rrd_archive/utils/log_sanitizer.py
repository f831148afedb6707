"""
Log sanitization utilities.

RRD URLs carry the API session id in their query string; it must never reach
the log files.
"""

import re
from typing import Any

import httpx


def sanitize_for_log(value: Any, max_length: int = 100) -> str:
    """
    Sanitize a value for safe logging.

    Removes control characters and newlines that could be used for log
    injection, and limits the length.

    Args:
        value: The value to sanitize
        max_length: Maximum length of the output (default 100)

    Returns:
        Sanitized string safe for logging
    """
    sanitized = re.sub(r"[\x00-\x1f\x7f-\x9f\r\n\t]", "", str(value))

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."

    return sanitized


def redact_url(url: str) -> str:
    """
    Mask the session id in an RRD URL.

    Args:
        url: Full request URL

    Returns:
        The URL with ``session_id`` replaced by ``***``
    """
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL:
        return sanitize_for_log(url, max_length=200)

    if "session_id" not in parsed.params:
        return str(parsed)
    return str(parsed.copy_set_param("session_id", "***"))
