"""Error classification for failed turns.

Maps transport failures and server-reported errors onto a small set of
user-facing categories. Raw error text is only ever logged; the user sees
the category message.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum


class AgentErrorCode(StrEnum):
    RATE_LIMIT = "RATE_LIMIT"
    DAILY_LIMIT = "DAILY_RATE_LIMIT_EXCEEDED"
    UNAUTHORIZED = "UNAUTHORIZED"
    NETWORK = "NETWORK_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    STREAM_INTERRUPTED = "STREAM_INTERRUPTED"
    PARSE_ERROR = "PARSE_ERROR"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


ERROR_MESSAGES: dict[AgentErrorCode, str] = {
    AgentErrorCode.RATE_LIMIT: "Too many requests. Please wait a moment.",
    AgentErrorCode.DAILY_LIMIT: (
        "You've reached your daily message limit. Upgrade your plan for more messages."
    ),
    AgentErrorCode.UNAUTHORIZED: "Please sign in to continue.",
    AgentErrorCode.NETWORK: "Connection lost. Check your internet connection.",
    AgentErrorCode.SERVICE_UNAVAILABLE: "The assistant is temporarily unavailable. Please try again shortly.",
    AgentErrorCode.STREAM_INTERRUPTED: "Response interrupted. Please try again.",
    AgentErrorCode.PARSE_ERROR: "Received invalid response. Please try again.",
    AgentErrorCode.TIMEOUT: "Request timed out. Please try again.",
    AgentErrorCode.UNKNOWN: "Something went wrong. Please try again.",
}

_NOT_RETRYABLE = frozenset({AgentErrorCode.DAILY_LIMIT, AgentErrorCode.UNAUTHORIZED})

_AUTH_WORDS = re.compile(r"\b(auth|authentication|authorization|unauthori[sz]ed|unauthenticated)\b")
_NETWORK_WORDS = re.compile(r"\b(network|connect|connection|dns)\b")


@dataclass(frozen=True)
class AgentErrorInfo:
    """A classified error.

    Attributes:
        code: Category.
        message: User-facing text for the category.
        retryable: Advisory; nothing in the client retries automatically.
    """

    code: AgentErrorCode
    message: str
    retryable: bool


def error_info(code: AgentErrorCode) -> AgentErrorInfo:
    return AgentErrorInfo(code=code, message=ERROR_MESSAGES[code], retryable=code not in _NOT_RETRYABLE)


def classify_error(
    message: str | None,
    *,
    status_code: int | None = None,
    code: str | int | None = None,
) -> AgentErrorInfo:
    """Classify a failure into a user-facing category.

    The explicit error code and HTTP status take precedence over keywords
    found in the raw message.

    Args:
        message: Raw error text (server or transport).
        status_code: HTTP status, when the failure came from a response.
        code: Error code reported by the server, if any.
    """
    if isinstance(code, str):
        try:
            return error_info(AgentErrorCode(code.upper()))
        except ValueError:
            pass
    elif isinstance(code, int) and status_code is None:
        status_code = code

    text = (message or "").lower()

    if status_code is not None:
        by_status = _classify_status(status_code)
        if by_status is AgentErrorCode.RATE_LIMIT and "daily" in text:
            return error_info(AgentErrorCode.DAILY_LIMIT)
        if by_status is not None:
            return error_info(by_status)

    if "daily" in text:
        return error_info(AgentErrorCode.DAILY_LIMIT)
    if "429" in text or "rate limit" in text or "too many requests" in text:
        return error_info(AgentErrorCode.RATE_LIMIT)
    if "401" in text or _AUTH_WORDS.search(text):
        return error_info(AgentErrorCode.UNAUTHORIZED)
    if "timeout" in text or "timed out" in text:
        return error_info(AgentErrorCode.TIMEOUT)
    if _NETWORK_WORDS.search(text):
        return error_info(AgentErrorCode.NETWORK)
    if "unavailable" in text or "overloaded" in text or "503" in text or "502" in text:
        return error_info(AgentErrorCode.SERVICE_UNAVAILABLE)
    if "interrupted" in text:
        return error_info(AgentErrorCode.STREAM_INTERRUPTED)
    if "parse" in text or "invalid json" in text:
        return error_info(AgentErrorCode.PARSE_ERROR)

    return error_info(AgentErrorCode.UNKNOWN)


def _classify_status(status_code: int) -> AgentErrorCode | None:
    if status_code == 429:
        return AgentErrorCode.RATE_LIMIT
    if status_code in (401, 403):
        return AgentErrorCode.UNAUTHORIZED
    if status_code in (408, 504):
        return AgentErrorCode.TIMEOUT
    if status_code >= 500:
        return AgentErrorCode.SERVICE_UNAVAILABLE
    return None
