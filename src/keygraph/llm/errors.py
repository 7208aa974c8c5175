"""LLM error classification.

Every provider failure is turned into an LLMError carrying a type and a
retryable flag. The retry policy consults only that flag.
"""

from __future__ import annotations

import re
from enum import Enum

import anthropic

from keygraph.core.errors import KeygraphError

# Matches "HTTP 503", "status 503", "status: 503", "code 503" but not "processed 503 records"
_STATUS_CODE_PATTERN = re.compile(r"(?i)(?:HTTP|status[:\s]*|code[:\s]*)\s*(\d{3})")


class LLMErrorType(str, Enum):
    """Classification of an LLM failure."""

    AUTH = "auth"
    MODEL = "model"
    ENDPOINT = "endpoint"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


class LLMError(KeygraphError):
    """A classified failure from an LLM provider."""

    def __init__(
        self,
        error_type: LLMErrorType,
        message: str,
        retryable: bool,
        status_code: int | None = None,
        model: str | None = None,
    ):
        self.error_type = error_type
        self.message = message
        self.retryable = retryable
        self.status_code = status_code
        self.model = model
        super().__init__(self._format())

    def _format(self) -> str:
        parts = [self.error_type.value]
        if self.status_code:
            parts.append(f"HTTP {self.status_code}")
        if self.model:
            parts.append(f"model={self.model}")
        parts.append(self.message)
        return " ".join(parts)


def extract_status_code(message: str) -> int | None:
    """Extract an HTTP status code mentioned in an error message."""
    match = _STATUS_CODE_PATTERN.search(message)
    if match:
        code = int(match.group(1))
        if 100 <= code < 600:
            return code
    return None


def classify_error(error: BaseException) -> LLMError:
    """Classify any exception raised by an LLM call.

    Anthropic SDK exceptions are classified by type and status code. Other
    exceptions fall back to message heuristics.

    Args:
        error: The exception raised by the provider

    Returns:
        LLMError with type and retryable flag. ``error`` itself if it is
        already an LLMError.
    """
    if isinstance(error, LLMError):
        return error

    if isinstance(error, anthropic.APIError):
        classified = _classify_anthropic(error)
    elif isinstance(error, TimeoutError):
        classified = LLMError(LLMErrorType.ENDPOINT, "request timeout", True)
    elif isinstance(error, ConnectionError):
        classified = LLMError(LLMErrorType.ENDPOINT, "connection failed", True)
    else:
        classified = _classify_message(str(error))
    classified.__cause__ = error
    return classified


def _classify_anthropic(error: anthropic.APIError) -> LLMError:
    message = error.message if hasattr(error, "message") else str(error)

    # APITimeoutError subclasses APIConnectionError
    if isinstance(error, anthropic.APITimeoutError):
        return LLMError(LLMErrorType.ENDPOINT, "request timeout", True)
    if isinstance(error, anthropic.APIConnectionError):
        return LLMError(LLMErrorType.ENDPOINT, "connection failed", True)
    if not isinstance(error, anthropic.APIStatusError):
        return LLMError(LLMErrorType.UNKNOWN, message, False)

    status = error.status_code
    if isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return LLMError(LLMErrorType.AUTH, "authentication failed", False, status)
    if isinstance(error, anthropic.NotFoundError):
        if "model" in message.lower():
            return LLMError(LLMErrorType.MODEL, "model not found", False, status)
        return LLMError(LLMErrorType.ENDPOINT, "endpoint not found", False, status)
    if isinstance(error, anthropic.RateLimitError):
        return LLMError(LLMErrorType.RATE_LIMITED, "rate limited", True, status)
    if status >= 500:
        # Includes 529 overloaded
        return LLMError(LLMErrorType.ENDPOINT, "server error", True, status)
    return LLMError(LLMErrorType.UNKNOWN, message, False, status)


def _classify_message(message: str) -> LLMError:
    lower = message.lower()
    status = extract_status_code(message)

    if status == 401 or "unauthorized" in lower or "invalid api key" in lower:
        return LLMError(LLMErrorType.AUTH, "authentication failed", False, status)
    if "model" in lower and ("not found" in lower or "does not exist" in lower):
        return LLMError(LLMErrorType.MODEL, "model not found", False, status)
    if status == 404:
        return LLMError(LLMErrorType.ENDPOINT, "endpoint not found", False, status)
    if "connection refused" in lower or "no such host" in lower:
        return LLMError(LLMErrorType.ENDPOINT, "connection failed", True, status)
    if "cancelled" in lower or "canceled" in lower:
        return LLMError(LLMErrorType.ENDPOINT, "request cancelled", False, status)
    if "timeout" in lower or "timed out" in lower or "deadline exceeded" in lower:
        return LLMError(LLMErrorType.ENDPOINT, "request timeout", True, status)
    if status == 429 or "rate limit" in lower or "too many requests" in lower:
        return LLMError(LLMErrorType.RATE_LIMITED, "rate limited", True, status)
    if "cuda error" in lower or "gpu error" in lower:
        return LLMError(LLMErrorType.ENDPOINT, "GPU error", True, status)
    if status is not None and status >= 500:
        return LLMError(LLMErrorType.ENDPOINT, "server error", True, status)
    return LLMError(LLMErrorType.UNKNOWN, message or "llm error", False, status)


def is_retryable(error: BaseException) -> bool:
    """True if the error is classified as transient."""
    return classify_error(error).retryable
