"""Tests for LLM error classification."""

import anthropic
import httpx
import pytest

from keygraph.llm.errors import (
    LLMError,
    LLMErrorType,
    classify_error,
    extract_status_code,
    is_retryable,
)

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _status_error(cls, status: int, message: str = "error"):
    response = httpx.Response(status, request=REQUEST)
    return cls(message, response=response, body=None)


class TestClassifyAnthropicErrors:
    @pytest.mark.parametrize(
        ("error", "error_type", "retryable"),
        [
            (_status_error(anthropic.AuthenticationError, 401), LLMErrorType.AUTH, False),
            (_status_error(anthropic.PermissionDeniedError, 403), LLMErrorType.AUTH, False),
            (
                _status_error(anthropic.NotFoundError, 404, "model: claude-nope not found"),
                LLMErrorType.MODEL,
                False,
            ),
            (_status_error(anthropic.NotFoundError, 404, "no route"), LLMErrorType.ENDPOINT, False),
            (_status_error(anthropic.RateLimitError, 429), LLMErrorType.RATE_LIMITED, True),
            (_status_error(anthropic.InternalServerError, 500), LLMErrorType.ENDPOINT, True),
            (_status_error(anthropic.BadRequestError, 400), LLMErrorType.UNKNOWN, False),
            (anthropic.APITimeoutError(request=REQUEST), LLMErrorType.ENDPOINT, True),
            (anthropic.APIConnectionError(request=REQUEST), LLMErrorType.ENDPOINT, True),
        ],
    )
    def test_sdk_exceptions(self, error, error_type, retryable):
        classified = classify_error(error)

        assert classified.error_type == error_type
        assert classified.retryable is retryable
        assert classified.__cause__ is error

    def test_status_code_preserved(self):
        classified = classify_error(_status_error(anthropic.RateLimitError, 429))
        assert classified.status_code == 429


class TestClassifyByMessage:
    @pytest.mark.parametrize(
        ("message", "error_type", "retryable"),
        [
            ("HTTP 401 Unauthorized", LLMErrorType.AUTH, False),
            ("invalid api key provided", LLMErrorType.AUTH, False),
            ("model llama-9 not found", LLMErrorType.MODEL, False),
            ("status: 404", LLMErrorType.ENDPOINT, False),
            ("dial tcp: connection refused", LLMErrorType.ENDPOINT, True),
            ("context deadline exceeded", LLMErrorType.ENDPOINT, True),
            ("request canceled", LLMErrorType.ENDPOINT, False),
            ("too many requests", LLMErrorType.RATE_LIMITED, True),
            ("CUDA error: out of memory", LLMErrorType.ENDPOINT, True),
            ("upstream returned status 503", LLMErrorType.ENDPOINT, True),
            ("something odd happened", LLMErrorType.UNKNOWN, False),
        ],
    )
    def test_heuristics(self, message, error_type, retryable):
        classified = classify_error(RuntimeError(message))

        assert classified.error_type == error_type
        assert classified.retryable is retryable

    def test_builtin_timeout_is_retryable(self):
        assert is_retryable(TimeoutError())

    def test_llm_error_passes_through(self):
        error = LLMError(LLMErrorType.MODEL, "model not found", False)
        assert classify_error(error) is error


class TestExtractStatusCode:
    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("HTTP 503", 503),
            ("status: 429", 429),
            ("error code 500", 500),
            ("processed 503 records", None),
            ("no numbers here", None),
        ],
    )
    def test_extract(self, message, expected):
        assert extract_status_code(message) == expected
