from __future__ import annotations

import httpx
import pytest

from storyloom.domain.ai.enums import ErrorCategory, ErrorCode, ErrorSeverity, RecoveryStrategy
from storyloom.domain.ai.errors import ErrorMetadata
from storyloom.domain.ai.providers.deepseek.errors import DeepSeekAPIError, DeepSeekErrorProcessor


@pytest.fixture
def processor() -> DeepSeekErrorProcessor:
    return DeepSeekErrorProcessor()


def test_invalid_api_key_status(processor: DeepSeekErrorProcessor) -> None:
    error = DeepSeekAPIError.from_envelope({"error": {"message": "Authentication Fails"}}, status_code=401)

    processed = processor.process(error)

    assert processed.code is ErrorCode.DEEPSEEK_INVALID_API_KEY
    assert processed.severity is ErrorSeverity.HIGH
    assert processed.recovery is RecoveryStrategy.USER_ACTION
    assert not processed.retryable
    assert processed.context is not None
    assert processed.context.additional_data["provider_status"] == 401
    assert processed.user_message.startswith("The DeepSeek API key is invalid")


def test_rate_limit_carries_retry_after(processor: DeepSeekErrorProcessor) -> None:
    error = DeepSeekAPIError.from_envelope(
        {"error": {"code": "rate_limit_exceeded", "message": "Too many requests"}, "retry_after": 2},
        status_code=429,
    )

    processed = processor.process(error)

    assert processed.code is ErrorCode.DEEPSEEK_RATE_LIMIT_EXCEEDED
    assert processed.retryable
    assert processed.recovery is RecoveryStrategy.RETRY
    assert processed.retry_after_seconds == 2.0
    assert processed.context is not None
    assert processed.context.additional_data["provider_code"] == "rate_limit_exceeded"
    assert "providerCode=rate_limit_exceeded" in (processed.details or "")
    assert f"mappedCode={int(ErrorCode.DEEPSEEK_RATE_LIMIT_EXCEEDED)}" in (processed.details or "")


def test_retry_after_header_is_used(processor: DeepSeekErrorProcessor) -> None:
    response = httpx.Response(
        429,
        json={"error": {"message": "slow down"}},
        headers={"Retry-After": "5", "x-request-id": "abc"},
    )

    processed = processor.process(DeepSeekAPIError.from_response(response))

    assert processed.retry_after_seconds == 5.0
    assert processed.context is not None
    assert processed.context.additional_data["provider_request_id"] == "abc"


def test_kv_cache_message_falls_back(processor: DeepSeekErrorProcessor) -> None:
    processed = processor.process(RuntimeError("KV cache unavailable for this model"))

    assert processed.code is ErrorCode.DEEPSEEK_CACHE_ERROR
    assert processed.recovery is RecoveryStrategy.FALLBACK
    assert not processed.retryable
    assert processed.category is ErrorCategory.AI_SERVICE


def test_token_calculation_failure_is_retryable(processor: DeepSeekErrorProcessor) -> None:
    error = DeepSeekAPIError.from_envelope({"error": {"code": "token_count_failed", "message": "oops"}})

    processed = processor.process(error)

    assert processed.code is ErrorCode.DEEPSEEK_TOKEN_CALC_ERROR
    assert processed.retryable
    assert processed.recovery is RecoveryStrategy.RETRY


def test_reasoning_alias_code(processor: DeepSeekErrorProcessor) -> None:
    error = DeepSeekAPIError.from_envelope({"error": {"code": "reasoning_unavailable", "message": "nope"}})

    processed = processor.process(error)

    assert processed.code is ErrorCode.DEEPSEEK_REASONING_FAILED
    assert processed.recovery is RecoveryStrategy.FALLBACK


def test_http_status_error_is_unwrapped(processor: DeepSeekErrorProcessor) -> None:
    request = httpx.Request("POST", "https://api.deepseek.com/v1/chat/completions")
    response = httpx.Response(403, json={"error": {"message": "forbidden"}}, request=request)
    error = httpx.HTTPStatusError("forbidden", request=request, response=response)

    processed = processor.process(error)

    assert processed.code is ErrorCode.DEEPSEEK_INVALID_API_KEY


def test_unmapped_api_error_falls_through_with_details(processor: DeepSeekErrorProcessor) -> None:
    error = DeepSeekAPIError.from_envelope(
        {"error": {"message": "unsupported parameter", "type": "invalid_request_error"}, "request_id": "r-9"},
        status_code=400,
    )

    processed = processor.process(error)

    assert processed.code is ErrorCode.UNKNOWN_ERROR
    assert processed.user_message == "unsupported parameter"
    assert processed.details == "status=400 | type=invalid_request_error | requestId=r-9"


@pytest.mark.parametrize("status", [500, 502, 503, 504])
def test_server_errors_are_retryable_outages(processor: DeepSeekErrorProcessor, status: int) -> None:
    response = httpx.Response(
        status,
        json={"error": {"message": "Service Unavailable", "type": "server_error"}},
        headers={"Retry-After": "3"},
    )

    processed = processor.process(DeepSeekAPIError.from_response(response))

    assert processed.code is ErrorCode.SERVICE_UNAVAILABLE
    assert processed.retryable
    assert processed.recovery is RecoveryStrategy.RETRY
    assert processed.category is ErrorCategory.AI_SERVICE
    assert processed.retry_after_seconds == 3.0
    assert processed.context is not None
    assert processed.context.additional_data["provider_status"] == status


def test_plain_network_errors_use_generic_rules(processor: DeepSeekErrorProcessor) -> None:
    processed = processor.process(httpx.ConnectError("connection refused"))

    assert processed.code is ErrorCode.CONNECTION_FAILED
    assert processed.retryable


def test_from_response_handles_non_json_bodies() -> None:
    error = DeepSeekAPIError.from_response(httpx.Response(502, text="Bad Gateway"))

    assert error.status_code == 502
    assert error.message == "Bad Gateway"


def test_caller_metadata_wins(processor: DeepSeekErrorProcessor) -> None:
    metadata = ErrorMetadata(user_message="custom text", retryable=False)
    error = DeepSeekAPIError.from_envelope({"error": {"code": "rate_limit_exceeded"}}, status_code=429)

    processed = processor.process(error, metadata)

    assert processed.user_message == "custom text"
    assert not processed.retryable
