"""DeepSeek error envelopes and their mapping onto the shared taxonomy."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

import httpx

from storyloom.domain.ai.enums import ErrorCategory, ErrorCode, ErrorSeverity, RecoveryStrategy
from storyloom.domain.ai.error_processor import BaseErrorProcessor
from storyloom.domain.ai.errors import AIError, ErrorMetadata

PROVIDER: Final = "deepseek"


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _to_int(value: Any) -> int | None:
    number = _to_number(value)
    return int(number) if number is not None else None


class DeepSeekAPIError(AIError):
    """Non-success reply from the DeepSeek HTTP API."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        provider_code: str | None = None,
        error_type: str | None = None,
        retry_after: float | None = None,
        request_id: str | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message, provider=PROVIDER)
        self.status_code = status_code
        self.provider_code = provider_code
        self.error_type = error_type
        self.retry_after = retry_after
        self.request_id = request_id
        self.body = body

    @classmethod
    def from_envelope(
        cls,
        envelope: Mapping[str, Any],
        *,
        status_code: int | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> "DeepSeekAPIError":
        """Build from ``{"error": {...}, "status": ..., "retry_after": ..., "request_id": ...}``."""
        error = envelope.get("error")
        details: Mapping[str, Any] = error if isinstance(error, Mapping) else {}
        headers = headers or envelope.get("headers") or {}
        lowered = {str(key).lower(): value for key, value in headers.items()}

        status = _to_int(details.get("status")) or _to_int(envelope.get("status")) or status_code
        retry_after = _to_number(
            details.get("retry_after", envelope.get("retry_after", lowered.get("retry-after")))
        )
        request_id = envelope.get("request_id") or envelope.get("requestId") or lowered.get("x-request-id")
        message = details.get("message") or (error if isinstance(error, str) else None)
        if not message:
            message = f"DeepSeek API returned status {status}" if status else "DeepSeek API error"
        code = details.get("code")
        error_type = details.get("type")
        return cls(
            str(message),
            status_code=status,
            provider_code=str(code) if code else None,
            error_type=error_type if isinstance(error_type, str) else None,
            retry_after=retry_after,
            request_id=request_id if isinstance(request_id, str) else None,
            body=dict(envelope),
        )

    @classmethod
    def from_response(cls, response: httpx.Response) -> "DeepSeekAPIError":
        try:
            payload = response.json()
        except ValueError:
            payload = None
        envelope: Mapping[str, Any]
        if isinstance(payload, Mapping):
            envelope = payload
        else:
            text = response.text.strip()
            envelope = {"error": {"message": text}} if text else {}
        return cls.from_envelope(envelope, status_code=response.status_code, headers=response.headers)


@dataclass(frozen=True, slots=True)
class _Mapping:
    code: ErrorCode
    severity: ErrorSeverity
    retryable: bool
    recovery: RecoveryStrategy
    user_message: str


DEEPSEEK_ERROR_MAP: Final[dict[str, _Mapping]] = {
    "invalid_api_key": _Mapping(
        ErrorCode.DEEPSEEK_INVALID_API_KEY,
        ErrorSeverity.HIGH,
        False,
        RecoveryStrategy.USER_ACTION,
        "The DeepSeek API key is invalid, please re-enter it in the settings.",
    ),
    "rate_limit_exceeded": _Mapping(
        ErrorCode.DEEPSEEK_RATE_LIMIT_EXCEEDED,
        ErrorSeverity.MEDIUM,
        True,
        RecoveryStrategy.RETRY,
        "DeepSeek rate limit reached, the request will be retried automatically.",
    ),
    "kv_cache_error": _Mapping(
        ErrorCode.DEEPSEEK_CACHE_ERROR,
        ErrorSeverity.MEDIUM,
        False,
        RecoveryStrategy.FALLBACK,
        "DeepSeek KV cache is unavailable, falling back to uncached generation.",
    ),
    "reasoning_mode_failed": _Mapping(
        ErrorCode.DEEPSEEK_REASONING_FAILED,
        ErrorSeverity.MEDIUM,
        False,
        RecoveryStrategy.FALLBACK,
        "DeepSeek reasoning mode failed, switching to the standard chat model.",
    ),
    "compatibility_error": _Mapping(
        ErrorCode.DEEPSEEK_COMPATIBILITY_ERROR,
        ErrorSeverity.MEDIUM,
        False,
        RecoveryStrategy.FALLBACK,
        "The compatibility mode is not supported, switching to the default mode.",
    ),
    "token_calculation_error": _Mapping(
        ErrorCode.DEEPSEEK_TOKEN_CALC_ERROR,
        ErrorSeverity.MEDIUM,
        True,
        RecoveryStrategy.RETRY,
        "Token calculation failed, the request will be retried.",
    ),
    "service_unavailable": _Mapping(
        ErrorCode.SERVICE_UNAVAILABLE,
        ErrorSeverity.MEDIUM,
        True,
        RecoveryStrategy.RETRY,
        "DeepSeek is temporarily unavailable, the request will be retried automatically.",
    ),
}

# Server side statuses treated as transient outages.
SERVER_ERROR_STATUSES: Final = frozenset({500, 502, 503, 504})

PROVIDER_CODE_ALIASES: Final[dict[str, str]] = {
    "invalid_api_key": "invalid_api_key",
    "invalid_authentication": "invalid_api_key",
    "rate_limit_exceeded": "rate_limit_exceeded",
    "requests_exceeded": "rate_limit_exceeded",
    "kv_cache_error": "kv_cache_error",
    "cache_error": "kv_cache_error",
    "kv_cache_failed": "kv_cache_error",
    "reasoning_mode_failed": "reasoning_mode_failed",
    "reasoning_failed": "reasoning_mode_failed",
    "reasoning_unavailable": "reasoning_mode_failed",
    "compatibility_error": "compatibility_error",
    "compatibility_mode_failed": "compatibility_error",
    "compatibility_mode_error": "compatibility_error",
    "token_calculation_error": "token_calculation_error",
    "token_calc_error": "token_calculation_error",
    "token_count_failed": "token_calculation_error",
    "service_unavailable": "service_unavailable",
    "server_overloaded": "service_unavailable",
}

# (substrings, mapping key) checked in order against the lower-cased message.
MESSAGE_HINTS: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (("kv cache",), "kv_cache_error"),
    (("reasoning",), "reasoning_mode_failed"),
    (("compatibility", "兼容"), "compatibility_error"),
    (("token", "计数", "计算"), "token_calculation_error"),
)


@dataclass(slots=True)
class _ErrorInfo:
    code: str = ""
    message: str | None = None
    status: int | None = None
    error_type: str | None = None
    request_id: str | None = None
    retry_after: float | None = None


class DeepSeekErrorProcessor(BaseErrorProcessor):
    def __init__(self) -> None:
        super().__init__(
            PROVIDER,
            default_severity=ErrorSeverity.HIGH,
            default_category=ErrorCategory.AI_SERVICE,
        )

    def get_provider_error_code(self, error: BaseException, metadata: ErrorMetadata) -> ErrorCode | None:
        info = self._extract_info(error)
        if info is None:
            return None

        key = PROVIDER_CODE_ALIASES.get(info.code.strip().lower())
        if key is None and info.status in (401, 403):
            key = "invalid_api_key"
        elif key is None and info.status == 429:
            key = "rate_limit_exceeded"
        elif key is None and info.status in SERVER_ERROR_STATUSES:
            key = "service_unavailable"
        elif key is None and info.message:
            message = info.message.lower()
            key = next((hint for needles, hint in MESSAGE_HINTS if any(n in message for n in needles)), None)

        if key is None:
            if isinstance(error, DeepSeekAPIError):
                metadata.details = metadata.details or self._serialize_details(info)
                metadata.user_message = metadata.user_message or info.message
            return None

        mapping = DEEPSEEK_ERROR_MAP[key]
        self._apply_metadata(metadata, info, mapping)
        return mapping.code

    @staticmethod
    def _extract_info(error: BaseException) -> _ErrorInfo | None:
        if isinstance(error, DeepSeekAPIError):
            return _ErrorInfo(
                code=error.provider_code or "",
                message=error.message,
                status=error.status_code,
                error_type=error.error_type,
                request_id=error.request_id,
                retry_after=error.retry_after,
            )
        if isinstance(error, httpx.HTTPStatusError):
            api_error = DeepSeekAPIError.from_response(error.response)
            return DeepSeekErrorProcessor._extract_info(api_error)
        message = str(error)
        if not message:
            return None
        return _ErrorInfo(message=message)

    def _apply_metadata(self, metadata: ErrorMetadata, info: _ErrorInfo, mapping: _Mapping) -> None:
        metadata.user_message = metadata.user_message or mapping.user_message
        metadata.details = metadata.details or self._serialize_details(info, mapping.code)
        metadata.category = metadata.category or ErrorCategory.AI_SERVICE
        metadata.severity = metadata.severity or mapping.severity
        if metadata.retryable is None:
            metadata.retryable = mapping.retryable
        metadata.recovery = metadata.recovery or mapping.recovery
        extras = {
            "provider_code": info.code or None,
            "provider_type": info.error_type,
            "provider_status": info.status,
            "provider_request_id": info.request_id,
            "retry_after_seconds": info.retry_after,
        }
        metadata.context.additional_data.update({key: value for key, value in extras.items() if value is not None})

    @staticmethod
    def _serialize_details(info: _ErrorInfo, mapped_code: ErrorCode | None = None) -> str:
        parts: list[str] = []
        if info.code:
            parts.append(f"providerCode={info.code}")
        if mapped_code is not None:
            parts.append(f"mappedCode={int(mapped_code)}")
        if info.status is not None:
            parts.append(f"status={info.status}")
        if info.error_type:
            parts.append(f"type={info.error_type}")
        if info.request_id:
            parts.append(f"requestId={info.request_id}")
        if not parts and info.message:
            parts.append(info.message)
        return " | ".join(parts)


__all__ = (
    "DEEPSEEK_ERROR_MAP",
    "PROVIDER",
    "PROVIDER_CODE_ALIASES",
    "SERVER_ERROR_STATUSES",
    "DeepSeekAPIError",
    "DeepSeekErrorProcessor",
)
