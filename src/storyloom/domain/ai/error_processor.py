"""Normalize raw exceptions into classified :class:`ProcessedError` values."""

from __future__ import annotations

import json
from typing import Final

import httpx
import structlog

from storyloom.domain.ai.enums import ErrorCategory, ErrorCode, ErrorSeverity, RecoveryStrategy
from storyloom.domain.ai.errors import AIError, ErrorContext, ErrorMetadata, ProcessedError

logger = structlog.get_logger(__name__)

RETRYABLE_ERROR_CODES: Final[frozenset[ErrorCode]] = frozenset(
    {
        ErrorCode.CONNECTION_FAILED,
        ErrorCode.CONNECTION_TIMEOUT,
        ErrorCode.NETWORK_UNREACHABLE,
        ErrorCode.CONNECTION_RESET,
        ErrorCode.TOO_MANY_REQUESTS,
        ErrorCode.BANDWIDTH_EXCEEDED,
        ErrorCode.SERVICE_UNAVAILABLE,
        ErrorCode.RATE_LIMIT_EXCEEDED,
        ErrorCode.DEEPSEEK_RATE_LIMIT_EXCEEDED,
    }
)

CREDENTIAL_ERROR_CODES: Final[frozenset[ErrorCode]] = frozenset(
    {
        ErrorCode.DEEPSEEK_INVALID_API_KEY,
        ErrorCode.API_KEY_INVALID,
        ErrorCode.API_KEY_EXPIRED,
    }
)

FALLBACK_ERROR_CODES: Final[frozenset[ErrorCode]] = frozenset(
    {
        ErrorCode.DEEPSEEK_CACHE_ERROR,
        ErrorCode.DEEPSEEK_REASONING_FAILED,
        ErrorCode.DEEPSEEK_COMPATIBILITY_ERROR,
        ErrorCode.MODEL_NOT_AVAILABLE,
        ErrorCode.SERVICE_UNAVAILABLE,
    }
)

# (substrings, code) checked in order against the lower-cased message.
MESSAGE_HEURISTICS: Final[tuple[tuple[tuple[str, ...], ErrorCode], ...]] = (
    (("timeout", "timed out"), ErrorCode.CONNECTION_TIMEOUT),
    (("network", "fetch"), ErrorCode.CONNECTION_FAILED),
    (("unauthorized", "api key"), ErrorCode.API_KEY_INVALID),
    (("quota", "rate limit"), ErrorCode.RATE_LIMIT_EXCEEDED),
    (("invalid json", "parse"), ErrorCode.INVALID_JSON),
)


class BaseErrorProcessor:
    """Classify errors once, at the adapter boundary.

    Subclasses override :meth:`get_provider_error_code` to map native error
    envelopes. When it returns a code that code wins over the generic rules.
    """

    def __init__(
        self,
        provider: str,
        *,
        default_severity: ErrorSeverity = ErrorSeverity.HIGH,
        default_category: ErrorCategory = ErrorCategory.AI_SERVICE,
    ) -> None:
        self.provider = provider
        self.default_severity = default_severity
        self.default_category = default_category

    def process(self, error: BaseException, metadata: ErrorMetadata | None = None) -> ProcessedError:
        metadata = metadata or ErrorMetadata()
        if isinstance(error, ProcessedError):
            processed = self._merge_metadata(error, metadata)
        elif isinstance(error, AIError):
            processed = self._from_ai_error(error, metadata)
        else:
            processed = self._from_unknown_error(error, metadata)

        logger.error(
            f"[AI:{self.provider}] {processed.message}",
            code=int(processed.code),
            code_name=processed.code.name,
            retryable=processed.retryable,
            request_id=processed.context.request_id if processed.context else None,
            stage=processed.context.stage if processed.context else None,
        )
        return processed

    def get_provider_error_code(self, error: BaseException, metadata: ErrorMetadata) -> ErrorCode | None:
        """Map a provider specific error. May enrich ``metadata`` in place."""
        return None

    def map_error_code(self, error: BaseException, metadata: ErrorMetadata) -> ErrorCode:
        provider_code = self.get_provider_error_code(error, metadata)
        if provider_code is not None:
            return provider_code

        if isinstance(error, (TimeoutError, httpx.TimeoutException)):
            return ErrorCode.CONNECTION_TIMEOUT
        if isinstance(error, httpx.NetworkError):
            return ErrorCode.CONNECTION_FAILED
        if isinstance(error, (json.JSONDecodeError, httpx.DecodingError)):
            return ErrorCode.INVALID_JSON
        if isinstance(error, TypeError):
            return ErrorCode.INVALID_PARAMETERS

        message = str(error).lower()
        for needles, code in MESSAGE_HEURISTICS:
            if any(needle in message for needle in needles):
                return code
        return ErrorCode.UNKNOWN_ERROR

    def is_retryable(self, code: ErrorCode) -> bool:
        return code in RETRYABLE_ERROR_CODES

    def suggest_recovery_strategy(self, code: ErrorCode, retryable: bool) -> RecoveryStrategy:
        if retryable:
            return RecoveryStrategy.RETRY
        if code in CREDENTIAL_ERROR_CODES:
            return RecoveryStrategy.USER_ACTION
        if code in FALLBACK_ERROR_CODES:
            return RecoveryStrategy.FALLBACK
        return RecoveryStrategy.USER_ACTION

    def get_default_severity(self, code: ErrorCode) -> ErrorSeverity:
        if ErrorCode.API_KEY_INVALID <= code < ErrorCode.INVALID_JSON:
            return ErrorSeverity.HIGH
        if code >= ErrorCode.INVALID_JSON:
            return ErrorSeverity.MEDIUM
        return self.default_severity

    def get_default_category(self, code: ErrorCode) -> ErrorCategory:
        if ErrorCode.CONNECTION_FAILED <= code <= ErrorCode.FIREWALL_BLOCKED:
            return ErrorCategory.NETWORK
        if ErrorCode.API_KEY_INVALID <= code < ErrorCode.INVALID_JSON:
            return ErrorCategory.AI_SERVICE
        if ErrorCode.INVALID_JSON <= code < ErrorCode.CONFIG_ERROR:
            return ErrorCategory.VALIDATION
        if ErrorCode.CONFIG_ERROR <= code < 5000:
            return ErrorCategory.CONFIG
        return self.default_category

    def _merge_metadata(self, error: ProcessedError, metadata: ErrorMetadata) -> ProcessedError:
        retryable = metadata.retryable if metadata.retryable is not None else error.retryable
        return ProcessedError(
            error.message,
            code=error.code,
            severity=metadata.severity or error.severity,
            category=metadata.category or error.category,
            retryable=retryable,
            recovery=metadata.recovery or error.recovery,
            provider=error.provider or self.provider,
            user_message=metadata.user_message or error.user_message,
            details=metadata.details or error.details,
            context=self._build_context(metadata, error.context),
            timestamp=error.timestamp,
            original=error.original,
        )

    def _from_ai_error(self, error: AIError, metadata: ErrorMetadata) -> ProcessedError:
        code = error.code if error.code is not None else self.map_error_code(error, metadata)
        severity = metadata.severity or error.severity or self.get_default_severity(code)
        category = metadata.category or error.category or self.get_default_category(code)
        retryable = self._first_bool(metadata.retryable, error.retryable, self.is_retryable(code))
        return ProcessedError(
            error.message,
            code=code,
            severity=severity,
            category=category,
            retryable=retryable,
            recovery=metadata.recovery or self.suggest_recovery_strategy(code, retryable),
            provider=error.provider or self.provider,
            user_message=metadata.user_message or error.message,
            details=metadata.details,
            context=self._build_context(metadata, error.context),
            original=error,
        )

    def _from_unknown_error(self, error: BaseException, metadata: ErrorMetadata) -> ProcessedError:
        code = self.map_error_code(error, metadata)
        retryable = self._first_bool(metadata.retryable, self.is_retryable(code))
        message = str(error) or error.__class__.__name__
        return ProcessedError(
            message,
            code=code,
            severity=metadata.severity or self.get_default_severity(code),
            category=metadata.category or self.get_default_category(code),
            retryable=retryable,
            recovery=metadata.recovery or self.suggest_recovery_strategy(code, retryable),
            provider=self.provider,
            user_message=metadata.user_message or message,
            details=metadata.details or repr(error),
            context=self._build_context(metadata),
            original=error,
        )

    @staticmethod
    def _first_bool(*values: bool | None) -> bool:
        for value in values:
            if value is not None:
                return value
        return False

    @staticmethod
    def _build_context(metadata: ErrorMetadata, existing: ErrorContext | None = None) -> ErrorContext:
        if existing is None:
            return metadata.context.merged(None)
        return existing.merged(metadata.context)


__all__ = (
    "CREDENTIAL_ERROR_CODES",
    "FALLBACK_ERROR_CODES",
    "MESSAGE_HEURISTICS",
    "RETRYABLE_ERROR_CODES",
    "BaseErrorProcessor",
)
