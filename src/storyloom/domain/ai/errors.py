"""Structured error types raised by the AI service layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from storyloom.domain.ai.enums import ErrorCategory, ErrorCode, ErrorSeverity, RecoveryStrategy
from storyloom.lib.exceptions import ApplicationError


@dataclass(slots=True)
class ErrorContext:
    """Where an error happened and any provider supplied hints."""

    module: str | None = None
    stage: str | None = None
    request_id: str | None = None
    attempt: int | None = None
    additional_data: dict[str, Any] = field(default_factory=dict)

    def merged(self, other: "ErrorContext | None") -> "ErrorContext":
        if other is None:
            return ErrorContext(
                module=self.module,
                stage=self.stage,
                request_id=self.request_id,
                attempt=self.attempt,
                additional_data=dict(self.additional_data),
            )
        return ErrorContext(
            module=other.module or self.module,
            stage=other.stage or self.stage,
            request_id=other.request_id or self.request_id,
            attempt=other.attempt if other.attempt is not None else self.attempt,
            additional_data={**self.additional_data, **other.additional_data},
        )


@dataclass(slots=True)
class ErrorMetadata:
    """Classification input for :meth:`BaseErrorProcessor.process`.

    Provider hooks may fill the optional overrides while mapping their native
    error envelopes.
    """

    context: ErrorContext = field(default_factory=ErrorContext)
    user_message: str | None = None
    details: str | None = None
    severity: ErrorSeverity | None = None
    category: ErrorCategory | None = None
    retryable: bool | None = None
    recovery: RecoveryStrategy | None = None

    @classmethod
    def for_stage(
        cls,
        stage: str,
        *,
        module: str | None = None,
        request_id: str | None = None,
        attempt: int | None = None,
        **additional_data: Any,
    ) -> "ErrorMetadata":
        return cls(
            context=ErrorContext(
                module=module,
                stage=stage,
                request_id=request_id,
                attempt=attempt,
                additional_data=additional_data,
            )
        )


class AIError(ApplicationError):
    """Error raised inside the AI layer, optionally carrying taxonomy hints."""

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        severity: ErrorSeverity | None = None,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        provider: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(detail=message)
        self.code = code
        self.severity = severity
        self.category = category
        self.retryable = retryable
        self.provider = provider
        self.context = context

    @property
    def message(self) -> str:
        return self.detail


class ConnectionConfigError(AIError):
    """Raised when a connection config is rejected before any network call."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(
            message,
            code=ErrorCode.CONFIG_VALIDATION_FAILED,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIG,
            retryable=False,
            provider=provider,
        )


class ProcessedError(AIError):
    """Fully classified error. This is what adapters raise to their callers."""

    code: ErrorCode
    severity: ErrorSeverity
    category: ErrorCategory
    retryable: bool

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        severity: ErrorSeverity,
        category: ErrorCategory,
        retryable: bool,
        recovery: RecoveryStrategy,
        provider: str,
        user_message: str | None = None,
        details: str | None = None,
        context: ErrorContext | None = None,
        timestamp: datetime | None = None,
        original: BaseException | None = None,
    ) -> None:
        super().__init__(
            message,
            code=code,
            severity=severity,
            category=category,
            retryable=retryable,
            provider=provider,
            context=context,
        )
        self.recovery = recovery
        self.user_message = user_message or message
        self.details = details
        self.timestamp = timestamp or datetime.now(timezone.utc)
        self.original = original

    @property
    def retry_after_seconds(self) -> float | None:
        if self.context is None:
            return None
        value = self.context.additional_data.get("retry_after_seconds")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value) if value > 0 else None

    def to_dict(self) -> dict[str, Any]:
        context: dict[str, Any] | None = None
        if self.context is not None:
            context = {
                "module": self.context.module,
                "stage": self.context.stage,
                "request_id": self.context.request_id,
                "attempt": self.context.attempt,
                "additional_data": dict(self.context.additional_data),
            }
        return {
            "code": int(self.code),
            "code_name": self.code.name,
            "severity": self.severity.value,
            "category": self.category.value,
            "retryable": self.retryable,
            "recovery": self.recovery.value,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
            "provider": self.provider,
            "timestamp": self.timestamp.isoformat(),
            "context": context,
        }


__all__ = (
    "AIError",
    "ConnectionConfigError",
    "ErrorContext",
    "ErrorMetadata",
    "ProcessedError",
)
