"""Service adapter binding connection, execution and error classification."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

import structlog

from storyloom.config.base import RetrySettings
from storyloom.domain.ai.connection import BaseConnectionManager
from storyloom.domain.ai.enums import AdapterState, ConnectionStatus, ErrorCategory, ErrorCode, ErrorSeverity
from storyloom.domain.ai.error_processor import BaseErrorProcessor
from storyloom.domain.ai.errors import AIError, ErrorMetadata, ProcessedError
from storyloom.domain.ai.requests import BaseRequestHandler, RequestParams
from storyloom.domain.ai.retry import RetryPolicy, SleepFunc, default_sleep
from storyloom.domain.ai.schemas import (
    AdapterTelemetry,
    AIRequest,
    AIResponse,
    ConnectionConfig,
    ConnectionTestResult,
    RequestExecutionResult,
    UsageStats,
)
from storyloom.lib.events import (
    CONNECTION_STATUS,
    REQUEST_COMPLETED,
    REQUEST_FAILED,
    REQUEST_STARTED,
    EventSink,
    NullEventSink,
)

logger = structlog.get_logger(__name__)

ConfigT = TypeVar("ConfigT", bound=ConnectionConfig)


class BaseAIServiceAdapter(ABC, Generic[ConfigT]):
    """Retry-governed entry point for one AI provider.

    The adapter only talks to the abstract connection manager, request handler
    and error processor that the provider subclass creates.
    """

    provider: str = "unknown"

    def __init__(
        self,
        *,
        retry_settings: RetrySettings | None = None,
        event_sink: EventSink | None = None,
        sleep: SleepFunc = default_sleep,
    ) -> None:
        self._retry_settings = retry_settings or RetrySettings()
        self._events: EventSink = event_sink or NullEventSink()
        self._sleep = sleep
        self._config: ConfigT | None = None
        self._state = AdapterState.UNINITIALIZED
        self._usage = UsageStats()
        self.connection_manager: BaseConnectionManager[ConfigT] = self.create_connection_manager()
        self.request_handler: BaseRequestHandler[ConfigT] = self.create_request_handler()
        self.error_processor: BaseErrorProcessor = self.create_error_processor()
        self.connection_manager.add_status_listener(self._on_status_change)

    @abstractmethod
    def create_connection_manager(self) -> BaseConnectionManager[ConfigT]: ...

    @abstractmethod
    def create_request_handler(self) -> BaseRequestHandler[ConfigT]: ...

    @abstractmethod
    def create_error_processor(self) -> BaseErrorProcessor: ...

    @property
    def state(self) -> AdapterState:
        return self._state

    @property
    def config(self) -> ConfigT | None:
        return self._config

    async def initialize(self, config: ConfigT) -> None:
        normalized = self.sanitize_config(config)
        try:
            self.connection_manager.validate_config(normalized)
            await self.connection_manager.connect(normalized)
        except Exception as exc:
            self._state = AdapterState.UNINITIALIZED
            raise self._classify(exc, "initialize") from exc

        self._config = normalized
        self._state = AdapterState.READY
        self._usage = UsageStats()
        logger.info("AI service adapter ready", provider=self.provider, model=normalized.model)

    async def disconnect(self) -> None:
        await self.connection_manager.disconnect()
        self._state = AdapterState.UNINITIALIZED

    async def send_request(self, request: AIRequest) -> AIResponse:
        config = self._ensure_initialized()
        self._usage.total_requests += 1
        self._usage.last_request_time = datetime.now(timezone.utc)
        self._update_error_rate()
        self._emit(REQUEST_STARTED, {"provider": self.provider, "request_id": request.id})

        try:
            await self._ensure_connection(config, request)
        except ProcessedError as exc:
            self._fail_request(request, 0, exc)
            raise

        policy = RetryPolicy.resolve(config, request.config, self._retry_settings)
        started = time.perf_counter()
        attempt = 0
        while True:
            try:
                result = await self.request_handler.execute(RequestParams(request=request, config=config))
            except Exception as exc:
                processed = self._classify(exc, f"send_request:attempt_{attempt}", request=request, attempt=attempt)
                if not processed.retryable or attempt >= policy.max_retries:
                    self._fail_request(request, attempt, processed)
                    raise processed from exc

                attempt += 1
                delay_ms = policy.compute_delay_ms(attempt, processed.retry_after_seconds)
                logger.info(
                    "Retrying AI request",
                    provider=self.provider,
                    request_id=request.id,
                    attempt=attempt,
                    max_retries=policy.max_retries,
                    delay_ms=round(delay_ms, 2),
                    code=processed.code.name,
                )
                await self._sleep(delay_ms / 1000)
                continue

            self._record_success(result)
            self._emit(
                REQUEST_COMPLETED,
                {
                    "provider": self.provider,
                    "request_id": request.id,
                    "latency_ms": result.latency_ms,
                    "total_time_ms": (time.perf_counter() - started) * 1000,
                    "attempt": attempt,
                },
            )
            return result.response

    async def test_connection(self) -> ConnectionTestResult:
        config = self._ensure_initialized()
        try:
            return await self.connection_manager.test_connection(config)
        except Exception as exc:
            raise self._classify(exc, "test_connection") from exc

    def handle_error(self, error: BaseException, metadata: ErrorMetadata | None = None) -> ProcessedError:
        return self.error_processor.process(
            error, metadata or ErrorMetadata.for_stage("manual_handle", module=self.provider)
        )

    def get_connection_status(self) -> ConnectionStatus:
        return self.connection_manager.get_status()

    def get_usage_stats(self) -> UsageStats:
        return replace(self._usage)

    def get_telemetry(self) -> AdapterTelemetry:
        return AdapterTelemetry(
            provider=self.provider,
            state=self._state.value,
            usage=self.get_usage_stats(),
            connection_status=self.connection_manager.get_status(),
            connection_metrics=self.connection_manager.get_metrics(),
            request_metrics=self.request_handler.get_metrics(),
            last_connection_test=self.connection_manager.get_last_test_result(),
            extras=self.telemetry_extras(),
        )

    def sanitize_config(self, config: ConfigT) -> ConfigT:
        return config.sanitized()  # type: ignore[return-value]

    def telemetry_extras(self) -> dict[str, Any]:
        return {}

    def _ensure_initialized(self) -> ConfigT:
        if self._state is AdapterState.UNINITIALIZED or self._config is None:
            msg = f"{self.provider} adapter is not initialized"
            raise self._classify(
                AIError(
                    msg,
                    code=ErrorCode.CONFIG_ERROR,
                    severity=ErrorSeverity.HIGH,
                    category=ErrorCategory.CONFIG,
                    retryable=False,
                    provider=self.provider,
                ),
                "ensure_initialized",
            )
        return self._config

    async def _ensure_connection(self, config: ConfigT, request: AIRequest) -> None:
        status = self.connection_manager.get_status()
        if status is ConnectionStatus.CONNECTED or status is ConnectionStatus.CONNECTING:
            return
        if not config.auto_reconnect:
            msg = f"{self.provider} connection is {status.value} and auto-reconnect is disabled"
            raise self._classify(
                AIError(msg, code=ErrorCode.CONNECTION_FAILED, retryable=False, provider=self.provider),
                "ensure_connection",
                request=request,
            )

        self._state = AdapterState.ENSURING_CONNECTION
        try:
            await self.connection_manager.connect(config)
        except Exception as exc:
            raise self._classify(exc, "ensure_connection", request=request) from exc
        finally:
            self._state = AdapterState.READY

    def _classify(
        self,
        error: BaseException,
        stage: str,
        *,
        request: AIRequest | None = None,
        attempt: int | None = None,
    ) -> ProcessedError:
        metadata = ErrorMetadata.for_stage(
            stage,
            module=self.provider,
            request_id=request.id if request else None,
            attempt=attempt,
        )
        return self.error_processor.process(error, metadata)

    def _record_success(self, result: RequestExecutionResult) -> None:
        usage = self._usage
        usage.successful_requests += 1
        usage.total_tokens_used += result.token_usage.total_tokens
        usage.average_response_time_ms += (
            result.latency_ms - usage.average_response_time_ms
        ) / usage.successful_requests
        self._update_error_rate()

    def _fail_request(self, request: AIRequest, attempt: int, error: ProcessedError) -> None:
        self._usage.failed_requests += 1
        self._update_error_rate()
        self._emit(
            REQUEST_FAILED,
            {
                "provider": self.provider,
                "request_id": request.id,
                "attempt": attempt,
                "error": error,
            },
        )

    def _update_error_rate(self) -> None:
        usage = self._usage
        usage.error_rate = usage.failed_requests / usage.total_requests if usage.total_requests else 0.0

    def _on_status_change(self, status: ConnectionStatus) -> None:
        self._emit(CONNECTION_STATUS, {"provider": self.provider, "status": status.value})

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        try:
            self._events.emit(event, payload)
        except Exception:  # noqa: BLE001
            logger.exception("Event sink failed", provider=self.provider, event_name=event)


__all__ = ("BaseAIServiceAdapter",)
