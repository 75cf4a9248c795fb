"""Single-attempt request execution with latency tracking."""

from __future__ import annotations

import asyncio
import math
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Generic, TypeVar

import structlog

from storyloom.domain.ai.enums import ErrorCategory, ErrorCode, ErrorSeverity
from storyloom.domain.ai.errors import AIError
from storyloom.domain.ai.schemas import (
    AIRequest,
    AIResponse,
    ConnectionConfig,
    RequestExecutionResult,
    RequestMetrics,
    TokenUsage,
)

logger = structlog.get_logger(__name__)

ConfigT = TypeVar("ConfigT", bound=ConnectionConfig)

DEFAULT_SAMPLE_WINDOW = 20


@dataclass(slots=True)
class RequestParams(Generic[ConfigT]):
    request: AIRequest
    config: ConfigT

    @property
    def timeout_ms(self) -> int:
        return self.request.config.timeout_ms or self.config.timeout_ms


@dataclass(slots=True)
class ProviderResult:
    """What a provider returns from one wire call."""

    response: AIResponse
    raw_response: Any = None


def percentile_95(samples: list[float] | tuple[float, ...]) -> float | None:
    if not samples:
        return None
    ordered = sorted(samples)
    index = min(len(ordered) - 1, math.floor(0.95 * (len(ordered) - 1)))
    return ordered[index]


class BaseRequestHandler(ABC, Generic[ConfigT]):
    """Execute one provider call and keep running latency statistics."""

    provider: str = "unknown"

    def __init__(self, *, sample_window: int = DEFAULT_SAMPLE_WINDOW) -> None:
        self._sample_window = max(1, sample_window)
        self._reset()

    async def execute(self, params: RequestParams[ConfigT]) -> RequestExecutionResult:
        self._total_requests += 1
        started = time.perf_counter()
        await self._run_hook("before_request", self.before_request(params))
        try:
            result = await self._perform_with_timeout(params)
        except Exception as exc:
            self._record_failure((time.perf_counter() - started) * 1000, exc)
            await self._run_hook("after_failure", self.after_failure(params, exc))
            raise

        latency = (time.perf_counter() - started) * 1000
        execution = self._enrich(result, latency)
        self._record_success(latency)
        await self._run_hook("after_success", self.after_success(params, execution))
        return execution

    def get_metrics(self) -> RequestMetrics:
        samples = tuple(self._samples)
        return RequestMetrics(
            total_requests=self._total_requests,
            successful_requests=self._successful_requests,
            failed_requests=self._failed_requests,
            average_latency_ms=self._average_latency_ms,
            last_latency_ms=self._last_latency_ms,
            p95_latency_ms=percentile_95(samples),
            last_error=self._last_error,
            samples=samples,
        )

    def reset_metrics(self) -> None:
        self._reset()

    @abstractmethod
    async def perform_request(self, params: RequestParams[ConfigT]) -> ProviderResult:
        """Send the request over the wire and parse the reply."""

    async def before_request(self, params: RequestParams[ConfigT]) -> None:
        logger.debug("AI request started", provider=self.provider, request_id=params.request.id)

    async def after_success(self, params: RequestParams[ConfigT], result: RequestExecutionResult) -> None:
        logger.debug(
            "AI request succeeded",
            provider=self.provider,
            request_id=params.request.id,
            latency_ms=round(result.latency_ms, 2),
            total_tokens=result.token_usage.total_tokens,
        )

    async def after_failure(self, params: RequestParams[ConfigT], error: BaseException) -> None:
        await logger.awarning(
            "AI request failed",
            provider=self.provider,
            request_id=params.request.id,
            error=str(error) or error.__class__.__name__,
        )

    async def _perform_with_timeout(self, params: RequestParams[ConfigT]) -> ProviderResult:
        timeout_ms = params.timeout_ms
        try:
            return await asyncio.wait_for(self.perform_request(params), timeout=timeout_ms / 1000)
        except TimeoutError as exc:
            msg = f"Request timed out after {timeout_ms} ms"
            raise AIError(
                msg,
                code=ErrorCode.CONNECTION_TIMEOUT,
                severity=ErrorSeverity.MEDIUM,
                category=ErrorCategory.NETWORK,
                retryable=True,
                provider=self.provider,
            ) from exc

    async def _run_hook(self, name: str, hook: Awaitable[None]) -> None:
        try:
            await hook
        except Exception:  # noqa: BLE001
            logger.exception("Request handler hook failed", provider=self.provider, hook=name)

    def _enrich(self, result: ProviderResult, latency_ms: float) -> RequestExecutionResult:
        metadata = result.response.metadata
        updates: dict[str, Any] = {}
        if metadata.processing_time_ms is None:
            updates["processing_time_ms"] = latency_ms
        if metadata.token_usage is None:
            updates["token_usage"] = TokenUsage()
        if updates:
            metadata = metadata.model_copy(update=updates)
        response = result.response.model_copy(update={"metadata": metadata})
        return RequestExecutionResult(
            response=response,
            raw_response=result.raw_response,
            token_usage=metadata.token_usage or TokenUsage(),
            latency_ms=latency_ms,
            metadata=metadata,
        )

    def _record_success(self, latency_ms: float) -> None:
        self._successful_requests += 1
        self._last_latency_ms = latency_ms
        self._average_latency_ms += (latency_ms - self._average_latency_ms) / self._successful_requests
        self._samples.append(latency_ms)

    def _record_failure(self, latency_ms: float, error: BaseException) -> None:
        self._failed_requests += 1
        self._last_latency_ms = latency_ms
        self._last_error = str(error) or error.__class__.__name__
        self._samples.append(latency_ms)

    def _reset(self) -> None:
        self._total_requests = 0
        self._successful_requests = 0
        self._failed_requests = 0
        self._average_latency_ms = 0.0
        self._last_latency_ms: float | None = None
        self._last_error: str | None = None
        self._samples: deque[float] = deque(maxlen=self._sample_window)


__all__ = (
    "DEFAULT_SAMPLE_WINDOW",
    "BaseRequestHandler",
    "ProviderResult",
    "RequestParams",
    "percentile_95",
)
