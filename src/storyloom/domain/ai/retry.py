"""Retry policy resolution and backoff delays for service adapters."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Final, Protocol

import structlog

from storyloom.config.base import RetrySettings
from storyloom.domain.ai.enums import RetryStrategy
from storyloom.domain.ai.schemas import ConnectionConfig, RequestConfig

logger = structlog.get_logger(__name__)

MIN_BASE_DELAY_MS: Final = 100
MAX_BASE_DELAY_MS: Final = 10_000
JITTER_RATIO: Final = 0.10


class SleepFunc(Protocol):
    """Protocol for injectable sleep function."""

    async def __call__(self, seconds: float) -> None: ...


async def default_sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def deterministic_jitter(attempt_index: int) -> float:
    """Return a reproducible factor in ``[-JITTER_RATIO, JITTER_RATIO]`` for ``attempt_index``."""
    step = (attempt_index * 7) % 21 - 10
    return step / 10 * JITTER_RATIO


def parse_strategy(value: str | RetryStrategy) -> RetryStrategy:
    if isinstance(value, RetryStrategy):
        return value
    normalized = value.strip().lower().replace("-", "_")
    if normalized == "fixed":
        normalized = RetryStrategy.FIXED_DELAY.value
    try:
        return RetryStrategy(normalized)
    except ValueError:
        logger.warning("Unknown retry strategy, using exponential", strategy=value)
        return RetryStrategy.EXPONENTIAL


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    max_retries: int
    base_delay_ms: float
    max_delay_ms: float
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL
    multiplier: float = 2.0
    jitter: bool = True

    @classmethod
    def resolve(
        cls,
        connection: ConnectionConfig,
        request: RequestConfig,
        settings: RetrySettings,
    ) -> "RetryPolicy":
        base = float(min(MAX_BASE_DELAY_MS, max(MIN_BASE_DELAY_MS, connection.retry_delay_ms)))
        return cls(
            max_retries=max(connection.max_retries, request.retry_attempts),
            base_delay_ms=base,
            max_delay_ms=max(base * 4, base + 1_000),
            strategy=parse_strategy(settings.STRATEGY),
            multiplier=settings.MULTIPLIER if settings.MULTIPLIER > 0 else 2.0,
            jitter=settings.JITTER,
        )

    def compute_delay_ms(self, attempt_index: int, retry_after_seconds: float | None = None) -> float:
        """Delay before retry number ``attempt_index`` (1-based).

        A provider retry-after hint overrides the local strategy, capped at the
        maximum delay.
        """
        if retry_after_seconds is not None and retry_after_seconds > 0:
            return min(self.max_delay_ms, retry_after_seconds * 1000)

        index = max(1, attempt_index)
        if self.strategy in (RetryStrategy.NONE, RetryStrategy.IMMEDIATE):
            return 0.0
        if self.strategy is RetryStrategy.FIXED_DELAY:
            return self.base_delay_ms
        if self.strategy in (RetryStrategy.LINEAR, RetryStrategy.CUSTOM):
            return self.base_delay_ms * index

        delay = min(self.max_delay_ms, self.base_delay_ms * self.multiplier ** (index - 1))
        if self.jitter:
            delay = min(self.max_delay_ms, max(0.0, delay * (1 + deterministic_jitter(index))))
        return delay


__all__ = (
    "JITTER_RATIO",
    "MAX_BASE_DELAY_MS",
    "MIN_BASE_DELAY_MS",
    "RetryPolicy",
    "SleepFunc",
    "default_sleep",
    "deterministic_jitter",
    "parse_strategy",
)
