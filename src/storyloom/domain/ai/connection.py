"""Connection lifecycle and health tracking for AI providers."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Generic, TypeVar

import structlog

from storyloom.domain.ai.enums import ConnectionStatus
from storyloom.domain.ai.errors import ConnectionConfigError
from storyloom.domain.ai.schemas import ConnectionConfig, ConnectionMetrics, ConnectionTestResult
from storyloom.lib.log import mask_url

logger = structlog.get_logger(__name__)

ConfigT = TypeVar("ConfigT", bound=ConnectionConfig)
StatusListener = Callable[[ConnectionStatus], None]


class BaseConnectionManager(ABC, Generic[ConfigT]):
    """Drive the disconnected -> connecting -> connected/error state machine.

    Subclasses supply the handshake, teardown and probe. Failures are recorded
    and re-raised; retrying is the service adapter's job.
    """

    provider: str = "unknown"

    def __init__(self) -> None:
        self._config: ConfigT | None = None
        self._metrics = ConnectionMetrics()
        self._listeners: list[StatusListener] = []
        self._last_test_result: ConnectionTestResult | None = None

    async def connect(self, config: ConfigT) -> None:
        self.validate_config(config)
        self._config = config
        self._metrics.total_attempts += 1
        self._set_status(ConnectionStatus.CONNECTING)
        logger.info("Connecting to AI service", provider=self.provider, api_url=mask_url(config.api_url))

        started = time.perf_counter()
        try:
            await self.establish_connection(config)
        except Exception as exc:
            self._record_failure(exc)
            self._set_status(ConnectionStatus.ERROR)
            logger.warning("AI service connection failed", provider=self.provider, error=str(exc))
            raise

        self._record_success((time.perf_counter() - started) * 1000)
        self._set_status(ConnectionStatus.CONNECTED)

    async def disconnect(self) -> None:
        if self._metrics.status is ConnectionStatus.DISCONNECTED:
            return
        try:
            await self.terminate_connection()
        finally:
            self._metrics.last_disconnected_at = datetime.now(timezone.utc)
            self._set_status(ConnectionStatus.DISCONNECTED)
            logger.info("Disconnected from AI service", provider=self.provider)

    async def reconnect(self) -> None:
        if self._config is None:
            msg = "Cannot reconnect before a connection config has been supplied"
            raise ConnectionConfigError(msg, provider=self.provider)
        await self.disconnect()
        await self.connect(self._config)

    async def test_connection(self, config: ConfigT | None = None) -> ConnectionTestResult:
        """Probe the service without touching the persistent connection status."""
        target = config or self._config
        if target is None:
            msg = "No connection config available for a connection test"
            raise ConnectionConfigError(msg, provider=self.provider)
        self.validate_config(target)

        started = time.perf_counter()
        try:
            result = await self.perform_connection_test(target)
        except Exception as exc:
            self._record_failure(exc)
            raise

        latency = result.response_time_ms
        if latency is None:
            latency = (time.perf_counter() - started) * 1000
            result = result.model_copy(update={"response_time_ms": latency})
        self._update_latency(latency)
        self._last_test_result = result
        return result

    def get_status(self) -> ConnectionStatus:
        return self._metrics.status

    def get_metrics(self) -> ConnectionMetrics:
        return replace(self._metrics)

    def get_config(self) -> ConfigT | None:
        return self._config

    def get_last_error(self) -> str | None:
        return self._metrics.last_error

    def get_last_test_result(self) -> ConnectionTestResult | None:
        return self._last_test_result

    def add_status_listener(self, listener: StatusListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def validate_config(self, config: ConfigT) -> None:
        if not config.api_url or not config.api_url.strip():
            msg = "API URL must not be empty"
            raise ConnectionConfigError(msg, provider=self.provider)
        if not config.api_key or not config.api_key.strip():
            msg = "API key must not be empty"
            raise ConnectionConfigError(msg, provider=self.provider)

    @abstractmethod
    async def establish_connection(self, config: ConfigT) -> None:
        """Perform the provider handshake."""

    @abstractmethod
    async def terminate_connection(self) -> None:
        """Release provider resources."""

    @abstractmethod
    async def perform_connection_test(self, config: ConfigT) -> ConnectionTestResult:
        """Run a lightweight probe against ``config``."""

    def _set_status(self, status: ConnectionStatus) -> None:
        if self._metrics.status is status:
            return
        previous = self._metrics.status
        self._metrics.status = status
        logger.debug("Connection status changed", provider=self.provider, previous=previous, current=status)
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:  # noqa: BLE001
                logger.exception("Connection status listener failed", provider=self.provider)

    def _record_success(self, latency_ms: float) -> None:
        self._metrics.successful_connections += 1
        self._metrics.consecutive_failures = 0
        self._metrics.last_error = None
        self._metrics.last_connected_at = datetime.now(timezone.utc)
        self._update_latency(latency_ms)

    def _record_failure(self, error: BaseException) -> None:
        self._metrics.consecutive_failures += 1
        self._metrics.last_error = str(error) or error.__class__.__name__

    def _update_latency(self, latency_ms: float) -> None:
        self._metrics.last_latency_ms = latency_ms
        samples = max(self._metrics.successful_connections, 1)
        previous = self._metrics.average_latency_ms
        self._metrics.average_latency_ms = previous + (latency_ms - previous) / samples


__all__ = (
    "BaseConnectionManager",
    "StatusListener",
)
