"""DeepSeek service adapter wiring the provider components together."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from storyloom.config.base import AISettings, RetrySettings, Settings
from storyloom.domain.ai.adapter import BaseAIServiceAdapter
from storyloom.domain.ai.enums import CompatibilityMode
from storyloom.domain.ai.providers.deepseek.connection import DeepSeekConnectionManager
from storyloom.domain.ai.providers.deepseek.errors import PROVIDER, DeepSeekErrorProcessor
from storyloom.domain.ai.providers.deepseek.handler import DeepSeekRequestHandler
from storyloom.domain.ai.providers.deepseek.request_builder import DeepSeekRequestBuilder
from storyloom.domain.ai.retry import SleepFunc, default_sleep
from storyloom.domain.ai.schemas import DeepSeekConfig
from storyloom.lib.events import EventSink

logger = structlog.get_logger(__name__)


def config_from_settings(settings: AISettings) -> DeepSeekConfig:
    """Build a connection config from environment backed AI settings."""
    try:
        compatibility = CompatibilityMode(settings.COMPATIBILITY_MODE.strip().lower())
    except ValueError:
        logger.warning("Unknown DeepSeek compatibility mode, using openai", mode=settings.COMPATIBILITY_MODE)
        compatibility = CompatibilityMode.OPENAI
    return DeepSeekConfig(
        api_url=settings.DEEPSEEK_BASE_URL,
        api_key=settings.DEEPSEEK_API_KEY,
        model=settings.DEEPSEEK_MODEL,
        timeout_ms=settings.TIMEOUT_MS,
        max_retries=settings.MAX_RETRIES,
        retry_delay_ms=settings.RETRY_DELAY_MS,
        auto_reconnect=settings.AUTO_RECONNECT,
        support_reasoning=settings.SUPPORT_REASONING,
        enable_cache=settings.ENABLE_CACHE,
        compatibility_mode=compatibility,
    )


class DeepSeekServiceAdapter(BaseAIServiceAdapter[DeepSeekConfig]):
    """Send game prompts to DeepSeek with retries and error classification.

    One ``httpx.AsyncClient`` is shared by the connection manager and the
    request handler. Pass ``client`` to control transport and lifetime;
    otherwise the adapter creates one and closes it in :meth:`aclose`.
    """

    provider = PROVIDER

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        retry_settings: RetrySettings | None = None,
        event_sink: EventSink | None = None,
        sleep: SleepFunc = default_sleep,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self.request_builder = DeepSeekRequestBuilder()
        super().__init__(retry_settings=retry_settings, event_sink=event_sink, sleep=sleep)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        event_sink: EventSink | None = None,
        sleep: SleepFunc = default_sleep,
    ) -> tuple["DeepSeekServiceAdapter", DeepSeekConfig]:
        adapter = cls(client=client, retry_settings=settings.retry, event_sink=event_sink, sleep=sleep)
        return adapter, config_from_settings(settings.ai)

    def create_connection_manager(self) -> DeepSeekConnectionManager:
        return DeepSeekConnectionManager(client=self._client)

    def create_request_handler(self) -> DeepSeekRequestHandler:
        return DeepSeekRequestHandler(client=self._client, builder=self.request_builder)

    def create_error_processor(self) -> DeepSeekErrorProcessor:
        return DeepSeekErrorProcessor()

    @property
    def deepseek_connection(self) -> DeepSeekConnectionManager:
        return self.connection_manager  # type: ignore[return-value]

    async def initialize(self, config: DeepSeekConfig) -> None:
        self._configure_builder(config.sanitized())  # type: ignore[arg-type]
        await super().initialize(config)
        self.request_builder.enable_reasoning_mode(self.deepseek_connection.is_reasoning_mode_enabled())

    def set_reasoning_mode(self, enabled: bool) -> None:
        """Toggle reasoning mode; raises when the service has no reasoning model."""
        self.deepseek_connection.set_reasoning_mode(enabled)
        self.request_builder.enable_reasoning_mode(self.deepseek_connection.is_reasoning_mode_enabled())
        logger.info("DeepSeek reasoning mode updated", enabled=self.request_builder.reasoning_enabled)

    def is_reasoning_mode_enabled(self) -> bool:
        return self.deepseek_connection.is_reasoning_mode_enabled()

    def is_reasoning_mode_supported(self) -> bool:
        return self.deepseek_connection.is_reasoning_mode_supported()

    def telemetry_extras(self) -> dict[str, Any]:
        return {
            "reasoning_supported": self.is_reasoning_mode_supported(),
            "reasoning_enabled": self.is_reasoning_mode_enabled(),
            "kv_cache_enabled": self.request_builder.enable_cache,
        }

    async def aclose(self) -> None:
        await self.disconnect()
        if self._owns_client:
            await self._client.aclose()

    def _configure_builder(self, config: DeepSeekConfig) -> None:
        builder = self.request_builder
        builder.default_model = config.model or builder.default_model
        builder.enable_cache = config.enable_cache
        builder.cache_strategy = config.cache_strategy
        builder.compatibility_mode = config.compatibility_mode


__all__ = (
    "DeepSeekServiceAdapter",
    "config_from_settings",
)
