"""DeepSeek connection manager probing the models endpoint."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Any, Final

import httpx
import structlog

from storyloom.__about__ import __version__
from storyloom.domain.ai.connection import BaseConnectionManager
from storyloom.domain.ai.enums import ErrorCategory, ErrorCode, ErrorSeverity
from storyloom.domain.ai.errors import AIError, ConnectionConfigError
from storyloom.domain.ai.providers.deepseek.errors import PROVIDER, DeepSeekAPIError
from storyloom.domain.ai.providers.deepseek.request_builder import REASONING_MODEL
from storyloom.domain.ai.schemas import ConnectionTestResult, DeepSeekConfig

logger = structlog.get_logger(__name__)

API_KEY_PATTERN: Final = re.compile(r"^sk-[A-Za-z0-9]{32,}$", re.IGNORECASE)
URL_PATTERN: Final = re.compile(r"^https?://", re.IGNORECASE)
DEFAULT_TEST_ENDPOINT: Final = "/v1/models"
USER_AGENT: Final = f"storyloom/{__version__}"


def build_headers(config: DeepSeekConfig) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {config.api_key}",
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
    }


def build_endpoint(base_url: str, path: str) -> str:
    base = base_url.rstrip("/")
    return f"{base}{path if path.startswith('/') else '/' + path}"


@dataclass(slots=True)
class ServiceMetadata:
    models: list[str] = field(default_factory=list)
    api_version: str | None = None


class DeepSeekConnectionManager(BaseConnectionManager[DeepSeekConfig]):
    """Validate DeepSeek credentials and track reasoning model availability.

    The HTTP client may be shared with the request handler. A client created
    here is closed on disconnect; an injected one is left open.
    """

    provider = PROVIDER

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        test_endpoint: str = DEFAULT_TEST_ENDPOINT,
    ) -> None:
        super().__init__()
        self._client = client
        self._owns_client = client is None
        self._test_endpoint = test_endpoint
        self._reasoning_supported = False
        self._reasoning_enabled = False
        self._desired_reasoning: bool | None = None

    def set_reasoning_mode(self, enabled: bool) -> None:
        self._desired_reasoning = enabled
        config = self.get_config()
        if config is None:
            self._reasoning_enabled = enabled
            return
        if enabled and not (config.support_reasoning and self._reasoning_supported):
            msg = "The current DeepSeek configuration does not support reasoning mode"
            raise AIError(
                msg,
                code=ErrorCode.DEEPSEEK_REASONING_FAILED,
                severity=ErrorSeverity.MEDIUM,
                retryable=False,
                provider=PROVIDER,
            )
        self._reasoning_enabled = enabled and self._reasoning_supported

    def is_reasoning_mode_enabled(self) -> bool:
        return self._reasoning_enabled

    def is_reasoning_mode_supported(self) -> bool:
        return self._reasoning_supported

    def validate_config(self, config: DeepSeekConfig) -> None:
        super().validate_config(config)
        if not API_KEY_PATTERN.match(config.api_key.strip()):
            msg = "DeepSeek API key has an invalid format"
            raise ConnectionConfigError(msg, provider=PROVIDER)
        if not URL_PATTERN.match(config.api_url):
            msg = "DeepSeek API URL must start with http:// or https://"
            raise ConnectionConfigError(msg, provider=PROVIDER)

    async def establish_connection(self, config: DeepSeekConfig) -> None:
        metadata = await self.fetch_service_metadata(config)
        self._reasoning_supported = config.support_reasoning and REASONING_MODEL in metadata.models
        desired = self._desired_reasoning if self._desired_reasoning is not None else config.reasoning_mode_enabled
        self._reasoning_enabled = self._reasoning_supported and desired
        logger.info(
            "DeepSeek connection established",
            models=len(metadata.models),
            api_version=metadata.api_version,
            reasoning_supported=self._reasoning_supported,
        )

    async def terminate_connection(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def perform_connection_test(self, config: DeepSeekConfig) -> ConnectionTestResult:
        started = time.perf_counter()
        metadata = await self.fetch_service_metadata(config)
        latency = (time.perf_counter() - started) * 1000

        if self._is_active_config(config):
            self._reasoning_supported = config.support_reasoning and REASONING_MODEL in metadata.models
            if self._desired_reasoning is not None:
                self._reasoning_enabled = self._reasoning_supported and self._desired_reasoning

        return ConnectionTestResult(
            success=True,
            response_time_ms=latency,
            details={
                "api_version": metadata.api_version,
                "model_available": config.model in metadata.models,
                "features": self.collect_features(config, metadata.models),
            },
        )

    async def fetch_service_metadata(self, config: DeepSeekConfig) -> ServiceMetadata:
        url = build_endpoint(config.api_url, self._test_endpoint)
        try:
            response = await self._get_client().get(
                url, headers=build_headers(config), timeout=config.timeout_ms / 1000
            )
        except httpx.TimeoutException as exc:
            msg = f"Timed out connecting to DeepSeek: {exc}"
            raise AIError(
                msg,
                code=ErrorCode.CONNECTION_TIMEOUT,
                category=ErrorCategory.NETWORK,
                retryable=True,
                provider=PROVIDER,
            ) from exc
        except httpx.HTTPError as exc:
            msg = f"Unable to reach DeepSeek: {exc}"
            raise AIError(
                msg,
                code=ErrorCode.CONNECTION_FAILED,
                category=ErrorCategory.NETWORK,
                retryable=True,
                provider=PROVIDER,
            ) from exc

        if not response.is_success:
            raise DeepSeekAPIError.from_response(response)

        try:
            payload: Any = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        entries = payload.get("data") if isinstance(payload.get("data"), list) else []
        models = [
            entry["id"]
            for entry in entries
            if isinstance(entry, dict) and isinstance(entry.get("id"), str) and entry["id"]
        ]
        meta = payload.get("meta") if isinstance(payload.get("meta"), dict) else {}
        api_version = meta.get("version") or payload.get("api_version")
        return ServiceMetadata(models=models, api_version=api_version if isinstance(api_version, str) else None)

    def collect_features(self, config: DeepSeekConfig, models: list[str]) -> list[str]:
        features = [f"compat:{config.compatibility_mode.value}"]
        if config.enable_cache:
            features.append("kv_cache")
        if REASONING_MODEL in models:
            features.append("reasoning:on" if self._reasoning_enabled else "reasoning:available")
        else:
            features.append("reasoning:unavailable")
        return features

    def _is_active_config(self, config: DeepSeekConfig) -> bool:
        current = self.get_config()
        return current is not None and current.api_url == config.api_url and current.api_key == config.api_key

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
            self._owns_client = True
        return self._client


__all__ = (
    "API_KEY_PATTERN",
    "DEFAULT_TEST_ENDPOINT",
    "USER_AGENT",
    "DeepSeekConnectionManager",
    "ServiceMetadata",
    "build_endpoint",
    "build_headers",
)
