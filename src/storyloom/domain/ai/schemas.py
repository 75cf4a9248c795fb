"""Configuration, request and response models for AI service calls."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from storyloom.domain.ai.enums import CompatibilityMode, ConnectionStatus
from storyloom.domain.game.schemas import ExtensionConfig, ParsedGameData, StatusConfig


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionConfig(BaseModel):
    """Endpoint and credential settings for one provider connection."""

    model_config = ConfigDict(frozen=True)

    api_url: str
    api_key: str
    model: str = "deepseek-chat"
    timeout_ms: int = Field(default=30_000, ge=1)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=1_000, ge=0)
    auto_reconnect: bool = True

    def sanitized(self) -> "ConnectionConfig":
        """Return a copy with surrounding whitespace and trailing slashes removed."""
        return self.model_copy(
            update={
                "api_url": self.api_url.strip().rstrip("/"),
                "api_key": self.api_key.strip(),
                "model": self.model.strip() or "deepseek-chat",
            }
        )


class DeepSeekConfig(ConnectionConfig):
    """DeepSeek specific connection switches."""

    support_reasoning: bool = True
    reasoning_mode_enabled: bool = False
    enable_cache: bool = False
    cache_strategy: Literal["auto", "manual"] = "auto"
    compatibility_mode: CompatibilityMode = CompatibilityMode.OPENAI


class RequestConfig(BaseModel):
    """Per-call tunables. ``None`` means the provider default applies."""

    model_config = ConfigDict(frozen=True)

    temperature: float | None = None
    max_tokens: int | None = None
    timeout_ms: int | None = Field(default=None, ge=1)
    retry_attempts: int = Field(default=0, ge=0)
    stream: bool = False
    model: str | None = None
    system_prompt: str | None = None
    stop_sequences: tuple[str, ...] = ()
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    repetition_penalty: float | None = None
    enable_reasoning: bool | None = None
    enable_kv_cache: bool | None = None
    cache_strategy: Literal["auto", "manual"] | None = None
    compatibility_mode: CompatibilityMode | None = None


class RequestMetadata(BaseModel):
    """Game context that drives prompt assembly and payload reconciliation."""

    model_config = ConfigDict(frozen=True)

    game_round: int = 0
    world_id: str | None = None
    status_config: StatusConfig = Field(default_factory=StatusConfig)
    extensions: tuple[ExtensionConfig, ...] = ()


class AIRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    prompt: str
    config: RequestConfig = Field(default_factory=RequestConfig)
    metadata: RequestMetadata = Field(default_factory=RequestMetadata)


class TokenUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CacheUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    hit_tokens: int = 0
    miss_tokens: int = 0
    write_tokens: int = 0


class ResponseMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    processing_time_ms: float | None = None
    token_usage: TokenUsage | None = None
    model_used: str = "unknown"
    api_version: str = "unknown"
    provider_message_id: str | None = None
    reasoning_content: str | None = None
    reasoning_segments: tuple[str, ...] = ()
    cache_usage: CacheUsage | None = None
    compatibility_mode: CompatibilityMode | None = None
    raw_text: str | None = None
    extras: dict[str, Any] = Field(default_factory=dict)


class AIResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    success: bool
    timestamp: datetime = Field(default_factory=_utcnow)
    data: ParsedGameData | None = None
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)


class ConnectionTestResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    response_time_ms: float | None = None
    error: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


@dataclass(slots=True)
class ConnectionMetrics:
    """Health counters owned by a connection manager."""

    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    total_attempts: int = 0
    successful_connections: int = 0
    consecutive_failures: int = 0
    last_latency_ms: float | None = None
    average_latency_ms: float = 0.0
    last_error: str | None = None
    last_connected_at: datetime | None = None
    last_disconnected_at: datetime | None = None


@dataclass(slots=True)
class RequestMetrics:
    """Point-in-time copy of request handler counters."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_latency_ms: float = 0.0
    last_latency_ms: float | None = None
    p95_latency_ms: float | None = None
    last_error: str | None = None
    samples: tuple[float, ...] = ()


@dataclass(slots=True)
class RequestExecutionResult:
    response: AIResponse
    raw_response: Any
    token_usage: TokenUsage
    latency_ms: float
    metadata: ResponseMetadata


@dataclass(slots=True)
class UsageStats:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_tokens_used: int = 0
    average_response_time_ms: float = 0.0
    error_rate: float = 0.0
    last_request_time: datetime | None = None


@dataclass(slots=True)
class AdapterTelemetry:
    """Diagnostics snapshot for a service adapter."""

    provider: str
    state: str
    usage: UsageStats
    connection_status: ConnectionStatus
    connection_metrics: ConnectionMetrics
    request_metrics: RequestMetrics
    last_connection_test: ConnectionTestResult | None = None
    extras: dict[str, Any] = field(default_factory=dict)


__all__ = (
    "AIRequest",
    "AIResponse",
    "AdapterTelemetry",
    "CacheUsage",
    "ConnectionConfig",
    "ConnectionMetrics",
    "ConnectionTestResult",
    "DeepSeekConfig",
    "RequestConfig",
    "RequestExecutionResult",
    "RequestMetadata",
    "RequestMetrics",
    "ResponseMetadata",
    "TokenUsage",
    "UsageStats",
)
