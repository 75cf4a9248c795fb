"""Assemble DeepSeek chat completion request bodies."""

from __future__ import annotations

import math
from collections.abc import Iterable
from typing import Any, Final, Literal

from storyloom.domain.ai.enums import CompatibilityMode, ErrorCode
from storyloom.domain.ai.errors import AIError
from storyloom.domain.ai.schemas import RequestConfig

DEFAULT_MODEL: Final = "deepseek-chat"
REASONING_MODEL: Final = "deepseek-reasoner"
DEFAULT_TEMPERATURE: Final = 0.7
DEFAULT_MAX_TOKENS: Final = 2048

TEMPERATURE_BOUNDS: Final = (0.0, 2.0)
TOP_P_BOUNDS: Final = (0.0, 1.0)
PENALTY_BOUNDS: Final = (-2.0, 2.0)
MAX_TOKENS_BOUNDS: Final = (1, 32_768)

CacheStrategy = Literal["auto", "manual"]
CACHE_STRATEGIES: Final = ("auto", "manual")


def clamp(value: float, lower: float, upper: float, *, digits: int = 3) -> float:
    """Clamp ``value`` into ``[lower, upper]`` and round to ``digits`` places."""
    return round(min(upper, max(lower, value)), digits)


def clamp_max_tokens(value: float) -> int:
    lower, upper = MAX_TOKENS_BOUNDS
    return int(min(upper, max(lower, math.floor(value))))


def _finite(value: float | None) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    return float(value) if math.isfinite(value) else None


def _normalize_text(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _normalize_model(value: str | None) -> str | None:
    model = _normalize_text(value)
    if model is None:
        return None
    if model.lower() in (DEFAULT_MODEL, REASONING_MODEL):
        return model.lower()
    return model


def _normalize_stop_sequences(values: Iterable[str] | None) -> list[str]:
    if not values:
        return []
    return [value.strip() for value in values if isinstance(value, str) and value.strip()]


def _normalize_compatibility(value: str | CompatibilityMode | None) -> CompatibilityMode | None:
    if value is None:
        return None
    try:
        return CompatibilityMode(str(value).strip().lower())
    except ValueError:
        return None


def _normalize_cache_strategy(value: str | None) -> CacheStrategy | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    return normalized if normalized in CACHE_STRATEGIES else None  # type: ignore[return-value]


class DeepSeekRequestBuilder:
    """Build wire payloads with clamped tunables and resolved model names."""

    def __init__(
        self,
        *,
        default_model: str | None = None,
        enable_cache: bool = False,
        cache_strategy: CacheStrategy | None = None,
        compatibility_mode: str | CompatibilityMode | None = None,
        system_prompt: str | None = None,
        stop_sequences: Iterable[str] | None = None,
        top_p: float | None = None,
        frequency_penalty: float | None = None,
        presence_penalty: float | None = None,
        repetition_penalty: float | None = None,
    ) -> None:
        self._reasoning_enabled = False
        self.default_model = _normalize_model(default_model) or DEFAULT_MODEL
        self.enable_cache = enable_cache
        self.cache_strategy = _normalize_cache_strategy(cache_strategy)
        self.compatibility_mode = _normalize_compatibility(compatibility_mode)
        self.system_prompt = _normalize_text(system_prompt)
        self.stop_sequences = _normalize_stop_sequences(stop_sequences)
        self.top_p = self._clamp_optional(top_p, TOP_P_BOUNDS)
        self.frequency_penalty = self._clamp_optional(frequency_penalty, PENALTY_BOUNDS)
        self.presence_penalty = self._clamp_optional(presence_penalty, PENALTY_BOUNDS)
        self.repetition_penalty = self._clamp_optional(repetition_penalty, PENALTY_BOUNDS)

    @property
    def reasoning_enabled(self) -> bool:
        return self._reasoning_enabled

    def enable_reasoning_mode(self, enabled: bool) -> None:
        self._reasoning_enabled = enabled

    def build_request(self, prompt: str, config: RequestConfig) -> dict[str, Any]:
        normalized_prompt = prompt.strip() if isinstance(prompt, str) else ""
        if not normalized_prompt:
            msg = "DeepSeek request prompt must not be empty"
            raise AIError(msg, code=ErrorCode.INVALID_PARAMETERS, retryable=False, provider="deepseek")

        requested_model = _normalize_model(config.model) or self.default_model
        use_reasoning = self._resolve_reasoning(config, requested_model)

        body: dict[str, Any] = {
            "model": self._resolve_model_name(requested_model, use_reasoning),
            "messages": self._build_messages(normalized_prompt, _normalize_text(config.system_prompt) or self.system_prompt),
            "temperature": self._resolve_temperature(config.temperature),
            "max_tokens": self._resolve_max_tokens(config.max_tokens),
            "stream": bool(config.stream),
        }
        if use_reasoning:
            body["reasoning"] = True

        stop = self.merge_stop_sequences(self.stop_sequences, config.stop_sequences)
        if stop:
            body["stop"] = stop

        optional_numbers = (
            ("top_p", config.top_p, self.top_p, TOP_P_BOUNDS),
            ("frequency_penalty", config.frequency_penalty, self.frequency_penalty, PENALTY_BOUNDS),
            ("presence_penalty", config.presence_penalty, self.presence_penalty, PENALTY_BOUNDS),
            ("repetition_penalty", config.repetition_penalty, self.repetition_penalty, PENALTY_BOUNDS),
        )
        for key, override, fallback, bounds in optional_numbers:
            value = self._clamp_optional(override, bounds)
            if value is None:
                value = fallback
            if value is not None:
                body[key] = value

        compatibility = _normalize_compatibility(config.compatibility_mode) or self.compatibility_mode
        if compatibility is not None:
            body["compatibility_mode"] = compatibility.value

        kv_cache = self._resolve_kv_cache(config)
        if kv_cache is not None:
            body["kv_cache"] = kv_cache
        return body

    @staticmethod
    def merge_stop_sequences(base: Iterable[str] | None, override: Iterable[str] | None) -> list[str]:
        """Concatenate, trim and de-duplicate stop sequences in first-seen order."""
        merged = [*_normalize_stop_sequences(base), *_normalize_stop_sequences(override)]
        return list(dict.fromkeys(merged))

    def _resolve_reasoning(self, config: RequestConfig, requested_model: str) -> bool:
        if config.enable_reasoning is not None:
            return config.enable_reasoning
        if self._reasoning_enabled:
            return True
        return "reasoner" in requested_model.lower()

    @staticmethod
    def _resolve_model_name(requested_model: str, use_reasoning: bool) -> str:
        if use_reasoning:
            return REASONING_MODEL
        if requested_model == REASONING_MODEL:
            return DEFAULT_MODEL
        return requested_model

    @staticmethod
    def _build_messages(prompt: str, system_prompt: str | None) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    @staticmethod
    def _resolve_temperature(value: float | None) -> float:
        finite = _finite(value)
        return clamp(DEFAULT_TEMPERATURE if finite is None else finite, *TEMPERATURE_BOUNDS)

    @staticmethod
    def _resolve_max_tokens(value: int | None) -> int:
        finite = _finite(value)
        return clamp_max_tokens(DEFAULT_MAX_TOKENS if finite is None else finite)

    @staticmethod
    def _clamp_optional(value: float | None, bounds: tuple[float, float]) -> float | None:
        finite = _finite(value)
        if finite is None:
            return None
        return clamp(finite, *bounds)

    def _resolve_kv_cache(self, config: RequestConfig) -> dict[str, Any] | None:
        enabled = config.enable_kv_cache if config.enable_kv_cache is not None else self.enable_cache
        if not enabled:
            return None
        strategy = _normalize_cache_strategy(config.cache_strategy) or self.cache_strategy or "auto"
        return {"enabled": True, "strategy": strategy}


__all__ = (
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_MODEL",
    "DEFAULT_TEMPERATURE",
    "MAX_TOKENS_BOUNDS",
    "PENALTY_BOUNDS",
    "REASONING_MODEL",
    "TEMPERATURE_BOUNDS",
    "TOP_P_BOUNDS",
    "DeepSeekRequestBuilder",
    "clamp",
    "clamp_max_tokens",
)
