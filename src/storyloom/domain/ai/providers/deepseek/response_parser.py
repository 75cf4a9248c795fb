"""Turn DeepSeek chat completion payloads into reconciled AI responses."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Final

from storyloom.domain.ai.enums import CompatibilityMode, ErrorCategory, ErrorCode, ErrorSeverity
from storyloom.domain.ai.errors import AIError, ErrorContext
from storyloom.domain.ai.providers.deepseek.errors import PROVIDER
from storyloom.domain.ai.requests import ProviderResult
from storyloom.domain.ai.schemas import AIResponse, CacheUsage, ResponseMetadata, TokenUsage
from storyloom.domain.game.processor import DataProcessor, ProcessPhase, ProcessResult
from storyloom.domain.game.schemas import ExtensionConfig, StatusConfig

DEFAULT_RESPONSE_MODEL: Final = "deepseek-chat"
REASONING_TAG: Final = "<reasoning>"


@dataclass(slots=True)
class UsageParseResult:
    token_usage: TokenUsage
    cache_usage: CacheUsage | None = None
    extras: dict[str, Any] = field(default_factory=dict)


def _as_mapping(value: Any) -> Mapping[str, Any] | None:
    return value if isinstance(value, Mapping) else None


def _count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return 0
    try:
        number = float(value)
    except ValueError:
        return 0
    return int(number) if math.isfinite(number) else 0


def _first_present(record: Mapping[str, Any] | None, *keys: str) -> Any:
    if record is None:
        return None
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


class DeepSeekResponseParser:
    """Extract content, reasoning and usage from a DeepSeek reply.

    The message content goes through the game data pipeline, so a returned
    response always carries validated :class:`ParsedGameData`.
    """

    @classmethod
    def parse(
        cls,
        payload: Any,
        request_id: str,
        *,
        status_config: StatusConfig | None = None,
        extension_configs: Sequence[ExtensionConfig] = (),
    ) -> ProviderResult:
        record = _as_mapping(payload)
        if record is None:
            msg = "Unexpected DeepSeek response format, expected an object"
            raise cls._error(msg, ErrorCode.STRUCTURE_INVALID, value=type(payload).__name__)

        choice = cls.select_primary_choice(record)
        content = cls.extract_content(record, choice)
        if content is None:
            msg = "No usable content found in DeepSeek response"
            raise cls._error(msg, ErrorCode.STRUCTURE_INVALID, request_id=request_id)

        reasoning_segments = cls.extract_reasoning_segments(record, choice)
        raw_text = cls.compose_raw_text(content, reasoning_segments)

        processed = DataProcessor.reconcile(
            raw_text,
            status_config=status_config or StatusConfig(),
            extension_configs=extension_configs,
            provider=PROVIDER,
            enable_auto_fix=True,
        )
        if not processed.success or processed.data is None:
            raise cls._reconcile_error(processed, request_id)

        usage = cls.map_usage(_as_mapping(record.get("usage")))
        extras = dict(usage.extras)
        if processed.parse is not None and processed.parse.metadata is not None:
            parse_meta = processed.parse.metadata
            extras.update(
                {
                    "extraction_method": parse_meta.extraction_method,
                    "auto_fix_applied": parse_meta.auto_fix_applied,
                    "parse_time_ms": parse_meta.parse_time_ms,
                    "original_length": parse_meta.original_length,
                    "extracted_length": parse_meta.extracted_length,
                }
            )
        if processed.metadata.applied_fixes:
            extras["applied_fixes"] = list(processed.metadata.applied_fixes)
        if processed.metadata.warnings:
            extras["warnings"] = list(processed.metadata.warnings)

        model = record.get("model")
        api_version = record.get("api_version")
        message_id = record.get("id")
        metadata = ResponseMetadata(
            token_usage=usage.token_usage,
            model_used=model if isinstance(model, str) and model else DEFAULT_RESPONSE_MODEL,
            api_version=api_version if isinstance(api_version, str) and api_version else "unknown",
            provider_message_id=message_id if isinstance(message_id, str) else None,
            reasoning_content="\n".join(reasoning_segments) if reasoning_segments else None,
            reasoning_segments=tuple(reasoning_segments),
            cache_usage=usage.cache_usage,
            compatibility_mode=cls.detect_compatibility_mode(record),
            raw_text=raw_text,
            extras=extras,
        )
        response = AIResponse(id=request_id, success=True, data=processed.data, metadata=metadata)
        return ProviderResult(response=response, raw_response=payload)

    @staticmethod
    def select_primary_choice(record: Mapping[str, Any]) -> Mapping[str, Any] | None:
        choices = record.get("choices")
        if not isinstance(choices, list):
            return None
        return next((choice for choice in choices if isinstance(choice, Mapping)), None)

    @classmethod
    def extract_content(cls, record: Mapping[str, Any], choice: Mapping[str, Any] | None) -> str | None:
        message = _as_mapping(choice.get("message")) if choice else None
        choice_content = _first_present(message, "content")
        if choice_content is None and choice is not None:
            choice_content = choice.get("content")
        choice_text = choice.get("text") if choice else None

        candidates = (
            cls.normalize_content(choice_content),
            choice_text if isinstance(choice_text, str) else None,
            cls.normalize_content(record.get("output_text")),
            cls.normalize_content(record.get("content")),
        )
        return next((candidate for candidate in candidates if candidate and candidate.strip()), None)

    @classmethod
    def normalize_content(cls, content: Any) -> str | None:
        """Flatten a string, a list of segments or a ``{text|parts}`` object."""
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            segments = [segment for segment in map(cls._segment_text, content) if segment]
            return "\n".join(segments) if segments else None
        record = _as_mapping(content)
        if record is not None:
            if isinstance(record.get("text"), str):
                return record["text"]
            if isinstance(record.get("parts"), list):
                return cls.normalize_content(record["parts"])
        return None

    @staticmethod
    def _segment_text(item: Any) -> str | None:
        if isinstance(item, str):
            return item
        record = _as_mapping(item)
        if record is None:
            return None
        for key in ("text", "content"):
            if isinstance(record.get(key), str):
                return record[key]
        return None

    @staticmethod
    def extract_reasoning_segments(record: Mapping[str, Any], choice: Mapping[str, Any] | None) -> list[str]:
        candidates: list[Any] = []
        message = _as_mapping(choice.get("message")) if choice else None
        for source in (message, choice, record):
            if source is None:
                continue
            value = source.get("reasoning_content")
            if isinstance(value, list):
                candidates.extend(value)
            elif isinstance(value, str) and source is message:
                candidates.append(value)
        if isinstance(record.get("reasoning"), str):
            candidates.append(record["reasoning"])

        segments: list[str] = []
        for item in candidates:
            text: Any = item
            if isinstance(item, Mapping):
                text = next(
                    (item[key] for key in ("thought", "text", "content") if isinstance(item.get(key), str)),
                    None,
                )
            if isinstance(text, str) and text.strip():
                segments.append(text)
        return segments

    @staticmethod
    def compose_raw_text(content: str, reasoning_segments: Sequence[str]) -> str:
        """Prefix the content with a ``<reasoning>`` block when reasoning is present."""
        trimmed = content.strip()
        if not reasoning_segments:
            return trimmed
        reasoning = "\n".join(segment.strip() for segment in reasoning_segments).strip()
        if REASONING_TAG not in reasoning:
            reasoning = f"{REASONING_TAG}\n{reasoning}\n</reasoning>"
        return f"{reasoning}\n{trimmed}".strip()

    @staticmethod
    def map_usage(usage: Mapping[str, Any] | None) -> UsageParseResult:
        prompt_tokens = _count(_first_present(usage, "prompt_tokens", "promptTokens", "input_tokens"))
        completion_tokens = _count(
            _first_present(usage, "completion_tokens", "completionTokens", "output_tokens")
        )
        total_tokens = _count(_first_present(usage, "total_tokens", "totalTokens"))
        if total_tokens <= 0:
            total_tokens = prompt_tokens + completion_tokens

        prompt_details = _as_mapping(usage.get("prompt_tokens_details")) if usage else None
        hit_tokens = _count(
            _first_present(usage, "cache_read_tokens", "prompt_cache_hit_tokens", "promptTokensCached")
            or _first_present(prompt_details, "cached_tokens")
        )
        miss_candidate = _count(
            _first_present(usage, "cache_miss_tokens", "prompt_cache_miss_tokens", "promptTokensNotCached")
        )
        write_tokens = _count(
            _first_present(usage, "cache_write_tokens", "cache_store_tokens")
            or _first_present(prompt_details, "non_cached_tokens")
        )

        if miss_candidate > 0:
            miss_tokens = miss_candidate
        elif prompt_tokens > 0 and hit_tokens > 0:
            miss_tokens = max(prompt_tokens - hit_tokens, 0)
        else:
            miss_tokens = prompt_tokens

        cache_usage = None
        if hit_tokens > 0 or write_tokens > 0:
            cache_usage = CacheUsage(hit_tokens=hit_tokens, miss_tokens=miss_tokens, write_tokens=write_tokens)

        extras: dict[str, Any] = {}
        reasoning_tokens = _count(_first_present(usage, "reasoning_tokens"))
        if reasoning_tokens > 0:
            extras["reasoning_tokens"] = reasoning_tokens
        if prompt_details:
            extras["prompt_tokens_details"] = dict(prompt_details)
        completion_details = _as_mapping(usage.get("completion_tokens_details")) if usage else None
        if completion_details:
            extras["completion_tokens_details"] = dict(completion_details)
        if usage is not None and ("cache_read_tokens" in usage or "cache_write_tokens" in usage):
            extras["cache_token_breakdown"] = {
                "read": usage.get("cache_read_tokens"),
                "write": usage.get("cache_write_tokens"),
                "miss": usage.get("cache_miss_tokens"),
            }

        return UsageParseResult(
            token_usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=total_tokens,
            ),
            cache_usage=cache_usage,
            extras=extras,
        )

    @staticmethod
    def detect_compatibility_mode(record: Mapping[str, Any]) -> CompatibilityMode | None:
        meta = _as_mapping(record.get("meta"))
        explicit = record.get("compatibility_mode") or (meta.get("compatibility_mode") if meta else None)
        if isinstance(explicit, str):
            try:
                return CompatibilityMode(explicit)
            except ValueError:
                pass

        object_type = record.get("object")
        if isinstance(object_type, str) and "chat.completion" in object_type:
            return CompatibilityMode.OPENAI
        if record.get("anthropic_version") or record.get("type") == "anthropic_response":
            return CompatibilityMode.ANTHROPIC
        return None

    @classmethod
    def _reconcile_error(cls, processed: ProcessResult, request_id: str) -> AIError:
        code = ErrorCode.INVALID_JSON if processed.phase is ProcessPhase.PARSE else ErrorCode.STRUCTURE_INVALID
        message = processed.error.message if processed.error else "DeepSeek response could not be reconciled"
        return cls._error(
            f"DeepSeek response rejected during {processed.phase.value}: {message}",
            code,
            request_id=request_id,
            phase=processed.phase.value,
        )

    @staticmethod
    def _error(message: str, code: ErrorCode, *, request_id: str | None = None, **details: Any) -> AIError:
        return AIError(
            message,
            code=code,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VALIDATION,
            retryable=False,
            provider=PROVIDER,
            context=ErrorContext(module=PROVIDER, stage="parse_response", request_id=request_id, additional_data=details),
        )


__all__ = (
    "DEFAULT_RESPONSE_MODEL",
    "DeepSeekResponseParser",
    "UsageParseResult",
)
