"""Facade composing prompt building, parsing, repair and validation."""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog
from pydantic import ValidationError

from storyloom.domain.game.formatter import DataFormatter, FormatResult
from storyloom.domain.game.parser import ParseResult, ResponseParser
from storyloom.domain.game.prompts import DEFAULT_MAX_HISTORY_ROUNDS, BuildResult, PromptBuilder, estimate_tokens
from storyloom.domain.game.schemas import (
    DEEPSEEK_PROVIDER,
    ExtensionConfig,
    GameRound,
    GameState,
    ParsedGameData,
    StatusConfig,
    WorldConfig,
)
from storyloom.domain.game.validator import DataValidator, ValidationResult

logger = structlog.get_logger(__name__)


class ProcessPhase(StrEnum):
    PROMPT = "prompt"
    PARSE = "parse"
    FORMAT = "format"
    VALIDATE = "validate"
    COMPLETE = "complete"


@dataclass(slots=True)
class ProcessOptions:
    world_config: WorldConfig
    status_config: StatusConfig
    current_state: GameState
    user_input: str
    extension_configs: Sequence[ExtensionConfig] = ()
    history_rounds: Sequence[GameRound] = ()
    max_history_rounds: int = DEFAULT_MAX_HISTORY_ROUNDS
    provider: str | None = DEEPSEEK_PROVIDER
    raw_response: str | None = None
    strict_validation: bool = False
    enable_auto_fix: bool = True
    enable_field_mapping: bool = True
    enable_default_fill: bool = True


@dataclass(slots=True)
class ProcessError:
    phase: ProcessPhase
    message: str
    details: Any = None


@dataclass(slots=True)
class ProcessMetadata:
    total_time_ms: float = 0.0
    prompt_tokens: int | None = None
    applied_fixes: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ProcessResult:
    success: bool = False
    phase: ProcessPhase = ProcessPhase.PROMPT
    prompt: BuildResult | None = None
    parse: ParseResult | None = None
    format: FormatResult | None = None
    validation: ValidationResult | None = None
    data: ParsedGameData | None = None
    error: ProcessError | None = None
    metadata: ProcessMetadata = field(default_factory=ProcessMetadata)

    def fail(self, message: str, details: Any = None) -> "ProcessResult":
        self.success = False
        self.error = ProcessError(phase=self.phase, message=message, details=details)
        return self


class DataProcessor:
    """Run a round through prompt building, parsing, repair and validation.

    Every stage is also exposed on its own. Failures never raise; the result
    reports the phase that stopped the run.
    """

    @classmethod
    def process_complete(cls, options: ProcessOptions) -> ProcessResult:
        started = time.perf_counter()
        result = ProcessResult()
        try:
            prompt = cls.build_prompt(options)
            result.prompt = prompt
            if not prompt.success or prompt.prompt is None:
                return result.fail(prompt.error or "Failed to build prompt", prompt)
            result.metadata.prompt_tokens = estimate_tokens(prompt.prompt)

            if not options.raw_response:
                result.success = True
                return result

            cls._reconcile_into(
                result,
                options.raw_response,
                status_config=options.status_config,
                extension_configs=options.extension_configs,
                provider=options.provider,
                strict_validation=options.strict_validation,
                enable_auto_fix=options.enable_auto_fix,
                enable_field_mapping=options.enable_field_mapping,
                enable_default_fill=options.enable_default_fill,
            )
            return result
        except Exception as exc:  # noqa: BLE001
            logger.exception("Game data processing failed", phase=result.phase.value)
            return result.fail(str(exc) or exc.__class__.__name__, exc)
        finally:
            result.metadata.total_time_ms = (time.perf_counter() - started) * 1000

    @classmethod
    def reconcile(
        cls,
        raw_response: str,
        *,
        status_config: StatusConfig,
        extension_configs: Sequence[ExtensionConfig] = (),
        provider: str | None = DEEPSEEK_PROVIDER,
        strict_validation: bool = False,
        enable_auto_fix: bool = True,
    ) -> ProcessResult:
        """Parse, repair and validate model text without building a prompt."""
        started = time.perf_counter()
        result = ProcessResult(phase=ProcessPhase.PARSE)
        try:
            cls._reconcile_into(
                result,
                raw_response,
                status_config=status_config,
                extension_configs=extension_configs,
                provider=provider,
                strict_validation=strict_validation,
                enable_auto_fix=enable_auto_fix,
            )
            return result
        finally:
            result.metadata.total_time_ms = (time.perf_counter() - started) * 1000

    @classmethod
    def _reconcile_into(
        cls,
        result: ProcessResult,
        raw_response: str,
        *,
        status_config: StatusConfig,
        extension_configs: Sequence[ExtensionConfig],
        provider: str | None,
        strict_validation: bool,
        enable_auto_fix: bool,
        enable_field_mapping: bool = True,
        enable_default_fill: bool = True,
    ) -> None:
        result.phase = ProcessPhase.PARSE
        parsed = cls.parse_response(raw_response, provider=provider, enable_auto_fix=enable_auto_fix)
        result.parse = parsed
        if not parsed.success or parsed.data is None:
            message = parsed.error.message if parsed.error else "Failed to parse response"
            result.fail(message, parsed.error)
            return

        payload: dict[str, Any] = parsed.data
        if enable_auto_fix:
            result.phase = ProcessPhase.FORMAT
            formatted = cls.format_data(
                payload,
                status_config,
                extension_configs,
                enable_field_mapping=enable_field_mapping,
                enable_default_fill=enable_default_fill,
            )
            result.format = formatted
            if formatted.success and formatted.data is not None:
                payload = formatted.data
                result.metadata.applied_fixes = list(formatted.applied)
            result.metadata.warnings.extend(formatted.warnings)

        result.phase = ProcessPhase.VALIDATE
        validation = cls.validate_data(payload, status_config, extension_configs, strict_mode=strict_validation)
        result.validation = validation
        result.metadata.warnings.extend(warning.message for warning in validation.warnings)

        if strict_validation and not validation.is_valid:
            result.fail("Game data failed strict validation", validation.errors or validation.warnings)
            return
        if not DataValidator.quick_validate(payload):
            result.fail("Game data is missing scene, narration or options", validation.errors)
            return

        try:
            data = ParsedGameData.model_validate(payload)
        except ValidationError as exc:
            result.fail("Game data does not match the declared field types", exc.errors())
            return

        result.phase = ProcessPhase.COMPLETE
        result.success = True
        result.data = data

    @staticmethod
    def build_prompt(options: ProcessOptions) -> BuildResult:
        return PromptBuilder.build_prompt(
            world_config=options.world_config,
            status_config=options.status_config,
            extension_configs=options.extension_configs,
            current_state=options.current_state,
            user_input=options.user_input,
            history_rounds=options.history_rounds,
            max_history_rounds=options.max_history_rounds,
            provider=options.provider,
        )

    @staticmethod
    def parse_response(
        raw_response: str,
        *,
        provider: str | None = DEEPSEEK_PROVIDER,
        enable_auto_fix: bool = True,
        strict_mode: bool = False,
    ) -> ParseResult:
        return ResponseParser.parse_response(
            raw_response,
            provider=provider,
            enable_auto_fix=enable_auto_fix,
            strict_mode=strict_mode,
        )

    @staticmethod
    def validate_data(
        data: dict[str, Any],
        status_config: StatusConfig,
        extension_configs: Sequence[ExtensionConfig] = (),
        *,
        strict_mode: bool = False,
    ) -> ValidationResult:
        return DataValidator.validate(data, status_config, extension_configs, strict_mode=strict_mode)

    @staticmethod
    def format_data(
        data: dict[str, Any],
        status_config: StatusConfig,
        extension_configs: Sequence[ExtensionConfig] = (),
        *,
        enable_field_mapping: bool = True,
        enable_default_fill: bool = True,
    ) -> FormatResult:
        return DataFormatter.format(
            data,
            status_config,
            extension_configs,
            enable_field_mapping=enable_field_mapping,
            enable_default_fill=enable_default_fill,
        )

    @staticmethod
    def smart_fix(
        data: Any, status_config: StatusConfig, extension_configs: Sequence[ExtensionConfig] = ()
    ) -> FormatResult:
        return DataFormatter.smart_fix(data, status_config, extension_configs)

    @staticmethod
    def quick_validate(data: Any) -> bool:
        return DataValidator.quick_validate(data)

    estimate_tokens = staticmethod(estimate_tokens)


__all__ = (
    "DataProcessor",
    "ProcessError",
    "ProcessMetadata",
    "ProcessOptions",
    "ProcessPhase",
    "ProcessResult",
)
