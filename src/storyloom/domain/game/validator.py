"""Structural validation of reconciled game payloads."""

from __future__ import annotations

import re
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from storyloom.domain.game.schemas import OPTION_IDS, DataType, ExtensionConfig, FieldType, StatusConfig

REQUIRED_FIELDS: tuple[str, ...] = ("scene", "narration", "options")
SENTENCE_SPLIT_PATTERN = re.compile(r"[。！？.!?]")

SCENE_MIN_LENGTH = 20
SCENE_MAX_LENGTH = 1000
NARRATION_MAX_SENTENCES = 3
NARRATION_MAX_LENGTH = 200
OPTION_TEXT_MAX_LENGTH = 50


class IssueSeverity(StrEnum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"


@dataclass(slots=True)
class ValidationIssue:
    field: str
    code: str
    message: str
    severity: IssueSeverity = IssueSeverity.ERROR
    value: Any = None


@dataclass(slots=True)
class ValidationWarning:
    field: str
    message: str
    suggestion: str | None = None


@dataclass(slots=True)
class ValidationMetadata:
    validation_time_ms: float
    fields_checked: int
    errors_found: int
    warnings_found: int


@dataclass(slots=True)
class ValidationResult:
    is_valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)
    metadata: ValidationMetadata | None = None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_blank(value: str) -> bool:
    return not value.strip()


class DataValidator:
    """Check a game payload against the status and extension schema.

    Errors are split into critical/error entries and advisory warnings. Lenient
    validation fails only on critical or error entries; strict validation fails on
    anything.
    """

    @classmethod
    def validate(
        cls,
        data: Mapping[str, Any],
        status_config: StatusConfig,
        extension_configs: Sequence[ExtensionConfig] = (),
        *,
        strict_mode: bool = False,
    ) -> ValidationResult:
        started = time.perf_counter()
        errors: list[ValidationIssue] = []
        warnings: list[ValidationWarning] = []

        checked = cls._validate_required(data, errors)
        if "scene" in data:
            checked += cls._validate_scene(data["scene"], errors, warnings)
        if "narration" in data:
            checked += cls._validate_narration(data["narration"], errors, warnings)
        if "options" in data:
            checked += cls._validate_options(data["options"], errors, warnings)
        if data.get("status") is not None:
            checked += cls._validate_status(data["status"], status_config, errors, warnings)
        if data.get("custom") is not None:
            checked += cls._validate_custom(data["custom"], extension_configs, warnings)

        if strict_mode:
            is_valid = not errors and not warnings
        else:
            is_valid = not any(
                issue.severity in (IssueSeverity.CRITICAL, IssueSeverity.ERROR) for issue in errors
            )

        return ValidationResult(
            is_valid=is_valid,
            errors=errors,
            warnings=warnings,
            metadata=ValidationMetadata(
                validation_time_ms=(time.perf_counter() - started) * 1000,
                fields_checked=checked,
                errors_found=len(errors),
                warnings_found=len(warnings),
            ),
        )

    @staticmethod
    def quick_validate(data: Any) -> bool:
        """Return ``True`` iff scene, narration and the three options are well formed."""
        if not isinstance(data, Mapping):
            return False
        for key in ("scene", "narration"):
            value = data.get(key)
            if not isinstance(value, str) or _is_blank(value):
                return False
        options = data.get("options")
        if not isinstance(options, list) or len(options) != len(OPTION_IDS):
            return False
        seen: set[str] = set()
        for option in options:
            if not isinstance(option, Mapping):
                return False
            option_id = option.get("id")
            text = option.get("text")
            if option_id not in OPTION_IDS or option_id in seen:
                return False
            if not isinstance(text, str) or _is_blank(text):
                return False
            seen.add(option_id)
        return True

    @staticmethod
    def _validate_required(data: Mapping[str, Any], errors: list[ValidationIssue]) -> int:
        for name in REQUIRED_FIELDS:
            if name not in data:
                errors.append(
                    ValidationIssue(
                        field=name,
                        code="MISSING_REQUIRED_FIELD",
                        message=f"Missing required field: {name}",
                        severity=IssueSeverity.CRITICAL,
                    )
                )
        return len(REQUIRED_FIELDS)

    @staticmethod
    def _validate_scene(scene: Any, errors: list[ValidationIssue], warnings: list[ValidationWarning]) -> int:
        if not isinstance(scene, str):
            errors.append(ValidationIssue("scene", "INVALID_TYPE", "scene must be a string", value=scene))
        elif _is_blank(scene):
            errors.append(ValidationIssue("scene", "EMPTY_VALUE", "scene must not be empty"))
        elif len(scene) < SCENE_MIN_LENGTH:
            warnings.append(
                ValidationWarning(
                    "scene",
                    "Scene description is very short",
                    "Describe the surroundings, mood and visual details",
                )
            )
        elif len(scene) > SCENE_MAX_LENGTH:
            warnings.append(
                ValidationWarning(
                    "scene",
                    "Scene description is very long",
                    f"Keep the scene under {SCENE_MAX_LENGTH // 2} characters",
                )
            )
        return 1

    @staticmethod
    def _validate_narration(
        narration: Any, errors: list[ValidationIssue], warnings: list[ValidationWarning]
    ) -> int:
        if not isinstance(narration, str):
            errors.append(
                ValidationIssue("narration", "INVALID_TYPE", "narration must be a string", value=narration)
            )
            return 1
        if _is_blank(narration):
            errors.append(ValidationIssue("narration", "EMPTY_VALUE", "narration must not be empty"))
            return 1

        sentences = [part for part in SENTENCE_SPLIT_PATTERN.split(narration) if part.strip()]
        if len(sentences) > NARRATION_MAX_SENTENCES:
            warnings.append(
                ValidationWarning(
                    "narration",
                    f"Narration has {len(sentences)} sentences, expected 1-{NARRATION_MAX_SENTENCES}",
                    "Only narrate the key change of this round",
                )
            )
        if len(narration) > NARRATION_MAX_LENGTH:
            warnings.append(
                ValidationWarning("narration", "Narration is too long", "Keep narration short and punchy")
            )
        return 1

    @staticmethod
    def _validate_options(
        options: Any, errors: list[ValidationIssue], warnings: list[ValidationWarning]
    ) -> int:
        if not isinstance(options, list):
            errors.append(
                ValidationIssue(
                    "options",
                    "INVALID_TYPE",
                    "options must be a list",
                    severity=IssueSeverity.CRITICAL,
                    value=options,
                )
            )
            return 1

        if len(options) != len(OPTION_IDS):
            errors.append(
                ValidationIssue(
                    "options",
                    "INVALID_LENGTH",
                    f"options must contain {len(OPTION_IDS)} entries, got {len(options)}",
                    severity=IssueSeverity.CRITICAL,
                    value=len(options),
                )
            )

        seen: set[str] = set()
        for index, option in enumerate(options):
            path = f"options[{index}]"
            if not isinstance(option, Mapping):
                errors.append(ValidationIssue(path, "INVALID_TYPE", f"option {index} must be an object", value=option))
                continue

            option_id = option.get("id")
            if not option_id:
                errors.append(ValidationIssue(f"{path}.id", "MISSING_FIELD", f"option {index} has no id"))
            elif option_id not in OPTION_IDS:
                errors.append(
                    ValidationIssue(
                        f"{path}.id",
                        "INVALID_VALUE",
                        f"option id must be one of {', '.join(OPTION_IDS)}, got {option_id}",
                        value=option_id,
                    )
                )
            else:
                if option_id in seen:
                    errors.append(
                        ValidationIssue(f"{path}.id", "DUPLICATE_ID", f"duplicate option id: {option_id}", value=option_id)
                    )
                seen.add(option_id)

            text = option.get("text")
            if text is None or text == "":
                errors.append(ValidationIssue(f"{path}.text", "MISSING_FIELD", f"option {index} has no text"))
            elif not isinstance(text, str):
                errors.append(ValidationIssue(f"{path}.text", "INVALID_TYPE", "option text must be a string", value=text))
            elif _is_blank(text):
                errors.append(ValidationIssue(f"{path}.text", "EMPTY_VALUE", f"option {index} text must not be empty"))
            elif len(text) > OPTION_TEXT_MAX_LENGTH:
                warnings.append(
                    ValidationWarning(f"{path}.text", "Option text is too long", "Keep option text under 30 characters")
                )
        return 1

    @staticmethod
    def _validate_status(
        status: Any,
        status_config: StatusConfig,
        errors: list[ValidationIssue],
        warnings: list[ValidationWarning],
    ) -> int:
        if not isinstance(status, Mapping):
            errors.append(ValidationIssue("status", "INVALID_TYPE", "status must be an object", value=status))
            return 1

        checked = 0
        for status_field in status_config.fields:
            checked += 1
            path = f"status.{status_field.name}"
            if status_field.name not in status:
                if status_field.required:
                    errors.append(
                        ValidationIssue(path, "MISSING_FIELD", f"Missing required status field: {status_field.label}")
                    )
                else:
                    warnings.append(
                        ValidationWarning(
                            path,
                            f"Missing optional status field: {status_field.label}",
                            "Include this field to keep the status bar complete",
                        )
                    )
                continue

            value = status[status_field.name]
            if status_field.type is FieldType.PROGRESS:
                if not isinstance(value, Mapping):
                    errors.append(
                        ValidationIssue(path, "INVALID_TYPE", "progress fields must be {value, max} objects", value=value)
                    )
                    continue
                for part in ("value", "max"):
                    if not _is_number(value.get(part)):
                        errors.append(
                            ValidationIssue(
                                f"{path}.{part}",
                                "INVALID_TYPE",
                                f"progress {part} must be a number",
                                value=value.get(part),
                            )
                        )
            elif status_field.type is FieldType.NUMBER and not _is_number(value):
                errors.append(ValidationIssue(path, "INVALID_TYPE", "number fields must be numeric", value=value))

        for key in status:
            if status_config.get(key) is None:
                warnings.append(
                    ValidationWarning(
                        f"status.{key}",
                        f"Unconfigured status field: {key}",
                        "Add the field to the status configuration or drop it from the response",
                    )
                )
        return checked

    @staticmethod
    def _validate_custom(
        custom: Any,
        extension_configs: Sequence[ExtensionConfig],
        warnings: list[ValidationWarning],
    ) -> int:
        if not isinstance(custom, Mapping):
            warnings.append(ValidationWarning("custom", "custom must be an object"))
            return 1

        checked = 0
        for extension in extension_configs:
            checked += 1
            path = f"custom.{extension.name}"
            if extension.name not in custom:
                warnings.append(
                    ValidationWarning(
                        path,
                        f"Missing extension data: {extension.name}",
                        "Include this extension to keep the cards up to date",
                    )
                )
                continue
            value = custom[extension.name]
            if extension.data_type is DataType.ARRAY and not isinstance(value, list):
                warnings.append(ValidationWarning(path, f"Extension {extension.name} should be a list"))
            elif extension.data_type is DataType.OBJECT and not isinstance(value, Mapping):
                warnings.append(ValidationWarning(path, f"Extension {extension.name} should be an object"))
        return checked


__all__ = (
    "DataValidator",
    "IssueSeverity",
    "ValidationIssue",
    "ValidationMetadata",
    "ValidationResult",
    "ValidationWarning",
)
