"""Best-effort repair of model payloads before validation."""

from __future__ import annotations

import copy
import json
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Final

from storyloom.domain.game.schemas import (
    OPTION_IDS,
    DataType,
    ExtensionConfig,
    FieldType,
    StatusConfig,
    StatusField,
)

FIELD_MAPPING_VERSION: Final = 1
# Ordered (alias, canonical) pairs. An alias is only moved when the canonical key is absent.
FIELD_MAPPING: Final[tuple[tuple[str, str], ...]] = (
    ("event", "narration"),
    ("事件说明", "narration"),
    ("事件", "narration"),
    ("情况说明", "narration"),
    ("旁白", "narration"),
    ("description", "scene"),
    ("场景", "scene"),
    ("场景描述", "scene"),
    ("选项", "options"),
    ("choices", "options"),
    ("actions", "options"),
    ("状态", "status"),
    ("state", "status"),
    ("自定义", "custom"),
    ("extension", "custom"),
    ("extensions", "custom"),
)

DEFAULT_SCENE: Final = "The scene description is missing for now, carry on with the adventure."
DEFAULT_NARRATION: Final = "Nothing notable changed this round."
DEFAULT_OPTION_TEXTS: Final[tuple[str, str, str]] = ("Continue", "Wait", "Go back")
FALLBACK_OPTION_TEXT: Final = DEFAULT_OPTION_TEXTS[0]
DEFAULT_PROGRESS_MAX: Final = 100


@dataclass(slots=True)
class FormatResult:
    success: bool
    data: dict[str, Any] | None = None
    applied: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def default_options() -> list[dict[str, str]]:
    return [{"id": option_id, "text": text} for option_id, text in zip(OPTION_IDS, DEFAULT_OPTION_TEXTS)]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _parse_number(value: Any) -> int | float | None:
    """Return ``value`` as a number, accepting numeric strings."""
    if _is_number(value):
        return value
    if not isinstance(value, str):
        return None
    try:
        parsed = float(value.strip())
    except ValueError:
        return None
    if not math.isfinite(parsed):
        return None
    return int(parsed) if parsed.is_integer() else parsed


class DataFormatter:
    """Map aliases, coerce shapes and fill defaults on a raw payload."""

    @classmethod
    def format(
        cls,
        data: Mapping[str, Any],
        status_config: StatusConfig,
        extension_configs: Sequence[ExtensionConfig] = (),
        *,
        enable_field_mapping: bool = True,
        enable_default_fill: bool = True,
    ) -> FormatResult:
        applied: list[str] = []
        warnings: list[str] = []
        result: dict[str, Any] = copy.deepcopy(dict(data))

        if enable_field_mapping:
            applied.extend(cls.apply_field_mapping(result))

        if result.get("options") is not None:
            result["options"] = cls._fix_options(result["options"], applied, warnings)

        if result.get("status") is not None:
            result["status"] = cls._fix_status(result["status"], status_config, applied, warnings)

        if enable_default_fill:
            cls._fill_defaults(result, status_config, extension_configs, applied)

        if not cls._is_minimally_valid(result):
            warnings.append("Payload still misses scene, narration or three options after formatting")
            return FormatResult(success=False, applied=applied, warnings=warnings)

        return FormatResult(success=True, data=result, applied=applied, warnings=warnings)

    @classmethod
    def smart_fix(
        cls,
        data: Any,
        status_config: StatusConfig,
        extension_configs: Sequence[ExtensionConfig] = (),
    ) -> FormatResult:
        """Apply every repair strategy to an arbitrary value."""
        if not isinstance(data, Mapping):
            return FormatResult(success=False, warnings=["Payload is not an object"])
        return cls.format(data, status_config, extension_configs)

    @staticmethod
    def apply_field_mapping(data: dict[str, Any]) -> list[str]:
        applied: list[str] = []
        for alias, canonical in FIELD_MAPPING:
            if alias in data and canonical not in data:
                data[canonical] = data.pop(alias)
                applied.append(f"Mapped field {alias} -> {canonical}")
        return applied

    @staticmethod
    def _fix_options(options: Any, applied: list[str], warnings: list[str]) -> list[dict[str, str]]:
        if not isinstance(options, list):
            warnings.append("options is not a list, replaced with defaults")
            applied.append("Used default options")
            return default_options()

        fixed: list[dict[str, str]] = []
        for index, option in enumerate(options):
            positional_id = OPTION_IDS[index] if index < len(OPTION_IDS) else OPTION_IDS[0]
            if isinstance(option, str):
                fixed.append({"id": positional_id, "text": option.strip() or FALLBACK_OPTION_TEXT})
                applied.append(f"Converted option {index} from string")
                continue
            if isinstance(option, Mapping):
                raw_id = option.get("id")
                option_id = str(raw_id).strip().upper() if raw_id not in (None, "") else positional_id
                if option_id not in OPTION_IDS:
                    option_id = positional_id
                    applied.append(f"Repaired option {index} id: {raw_id} -> {option_id}")
                text = next(
                    (option[key].strip() for key in ("text", "content", "description") if _non_empty_str(option.get(key))),
                    None,
                )
                if not _non_empty_str(option.get("text")):
                    applied.append(f"Option {index} had no text, used a fallback")
                fixed.append({"id": option_id, "text": text or FALLBACK_OPTION_TEXT})
                continue
            warnings.append(f"Option {index} is malformed, replaced with a default")
            fixed.append({"id": positional_id, "text": FALLBACK_OPTION_TEXT})

        if len(fixed) > len(OPTION_IDS):
            del fixed[len(OPTION_IDS) :]
            warnings.append(f"More than {len(OPTION_IDS)} options, kept the first {len(OPTION_IDS)}")

        defaults = default_options()
        while len(fixed) < len(OPTION_IDS):
            fixed.append(defaults[len(fixed)])
            applied.append(f"Added default option {len(fixed)}")

        if len({option["id"] for option in fixed}) != len(fixed):
            for option, option_id in zip(fixed, OPTION_IDS):
                option["id"] = option_id
            applied.append("Reassigned duplicate option ids by position")
        return fixed

    @classmethod
    def _fix_status(
        cls,
        status: Any,
        status_config: StatusConfig,
        applied: list[str],
        warnings: list[str],
    ) -> dict[str, Any]:
        if not isinstance(status, Mapping):
            warnings.append("status is not an object, replaced with defaults")
            applied.append("Used default status")
            return cls.default_status(status_config)

        fixed: dict[str, Any] = {}
        for status_field in status_config.fields:
            name = status_field.name
            value = status.get(name)
            if value is None:
                fixed[name] = cls.default_field_value(status_field)
                applied.append(f"Status field {name} missing, used default")
            elif status_field.type is FieldType.PROGRESS:
                fixed[name] = cls._coerce_progress(status_field, value, applied, warnings)
            elif status_field.type in (FieldType.NUMBER, FieldType.LEVEL):
                fixed[name] = cls._coerce_number(status_field, value, applied, warnings)
            else:
                fixed[name] = cls._coerce_text(status_field, value, applied, warnings)
        return fixed

    @classmethod
    def _coerce_progress(
        cls, status_field: StatusField, value: Any, applied: list[str], warnings: list[str]
    ) -> Any:
        name = status_field.name
        default_max = status_field.max or DEFAULT_PROGRESS_MAX
        number = _parse_number(value)
        if number is not None:
            applied.append(f"Status field {name} converted from number to progress")
            return {"value": number, "max": default_max}
        if isinstance(value, Mapping):
            current = cls._progress_part(name, value, "value", "current", applied)
            if current is None:
                warnings.append(f"Status field {name} has no numeric value, used 0")
                current = 0
            maximum = cls._progress_part(name, value, "max", "maximum", applied)
            if maximum is None:
                maximum = default_max
            return {"value": current, "max": maximum}
        warnings.append(f"Status field {name} is malformed, used default")
        return cls.default_field_value(status_field)

    @staticmethod
    def _progress_part(
        name: str, value: Mapping[str, Any], key: str, alias: str, applied: list[str]
    ) -> int | float | None:
        for source in (key, alias):
            raw = value.get(source)
            number = _parse_number(raw)
            if number is None:
                continue
            if source == alias:
                applied.append(f"Status field {name}.{alias} mapped to {key}")
            elif not _is_number(raw):
                applied.append(f"Status field {name}.{key} converted from string to number")
            return number
        return None

    @classmethod
    def _coerce_number(
        cls, status_field: StatusField, value: Any, applied: list[str], warnings: list[str]
    ) -> Any:
        name = status_field.name
        if _is_number(value):
            return value
        number = _parse_number(value)
        if number is not None:
            applied.append(f"Status field {name} converted from string to number")
            return number
        if isinstance(value, str):
            warnings.append(f"Status field {name} is not numeric, used default")
        else:
            warnings.append(f"Status field {name} is malformed, used default")
        return cls.default_field_value(status_field)

    @classmethod
    def _coerce_text(
        cls, status_field: StatusField, value: Any, applied: list[str], warnings: list[str]
    ) -> Any:
        name = status_field.name
        if isinstance(value, str):
            return value
        if isinstance(value, (list, tuple)):
            applied.append(f"Status field {name} joined from list to text")
            return ", ".join(str(item) for item in value if item is not None)
        if isinstance(value, Mapping):
            applied.append(f"Status field {name} serialized from object to text")
            return json.dumps(value, ensure_ascii=False)
        if isinstance(value, (bool, int, float)):
            applied.append(f"Status field {name} converted to text")
            return str(value)
        warnings.append(f"Status field {name} is malformed, used default")
        return cls.default_field_value(status_field)

    @classmethod
    def _fill_defaults(
        cls,
        data: dict[str, Any],
        status_config: StatusConfig,
        extension_configs: Sequence[ExtensionConfig],
        applied: list[str],
    ) -> None:
        if not _non_empty_str(data.get("scene")):
            data["scene"] = DEFAULT_SCENE
            applied.append("Filled default scene")
        if not _non_empty_str(data.get("narration")):
            data["narration"] = DEFAULT_NARRATION
            applied.append("Filled default narration")
        if not isinstance(data.get("options"), list) or not data["options"]:
            data["options"] = default_options()
            applied.append("Filled default options")
        if not isinstance(data.get("status"), Mapping):
            data["status"] = cls.default_status(status_config)
            applied.append("Filled default status")
        if not isinstance(data.get("custom"), Mapping):
            data["custom"] = cls.default_custom(extension_configs)
            if extension_configs:
                applied.append("Filled default custom")

    @classmethod
    def default_status(cls, status_config: StatusConfig) -> dict[str, Any]:
        return {status_field.name: cls.default_field_value(status_field) for status_field in status_config.fields}

    @staticmethod
    def default_field_value(status_field: StatusField) -> Any:
        initial = status_field.initial
        numeric_initial = initial if _is_number(initial) else 0
        if status_field.type is FieldType.PROGRESS:
            return {"value": numeric_initial, "max": status_field.max or DEFAULT_PROGRESS_MAX}
        if status_field.type is FieldType.TEXT:
            return initial if isinstance(initial, str) else ""
        return numeric_initial

    @staticmethod
    def default_custom(extension_configs: Sequence[ExtensionConfig]) -> dict[str, Any]:
        custom: dict[str, Any] = {}
        for extension in extension_configs:
            if extension.data_type is DataType.ARRAY:
                custom[extension.name] = []
            elif extension.data_type is DataType.OBJECT:
                custom[extension.name] = {}
            else:
                custom[extension.name] = None
        return custom

    @staticmethod
    def _is_minimally_valid(data: Mapping[str, Any]) -> bool:
        options = data.get("options")
        return (
            _non_empty_str(data.get("scene"))
            and _non_empty_str(data.get("narration"))
            and isinstance(options, list)
            and len(options) == len(OPTION_IDS)
        )


__all__ = (
    "DEFAULT_NARRATION",
    "DEFAULT_OPTION_TEXTS",
    "DEFAULT_SCENE",
    "FIELD_MAPPING",
    "FIELD_MAPPING_VERSION",
    "DataFormatter",
    "FormatResult",
    "default_options",
)
