"""Prompt assembly for game rounds."""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from storyloom.domain.game.schemas import (
    DEEPSEEK_PROVIDER,
    DataType,
    ExtensionConfig,
    FieldType,
    GameRound,
    GameState,
    StatusConfig,
    WorldConfig,
)

CJK_PATTERN = re.compile(r"[一-龥]")
DEFAULT_MAX_HISTORY_ROUNDS = 10
DEFAULT_CHARACTER = "The player is an ordinary adventurer."


@dataclass(slots=True)
class PromptTemplate:
    """Simple prompt template meta-data."""

    name: str
    version: str
    content: str

    def render(self, **kwargs: str) -> str:
        return self.content.format(**kwargs)


OUTPUT_REQUIREMENTS_V1 = PromptTemplate(
    name="output-requirements",
    version="v1",
    content=(
        "=== Output requirements ===\n"
        "Reply with JSON in exactly this shape, using natural language for the content:\n\n"
        "```json\n"
        "{{\n"
        '  "scene": "Detailed description of the surroundings, mood and visual details",\n'
        '  "narration": "Third-person narration of what changed this round (1-3 sentences)",\n'
        '  "options": [\n'
        '    {{"id": "A", "text": "Concrete action for option A"}},\n'
        '    {{"id": "B", "text": "Concrete action for option B"}},\n'
        '    {{"id": "C", "text": "Concrete action for option C"}}\n'
        "  ],\n"
        '  "status": {status_example},\n'
        '  "custom": {custom_example}\n'
        "}}\n"
        "```\n\n"
        "Key rules:\n"
        "1. The JSON must be complete and valid, without trailing commas\n"
        "2. Use vivid natural language but keep the structure fixed\n"
        "3. Provide exactly 3 options with ids A, B and C\n"
        "4. status keys must match the configured status fields; progress fields use {{value, max}} objects\n"
        "5. Prefer the configured extension card names as custom keys\n"
        "6. All numbers must be JSON numbers, not strings\n"
        '7. Do not use an "event" field, always use "narration"\n'
        "8. Keep narration to 1-3 sentences"
        "{provider_notes}"
    ),
)

DEEPSEEK_NOTES = (
    "\n\nDeepSeek notes:\n"
    "- In reasoning mode, output the JSON right after thinking without extra commentary\n"
    "- A <reasoning> block may precede the JSON, but the complete JSON must follow it\n"
    "- Keep the JSON strictly valid and do not wrap it in additional Markdown"
)


@dataclass(slots=True)
class BuildResult:
    success: bool
    prompt: str | None = None
    error: str | None = None
    total_length: int = 0
    sections: dict[str, int] = field(default_factory=dict)


def estimate_tokens(prompt: str) -> int:
    """Rough token estimate: 2.5 CJK characters or 4 other characters per token."""
    cjk = len(CJK_PATTERN.findall(prompt))
    other = len(prompt) - cjk
    return math.ceil(cjk / 2.5 + other / 4)


def _indent_json(value: Mapping[str, Any]) -> str:
    rendered = json.dumps(value, ensure_ascii=False, indent=2)
    return "\n".join(f"  {line}" for line in rendered.splitlines()).strip()


class PromptBuilder:
    """Build the full prompt for one round from world, state and player input."""

    @classmethod
    def build_prompt(
        cls,
        *,
        world_config: WorldConfig,
        status_config: StatusConfig,
        extension_configs: Sequence[ExtensionConfig],
        current_state: GameState,
        user_input: str,
        history_rounds: Sequence[GameRound] = (),
        max_history_rounds: int = DEFAULT_MAX_HISTORY_ROUNDS,
        provider: str | None = DEEPSEEK_PROVIDER,
    ) -> BuildResult:
        if not user_input.strip():
            return BuildResult(success=False, error="Player input must not be empty")

        sections: list[tuple[str, str]] = [
            ("world", cls._world_section(world_config)),
            ("character", f"=== Character background ===\n{world_config.characters or DEFAULT_CHARACTER}"),
        ]
        if history_rounds:
            sections.append(("history", cls._history_section(history_rounds, max_history_rounds)))
        sections.append(("status", cls._status_section(current_state.player_status, status_config)))
        if current_state.custom_data:
            sections.append(("extension", cls._extension_section(current_state.custom_data, extension_configs)))
        sections.append(("input", f"=== Player action ===\n{user_input.strip()}"))
        sections.append(("requirement", cls._requirement_section(status_config, extension_configs, provider)))

        prompt = "\n\n".join(text for _, text in sections)
        return BuildResult(
            success=True,
            prompt=prompt,
            total_length=len(prompt),
            sections={name: len(text) for name, text in sections},
        )

    @staticmethod
    def _world_section(world_config: WorldConfig) -> str:
        section = f"=== World ===\n{world_config.background}"
        if world_config.rules:
            section += f"\n\nRules:\n{world_config.rules}"
        return section

    @staticmethod
    def _history_section(history_rounds: Sequence[GameRound], max_rounds: int) -> str:
        recent = list(history_rounds)[-max(1, max_rounds) :]
        lines = [
            f"Round {entry.round}: {entry.user_input or '(system round)'} - {entry.narration}"
            for entry in recent
        ]
        return "=== Recent rounds ===\n" + "\n".join(lines)

    @staticmethod
    def format_status_value(value: Any) -> str:
        if isinstance(value, Mapping) and "value" in value:
            return f"{value.get('value')}/{value.get('max')}"
        return str(value)

    @classmethod
    def _status_section(cls, player_status: Mapping[str, Any], status_config: StatusConfig) -> str:
        lines = [
            f"{status_field.label}: {cls.format_status_value(player_status[status_field.name])}"
            for status_field in status_config.fields
            if status_field.name in player_status
        ]
        return "=== Current status ===\n" + "\n".join(lines)

    @staticmethod
    def format_extension_data(data: Any) -> str:
        if isinstance(data, list):
            return ", ".join(str(item) for item in data)
        if isinstance(data, Mapping):
            return ", ".join(f"{key}: {value}" for key, value in data.items())
        return str(data)

    @classmethod
    def _extension_section(
        cls, custom_data: Mapping[str, Any], extension_configs: Sequence[ExtensionConfig]
    ) -> str:
        lines = [
            f"{extension.name}: {cls.format_extension_data(custom_data[extension.name])}"
            for extension in extension_configs
            if extension.name in custom_data
        ]
        extra = custom_data.get("_extra")
        if isinstance(extra, Mapping):
            lines.extend(f"{key}: {cls.format_extension_data(value)}" for key, value in extra.items())
        return "=== Current extensions ===\n" + "\n".join(lines)

    @staticmethod
    def _requirement_section(
        status_config: StatusConfig,
        extension_configs: Sequence[ExtensionConfig],
        provider: str | None,
    ) -> str:
        status_example: dict[str, Any] = {}
        for status_field in status_config.fields:
            if status_field.type is FieldType.PROGRESS:
                status_example[status_field.name] = {"value": 100, "max": 100}
            elif status_field.type is FieldType.NUMBER:
                status_example[status_field.name] = 0
            else:
                status_example[status_field.name] = "value"

        custom_example: dict[str, Any] = {}
        for extension in extension_configs:
            if extension.data_type is DataType.ARRAY:
                custom_example[extension.name] = ["item1", "item2"]
            elif extension.data_type is DataType.OBJECT:
                custom_example[extension.name] = {"key1": "value1", "key2": "value2"}
            else:
                custom_example[extension.name] = "mixed data"

        return OUTPUT_REQUIREMENTS_V1.render(
            status_example=_indent_json(status_example),
            custom_example=_indent_json(custom_example),
            provider_notes=DEEPSEEK_NOTES if provider == DEEPSEEK_PROVIDER else "",
        )


__all__ = (
    "DEEPSEEK_NOTES",
    "OUTPUT_REQUIREMENTS_V1",
    "BuildResult",
    "PromptBuilder",
    "PromptTemplate",
    "estimate_tokens",
)
