"""Schemas describing game configuration and reconciled AI output."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

OPTION_IDS: tuple[str, str, str] = ("A", "B", "C")
DEEPSEEK_PROVIDER = "deepseek"


class FieldType(StrEnum):
    """Declared shape of a status field."""

    PROGRESS = "progress"
    NUMBER = "number"
    TEXT = "text"
    LEVEL = "level"


class DataType(StrEnum):
    """Declared shape of an extension card."""

    ARRAY = "array"
    OBJECT = "object"
    MIXED = "mixed"


class StatusField(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    display_name: str = ""
    type: FieldType = FieldType.NUMBER
    required: bool = True
    initial: float | str | None = None
    min: float | None = None
    max: float | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.name


class StatusConfig(BaseModel):
    """Ordered status bar schema supplied by configuration management."""

    model_config = ConfigDict(frozen=True)

    fields: tuple[StatusField, ...] = ()

    def get(self, name: str) -> StatusField | None:
        for status_field in self.fields:
            if status_field.name == name:
                return status_field
        return None

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(status_field.name for status_field in self.fields)


class ExtensionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    data_type: DataType = DataType.MIXED
    required: bool = False
    description: str | None = None


class WorldConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = ""
    background: str
    rules: str = ""
    characters: str | None = None


class GameState(BaseModel):
    """Current player state used when assembling prompts."""

    player_status: dict[str, Any] = Field(default_factory=dict)
    custom_data: dict[str, Any] = Field(default_factory=dict)


class GameRound(BaseModel):
    round: int
    user_input: str | None = None
    narration: str = ""


class ProgressValue(BaseModel):
    value: float
    max: float


class GameOption(BaseModel):
    id: Literal["A", "B", "C"]
    text: str = Field(..., min_length=1)


StatusValue = ProgressValue | int | float | str


class ParsedGameData(BaseModel):
    """Validated payload for one game round."""

    scene: str
    narration: str
    options: list[GameOption]
    status: dict[str, StatusValue] = Field(default_factory=dict)
    custom: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_options(self) -> "ParsedGameData":
        if len(self.options) != len(OPTION_IDS):
            msg = f"options must contain exactly {len(OPTION_IDS)} entries"
            raise ValueError(msg)
        ids = [option.id for option in self.options]
        if len(set(ids)) != len(ids):
            msg = "option ids must be unique"
            raise ValueError(msg)
        return self


__all__ = (
    "DEEPSEEK_PROVIDER",
    "OPTION_IDS",
    "DataType",
    "ExtensionConfig",
    "FieldType",
    "GameOption",
    "GameRound",
    "GameState",
    "ParsedGameData",
    "ProgressValue",
    "StatusConfig",
    "StatusField",
    "StatusValue",
    "WorldConfig",
)
