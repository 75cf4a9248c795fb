from __future__ import annotations

from typing import Any

import pytest

from storyloom.domain.game.schemas import (
    DataType,
    ExtensionConfig,
    FieldType,
    StatusConfig,
    StatusField,
)

VALID_SCENE = "Moonlight spills over the ruined watchtower while wolves howl in the pines."


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def status_config() -> StatusConfig:
    return StatusConfig(
        fields=(
            StatusField(name="hp", display_name="Health", type=FieldType.PROGRESS, max=100, initial=80),
            StatusField(name="gold", display_name="Gold", type=FieldType.NUMBER, initial=10),
            StatusField(name="mood", display_name="Mood", type=FieldType.TEXT, required=False),
        )
    )


@pytest.fixture
def extension_configs() -> tuple[ExtensionConfig, ...]:
    return (
        ExtensionConfig(name="inventory", data_type=DataType.ARRAY),
        ExtensionConfig(name="relations", data_type=DataType.OBJECT),
    )


@pytest.fixture
def game_payload() -> dict[str, Any]:
    return {
        "scene": VALID_SCENE,
        "narration": "A hooded stranger steps out of the shadows.",
        "options": [
            {"id": "A", "text": "Greet the stranger"},
            {"id": "B", "text": "Draw your sword"},
            {"id": "C", "text": "Slip away quietly"},
        ],
        "status": {"hp": {"value": 72, "max": 100}, "gold": 12, "mood": "wary"},
        "custom": {"inventory": ["torch", "rope"], "relations": {"stranger": "unknown"}},
    }
