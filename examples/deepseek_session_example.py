"""Play a few rounds against DeepSeek from the command line.

Reads ``DEEPSEEK_API_KEY`` and friends from the environment or a ``.env`` file.
"""

from __future__ import annotations

import asyncio

import structlog

from storyloom.config.base import get_settings
from storyloom.domain.ai.errors import ProcessedError
from storyloom.domain.ai.providers.deepseek import DeepSeekServiceAdapter
from storyloom.domain.ai.schemas import AIRequest, RequestMetadata
from storyloom.domain.game import PromptBuilder
from storyloom.domain.game.schemas import (
    DataType,
    ExtensionConfig,
    FieldType,
    GameRound,
    GameState,
    ProgressValue,
    StatusConfig,
    StatusField,
    WorldConfig,
)
from storyloom.lib.events import RecordingEventSink
from storyloom.lib.log import configure_logging

logger = structlog.get_logger(__name__)

WORLD = WorldConfig(
    title="The Salt Road",
    background="A caravan crosses a dried-up sea where old ships lie half buried in salt.",
    rules="Water is scarce. Every night the wind erases the road.",
)
STATUS = StatusConfig(
    fields=(
        StatusField(name="water", display_name="Water", type=FieldType.PROGRESS, initial=80, max=100),
        StatusField(name="coins", display_name="Coins", type=FieldType.NUMBER, initial=12),
    )
)
EXTENSIONS = (ExtensionConfig(name="inventory", data_type=DataType.ARRAY),)
PLAYER_INPUTS = ("I climb the nearest wreck to look around.", "I follow the tracks toward the east.")


async def play() -> None:
    settings = get_settings()
    configure_logging(settings.app.LOG_LEVEL, json_logs=settings.app.LOG_JSON)

    events = RecordingEventSink()
    events.subscribe(lambda name, payload: logger.debug("adapter event", event_name=name))
    adapter, config = DeepSeekServiceAdapter.from_settings(settings, event_sink=events)

    state = GameState(
        player_status={"water": {"value": 80, "max": 100}, "coins": 12},
        custom_data={"inventory": ["rope", "lamp"]},
    )
    history: list[GameRound] = []
    try:
        await adapter.initialize(config)
        for round_number, user_input in enumerate(PLAYER_INPUTS, start=1):
            built = PromptBuilder.build_prompt(
                world_config=WORLD,
                status_config=STATUS,
                extension_configs=EXTENSIONS,
                current_state=state,
                user_input=user_input,
                history_rounds=history,
            )
            if not built.success or built.prompt is None:
                logger.error("Prompt assembly failed", error=built.error)
                return

            response = await adapter.send_request(
                AIRequest(
                    prompt=built.prompt,
                    metadata=RequestMetadata(game_round=round_number, status_config=STATUS, extensions=EXTENSIONS),
                )
            )
            data = response.data
            if data is None:
                continue
            print(f"\n[{round_number}] {data.scene}\n{data.narration}")
            for option in data.options:
                print(f"  {option.id}. {option.text}")

            state = GameState(
                player_status={
                    key: value.model_dump() if isinstance(value, ProgressValue) else value
                    for key, value in data.status.items()
                },
                custom_data=data.custom,
            )
            history.append(GameRound(round=round_number, user_input=user_input, narration=data.narration))
    except ProcessedError as exc:
        logger.error("DeepSeek session failed", **exc.to_dict())
    finally:
        telemetry = adapter.get_telemetry()
        logger.info(
            "Session finished",
            requests=telemetry.usage.total_requests,
            tokens=telemetry.usage.total_tokens_used,
            error_rate=telemetry.usage.error_rate,
        )
        await adapter.aclose()


if __name__ == "__main__":
    asyncio.run(play())
