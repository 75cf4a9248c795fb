from __future__ import annotations

import pytest

from storyloom.domain.ai.enums import CompatibilityMode, ErrorCode
from storyloom.domain.ai.errors import AIError
from storyloom.domain.ai.providers.deepseek.request_builder import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_TEMPERATURE,
    REASONING_MODEL,
    DeepSeekRequestBuilder,
    clamp,
    clamp_max_tokens,
)
from storyloom.domain.ai.schemas import RequestConfig


def test_defaults() -> None:
    body = DeepSeekRequestBuilder().build_request("  Describe the tavern  ", RequestConfig())

    assert body == {
        "model": DEFAULT_MODEL,
        "messages": [{"role": "user", "content": "Describe the tavern"}],
        "temperature": DEFAULT_TEMPERATURE,
        "max_tokens": DEFAULT_MAX_TOKENS,
        "stream": False,
    }


def test_empty_prompt_is_rejected() -> None:
    with pytest.raises(AIError) as exc_info:
        DeepSeekRequestBuilder().build_request("   ", RequestConfig())

    assert exc_info.value.code is ErrorCode.INVALID_PARAMETERS
    assert exc_info.value.retryable is False


def test_tunables_are_clamped() -> None:
    config = RequestConfig(
        temperature=5,
        max_tokens=1_000_000,
        top_p=1.7,
        frequency_penalty=-9,
        presence_penalty=0.12345,
    )

    body = DeepSeekRequestBuilder().build_request("go", config)

    assert body["temperature"] == 2.0
    assert body["max_tokens"] == 32_768
    assert body["top_p"] == 1.0
    assert body["frequency_penalty"] == -2.0
    assert body["presence_penalty"] == 0.123


def test_non_finite_values_fall_back_to_defaults() -> None:
    body = DeepSeekRequestBuilder().build_request("go", RequestConfig(temperature=float("nan")))

    assert body["temperature"] == DEFAULT_TEMPERATURE


def test_system_prompt_precedes_user_message() -> None:
    builder = DeepSeekRequestBuilder(system_prompt="You are the narrator.")

    default = builder.build_request("go", RequestConfig())
    override = builder.build_request("go", RequestConfig(system_prompt="Speak in riddles."))

    assert default["messages"][0] == {"role": "system", "content": "You are the narrator."}
    assert override["messages"][0] == {"role": "system", "content": "Speak in riddles."}
    assert override["messages"][1]["role"] == "user"


@pytest.mark.parametrize(
    ("builder_reasoning", "config", "expected_model", "reasoning_flag"),
    [
        (False, RequestConfig(), DEFAULT_MODEL, False),
        (True, RequestConfig(), REASONING_MODEL, True),
        (True, RequestConfig(enable_reasoning=False), DEFAULT_MODEL, False),
        (False, RequestConfig(model="DeepSeek-Reasoner"), REASONING_MODEL, True),
        (False, RequestConfig(model=REASONING_MODEL, enable_reasoning=False), DEFAULT_MODEL, False),
        (False, RequestConfig(enable_reasoning=True), REASONING_MODEL, True),
        (False, RequestConfig(model="custom-model"), "custom-model", False),
    ],
)
def test_model_resolution(
    builder_reasoning: bool, config: RequestConfig, expected_model: str, reasoning_flag: bool
) -> None:
    builder = DeepSeekRequestBuilder()
    builder.enable_reasoning_mode(builder_reasoning)

    body = builder.build_request("go", config)

    assert body["model"] == expected_model
    assert body.get("reasoning", False) is reasoning_flag


def test_stop_sequences_are_merged_and_deduplicated() -> None:
    builder = DeepSeekRequestBuilder(stop_sequences=["END", " ", "STOP "])

    body = builder.build_request("go", RequestConfig(stop_sequences=("STOP", "DONE", "END")))

    assert body["stop"] == ["END", "STOP", "DONE"]


def test_kv_cache_and_compatibility() -> None:
    builder = DeepSeekRequestBuilder(enable_cache=True, compatibility_mode="Anthropic")

    cached = builder.build_request("go", RequestConfig())
    uncached = builder.build_request("go", RequestConfig(enable_kv_cache=False))
    manual = builder.build_request("go", RequestConfig(cache_strategy="manual"))

    assert cached["kv_cache"] == {"enabled": True, "strategy": "auto"}
    assert cached["compatibility_mode"] == CompatibilityMode.ANTHROPIC.value
    assert "kv_cache" not in uncached
    assert manual["kv_cache"]["strategy"] == "manual"


def test_kv_cache_off_by_default() -> None:
    body = DeepSeekRequestBuilder().build_request("go", RequestConfig(cache_strategy="manual"))

    assert "kv_cache" not in body
    assert "compatibility_mode" not in body


SAMPLE_VALUES = (-1e6, -3.5, -2.0, -0.0001, 0.0, 0.00049, 0.7, 1.0, 1.9999, 2.0, 2.5, 1_000.4, 40_000.0, 1e6)


@pytest.mark.parametrize("value", SAMPLE_VALUES)
def test_clamp_is_idempotent(value: float) -> None:
    once = clamp(value, 0.0, 2.0)

    assert 0.0 <= once <= 2.0
    assert clamp(once, 0.0, 2.0) == once
    assert clamp_max_tokens(clamp_max_tokens(value)) == clamp_max_tokens(value)


def test_clamp_is_monotonic() -> None:
    ordered = sorted(SAMPLE_VALUES)

    clamped = [clamp(value, -2.0, 2.0) for value in ordered]
    tokens = [clamp_max_tokens(value) for value in ordered]

    assert clamped == sorted(clamped)
    assert tokens == sorted(tokens)
