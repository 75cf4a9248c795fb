from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from storyloom.config.base import AISettings, RetrySettings, Settings
from storyloom.domain.ai.enums import CompatibilityMode, ConnectionStatus, ErrorCode
from storyloom.domain.ai.errors import AIError, ProcessedError
from storyloom.domain.ai.providers.deepseek import DeepSeekServiceAdapter, config_from_settings
from storyloom.domain.ai.schemas import AIRequest, DeepSeekConfig, RequestMetadata
from storyloom.domain.game.schemas import ExtensionConfig, StatusConfig
from storyloom.lib.events import REQUEST_COMPLETED, RecordingEventSink

pytestmark = pytest.mark.anyio

API_KEY = "sk-" + "B" * 40


class FakeDeepSeek:
    """In-memory DeepSeek API serving scripted chat completion replies."""

    def __init__(self, content: str, *, models: tuple[str, ...] = ("deepseek-chat", "deepseek-reasoner")) -> None:
        self.content = content
        self.models = models
        self.failures: list[httpx.Response] = []
        self.chat_bodies: list[dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/models":
            return httpx.Response(200, json={"data": [{"id": model} for model in self.models]})
        if request.url.path == "/v1/chat/completions":
            self.chat_bodies.append(json.loads(request.content))
            if self.failures:
                return self.failures.pop(0)
            return httpx.Response(
                200,
                json={
                    "id": f"chatcmpl-{len(self.chat_bodies)}",
                    "model": self.chat_bodies[-1]["model"],
                    "choices": [{"index": 0, "message": {"role": "assistant", "content": self.content}}],
                    "usage": {"prompt_tokens": 120, "completion_tokens": 80, "prompt_cache_hit_tokens": 100},
                },
            )
        return httpx.Response(404, json={"error": {"message": "not found"}})


class FakeSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_api(game_payload: dict[str, Any]) -> FakeDeepSeek:
    return FakeDeepSeek(json.dumps(game_payload))


@pytest.fixture
def sleep() -> FakeSleep:
    return FakeSleep()


def _adapter(fake_api: FakeDeepSeek, sleep: FakeSleep, **kwargs: Any) -> DeepSeekServiceAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_api))
    return DeepSeekServiceAdapter(client=client, retry_settings=RetrySettings(JITTER=False), sleep=sleep, **kwargs)


def _config(**overrides: Any) -> DeepSeekConfig:
    values: dict[str, Any] = {
        "api_url": "https://api.deepseek.com/",
        "api_key": API_KEY,
        "max_retries": 2,
        "retry_delay_ms": 500,
        "enable_cache": True,
    }
    values.update(overrides)
    return DeepSeekConfig(**values)


async def test_end_to_end_request(
    fake_api: FakeDeepSeek,
    sleep: FakeSleep,
    status_config: StatusConfig,
    extension_configs: tuple[ExtensionConfig, ...],
    game_payload: dict[str, Any],
) -> None:
    events = RecordingEventSink()
    adapter = _adapter(fake_api, sleep, event_sink=events)
    await adapter.initialize(_config())
    request = AIRequest(
        prompt="The party reaches the bridge.",
        metadata=RequestMetadata(game_round=3, status_config=status_config, extensions=extension_configs),
    )

    response = await adapter.send_request(request)

    assert response.success
    assert response.data is not None
    assert response.data.scene == game_payload["scene"]
    assert [option.id for option in response.data.options] == ["A", "B", "C"]
    metadata = response.metadata
    assert metadata.token_usage is not None
    assert metadata.token_usage.total_tokens == 200
    assert metadata.cache_usage is not None
    assert metadata.cache_usage.hit_tokens == 100
    assert metadata.processing_time_ms is not None

    body = fake_api.chat_bodies[0]
    assert body["model"] == "deepseek-chat"
    assert body["messages"][-1] == {"role": "user", "content": "The party reaches the bridge."}
    assert body["kv_cache"] == {"enabled": True, "strategy": "auto"}
    assert adapter.get_usage_stats().total_tokens_used == 200
    assert len(events.named(REQUEST_COMPLETED)) == 1

    await adapter.aclose()


async def test_rate_limit_is_retried_with_retry_after(fake_api: FakeDeepSeek, sleep: FakeSleep) -> None:
    fake_api.failures.append(
        httpx.Response(
            429,
            json={"error": {"code": "rate_limit_exceeded", "message": "Too many requests"}},
            headers={"Retry-After": "1"},
        )
    )
    adapter = _adapter(fake_api, sleep)
    await adapter.initialize(_config())

    response = await adapter.send_request(AIRequest(prompt="go"))

    assert response.success
    assert len(fake_api.chat_bodies) == 2
    assert sleep.calls == [1.0]
    await adapter.aclose()


@pytest.mark.parametrize("status", [500, 502, 503])
async def test_server_outage_is_retried(fake_api: FakeDeepSeek, sleep: FakeSleep, status: int) -> None:
    fake_api.failures.append(
        httpx.Response(status, json={"error": {"message": "Service Unavailable", "type": "server_error"}})
    )
    adapter = _adapter(fake_api, sleep)
    await adapter.initialize(_config())

    response = await adapter.send_request(AIRequest(prompt="go"))

    assert response.success
    assert len(fake_api.chat_bodies) == 2
    assert sleep.calls == [0.5]
    usage = adapter.get_usage_stats()
    assert usage.successful_requests == 1
    assert usage.failed_requests == 0
    await adapter.aclose()


async def test_invalid_key_is_not_retried(fake_api: FakeDeepSeek, sleep: FakeSleep) -> None:
    fake_api.failures.append(httpx.Response(401, json={"error": {"message": "Authentication Fails"}}))
    adapter = _adapter(fake_api, sleep)
    await adapter.initialize(_config())

    with pytest.raises(ProcessedError) as exc_info:
        await adapter.send_request(AIRequest(prompt="go"))

    assert exc_info.value.code is ErrorCode.DEEPSEEK_INVALID_API_KEY
    assert len(fake_api.chat_bodies) == 1
    assert sleep.calls == []
    await adapter.aclose()


async def test_unusable_reply_is_a_validation_failure(sleep: FakeSleep) -> None:
    fake_api = FakeDeepSeek("Sorry, I cannot continue this story.")
    adapter = _adapter(fake_api, sleep)
    await adapter.initialize(_config())

    with pytest.raises(ProcessedError) as exc_info:
        await adapter.send_request(AIRequest(prompt="go"))

    assert exc_info.value.code is ErrorCode.INVALID_JSON
    assert not exc_info.value.retryable
    assert len(fake_api.chat_bodies) == 1
    await adapter.aclose()


async def test_reasoning_mode_switches_model(fake_api: FakeDeepSeek, sleep: FakeSleep) -> None:
    adapter = _adapter(fake_api, sleep)
    await adapter.initialize(_config(reasoning_mode_enabled=True))

    assert adapter.is_reasoning_mode_supported()
    assert adapter.is_reasoning_mode_enabled()
    await adapter.send_request(AIRequest(prompt="go"))
    adapter.set_reasoning_mode(False)
    await adapter.send_request(AIRequest(prompt="go"))

    assert [body["model"] for body in fake_api.chat_bodies] == ["deepseek-reasoner", "deepseek-chat"]
    assert fake_api.chat_bodies[0]["reasoning"] is True
    extras = adapter.get_telemetry().extras
    assert extras == {"reasoning_supported": True, "reasoning_enabled": False, "kv_cache_enabled": True}
    await adapter.aclose()


async def test_reasoning_mode_rejected_without_reasoner(game_payload: dict[str, Any], sleep: FakeSleep) -> None:
    adapter = _adapter(FakeDeepSeek(json.dumps(game_payload), models=("deepseek-chat",)), sleep)
    await adapter.initialize(_config())

    with pytest.raises(AIError) as exc_info:
        adapter.set_reasoning_mode(True)

    assert exc_info.value.code is ErrorCode.DEEPSEEK_REASONING_FAILED
    assert not adapter.is_reasoning_mode_enabled()
    await adapter.aclose()


async def test_invalid_key_format_fails_initialize(fake_api: FakeDeepSeek, sleep: FakeSleep) -> None:
    adapter = _adapter(fake_api, sleep)

    with pytest.raises(ProcessedError) as exc_info:
        await adapter.initialize(_config(api_key="not-a-key"))

    assert exc_info.value.code is ErrorCode.CONFIG_VALIDATION_FAILED
    assert adapter.get_connection_status() is ConnectionStatus.DISCONNECTED
    await adapter.aclose()


async def test_aclose_leaves_injected_client_open(fake_api: FakeDeepSeek, sleep: FakeSleep) -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_api))
    adapter = DeepSeekServiceAdapter(client=client, retry_settings=RetrySettings(JITTER=False), sleep=sleep)
    await adapter.initialize(_config())

    await adapter.aclose()

    assert adapter.get_connection_status() is ConnectionStatus.DISCONNECTED
    assert not client.is_closed
    await client.aclose()


def test_config_from_settings() -> None:
    settings = AISettings(
        DEEPSEEK_API_KEY=API_KEY,
        DEEPSEEK_BASE_URL="https://proxy.example.test",
        DEEPSEEK_MODEL="deepseek-chat",
        TIMEOUT_MS=10_000,
        MAX_RETRIES=1,
        RETRY_DELAY_MS=250,
        AUTO_RECONNECT=False,
        SUPPORT_REASONING=False,
        ENABLE_CACHE=True,
        COMPATIBILITY_MODE="Anthropic",
    )

    config = config_from_settings(settings)

    assert config.api_url == "https://proxy.example.test"
    assert config.timeout_ms == 10_000
    assert config.max_retries == 1
    assert not config.auto_reconnect
    assert not config.support_reasoning
    assert config.enable_cache
    assert config.compatibility_mode is CompatibilityMode.ANTHROPIC


def test_unknown_compatibility_mode_falls_back_to_openai() -> None:
    config = config_from_settings(AISettings(DEEPSEEK_API_KEY=API_KEY, COMPATIBILITY_MODE="klingon"))

    assert config.compatibility_mode is CompatibilityMode.OPENAI


async def test_from_settings_uses_retry_settings(fake_api: FakeDeepSeek, sleep: FakeSleep) -> None:
    settings = Settings(ai=AISettings(DEEPSEEK_API_KEY=API_KEY), retry=RetrySettings(STRATEGY="fixed", JITTER=False))
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_api))

    adapter, config = DeepSeekServiceAdapter.from_settings(settings, client=client, sleep=sleep)

    assert config.api_key == API_KEY
    await adapter.initialize(config)
    assert adapter.get_connection_status() is ConnectionStatus.CONNECTED
    await adapter.aclose()
    await client.aclose()
