from __future__ import annotations

from typing import Any

import httpx
import pytest

from storyloom.config.base import RetrySettings
from storyloom.domain.ai.adapter import BaseAIServiceAdapter
from storyloom.domain.ai.connection import BaseConnectionManager
from storyloom.domain.ai.enums import AdapterState, ConnectionStatus, ErrorCode
from storyloom.domain.ai.error_processor import BaseErrorProcessor
from storyloom.domain.ai.errors import AIError, ErrorContext, ProcessedError
from storyloom.domain.ai.requests import BaseRequestHandler, ProviderResult, RequestParams
from storyloom.domain.ai.schemas import (
    AIRequest,
    AIResponse,
    ConnectionConfig,
    ConnectionTestResult,
    RequestConfig,
    ResponseMetadata,
    TokenUsage,
)
from storyloom.lib.events import (
    CONNECTION_STATUS,
    REQUEST_COMPLETED,
    REQUEST_FAILED,
    REQUEST_STARTED,
    RecordingEventSink,
)

pytestmark = pytest.mark.anyio


class StubConnection(BaseConnectionManager[ConnectionConfig]):
    provider = "stub"

    def __init__(self) -> None:
        super().__init__()
        self.fail_connect = False
        self.established = 0

    async def establish_connection(self, config: ConnectionConfig) -> None:
        if self.fail_connect:
            msg = "handshake refused"
            raise RuntimeError(msg)
        self.established += 1

    async def terminate_connection(self) -> None:
        return None

    async def perform_connection_test(self, config: ConnectionConfig) -> ConnectionTestResult:
        return ConnectionTestResult(success=True, details={"model": config.model})


class StubHandler(BaseRequestHandler[ConnectionConfig]):
    provider = "stub"

    def __init__(self) -> None:
        super().__init__()
        self.outcomes: list[BaseException | None] = []
        self.calls = 0

    async def perform_request(self, params: RequestParams[ConnectionConfig]) -> ProviderResult:
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if outcome is not None:
            raise outcome
        response = AIResponse(
            id=params.request.id,
            success=True,
            metadata=ResponseMetadata(token_usage=TokenUsage(prompt_tokens=3, completion_tokens=4, total_tokens=7)),
        )
        return ProviderResult(response=response, raw_response={"ok": True})


class StubAdapter(BaseAIServiceAdapter[ConnectionConfig]):
    provider = "stub"

    def create_connection_manager(self) -> StubConnection:
        return StubConnection()

    def create_request_handler(self) -> StubHandler:
        return StubHandler()

    def create_error_processor(self) -> BaseErrorProcessor:
        return BaseErrorProcessor(self.provider)


class FakeSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _config(**overrides: Any) -> ConnectionConfig:
    values: dict[str, Any] = {
        "api_url": "https://example.test/",
        "api_key": " secret ",
        "max_retries": 2,
        "retry_delay_ms": 1_000,
    }
    values.update(overrides)
    return ConnectionConfig(**values)


def _connection_error() -> httpx.ConnectError:
    return httpx.ConnectError("connection refused")


@pytest.fixture
def sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def adapter(sleep: FakeSleep, events: RecordingEventSink) -> StubAdapter:
    return StubAdapter(
        retry_settings=RetrySettings(STRATEGY="exponential", MULTIPLIER=2.0, JITTER=False),
        event_sink=events,
        sleep=sleep,
    )


def _handler(adapter: StubAdapter) -> StubHandler:
    assert isinstance(adapter.request_handler, StubHandler)
    return adapter.request_handler


def _connection(adapter: StubAdapter) -> StubConnection:
    assert isinstance(adapter.connection_manager, StubConnection)
    return adapter.connection_manager


async def test_initialize_sanitizes_config_and_connects(adapter: StubAdapter, events: RecordingEventSink) -> None:
    await adapter.initialize(_config())

    assert adapter.state is AdapterState.READY
    assert adapter.config is not None
    assert adapter.config.api_url == "https://example.test"
    assert adapter.config.api_key == "secret"
    assert adapter.get_connection_status() is ConnectionStatus.CONNECTED
    assert [event.payload["status"] for event in events.named(CONNECTION_STATUS)] == ["connecting", "connected"]


async def test_initialize_failure_is_classified(adapter: StubAdapter) -> None:
    _connection(adapter).fail_connect = True

    with pytest.raises(ProcessedError) as exc_info:
        await adapter.initialize(_config())

    assert adapter.state is AdapterState.UNINITIALIZED
    assert exc_info.value.context is not None
    assert exc_info.value.context.stage == "initialize"
    assert exc_info.value.provider == "stub"


async def test_retries_until_success(adapter: StubAdapter, sleep: FakeSleep, events: RecordingEventSink) -> None:
    await adapter.initialize(_config())
    handler = _handler(adapter)
    handler.outcomes = [_connection_error(), _connection_error()]
    request = AIRequest(prompt="Open the gate")

    response = await adapter.send_request(request)

    assert response.success
    assert response.id == request.id
    assert handler.calls == 3
    assert sleep.calls == [1.0, 2.0]
    usage = adapter.get_usage_stats()
    assert usage.total_requests == 1
    assert usage.successful_requests == 1
    assert usage.failed_requests == 0
    assert usage.total_tokens_used == 7
    assert usage.error_rate == 0.0
    assert usage.last_request_time is not None
    assert len(events.named(REQUEST_STARTED)) == 1
    completed = events.named(REQUEST_COMPLETED)
    assert len(completed) == 1
    assert completed[0].payload["attempt"] == 2
    assert completed[0].payload["request_id"] == request.id
    assert events.named(REQUEST_FAILED) == []


async def test_non_retryable_error_fails_immediately(adapter: StubAdapter, sleep: FakeSleep) -> None:
    await adapter.initialize(_config())
    handler = _handler(adapter)
    handler.outcomes = [RuntimeError("boom")]

    with pytest.raises(ProcessedError) as exc_info:
        await adapter.send_request(AIRequest(prompt="Open the gate"))

    assert exc_info.value.code is ErrorCode.UNKNOWN_ERROR
    assert not exc_info.value.retryable
    assert handler.calls == 1
    assert sleep.calls == []


async def test_exhausted_retries_emit_failure(
    adapter: StubAdapter, sleep: FakeSleep, events: RecordingEventSink
) -> None:
    await adapter.initialize(_config())
    handler = _handler(adapter)
    handler.outcomes = [_connection_error() for _ in range(5)]
    request = AIRequest(prompt="Open the gate")

    with pytest.raises(ProcessedError) as exc_info:
        await adapter.send_request(request)

    assert exc_info.value.code is ErrorCode.CONNECTION_FAILED
    assert exc_info.value.context is not None
    assert exc_info.value.context.attempt == 2
    assert exc_info.value.context.request_id == request.id
    assert handler.calls == 3
    assert sleep.calls == [1.0, 2.0]
    failed = events.named(REQUEST_FAILED)
    assert len(failed) == 1
    assert failed[0].payload["attempt"] == 2
    assert failed[0].payload["error"] is exc_info.value
    usage = adapter.get_usage_stats()
    assert usage.failed_requests == 1
    assert usage.error_rate == 1.0


async def test_request_retry_budget_extends_connection_budget(adapter: StubAdapter, sleep: FakeSleep) -> None:
    await adapter.initialize(_config(max_retries=0))
    handler = _handler(adapter)
    handler.outcomes = [_connection_error()]

    response = await adapter.send_request(AIRequest(prompt="go", config=RequestConfig(retry_attempts=1)))

    assert response.success
    assert handler.calls == 2
    assert sleep.calls == [1.0]


async def test_retry_after_hint_sets_the_delay(adapter: StubAdapter, sleep: FakeSleep) -> None:
    await adapter.initialize(_config())
    handler = _handler(adapter)
    handler.outcomes = [
        AIError(
            "slow down",
            code=ErrorCode.RATE_LIMIT_EXCEEDED,
            retryable=True,
            context=ErrorContext(additional_data={"retry_after_seconds": 3}),
        )
    ]

    await adapter.send_request(AIRequest(prompt="go"))

    assert sleep.calls == [3.0]


async def test_send_before_initialize_is_a_config_error(adapter: StubAdapter) -> None:
    with pytest.raises(ProcessedError) as exc_info:
        await adapter.send_request(AIRequest(prompt="go"))

    assert exc_info.value.code is ErrorCode.CONFIG_ERROR
    assert not exc_info.value.retryable
    assert _handler(adapter).calls == 0


async def test_reconnects_when_connection_dropped(adapter: StubAdapter) -> None:
    await adapter.initialize(_config())
    await adapter.connection_manager.disconnect()

    await adapter.send_request(AIRequest(prompt="go"))

    assert _connection(adapter).established == 2
    assert adapter.get_connection_status() is ConnectionStatus.CONNECTED
    assert adapter.state is AdapterState.READY


async def test_dropped_connection_without_auto_reconnect_fails(adapter: StubAdapter) -> None:
    await adapter.initialize(_config(auto_reconnect=False))
    await adapter.connection_manager.disconnect()

    with pytest.raises(ProcessedError) as exc_info:
        await adapter.send_request(AIRequest(prompt="go"))

    assert exc_info.value.code is ErrorCode.CONNECTION_FAILED
    assert not exc_info.value.retryable
    assert _handler(adapter).calls == 0


async def test_failed_reconnect_is_counted_and_reported(adapter: StubAdapter, events: RecordingEventSink) -> None:
    await adapter.initialize(_config())
    await adapter.connection_manager.disconnect()
    _connection(adapter).fail_connect = True
    request = AIRequest(prompt="go")

    with pytest.raises(ProcessedError) as exc_info:
        await adapter.send_request(request)

    assert exc_info.value.context is not None
    assert exc_info.value.context.stage == "ensure_connection"
    assert _handler(adapter).calls == 0
    usage = adapter.get_usage_stats()
    assert usage.total_requests == 1
    assert usage.failed_requests == 1
    assert usage.error_rate == 1.0
    assert len(events.named(REQUEST_STARTED)) == 1
    failed = events.named(REQUEST_FAILED)
    assert len(failed) == 1
    assert failed[0].payload["request_id"] == request.id
    assert failed[0].payload["attempt"] == 0
    assert failed[0].payload["error"] is exc_info.value


async def test_disconnect_returns_to_uninitialized(adapter: StubAdapter) -> None:
    await adapter.initialize(_config())

    await adapter.disconnect()

    assert adapter.state is AdapterState.UNINITIALIZED
    assert adapter.get_connection_status() is ConnectionStatus.DISCONNECTED


async def test_telemetry_snapshot(adapter: StubAdapter) -> None:
    await adapter.initialize(_config())
    await adapter.send_request(AIRequest(prompt="go"))
    await adapter.test_connection()

    telemetry = adapter.get_telemetry()

    assert telemetry.provider == "stub"
    assert telemetry.state == "ready"
    assert telemetry.connection_status is ConnectionStatus.CONNECTED
    assert telemetry.usage.successful_requests == 1
    assert telemetry.request_metrics.total_requests == 1
    assert telemetry.last_connection_test is not None
    assert telemetry.last_connection_test.details == {"model": "deepseek-chat"}
    assert telemetry.extras == {}


async def test_usage_stats_are_copies(adapter: StubAdapter) -> None:
    await adapter.initialize(_config())

    stats = adapter.get_usage_stats()
    stats.total_requests = 99

    assert adapter.get_usage_stats().total_requests == 0


async def test_broken_event_sink_does_not_fail_requests(sleep: FakeSleep) -> None:
    class ExplodingSink:
        def emit(self, event: str, payload: dict[str, Any]) -> None:
            msg = "sink down"
            raise RuntimeError(msg)

    adapter = StubAdapter(retry_settings=RetrySettings(JITTER=False), event_sink=ExplodingSink(), sleep=sleep)
    await adapter.initialize(_config())

    response = await adapter.send_request(AIRequest(prompt="go"))

    assert response.success


async def test_handle_error_uses_manual_stage(adapter: StubAdapter) -> None:
    processed = adapter.handle_error(TimeoutError("too slow"))

    assert processed.code is ErrorCode.CONNECTION_TIMEOUT
    assert processed.retryable
    assert processed.context is not None
    assert processed.context.stage == "manual_handle"
