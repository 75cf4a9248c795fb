from __future__ import annotations

import pytest

from storyloom.domain.ai.connection import BaseConnectionManager
from storyloom.domain.ai.enums import ConnectionStatus
from storyloom.domain.ai.errors import ConnectionConfigError
from storyloom.domain.ai.schemas import ConnectionConfig, ConnectionTestResult

pytestmark = pytest.mark.anyio


class StubConnectionManager(BaseConnectionManager[ConnectionConfig]):
    provider = "stub"

    def __init__(self, *, fail_connect: bool = False, fail_test: bool = False) -> None:
        super().__init__()
        self.fail_connect = fail_connect
        self.fail_test = fail_test
        self.established: list[ConnectionConfig] = []
        self.terminated = 0

    async def establish_connection(self, config: ConnectionConfig) -> None:
        if self.fail_connect:
            msg = "handshake refused"
            raise RuntimeError(msg)
        self.established.append(config)

    async def terminate_connection(self) -> None:
        self.terminated += 1

    async def perform_connection_test(self, config: ConnectionConfig) -> ConnectionTestResult:
        if self.fail_test:
            msg = "probe failed"
            raise RuntimeError(msg)
        return ConnectionTestResult(success=True, details={"url": config.api_url})


def _config(**overrides: object) -> ConnectionConfig:
    values: dict[str, object] = {"api_url": "https://example.test", "api_key": "secret"}
    values.update(overrides)
    return ConnectionConfig(**values)


async def test_connect_passes_through_connecting() -> None:
    manager = StubConnectionManager()
    seen: list[ConnectionStatus] = []
    manager.add_status_listener(seen.append)

    await manager.connect(_config())

    assert seen == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]
    assert manager.get_status() is ConnectionStatus.CONNECTED
    metrics = manager.get_metrics()
    assert metrics.total_attempts == 1
    assert metrics.successful_connections == 1
    assert metrics.consecutive_failures == 0
    assert metrics.last_connected_at is not None
    assert metrics.last_latency_ms is not None


async def test_failed_connect_records_error_and_reraises() -> None:
    manager = StubConnectionManager(fail_connect=True)
    seen: list[ConnectionStatus] = []
    manager.add_status_listener(seen.append)

    with pytest.raises(RuntimeError, match="handshake refused"):
        await manager.connect(_config())

    assert seen == [ConnectionStatus.CONNECTING, ConnectionStatus.ERROR]
    assert manager.get_last_error() == "handshake refused"
    assert manager.get_metrics().consecutive_failures == 1


async def test_invalid_config_is_rejected_before_any_transition() -> None:
    manager = StubConnectionManager()
    seen: list[ConnectionStatus] = []
    manager.add_status_listener(seen.append)

    with pytest.raises(ConnectionConfigError):
        await manager.connect(_config(api_key="   "))

    assert seen == []
    assert manager.get_status() is ConnectionStatus.DISCONNECTED
    assert manager.get_metrics().total_attempts == 0


async def test_disconnect_is_idempotent() -> None:
    manager = StubConnectionManager()
    await manager.disconnect()
    assert manager.terminated == 0

    await manager.connect(_config())
    await manager.disconnect()
    await manager.disconnect()

    assert manager.terminated == 1
    assert manager.get_status() is ConnectionStatus.DISCONNECTED
    assert manager.get_metrics().last_disconnected_at is not None


async def test_reconnect_requires_prior_config() -> None:
    manager = StubConnectionManager()

    with pytest.raises(ConnectionConfigError):
        await manager.reconnect()


async def test_reconnect_cycles_through_disconnected() -> None:
    manager = StubConnectionManager()
    await manager.connect(_config())
    seen: list[ConnectionStatus] = []
    manager.add_status_listener(seen.append)

    await manager.reconnect()

    assert seen == [ConnectionStatus.DISCONNECTED, ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]
    assert len(manager.established) == 2


async def test_listener_errors_do_not_break_transitions() -> None:
    manager = StubConnectionManager()

    def broken(_: ConnectionStatus) -> None:
        msg = "listener exploded"
        raise ValueError(msg)

    seen: list[ConnectionStatus] = []
    manager.add_status_listener(broken)
    manager.add_status_listener(seen.append)

    await manager.connect(_config())

    assert manager.get_status() is ConnectionStatus.CONNECTED
    assert seen[-1] is ConnectionStatus.CONNECTED


async def test_removed_listener_is_not_notified() -> None:
    manager = StubConnectionManager()
    seen: list[ConnectionStatus] = []
    manager.add_status_listener(seen.append)
    manager.remove_status_listener(seen.append)

    await manager.connect(_config())

    assert seen == []


async def test_connection_test_records_result_without_changing_status() -> None:
    manager = StubConnectionManager()

    result = await manager.test_connection(_config())

    assert result.success
    assert result.response_time_ms is not None
    assert manager.get_last_test_result() == result
    assert manager.get_status() is ConnectionStatus.DISCONNECTED


async def test_connection_test_failure_is_recorded() -> None:
    manager = StubConnectionManager(fail_test=True)

    with pytest.raises(RuntimeError):
        await manager.test_connection(_config())

    assert manager.get_last_error() == "probe failed"


async def test_connection_test_without_any_config() -> None:
    manager = StubConnectionManager()

    with pytest.raises(ConnectionConfigError):
        await manager.test_connection()


async def test_metrics_are_copies() -> None:
    manager = StubConnectionManager()
    await manager.connect(_config())

    snapshot = manager.get_metrics()
    snapshot.total_attempts = 99

    assert manager.get_metrics().total_attempts == 1
