"""Tests for the client-side ChannelManager."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import patch

import pytest

from conftest import FakeConnector
from shellbridge.client.channel import ChannelError, ChannelManager
from shellbridge.config.settings import ClientConfig
from shellbridge.domain.models import (
    DisconnectMessage,
    Envelope,
    OutputMessage,
    SessionKey,
    SystemEvent,
    SystemMessage,
)


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def manager(connector: FakeConnector) -> ChannelManager:
    return ChannelManager("ws://bridge/ws", reconnect_delay=0, connector=connector)


class TestConnect:

    @pytest.mark.asyncio
    async def test_connect(self, manager: ChannelManager, connector: FakeConnector) -> None:
        await manager.connect()
        assert manager.is_connected
        assert manager.generation == 1
        assert connector.kwargs == {"open_timeout": 10.0}

        await manager.connect()
        assert connector.calls == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_connect_failure(self, manager: ChannelManager, connector: FakeConnector) -> None:
        connector.fail = True
        with pytest.raises(ChannelError, match="Failed to connect to ws://bridge/ws"):
            await manager.connect()
        assert not manager.is_connected

    def test_from_settings(self) -> None:
        manager = ChannelManager.from_settings(
            ClientConfig(url="ws://elsewhere/ws", max_reconnect_attempts=2, reconnect_delay=0.5)
        )
        assert manager._url == "ws://elsewhere/ws"
        assert manager._max_reconnect_attempts == 2
        assert manager._backoff_delay(3) == 1.5


class TestSend:

    @pytest.mark.asyncio
    async def test_send_encodes_envelopes_and_dicts(
        self, manager: ChannelManager, connector: FakeConnector
    ) -> None:
        await manager.connect()
        await manager.send(DisconnectMessage(session_id="s1"))
        await manager.send({"type": "data", "sessionId": "s1", "content": "x"})

        assert [json.loads(p) for p in connector.last.sent] == [
            {"type": "disconnect", "sessionId": "s1"},
            {"type": "data", "sessionId": "s1", "content": "x"},
        ]
        await manager.close()

    @pytest.mark.asyncio
    async def test_send_while_disconnected_fails_fast(
        self, manager: ChannelManager, connector: FakeConnector
    ) -> None:
        with pytest.raises(ChannelError, match="not connected"):
            await manager.send(DisconnectMessage(session_id="s1"))
        assert connector.calls == 0

    @pytest.mark.asyncio
    async def test_auto_reconnect_on_send_tries_once(self, connector: FakeConnector) -> None:
        manager = ChannelManager(
            "ws://bridge/ws", auto_reconnect_on_send=True, connector=connector
        )
        connector.fail = True
        with pytest.raises(ChannelError):
            await manager.send(DisconnectMessage(session_id="s1"))
        assert connector.calls == 1

        connector.fail = False
        await manager.send(DisconnectMessage(session_id="s1"))
        assert connector.calls == 2
        assert len(connector.last.sent) == 1
        await manager.close()


class TestDispatch:

    @pytest.mark.asyncio
    async def test_system_messages_only_reach_system_handler(
        self, manager: ChannelManager, connector: FakeConnector
    ) -> None:
        seen: list[tuple[str, Envelope]] = []
        manager.register_callback("system", lambda e: seen.append(("system", e)))
        manager.register_callback("*", lambda e: seen.append(("*", e)))
        await manager.connect()

        connector.last.push({"type": "system", "sessionId": "system", "event": "connected"})
        await _settle()

        assert len(seen) == 1
        assert seen[0][0] == "system"
        assert isinstance(seen[0][1], SystemMessage)
        await manager.close()

    @pytest.mark.asyncio
    async def test_wildcard_runs_before_specific_handler(
        self, manager: ChannelManager, connector: FakeConnector
    ) -> None:
        order: list[str] = []

        async def specific(envelope: Envelope) -> None:
            order.append(f"specific:{envelope.data}")

        manager.register_callback("*", lambda e: order.append(f"wildcard:{e.data}"))
        manager.register_callback(SessionKey.specific("s1"), specific)
        await manager.connect()

        connector.last.push({"type": "data", "sessionId": "s1", "data": "a"})
        connector.last.push({"type": "data", "sessionId": "s1", "data": "b"})
        await _settle()

        assert order == ["wildcard:a", "specific:a", "wildcard:b", "specific:b"]
        await manager.close()

    @pytest.mark.asyncio
    async def test_unregistered_session_is_dropped(
        self, manager: ChannelManager, connector: FakeConnector
    ) -> None:
        wildcard: list[Envelope] = []
        specific: list[Envelope] = []
        manager.register_callback("*", wildcard.append)
        manager.register_callback("s1", specific.append)
        manager.unregister_callback("s1")
        await manager.connect()

        connector.last.push({"type": "data", "sessionId": "s1", "data": "x"})
        connector.last.push({"type": "data", "sessionId": "s2", "data": "y"})
        await _settle()

        assert [e.data for e in wildcard] == ["x", "y"]
        assert specific == []
        await manager.close()

    @pytest.mark.asyncio
    async def test_bad_messages_and_failing_handlers_do_not_stop_dispatch(
        self, manager: ChannelManager, connector: FakeConnector
    ) -> None:
        received: list[OutputMessage] = []

        def explode(envelope: Envelope) -> None:
            raise RuntimeError("handler bug")

        manager.register_callback("*", explode)
        manager.register_callback("s1", received.append)
        await manager.connect()

        connector.last.push("garbage")
        connector.last.push({"type": "create", "config": {}})
        connector.last.push({"type": "data", "sessionId": "s1", "data": "ok"})
        await _settle()

        assert [e.data for e in received] == ["ok"]
        assert manager.is_connected
        await manager.close()


class TestReconnect:

    @pytest.mark.asyncio
    async def test_reconnects_after_unexpected_close(
        self, manager: ChannelManager, connector: FakeConnector
    ) -> None:
        await manager.connect()
        connector.last.drop()
        await _settle()

        assert connector.calls == 2
        assert manager.is_connected
        assert manager.generation == 2
        assert manager.reconnect_attempts == 0
        await manager.close()

    @pytest.mark.asyncio
    async def test_gives_up_after_five_attempts(
        self, manager: ChannelManager, connector: FakeConnector
    ) -> None:
        notices: list[Envelope] = []
        gave_up = asyncio.Event()

        def on_system(envelope: Envelope) -> None:
            notices.append(envelope)
            gave_up.set()

        manager.register_callback("system", on_system)
        await manager.connect()
        connector.fail = True
        connector.last.drop()

        await asyncio.wait_for(gave_up.wait(), 1.0)
        await _settle(20)

        assert connector.calls == 1 + 5
        assert len(notices) == 1
        assert isinstance(notices[0], SystemMessage)
        assert notices[0].event == SystemEvent.RECONNECT_FAILED
        assert not manager.is_connected

    @pytest.mark.asyncio
    async def test_successful_reconnect_resets_attempts(
        self, manager: ChannelManager, connector: FakeConnector
    ) -> None:
        await manager.connect()
        connector.fail_next = 2
        connector.last.drop()
        await _settle(20)

        assert manager.is_connected
        assert connector.calls == 1 + 3
        assert manager.reconnect_attempts == 0
        await manager.close()

    @pytest.mark.asyncio
    async def test_reconnect_waits_grow_linearly(self, connector: FakeConnector) -> None:
        manager = ChannelManager("ws://bridge/ws", reconnect_delay=1.0, connector=connector)
        gave_up = asyncio.Event()
        manager.register_callback("system", lambda e: gave_up.set())
        waits: list[float] = []
        real_sleep = asyncio.sleep

        async def fake_sleep(delay: float, *args: object) -> None:
            if delay:
                waits.append(delay)
            await real_sleep(0)

        await manager.connect()
        with patch("shellbridge.client.channel.asyncio.sleep", new=fake_sleep):
            connector.fail = True
            connector.last.drop()
            await asyncio.wait_for(gave_up.wait(), 1.0)

        assert waits == [1.0, 2.0, 3.0, 4.0, 5.0]
        assert connector.calls == 1 + 5

    def test_backoff_is_linear(self) -> None:
        manager = ChannelManager(reconnect_delay=1.0)
        assert [manager._backoff_delay(n) for n in range(1, 6)] == [1.0, 2.0, 3.0, 4.0, 5.0]

    @pytest.mark.asyncio
    async def test_close_stops_reconnecting(
        self, manager: ChannelManager, connector: FakeConnector
    ) -> None:
        manager.register_callback("*", lambda e: None)
        await manager.connect()
        socket = connector.last

        await manager.close()
        await _settle()

        assert socket.closed
        assert connector.calls == 1
        assert not manager.is_connected
        assert manager._callbacks == {}
