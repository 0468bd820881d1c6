"""Tests for the event stream Connection Manager."""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager

import pytest

from ledgerwatch.config_loader import StreamConfig
from ledgerwatch.constants import ConnectionState, DomainEventKind
from ledgerwatch.events.bus import EventBus
from ledgerwatch.stream.connection import ConnectionManager, backoff_delay
from ledgerwatch.stream.subscriptions import SubscriptionTracker

_DROP = object()


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self):
        self.sent: list[dict] = []
        self.closed: tuple[int, str] | None = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)
        self._inbox.put_nowait(None)

    def feed(self, frame: dict) -> None:
        self._inbox.put_nowait(json.dumps(frame))

    def remote_close(self) -> None:
        self._inbox.put_nowait(None)

    def drop(self) -> None:
        self._inbox.put_nowait(_DROP)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        if item is _DROP:
            raise ConnectionError("connection dropped")
        return item


class SlowWebSocket(FakeWebSocket):
    """Yields to the loop on every send, like a real network write."""

    async def send(self, data: str) -> None:
        await asyncio.sleep(0.02)
        await super().send(data)


class FakeConnector:
    """Callable used in place of websockets.connect."""

    def __init__(self, failures: int = 0, socket_factory=FakeWebSocket):
        self.failures = failures
        self.socket_factory = socket_factory
        self.calls = 0
        self.sockets: list[FakeWebSocket] = []

    def __call__(self, url: str):
        return self._connect()

    @asynccontextmanager
    async def _connect(self):
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionRefusedError("refused")
        ws = self.socket_factory()
        self.sockets.append(ws)
        yield ws


async def wait_for(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


FAST = StreamConfig(
    reconnect_base_delay_seconds=0.001,
    reconnect_max_delay_seconds=0.004,
    max_reconnect_attempts=10,
    ping_interval_seconds=None,
)


def live_tx_queries(sent: list[dict]) -> set[str]:
    """Replay subscribe/unsubscribe frames and return the live tx queries."""
    live = {}
    for frame in sent:
        query = frame["params"]["query"]
        if frame["method"] == "subscribe":
            live[frame["id"]] = query
        elif live.get(frame["id"]) == query:
            del live[frame["id"]]
    return {query for sub_id, query in live.items() if sub_id != 1}


def make_manager(connector, address="", bus=None, config=FAST):
    return ConnectionManager(
        "ws://node.test/websocket",
        bus or EventBus(),
        SubscriptionTracker(address),
        config=config,
        connector=connector,
    )


class TestBackoff:
    """Reconnect delay schedule."""

    def test_default_schedule(self):
        delays = [backoff_delay(n, 1.0, 30.0) for n in range(1, 11)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0, 30.0, 30.0, 30.0]

    @pytest.mark.asyncio
    async def test_no_attempt_after_max(self):
        manager = make_manager(FakeConnector(), config=StreamConfig())
        manager._should_reconnect = True

        delays = [manager._schedule_reconnect() for _ in range(11)]

        assert delays[:10] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0, 30.0, 30.0, 30.0]
        assert delays[10] is None
        await manager.stop()
        assert not manager.reconnect_pending


class TestConnectionLifecycle:
    """Connect, subscribe, drop and reconnect."""

    @pytest.mark.asyncio
    async def test_connect_sends_subscriptions(self):
        connector = FakeConnector()
        manager = make_manager(connector, address="bze1me")
        states = []
        manager.add_state_callback(states.append)

        manager.start()
        await wait_for(lambda: manager.state == ConnectionState.CONNECTED)

        ws = connector.sockets[0]
        assert [f["id"] for f in ws.sent] == [1, 2, 3]
        assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
        assert manager.is_live is True
        await manager.stop()

    @pytest.mark.asyncio
    async def test_live_flag_set_before_connected_callbacks(self):
        manager = make_manager(FakeConnector())
        seen = []
        manager.add_state_callback(lambda state: seen.append((state, manager.is_live)))

        manager.start()
        await wait_for(lambda: manager.state == ConnectionState.CONNECTED)

        assert (ConnectionState.CONNECTED, True) in seen
        await manager.stop()

    @pytest.mark.asyncio
    async def test_exhausts_attempts_then_stops(self):
        connector = FakeConnector(failures=100)
        manager = make_manager(connector)

        manager.start()
        await wait_for(lambda: connector.calls == 11 and not manager.reconnect_pending)
        await asyncio.sleep(0.05)

        # Initial attempt plus ten reconnects, never an eleventh
        assert connector.calls == 11
        assert manager.state == ConnectionState.DISCONNECTED
        assert manager.is_live is False
        await manager.stop()

    @pytest.mark.asyncio
    async def test_successful_connect_resets_attempts(self):
        connector = FakeConnector(failures=3)
        manager = make_manager(connector)
        seen = []
        manager.add_state_callback(lambda state: seen.append((state, manager.reconnect_attempts)))

        manager.start()
        await wait_for(lambda: manager.state == ConnectionState.CONNECTED)
        connector.sockets[0].drop()
        await wait_for(lambda: len(connector.sockets) == 2)
        await wait_for(lambda: manager.state == ConnectionState.CONNECTED)

        assert seen == [
            (ConnectionState.CONNECTING, 0),
            (ConnectionState.DISCONNECTED, 0),
            (ConnectionState.CONNECTING, 1),
            (ConnectionState.DISCONNECTED, 1),
            (ConnectionState.CONNECTING, 2),
            (ConnectionState.DISCONNECTED, 2),
            (ConnectionState.CONNECTING, 3),
            (ConnectionState.CONNECTED, 0),
            # Drop after a successful connect starts counting from scratch
            (ConnectionState.DISCONNECTED, 0),
            (ConnectionState.CONNECTING, 1),
            (ConnectionState.CONNECTED, 0),
        ]
        await manager.stop()

    @pytest.mark.asyncio
    async def test_remote_normal_close_reconnects(self):
        connector = FakeConnector()
        manager = make_manager(connector)

        manager.start()
        await wait_for(lambda: manager.state == ConnectionState.CONNECTED)
        connector.sockets[0].remote_close()

        await wait_for(lambda: len(connector.sockets) == 2)
        await wait_for(lambda: manager.state == ConnectionState.CONNECTED)
        await manager.stop()

    @pytest.mark.asyncio
    async def test_manual_reconnect_closes_old_channel_intentionally(self):
        connector = FakeConnector()
        manager = make_manager(connector)

        manager.start()
        await wait_for(lambda: manager.state == ConnectionState.CONNECTED)
        manager.connect()
        await wait_for(lambda: len(connector.sockets) == 2)
        await wait_for(lambda: manager.state == ConnectionState.CONNECTED)
        await asyncio.sleep(0.05)

        assert connector.sockets[0].closed == (1000, "Reconnecting")
        # The old channel's close didn't schedule anything
        assert connector.calls == 2
        assert not manager.reconnect_pending
        assert manager.reconnect_attempts == 0
        await manager.stop()

    @pytest.mark.asyncio
    async def test_stop_prevents_reconnect(self):
        connector = FakeConnector()
        manager = make_manager(connector)

        manager.start()
        await wait_for(lambda: manager.state == ConnectionState.CONNECTED)
        await manager.stop()
        await asyncio.sleep(0.05)

        assert connector.sockets[0].closed == (1000, "Shutting down")
        assert connector.calls == 1
        assert manager.state == ConnectionState.DISCONNECTED
        assert not manager.reconnect_pending

    @pytest.mark.asyncio
    async def test_send_requires_connection(self):
        manager = make_manager(FakeConnector())
        assert await manager.send({"method": "subscribe"}) is False


class TestMessageDispatch:
    """Inbound frames reach the bus as domain events."""

    @pytest.mark.asyncio
    async def test_tx_frame_publishes_balance_event(self):
        connector = FakeConnector()
        bus = EventBus()
        received = []
        bus.subscribe(DomainEventKind.WALLET_BALANCE_CHANGED, received.append)
        manager = make_manager(connector, address="bze1me", bus=bus)

        manager.start()
        await wait_for(lambda: manager.state == ConnectionState.CONNECTED)
        connector.sockets[0].feed(
            {
                "result": {
                    "data": {
                        "value": {
                            "TxResult": {
                                "result": {
                                    "events": [
                                        {
                                            "type": "transfer",
                                            "attributes": [
                                                {"key": "recipient", "value": "bze1me"}
                                            ],
                                        }
                                    ]
                                }
                            }
                        }
                    }
                }
            }
        )
        await wait_for(lambda: len(received) == 1)
        await manager.stop()

    @pytest.mark.asyncio
    async def test_garbage_frame_is_ignored(self):
        connector = FakeConnector()
        manager = make_manager(connector)

        manager.start()
        await wait_for(lambda: manager.state == ConnectionState.CONNECTED)
        connector.sockets[0]._inbox.put_nowait("{not json")
        await asyncio.sleep(0.02)

        assert manager.state == ConnectionState.CONNECTED
        await manager.stop()


class TestAddressChanges:
    """Wallet switches move the tx subscription pair."""

    @pytest.mark.asyncio
    async def test_switch_while_connected(self):
        connector = FakeConnector()
        manager = make_manager(connector, address="bze1old")

        manager.start()
        await wait_for(lambda: manager.state == ConnectionState.CONNECTED)
        await manager.set_address("bze1new")

        ws = connector.sockets[0]
        follow_up = [(f["method"], f["id"]) for f in ws.sent[3:]]
        assert follow_up == [
            ("unsubscribe", 2),
            ("unsubscribe", 3),
            ("subscribe", 2),
            ("subscribe", 3),
        ]
        assert "bze1new" in ws.sent[-1]["params"]["query"]
        await manager.stop()

    @pytest.mark.asyncio
    async def test_address_change_restarts_exhausted_stream(self):
        connector = FakeConnector(failures=11)
        manager = make_manager(connector)

        manager.start()
        await wait_for(lambda: connector.calls == 11 and not manager.reconnect_pending)

        await manager.set_address("bze1new")
        await wait_for(lambda: manager.state == ConnectionState.CONNECTED)

        queries = [f["params"]["query"] for f in connector.sockets[0].sent]
        assert any("bze1new" in q for q in queries)
        await manager.stop()

    @pytest.mark.asyncio
    async def test_switch_during_open_moves_pair_to_new_address(self):
        connector = FakeConnector(socket_factory=SlowWebSocket)
        manager = make_manager(connector, address="bze1old")

        manager.start()
        await wait_for(lambda: connector.sockets)
        assert manager.state == ConnectionState.CONNECTING

        await manager.set_address("bze1new")

        queries = live_tx_queries(connector.sockets[0].sent)
        assert len(queries) == 2
        assert all("bze1new" in q for q in queries)
        assert manager.tracker.subscribed_address == "bze1new"
        await manager.stop()

    @pytest.mark.asyncio
    async def test_overlapping_switches_leave_only_latest_pair(self):
        connector = FakeConnector(socket_factory=SlowWebSocket)
        manager = make_manager(connector, address="bze1a")

        manager.start()
        await wait_for(lambda: manager.state == ConnectionState.CONNECTED)
        await asyncio.gather(manager.set_address("bze1b"), manager.set_address("bze1c"))

        ws = connector.sockets[0]
        queries = live_tx_queries(ws.sent)
        assert len(queries) == 2
        assert all("bze1c" in q for q in queries)
        # Each switch's frames go out as one uninterrupted batch
        methods = [f["method"][0] for f in ws.sent[3:]]
        assert methods == ["u", "u", "s", "s", "u", "u", "s", "s"]
        await manager.stop()
