"""스트림 연결 상태 머신 테스트
Feature: twilight-lab
Property 10: close() 멱등성
Property 11: 재연결 타이머는 최대 하나
"""

import asyncio
import json
import tempfile

import pytest

from twilight_lab.config import Config
from twilight_lab.connection import StreamConnection
from twilight_lab.feeds import FeedSpec, build_feed_specs, parse_mark_price, parse_trade
from twilight_lab.integrity_logger import IntegrityLogger
from twilight_lab.models import ConnectionState, FeedKind


class FakeWebSocket:
    """websockets.connect() 컨텍스트 대역"""

    def __init__(self, messages=(), hold_open=False):
        self.messages = list(messages)
        self.hold_open = hold_open
        self.sent: list[str] = []
        self.close_calls = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for m in self.messages:
            yield m
        if self.hold_open:
            await asyncio.Event().wait()

    async def send(self, data):
        self.sent.append(data)

    async def close(self):
        self.close_calls += 1


def fake_connect(*results):
    """호출마다 results를 순서대로 반환 (예외면 raise)"""
    calls = []

    def connect(url, **kwargs):
        calls.append((url, kwargs))
        result = results[min(len(calls), len(results)) - 1]
        if isinstance(result, Exception):
            raise result
        return result

    connect.calls = calls
    return connect


def trade_spec(delay=60.0):
    return FeedSpec(FeedKind.SPOT, "wss://example/btcusdt@trade", parse_trade, delay)


def make_conn(spec, connect, integrity_logger=None):
    updates, events = [], []
    conn = StreamConnection(
        spec,
        on_update=lambda kind, fields: updates.append(fields),
        on_connectivity=lambda kind, connected: events.append(connected),
        integrity_logger=integrity_logger,
        connect=connect,
    )
    return conn, updates, events


# ── Property 10: close() 멱등성 ──

class TestCloseIdempotent:

    def test_close_twice_no_extra_effects(self):
        ws = FakeWebSocket(hold_open=True)

        async def scenario():
            conn, updates, events = make_conn(trade_spec(), fake_connect(ws))
            conn.open()
            await asyncio.sleep(0.05)
            assert conn.state == ConnectionState.CONNECTED
            await conn.close()
            snapshot = (list(events), ws.close_calls, conn.state)
            await conn.close()
            return conn, events, snapshot

        conn, events, snapshot = asyncio.run(scenario())
        assert snapshot == (events, ws.close_calls, conn.state)
        assert ws.close_calls == 1
        assert events == [True]
        assert conn.cancelled is True
        assert conn.state == ConnectionState.DISCONNECTED
        assert conn.reconnect_handle is None

    def test_callbacks_ignored_after_close(self):
        async def scenario():
            conn, updates, events = make_conn(trade_spec(), fake_connect(FakeWebSocket()))
            await conn.close()
            conn.on_message(json.dumps({"p": "84695"}))
            conn.on_transport_closed()
            conn.on_transport_error(RuntimeError("late"))
            conn.open()
            return conn, updates, events

        conn, updates, events = asyncio.run(scenario())
        assert updates == []
        assert events == []
        assert conn.reconnect_handle is None


# ── Property 11: 재연결 타이머 하나 ──

class TestSingleReconnectTimer:

    def test_close_then_error_schedules_once(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            il = IntegrityLogger(tmpdir)

            async def scenario():
                conn, _, events = make_conn(trade_spec(), fake_connect(FakeWebSocket()), il)
                conn.on_transport_closed()
                first = conn.reconnect_handle
                conn.on_transport_error(RuntimeError("boom"))
                second = conn.reconnect_handle
                await conn.close()
                return first, second, events

            first, second, events = asyncio.run(scenario())
            assert first is not None
            assert first is second
            assert first.cancelled()
            assert events == [False, False]
            assert il.counters("spot").reconnects == 1

    def test_connect_failure_retries(self):
        ws = FakeWebSocket(hold_open=True)
        connect = fake_connect(OSError("dns"), ws)

        async def scenario():
            conn, _, events = make_conn(trade_spec(delay=0.01), connect)
            conn.open()
            await asyncio.sleep(0.2)
            state = conn.state
            await conn.close()
            return events, state

        events, state = asyncio.run(scenario())
        assert len(connect.calls) == 2
        assert events == [False, True]
        assert state == ConnectionState.CONNECTED
        assert connect.calls[0][1]["ping_interval"] == 20


# ── 메시지 처리 ──

class TestMessages:

    def test_malformed_messages_dropped(self):
        ws = FakeWebSocket([
            json.dumps({"p": "84695.4"}),
            "not json",
            json.dumps({"x": 1}),
            json.dumps([1, 2]),
            json.dumps({"p": "abc"}),
            json.dumps({"p": "84700"}),
        ])
        with tempfile.TemporaryDirectory() as tmpdir:
            il = IntegrityLogger(tmpdir)

            async def scenario():
                conn, updates, events = make_conn(trade_spec(), fake_connect(ws), il)
                conn.open()
                await asyncio.sleep(0.05)
                pending = conn.reconnect_handle
                await conn.close()
                return updates, events, pending

            updates, events, pending = asyncio.run(scenario())
            assert updates == [{"price": 84695.4}, {"price": 84700.0}]
            # 스트림 종료 → 끊김 + 재연결 예약
            assert events == [True, False]
            assert pending is not None
            assert il.counters("spot").dropped == 4
            assert il.counters("spot").messages == 2

    def test_malformed_frames_keep_connection_open(self):
        """열린 소켓에서 형식 오류 메시지는 드롭만 되고 연결은 유지"""
        spec = next(s for s in build_feed_specs(Config()) if s.kind == FeedKind.INVERSE)
        ws = FakeWebSocket([
            json.dumps({"topic": "tickers.BTCUSD", "data": ["garbage"]}),
            json.dumps({"topic": "tickers.BTCUSD", "data": "garbage"}),
            json.dumps({"topic": "tickers.BTCUSD", "data": {"lastPrice": "NaN"}}),
            json.dumps({"topic": "tickers.BTCUSD", "data": {"fundingRate": "Infinity"}}),
            json.dumps({"topic": "tickers.BTCUSD", "data": {"lastPrice": "84600.5"}}),
        ], hold_open=True)
        with tempfile.TemporaryDirectory() as tmpdir:
            il = IntegrityLogger(tmpdir)

            async def scenario():
                conn, updates, events = make_conn(spec, fake_connect(ws), il)
                conn.open()
                await asyncio.sleep(0.05)
                snapshot = (conn.state, conn.reconnect_handle)
                await conn.close()
                return updates, events, snapshot

            updates, events, (state, pending) = asyncio.run(scenario())
            assert events == [True]
            assert pending is None
            assert state == ConnectionState.CONNECTED
            assert updates == [{"price": 84600.5}]
            assert il.counters("inverse").dropped == 4

    def test_update_failure_keeps_connection_open(self):
        """반영 단계 예외도 메시지만 버리고 재연결하지 않음"""
        ws = FakeWebSocket([json.dumps({"p": "84695"}), json.dumps({"p": "84700"})],
                           hold_open=True)
        applied, events = [], []

        def on_update(kind, fields):
            if not applied:
                applied.append(None)
                raise OverflowError("cannot convert float infinity to integer")
            applied.append(fields)

        async def scenario():
            conn = StreamConnection(
                trade_spec(), on_update=on_update,
                on_connectivity=lambda kind, connected: events.append(connected),
                connect=fake_connect(ws),
            )
            conn.open()
            await asyncio.sleep(0.05)
            pending = conn.reconnect_handle
            await conn.close()
            return pending

        pending = asyncio.run(scenario())
        assert pending is None
        assert events == [True]
        assert applied[1:] == [{"price": 84700.0}]

    def test_close_awaits_ping_task(self):
        spec = next(s for s in build_feed_specs(Config(inverse_ping_interval=10.0))
                    if s.kind == FeedKind.INVERSE)
        ws = FakeWebSocket(hold_open=True)

        async def scenario():
            conn, _, _ = make_conn(spec, fake_connect(ws))
            conn.open()
            await asyncio.sleep(0.05)
            ping_task = conn._ping_task
            await conn.close()
            return ping_task

        ping_task = asyncio.run(scenario())
        assert ping_task is not None
        assert ping_task.done()

    def test_mark_price_connectivity_on_first_message(self):
        spec = FeedSpec(FeedKind.MARK_PRICE, "wss://example/btcusdt@markPrice",
                        parse_mark_price, 60.0, connectivity_on_first_message=True)
        ws = FakeWebSocket([
            json.dumps({"p": "84670.1", "r": "0.0001", "T": 1_700_000_000_000}),
            json.dumps({"p": "84671.1", "r": "0.0001", "T": 1_700_000_000_000}),
        ], hold_open=True)
        idle = FakeWebSocket(hold_open=True)

        async def scenario():
            conn, updates, events = make_conn(spec, fake_connect(ws))
            conn.open()
            await asyncio.sleep(0.05)
            await conn.close()

            idle_conn, _, idle_events = make_conn(spec, fake_connect(idle))
            idle_conn.open()
            await asyncio.sleep(0.05)
            await idle_conn.close()
            return updates, events, idle_events

        updates, events, idle_events = asyncio.run(scenario())
        assert events == [True]
        assert len(updates) == 2
        assert updates[0]["funding_rate"] == 0.0001
        # 데이터가 없으면 연결됐어도 connectivity 미발행
        assert idle_events == []

    def test_inverse_subscribe_ping_and_ack_filter(self):
        config = Config(inverse_ping_interval=0.01)
        spec = next(s for s in build_feed_specs(config) if s.kind == FeedKind.INVERSE)
        ws = FakeWebSocket([
            json.dumps({"success": True, "ret_msg": "", "op": "subscribe"}),
            json.dumps({"success": True, "ret_msg": "pong", "op": "ping"}),
            json.dumps({"topic": "tickers.BTCUSD", "type": "snapshot",
                        "data": {"lastPrice": "84600.5", "fundingRate": "0.0001",
                                 "nextFundingTime": "1700000000000"}}),
        ], hold_open=True)

        async def scenario():
            conn, updates, events = make_conn(spec, fake_connect(ws))
            conn.open()
            await asyncio.sleep(0.1)
            await conn.close()
            sent_at_close = len(ws.sent)
            await asyncio.sleep(0.03)
            return updates, events, sent_at_close

        updates, events, sent_at_close = asyncio.run(scenario())
        assert json.loads(ws.sent[0]) == {"op": "subscribe", "args": ["tickers.BTCUSD"]}
        pings = [m for m in ws.sent[1:] if json.loads(m) == {"op": "ping"}]
        assert len(pings) >= 1
        # 종료 후에는 ping 중단
        assert len(ws.sent) == sent_at_close
        assert updates == [{
            "price": 84600.5,
            "inverse_funding_rate": 0.0001,
            "inverse_next_funding_time": 1_700_000_000_000,
        }]
        assert events == [True]
