"""WebSocket 스트림 연결 모듈 - 피드별 연결 상태 머신, 재연결 타이머, keep-alive

DISCONNECTED → CONNECTING → CONNECTED → (CLOSING | DISCONNECTED)

close() 이후에는 어떤 콜백도 공유 상태를 바꾸지 않으며, 재연결 타이머는
연결당 최대 하나만 존재한다.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Callable

import websockets

from twilight_lab.models import ConnectionState, FeedKind

if TYPE_CHECKING:
    from twilight_lab.feeds import FeedSpec
    from twilight_lab.integrity_logger import IntegrityLogger

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[FeedKind, "dict[str, Any]"], None]
ConnectivityCallback = Callable[[FeedKind, bool], None]

PARSE_ERRORS = (json.JSONDecodeError, KeyError, ValueError, TypeError, OverflowError)


class StreamConnection:
    """피드 하나에 대한 WebSocket 세션"""

    def __init__(self, spec: FeedSpec, on_update: UpdateCallback,
                 on_connectivity: ConnectivityCallback,
                 integrity_logger: IntegrityLogger | None = None,
                 connect=websockets.connect):
        self.spec = spec
        self.on_update = on_update
        self.on_connectivity = on_connectivity
        self.integrity_logger = integrity_logger
        self._connect = connect
        self.state = ConnectionState.DISCONNECTED
        self._cancelled = False
        self._ws = None
        self._session_task: asyncio.Task | None = None
        self._ping_task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._first_message_seen = False

    @property
    def kind(self) -> FeedKind:
        return self.spec.kind

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reconnect_handle(self) -> asyncio.TimerHandle | None:
        return self._reconnect_handle

    # ── 수명 주기 ──

    def open(self) -> None:
        """연결 시작 (이벤트 루프 안에서 호출)"""
        if self._cancelled or self.state != ConnectionState.DISCONNECTED:
            return
        self.state = ConnectionState.CONNECTING
        self._first_message_seen = False
        self._session_task = asyncio.get_running_loop().create_task(self._session())

    async def close(self) -> None:
        """연결 종료. 여러 번 호출해도 추가 효과 없음"""
        if self._cancelled:
            return
        self._cancelled = True
        self.state = ConnectionState.CLOSING

        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        ping_task = self._stop_keepalive()
        if ping_task is not None:
            await asyncio.gather(ping_task, return_exceptions=True)

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"[종료] {self.kind.value} 소켓 종료 중 에러: {e}")

        task, self._session_task = self._session_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        self.state = ConnectionState.DISCONNECTED
        logger.info(f"[종료] {self.kind.value} 스트림 종료")

    async def _session(self) -> None:
        """연결 → 구독 → 수신 루프"""
        try:
            async with self._connect(self.spec.url, ping_interval=20) as ws:
                if self._cancelled:
                    return
                self._ws = ws
                self.on_transport_open()
                if self.spec.subscribe_message is not None:
                    await ws.send(json.dumps(self.spec.subscribe_message))
                if self.spec.ping_interval and self.spec.ping_message is not None:
                    self._ping_task = asyncio.get_running_loop().create_task(
                        self._keepalive(ws))
                async for raw_msg in ws:
                    if self._cancelled:
                        break
                    self.on_message(raw_msg)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._ws = None
            self._stop_keepalive()
            self.on_transport_error(e)
            return
        self._ws = None
        self._stop_keepalive()
        self.on_transport_closed()

    async def _keepalive(self, ws) -> None:
        """연결 유지 ping (바이비트: 20초마다 {"op": "ping"})"""
        payload = json.dumps(self.spec.ping_message)
        while not self._cancelled:
            await asyncio.sleep(self.spec.ping_interval)
            if self._cancelled:
                return
            try:
                await ws.send(payload)
            except Exception as e:
                logger.warning(f"[핑] {self.kind.value} ping 실패: {e}")
                return

    def _stop_keepalive(self) -> asyncio.Task | None:
        """ping 태스크 취소. 취소한 태스크를 반환"""
        task, self._ping_task = self._ping_task, None
        if task is not None:
            task.cancel()
        return task

    # ── 전송 계층 이벤트 ──

    def on_transport_open(self) -> None:
        if self._cancelled:
            return
        self.state = ConnectionState.CONNECTED
        logger.info(f"[연결] {self.kind.value} WebSocket 연결 성공")
        if not self.spec.connectivity_on_first_message:
            self.on_connectivity(self.kind, True)

    def on_message(self, raw_msg: str | bytes) -> None:
        """메시지 하나 처리. 파싱 실패는 조용히 드롭"""
        if self._cancelled:
            return
        try:
            data = json.loads(raw_msg)
            fields = self.spec.parser(data)
        except PARSE_ERRORS as e:
            logger.debug(f"[드롭] {self.kind.value} 메시지 파싱 실패: {e}")
            if self.integrity_logger:
                self.integrity_logger.record_drop(self.kind.value, str(e))
            return
        if not fields:
            return

        if self.spec.connectivity_on_first_message and not self._first_message_seen:
            self._first_message_seen = True
            self.on_connectivity(self.kind, True)
        if self.integrity_logger:
            self.integrity_logger.increment_message_count(self.kind.value)
        try:
            self.on_update(self.kind, fields)
        except (ValueError, ArithmeticError) as e:
            # 반영 실패는 해당 메시지만 버리고 연결은 유지
            logger.warning(f"[드롭] {self.kind.value} 업데이트 반영 실패: {e}")
            if self.integrity_logger:
                self.integrity_logger.record_drop(self.kind.value, str(e))

    def on_transport_closed(self) -> None:
        if self._cancelled:
            return
        logger.warning(f"[연결 종료] {self.kind.value} — {self.spec.retry_delay}초 후 재연결...")
        self._disconnected("closed")

    def on_transport_error(self, error: BaseException) -> None:
        if self._cancelled:
            return
        logger.error(f"[에러] {self.kind.value} {error} — {self.spec.retry_delay}초 후 재연결...")
        self._disconnected(str(error))

    def _disconnected(self, reason: str) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.on_connectivity(self.kind, False)
        self._schedule_reconnect(reason)

    # ── 재연결 ──

    def _schedule_reconnect(self, reason: str) -> None:
        """재연결 타이머 예약 (이미 예약돼 있으면 무시)"""
        if self._cancelled or self._reconnect_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.spec.retry_delay, self._reconnect)
        if self.integrity_logger:
            self.integrity_logger.record_reconnect(self.kind.value, reason)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._cancelled:
            return
        logger.info(f"[재연결] {self.kind.value} 재연결 시도")
        self.open()
