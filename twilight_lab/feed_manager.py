"""피드 매니저 모듈 - 스트림 연결 소유, 스로틀링, 시장 상태 병합, 라이브/수동 모드"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable

from twilight_lab.connection import StreamConnection
from twilight_lab.feeds import build_feed_specs
from twilight_lab.integrity_logger import IntegrityLogger
from twilight_lab.models import (
    CONNECTED_FIELD, FEED_FIELDS, FeedKind, MarketState, UPDATED_AT_FIELD,
)

if TYPE_CHECKING:
    from twilight_lab.config import Config

logger = logging.getLogger(__name__)

PRICE_FIELD = {
    FeedKind.SPOT: "spot_price",
    FeedKind.FUTURES: "futures_price",
    FeedKind.INVERSE: "inverse_price",
}


def format_time_until(next_ms: int | None, now_ms: float) -> str:
    """다음 펀딩까지 남은 시간: "N/A" / "Now" / "Xh Ym" """
    if not next_ms:
        return "N/A"
    diff = next_ms - now_ms
    if diff <= 0:
        return "Now"
    hours = int(diff // 3_600_000)
    minutes = int((diff % 3_600_000) // 60_000)
    return f"{hours}h {minutes}m"


def round_price(price: float) -> float:
    """정수 달러 반올림 (0.5는 올림)"""
    return float(math.floor(price + 0.5))


class FeedManager:
    """피드 연결과 MarketState의 유일한 소유자"""

    def __init__(self, config: Config, integrity_logger: IntegrityLogger | None = None,
                 connection_factory: Callable[..., StreamConnection] = StreamConnection,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.integrity_logger = integrity_logger
        self._connection_factory = connection_factory
        self._clock = clock
        self.state = MarketState()
        self.connections: dict[FeedKind, StreamConnection] = {}
        self.live_mode = False
        # 피드별 마지막 수락 (반올림 가격, 시각)
        self._last_accepted: dict[FeedKind, tuple[float, float]] = {}
        self._last_mark_applied: float | None = None
        # 가동률 추적
        self._started_at = clock()
        self._down_since: dict[FeedKind, float] = {}
        self._downtime: dict[FeedKind, float] = {}

    @property
    def market_state(self) -> MarketState:
        return self.state

    # ── 수명 주기 ──

    async def start(self) -> None:
        await self.set_mode(self.config.live_mode)

    async def stop(self) -> None:
        await self._teardown()
        logger.info("[종료] 피드 매니저 종료")

    async def set_mode(self, live: bool) -> None:
        """라이브/수동 전환. 기존 연결은 모두 정리한 뒤 새로 연결"""
        await self._teardown()
        self.live_mode = live
        if not live:
            logger.info("[모드] 수동 모드 - 피드 연결 없음")
            self.apply_manual_prices(
                spot_price=self.config.manual_spot_price,
                futures_price=self.config.manual_futures_price,
                funding_rate=self.config.manual_funding_rate,
                inverse_price=self.config.manual_inverse_price,
                inverse_funding_rate=self.config.manual_inverse_funding_rate,
            )
            return

        logger.info("[모드] 라이브 모드 - 피드 연결 시작")
        for spec in build_feed_specs(self.config):
            conn = self._connection_factory(
                spec, self.on_update, self.on_connectivity, self.integrity_logger)
            self.connections[spec.kind] = conn
            self._down_since.setdefault(spec.kind, self._clock())
            conn.open()

    async def _teardown(self) -> None:
        connections = list(self.connections.values())
        self.connections.clear()
        for conn in connections:
            await conn.close()
        self._last_accepted.clear()
        self._last_mark_applied = None
        now = self._clock()
        for kind in list(self._down_since):
            self._downtime[kind] = self._downtime.get(kind, 0.0) + now - self._down_since.pop(kind)
        self.state = replace(self.state, **{f: False for f in CONNECTED_FIELD.values()})

    def apply_manual_prices(self, spot_price: float | None = None,
                            futures_price: float | None = None,
                            funding_rate: float | None = None,
                            inverse_price: float | None = None,
                            inverse_funding_rate: float | None = None) -> None:
        """수동 모드 가격/펀딩비 덮어쓰기 (라이브 모드에서는 무시)"""
        if self.live_mode:
            logger.warning("[모드] 라이브 모드에서는 수동 가격을 적용할 수 없음")
            return
        changes: dict[str, Any] = {}
        if spot_price is not None:
            changes["spot_price"] = float(spot_price)
        if futures_price is not None:
            changes["futures_price"] = float(futures_price)
            changes["mark_price"] = float(futures_price)
        if funding_rate is not None:
            changes["funding_rate"] = float(funding_rate)
        if inverse_price is not None:
            changes["inverse_price"] = float(inverse_price)
        if inverse_funding_rate is not None:
            changes["inverse_funding_rate"] = float(inverse_funding_rate)
        if changes:
            self.state = replace(self.state, **changes)

    # ── 연결 콜백 ──

    def on_connectivity(self, kind: FeedKind, connected: bool) -> None:
        if not self.live_mode or kind not in self.connections:
            return
        now = self._clock()
        if connected:
            since = self._down_since.pop(kind, None)
            if since is not None:
                self._downtime[kind] = self._downtime.get(kind, 0.0) + now - since
        else:
            self._down_since.setdefault(kind, now)
        self.state = replace(self.state, **{CONNECTED_FIELD[kind]: connected})

    def on_update(self, kind: FeedKind, fields: dict[str, Any]) -> None:
        """연결에서 받은 필드 세트를 스로틀 후 반영"""
        if not self.live_mode:
            return
        now = self._clock()

        if kind == FeedKind.MARK_PRICE:
            window = self.config.mark_price_throttle_ms / 1000
            if self._last_mark_applied is not None and now - self._last_mark_applied < window:
                self._throttled(kind)
                return
            self._last_mark_applied = now
            changes = dict(fields)
        else:
            changes = {k: v for k, v in fields.items() if k != "price"}
            if "price" in fields:
                rounded = round_price(fields["price"])
                if self._accept_price(kind, rounded, now):
                    changes[PRICE_FIELD[kind]] = rounded
                elif not changes:
                    self._throttled(kind)
                    return
            if not changes:
                return

        changes[UPDATED_AT_FIELD[kind]] = now
        self._apply(kind, changes)

    def _accept_price(self, kind: FeedKind, rounded: float, now: float) -> bool:
        """같은 반올림 값이거나 100ms 이내면 거부 (큐잉하지 않음)"""
        last = self._last_accepted.get(kind)
        window = self.config.price_throttle_ms / 1000
        if last is not None:
            last_price, last_time = last
            if rounded == last_price or now - last_time < window:
                return False
        self._last_accepted[kind] = (rounded, now)
        return True

    def _throttled(self, kind: FeedKind) -> None:
        if self.integrity_logger:
            self.integrity_logger.record_throttled(kind.value)

    def _apply(self, kind: FeedKind, changes: dict[str, Any]) -> None:
        foreign = set(changes) - FEED_FIELDS[kind]
        if foreign:
            raise ValueError(f"{kind.value} 피드는 {sorted(foreign)} 필드를 쓸 수 없음")
        self.state = replace(self.state, **changes)

    # ── 조회 ──

    def connectivity(self) -> dict[FeedKind, bool]:
        return {kind: getattr(self.state, field) for kind, field in CONNECTED_FIELD.items()}

    def time_to_next_funding(self, now_ms: float | None = None) -> str:
        now_ms = self._clock() * 1000 if now_ms is None else now_ms
        return format_time_until(self.state.next_funding_time, now_ms)

    def time_to_next_inverse_funding(self, now_ms: float | None = None) -> str:
        now_ms = self._clock() * 1000 if now_ms is None else now_ms
        return format_time_until(self.state.inverse_next_funding_time, now_ms)

    def uptime_report(self) -> dict[str, float]:
        """피드별 가동률 (매니저 생성 이후)"""
        now = self._clock()
        total = now - self._started_at
        report = {}
        for kind in self.connections:
            down = self._downtime.get(kind, 0.0)
            if kind in self._down_since:
                down += now - self._down_since[kind]
            report[kind.value] = IntegrityLogger.compute_uptime(total, down)
        return report
