"""데이터 모델 정의 - 시장 상태, 풀/자본 설정, 전략 및 지표"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Position(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    CLOSING = "CLOSING"


class FeedKind(str, Enum):
    SPOT = "spot"              # 바이낸스 현물 체결 (Twilight 가격)
    FUTURES = "futures"        # 바이낸스 선물 체결
    MARK_PRICE = "mark_price"  # 바이낸스 마크가격 + 펀딩비
    INVERSE = "inverse"        # 바이비트 인버스 티커


# ── 시장 상태 ──

@dataclass(frozen=True)
class MarketState:
    """피드 매니저가 소유하는 시장 상태 스냅샷 (업데이트마다 새 값)"""
    spot_price: float = 84695.0
    futures_price: float = 84670.0
    mark_price: float = 84670.0
    funding_rate: float = 0.0001
    next_funding_time: int | None = None         # ms
    inverse_price: float = 0.0
    inverse_funding_rate: float = 0.0
    inverse_next_funding_time: int | None = None  # ms
    spot_updated_at: float | None = None          # unix timestamp
    futures_updated_at: float | None = None
    mark_updated_at: float | None = None
    inverse_updated_at: float | None = None
    spot_connected: bool = False
    futures_connected: bool = False
    mark_connected: bool = False
    inverse_connected: bool = False

    @property
    def spread(self) -> float:
        """현물 - 선물 가격 차이"""
        return self.spot_price - self.futures_price

    @property
    def spread_pct(self) -> float:
        if not self.futures_price:
            return 0.0
        return self.spread / self.futures_price * 100


# 피드별 소유 필드 - 피드는 자기 필드만 갱신할 수 있음
FEED_FIELDS: dict[FeedKind, frozenset[str]] = {
    FeedKind.SPOT: frozenset({"spot_price", "spot_updated_at"}),
    FeedKind.FUTURES: frozenset({"futures_price", "futures_updated_at"}),
    FeedKind.MARK_PRICE: frozenset({
        "mark_price", "funding_rate", "next_funding_time", "mark_updated_at",
    }),
    FeedKind.INVERSE: frozenset({
        "inverse_price", "inverse_funding_rate", "inverse_next_funding_time",
        "inverse_updated_at",
    }),
}

CONNECTED_FIELD: dict[FeedKind, str] = {
    FeedKind.SPOT: "spot_connected",
    FeedKind.FUTURES: "futures_connected",
    FeedKind.MARK_PRICE: "mark_connected",
    FeedKind.INVERSE: "inverse_connected",
}

UPDATED_AT_FIELD: dict[FeedKind, str] = {
    FeedKind.SPOT: "spot_updated_at",
    FeedKind.FUTURES: "futures_updated_at",
    FeedKind.MARK_PRICE: "mark_updated_at",
    FeedKind.INVERSE: "inverse_updated_at",
}


# ── 설정 값 객체 ──

@dataclass(frozen=True)
class PoolConfig:
    """Twilight 풀 상태. 롱/숏 규모는 항상 total에서 파생"""
    total_notional: float = 0.0
    skew: float = 0.5               # 롱 비중 (0~1)
    funding_cap_pct: float = 0.0    # 0 = 캡 없음 (풀 기반 펀딩비)

    @property
    def long_notional(self) -> float:
        return self.total_notional * self.skew

    @property
    def short_notional(self) -> float:
        return self.total_notional - self.long_notional


@dataclass(frozen=True)
class CapitalConfig:
    """TVL 및 차입 이자율 (이자율은 CEX 비교 카탈로그에서만 사용)"""
    tvl: float = 300.0
    btc_interest_daily_pct: float = 0.03
    usdt_interest_daily_pct: float = 0.05


@dataclass(frozen=True)
class VenueProfile:
    """거래소 다리(leg)별 수수료/펀딩/증거금 특성"""
    name: str
    taker_fee: float
    funding_periods_per_day: int
    maint_margin: float
    base_margined: bool = False   # 증거금이 기초자산(BTC)으로 표시
    inverse: bool = False         # 청산가에 인버스 공식 사용


@dataclass(frozen=True)
class Leg:
    position: Position | None = None
    size: float = 0.0       # USD 명목
    leverage: float = 0.0

    @property
    def active(self) -> bool:
        return self.position is not None and self.size > 0 and self.leverage > 0


# ── 지표 ──

SCENARIO_CHANGES: tuple[float, ...] = (-0.10, -0.05, 0.0, 0.05, 0.10)


@dataclass(frozen=True)
class ScenarioPnL:
    """가격 변동 시나리오별 30일 손익"""
    price_change: float
    price_pnl: float             # 다리별 레버리지 손익 합
    margin_revaluation: float    # BTC 증거금 재평가분
    total: float


@dataclass(frozen=True)
class StrategyMetrics:
    """전략 지표 (모든 값은 유한값 또는 None)"""
    venue_margin_base: float = 0.0
    venue_margin_usd: float = 0.0
    reference_margin: float = 0.0
    total_margin: float = 0.0
    total_fees: float = 0.0
    daily_interest_cost: float = 0.0
    monthly_interest_cost: float = 0.0
    venue_daily_funding: float = 0.0
    reference_daily_funding: float = 0.0
    daily_funding_pnl: float = 0.0
    monthly_funding_pnl: float = 0.0
    basis_profit: float = 0.0
    scenarios: tuple[ScenarioPnL, ...] = ()
    monthly_pnl: float = 0.0
    daily_pnl: float = 0.0
    monthly_roi: float = 0.0
    apy: float = 0.0
    effective_apy: float = 0.0
    venue_liquidation_price: float | None = None
    reference_liquidation_price: float | None = None
    venue_stop_loss: float | None = None
    reference_stop_loss: float | None = None
    liquidation_distance_pct: float | None = None
    would_survive_5pct: bool = True
    would_survive_10pct: bool = True
    days_to_liquidation: int | None = None
    max_loss: float = 0.0
    breakeven_days: float | None = None
    breakeven_price_move_pct: float = 0.0
    market_direction: str = "NEUTRAL"

    def pnl_at(self, price_change: float) -> float:
        """시나리오 총손익 조회 (없으면 0)"""
        for s in self.scenarios:
            if abs(s.price_change - price_change) < 1e-12:
                return s.total
        return 0.0

    @property
    def pnl_flat(self) -> float:
        return self.pnl_at(0.0)


# ── 전략 ──

@dataclass(frozen=True)
class StrategyTemplate:
    """고정 파라미터 세트. 공통 계산기를 거쳐 Strategy가 됨"""
    name: str
    description: str
    category: str
    venue_leg: Leg
    reference_leg: Leg
    reference_venue: str = "Binance"   # Binance | Bybit
    include: bool = True               # False 여도 id 슬롯은 소비
    is_spread: bool = False
    target_venue_rate_pct: float | None = None


@dataclass(frozen=True)
class Strategy:
    """가상 포지션 하나 (카탈로그 재생성 시 통째로 교체)"""
    id: int
    name: str
    description: str
    category: str
    risk: str
    venue_leg: Leg
    reference_leg: Leg
    reference_venue: str
    metrics: StrategyMetrics
    is_spread: bool = False
    target_venue_rate_pct: float | None = None

    @property
    def apy(self) -> float:
        return self.metrics.apy


@dataclass(frozen=True)
class CexStrategy:
    """CEX 비교 전략 (현물/마진/선물/캐시앤캐리)"""
    id: int
    name: str
    description: str
    category: str
    risk: str
    type: str                   # spot | margin | futures | cash-carry | margin-hedge
    position: str               # LONG | SHORT | NEUTRAL
    size: float
    leverage: float
    metrics: StrategyMetrics

    @property
    def apy(self) -> float:
        return self.metrics.apy


# ── 펀딩 관련 ──

@dataclass(frozen=True)
class TradeImpact:
    """가상 거래 후 풀 스큐/펀딩비 변화"""
    skew_before: float
    skew_after: float
    rate_before: float
    rate_after: float
    increases_imbalance: bool


@dataclass
class FundingAverages:
    """1년 평균 펀딩비 (8시간 기준)"""
    reference_avg_1y: float
    inverse_avg_1y: float
    fetched_at: int              # unix seconds
    ttl_seconds: int = 86400
    source: str = "api"          # static | cache | api


@dataclass(frozen=True)
class HistorySample:
    time: float
    a: float
    b: float


@dataclass
class FeedCounters:
    """피드별 수신/드롭 통계"""
    messages: int = 0
    dropped: int = 0
    throttled: int = 0
    reconnects: int = 0
