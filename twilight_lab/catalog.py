"""전략 카탈로그 빌더 - 템플릿 → 공통 계산기 → APY 순위

모든 전략은 고정 파라미터 템플릿(StrategyTemplate)에서 출발해
metrics.calculate_metrics 하나로 평가된다. 템플릿 슬롯마다 id를 부여하며,
건너뛴 슬롯도 id를 소비하므로 같은 시장 입력에서는 id가 안정적이다.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from twilight_lab.funding import (
    DEFAULT_SCALE, DEFAULT_SENSITIVITY, avg_rate_to_apr, venue_funding_rate,
)
from twilight_lab.metrics import (
    BINANCE_FUTURES, BYBIT_INVERSE, DAILY_VOLATILITY_PCT, calculate_metrics, finite,
    twilight_profile,
)
from twilight_lab.models import (
    CapitalConfig, FundingAverages, Leg, MarketState, PoolConfig, Position, Strategy,
    StrategyMetrics, StrategyTemplate,
)
from twilight_lab.spreads import spread_templates

logger = logging.getLogger(__name__)

RISK_TIERS = ("VERY LOW", "LOW", "MEDIUM", "HIGH", "VERY HIGH", "EXTREME")

NO_LEG = Leg()


@dataclass(frozen=True)
class CatalogInputs:
    """카탈로그 한 번 생성에 필요한 입력 스냅샷"""
    state: MarketState
    capital: CapitalConfig
    pool: PoolConfig
    sensitivity: float = DEFAULT_SENSITIVITY
    scale: float = DEFAULT_SCALE
    venue_funding_periods_per_day: int = 24

    @property
    def venue_rate(self) -> float:
        return venue_funding_rate(self.pool, self.state.funding_rate,
                                  self.sensitivity, self.scale)

    @classmethod
    def from_config(cls, state: MarketState, config) -> "CatalogInputs":
        return cls(
            state=state,
            capital=config.capital_config(),
            pool=config.pool_config(),
            sensitivity=config.funding_sensitivity,
            scale=config.funding_scale,
            venue_funding_periods_per_day=config.venue_funding_periods_per_day,
        )


# ── 리스크 등급 ──

def classify_risk(venue_leg: Leg, reference_leg: Leg, metrics: StrategyMetrics) -> str:
    """레버리지와 청산 근접도(일간 변동성 3% / 5%)에 따라 등급 상향"""
    legs = [leg for leg in (venue_leg, reference_leg) if leg.active]
    if not legs:
        return RISK_TIERS[0]
    max_lev = max(leg.leverage for leg in legs)
    hedged = len(legs) == 2 and venue_leg.position != reference_leg.position

    if hedged:
        tier = 0 if max_lev <= 5 else 1 if max_lev <= 10 else 2 if max_lev <= 20 else 3
    else:
        tier = 2 if max_lev < 10 else 3 if max_lev < 50 else 4 if max_lev < 100 else 5

    distance = metrics.liquidation_distance_pct
    if distance is not None:
        if distance <= DAILY_VOLATILITY_PCT:
            tier += 2
        elif distance <= 5:
            tier += 1
    return RISK_TIERS[min(tier, len(RISK_TIERS) - 1)]


# ── 템플릿 ──

def _hedge(venue_side: Position, size: float, lev: float,
           reference_lev: float | None = None) -> tuple[Leg, Leg]:
    reference_side = Position.SHORT if venue_side == Position.LONG else Position.LONG
    return (Leg(venue_side, size, lev),
            Leg(reference_side, size, reference_lev if reference_lev else lev))


def strategy_templates(inputs: CatalogInputs) -> list[StrategyTemplate]:
    """템플릿 슬롯 목록 (순서가 곧 id)"""
    state = inputs.state
    tvl = inputs.capital.tvl
    venue_rate = inputs.venue_rate
    ref_rate = state.funding_rate
    templates: list[StrategyTemplate] = []

    # 1-4: Twilight 단독 방향성
    for lev in (10, 20):
        size = min(150, tvl)
        templates.append(StrategyTemplate(
            name=f"Twilight Long {lev}x",
            description="Long BTC on Twilight only. No hedge. Directional bet.",
            category="Directional",
            venue_leg=Leg(Position.LONG, size, lev), reference_leg=NO_LEG,
            include=size > 0,
        ))
        templates.append(StrategyTemplate(
            name=f"Twilight Short {lev}x",
            description="Short BTC on Twilight only. No hedge. Directional bet.",
            category="Directional",
            venue_leg=Leg(Position.SHORT, size, lev), reference_leg=NO_LEG,
            include=size > 0,
        ))

    # 5-8: 바이낸스 단독
    for lev in (10, 20):
        size = min(150, tvl)
        templates.append(StrategyTemplate(
            name=f"Binance Long {lev}x",
            description=f"Long on Binance only. Pays {ref_rate * 100:.4f}% funding per 8h.",
            category="CEX Only",
            venue_leg=NO_LEG, reference_leg=Leg(Position.LONG, size, lev),
            include=size > 0,
        ))
        templates.append(StrategyTemplate(
            name=f"Binance Short {lev}x",
            description=f"Short on Binance only. Collects {ref_rate * 100:.4f}% funding per 8h.",
            category="CEX Only",
            venue_leg=NO_LEG, reference_leg=Leg(Position.SHORT, size, lev),
            include=size > 0,
        ))

    # 9-10: 풀 펀딩 수취 쪽으로 진입
    harvest_side = Position.SHORT if venue_rate >= 0 else Position.LONG
    for lev in (5, 10):
        size = min(200, tvl)
        templates.append(StrategyTemplate(
            name=f"Funding Harvest: {harvest_side.value.title()} Twi {lev}x",
            description=(
                f"Take the side of the pool that receives Twilight funding "
                f"({venue_rate * 100:.4f}% per period). Directional exposure remains."
            ),
            category="Funding Harvest",
            venue_leg=Leg(harvest_side, size, lev), reference_leg=NO_LEG,
            include=size > 0,
        ))

    # 11-18: 델타 중립 헤지 (양방향, $100/$150 × 10x/20x)
    for venue_side in (Position.LONG, Position.SHORT):
        label = ("Long Twi / Short Bin" if venue_side == Position.LONG
                 else "Short Twi / Long Bin")
        for size in (100, 150):
            for lev in (10, 20):
                venue_leg, reference_leg = _hedge(venue_side, size, lev)
                templates.append(StrategyTemplate(
                    name=f"Hedge: {label} {lev}x (${size})",
                    description=(
                        f"Delta-neutral: {label}. Capture spread + funding arb "
                        f"between Twilight pool funding and Binance funding."
                    ),
                    category="Delta-Neutral",
                    venue_leg=venue_leg, reference_leg=reference_leg,
                    include=size <= tvl,
                ))

    # 19-20: 최대 자본 펀딩 차익
    max_size = min(tvl, 300)
    for venue_side in (Position.LONG, Position.SHORT):
        label = ("Long Twi / Short Bin" if venue_side == Position.LONG
                 else "Short Twi / Long Bin")
        venue_leg, reference_leg = _hedge(venue_side, max_size, 20)
        templates.append(StrategyTemplate(
            name=f"Max Funding Arb: {label}",
            description=(
                f"Maximum capital deployment for funding arbitrage. Binance funding "
                f"{ref_rate * 100:.4f}% per 8h."
            ),
            category="Funding Arb",
            venue_leg=venue_leg, reference_leg=reference_leg,
            include=max_size > 0,
        ))

    # 21-22: 보수적 헤지
    for size in (100, 50):
        capped = min(size, tvl)
        venue_leg, reference_leg = _hedge(Position.LONG, capped, 5)
        templates.append(StrategyTemplate(
            name=f"Conservative Hedge 5x (${size})",
            description="Low leverage delta-neutral hedge. Far from liquidation on both legs.",
            category="Conservative",
            venue_leg=venue_leg, reference_leg=reference_leg,
            include=capped > 0,
        ))

    # 23: 자본 효율 헤지 (Twilight 50x / 바이낸스 25x)
    ce_side = Position.LONG if ref_rate >= 0 else Position.SHORT
    ce_size = min(300, tvl)
    venue_leg, reference_leg = _hedge(ce_side, ce_size, 50, reference_lev=25)
    templates.append(StrategyTemplate(
        name="Capital-Efficient Hedge: Twi 50x / Bin 25x",
        description=(
            "Minimal margin on the zero-fee venue, collects Binance funding on the "
            "opposite leg. Liquidation is close on the Twilight leg."
        ),
        category="Capital Efficient",
        venue_leg=venue_leg, reference_leg=reference_leg,
        include=ce_size > 0,
    ))

    # 24-26: 스프레드
    templates.extend(spread_templates(state, tvl, inputs.pool.funding_cap_pct))

    # 27-28: Twilight vs 바이비트 인버스 펀딩 차익
    inv_rate = state.inverse_funding_rate
    bybit_side = Position.SHORT if inv_rate >= 0 else Position.LONG
    venue_side = Position.LONG if bybit_side == Position.SHORT else Position.SHORT
    for lev in (10, 20):
        size = min(150, tvl)
        templates.append(StrategyTemplate(
            name=f"Inverse Funding Arb: {venue_side.value.title()} Twi / "
                 f"{bybit_side.value.title()} Bybit {lev}x",
            description=(
                f"Both legs inverse perps. Collect Bybit funding "
                f"({inv_rate * 100:.4f}% per 8h) against Twilight pool funding."
            ),
            category="Funding Arb",
            venue_leg=Leg(venue_side, size, lev),
            reference_leg=Leg(bybit_side, size, lev),
            reference_venue="Bybit",
            include=size > 0 and state.inverse_price > 0,
        ))

    return templates


# ── 평가 ──

def evaluate_template(strategy_id: int, template: StrategyTemplate,
                      inputs: CatalogInputs) -> Strategy:
    """템플릿 하나를 공통 계산기로 평가"""
    state = inputs.state
    if template.reference_venue == BYBIT_INVERSE.name:
        reference, ref_price, ref_rate = (BYBIT_INVERSE, state.inverse_price,
                                          state.inverse_funding_rate)
    else:
        reference, ref_price, ref_rate = (BINANCE_FUTURES, state.futures_price,
                                          state.funding_rate)
    metrics = calculate_metrics(
        template.venue_leg, template.reference_leg,
        venue_price=state.spot_price, reference_price=ref_price,
        venue_rate=inputs.venue_rate, reference_rate=ref_rate,
        venue=twilight_profile(inputs.venue_funding_periods_per_day),
        reference=reference,
    )
    return Strategy(
        id=strategy_id,
        name=template.name,
        description=template.description,
        category=template.category,
        risk=classify_risk(template.venue_leg, template.reference_leg, metrics),
        venue_leg=template.venue_leg,
        reference_leg=template.reference_leg,
        reference_venue=template.reference_venue,
        metrics=metrics,
        is_spread=template.is_spread,
        target_venue_rate_pct=template.target_venue_rate_pct,
    )


def rank_strategies(strategies: list[Strategy]) -> list[Strategy]:
    """평탄 가격 APY 내림차순 (동률은 생성 순서 유지)"""
    return sorted(strategies, key=lambda s: s.apy, reverse=True)


def build_catalog(inputs: CatalogInputs) -> list[Strategy]:
    """현재 시장 상태로 전체 전략 카탈로그 생성"""
    strategies = []
    for strategy_id, template in enumerate(strategy_templates(inputs), start=1):
        if not template.include:
            continue
        strategies.append(evaluate_template(strategy_id, template, inputs))
    logger.debug(f"[전략] 카탈로그 생성: {len(strategies)}개")
    return rank_strategies(strategies)


def resolve_strategy(catalog: list[Strategy], strategy_id: int | None) -> Strategy | None:
    """재생성된 카탈로그에서 같은 id의 전략을 다시 찾음 (없으면 None)"""
    if strategy_id is None:
        return None
    return next((s for s in catalog if s.id == strategy_id), None)


def ttm_funding_apr(strategy: Strategy, averages: FundingAverages | None) -> float | None:
    """1년 평균 펀딩비 기준 reference 다리 펀딩 수익률 (총 증거금 대비 %)

    평균 펀딩비가 양수면 숏 다리가 수취한다.
    """
    if averages is None or not strategy.reference_leg.active:
        return None
    margin = strategy.metrics.total_margin
    if margin <= 0:
        return None
    if strategy.reference_venue == BYBIT_INVERSE.name:
        avg = averages.inverse_avg_1y
    else:
        avg = averages.reference_avg_1y
    sign = 1 if strategy.reference_leg.position == Position.SHORT else -1
    annual_usd = sign * strategy.reference_leg.size * avg_rate_to_apr(avg) / 100
    return finite(annual_usd / margin * 100)
