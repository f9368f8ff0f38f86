"""스프레드 전략 템플릿

Twilight 가격은 바이낸스 현물 기준이므로 처음 두 전략은 현물 vs 바이낸스 무기한
베이시스 거래가 된다.
  1. Long Twi / Short Bin: 선물 > 현물(양의 베이시스)일 때 수렴 + 펀딩 수취
  2. Short Twi / Long Bin: 선물 < 현물(음의 베이시스)일 때 수렴 + 펀딩
세 번째는 Twilight 현물 vs 바이비트 인버스 무기한 교차 거래소 스프레드로,
높은 쪽을 숏, 낮은 쪽을 롱한다 (바이비트 가격이 있을 때만).
"""

from __future__ import annotations

from twilight_lab.models import Leg, MarketState, Position, StrategyTemplate

SPREAD_DEFAULT_SIZE = 150
SPREAD_LEVERAGE = 10


def basis_bps(price: float, reference_price: float) -> float:
    """|price - reference| / reference (bps)"""
    if reference_price <= 0:
        return 0.0
    return abs((price - reference_price) / reference_price * 10000)


def spread_templates(state: MarketState, tvl: float,
                     funding_cap_pct: float = 0.0) -> list[StrategyTemplate]:
    size = min(SPREAD_DEFAULT_SIZE, tvl)
    lev = SPREAD_LEVERAGE
    target = funding_cap_pct if funding_cap_pct > 0 else None
    bps = basis_bps(state.spot_price, state.futures_price)

    templates = [
        StrategyTemplate(
            name=f"Spot–futures basis: Long spot / Short perp {lev}x",
            description=(
                f"Twilight = Binance spot. Long spot + Short Binance perp. "
                f"Capture basis ({bps:.1f} bps) when futures converge to spot + funding."
            ),
            category="Spread",
            venue_leg=Leg(Position.LONG, size, lev),
            reference_leg=Leg(Position.SHORT, size, lev),
            include=size > 0,
            is_spread=True,
            target_venue_rate_pct=target,
        ),
        StrategyTemplate(
            name=f"Spot–futures basis: Short spot / Long perp {lev}x",
            description=(
                "Twilight = Binance spot. Short spot + Long Binance perp. "
                "Capture basis when futures trade below spot + funding."
            ),
            category="Spread",
            venue_leg=Leg(Position.SHORT, size, lev),
            reference_leg=Leg(Position.LONG, size, lev),
            include=size > 0,
            is_spread=True,
            target_venue_rate_pct=target,
        ),
    ]

    # 교차 거래소: 바이비트 가격이 없으면 슬롯만 소비
    twi_short = state.spot_price > state.inverse_price
    venue_side = Position.SHORT if twi_short else Position.LONG
    bybit_side = Position.LONG if twi_short else Position.SHORT
    templates.append(StrategyTemplate(
        name=f"Cross-venue spread: Twi spot vs Bybit perp {lev}x",
        description=(
            f"Twilight = Binance spot vs Bybit inverse perp. Short higher venue, long lower. "
            f"Spread: {basis_bps(state.spot_price, state.inverse_price):.1f} bps. "
            f"Capture when they converge."
        ),
        category="Spread",
        venue_leg=Leg(venue_side, size, lev),
        reference_leg=Leg(bybit_side, size, lev),
        reference_venue="Bybit",
        include=size > 0 and state.inverse_price > 0,
        is_spread=True,
        target_venue_rate_pct=target,
    ))
    return templates
