"""전략 지표 계산기 - 증거금, 수수료, 펀딩 손익, 시나리오 손익, 청산가, APY

두 다리(leg)를 하나의 공통 계산기로 처리한다.
  - venue leg: Twilight (수수료 0, 풀 펀딩, BTC 증거금)
  - reference leg: 바이낸스 선형 무기한 또는 바이비트 인버스 무기한
모든 출력은 유한값이어야 하며, 계산 불가한 값은 0 또는 None으로 대체한다.
"""

from __future__ import annotations

import math

from twilight_lab.models import (
    Leg, Position, ScenarioPnL, StrategyMetrics, VenueProfile, SCENARIO_CHANGES,
)

HOLDING_DAYS = 30
DAILY_VOLATILITY_PCT = 3.0   # BTC 일간 변동성 가정
STOP_LOSS_FRACTION = 0.5     # 진입가 → 청산가 구간의 50% 지점

BINANCE_FUTURES = VenueProfile(
    name="Binance", taker_fee=0.0004, funding_periods_per_day=3, maint_margin=0.004,
)
BYBIT_INVERSE = VenueProfile(
    name="Bybit", taker_fee=0.00055, funding_periods_per_day=3, maint_margin=0.005,
    base_margined=True, inverse=True,
)


def twilight_profile(funding_periods_per_day: int = 24) -> VenueProfile:
    """Twilight: 수수료 0, 시간당 펀딩, BTC 증거금"""
    return VenueProfile(
        name="Twilight", taker_fee=0.0, funding_periods_per_day=funding_periods_per_day,
        maint_margin=0.004, base_margined=True,
    )


TWILIGHT = twilight_profile()


# ── 유한값 보정 ──

def finite(value: float | None, default: float = 0.0) -> float:
    """NaN/inf/None → default"""
    if value is None:
        return default
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    return v if math.isfinite(v) else default


def finite_or_none(value: float | None) -> float | None:
    if value is None:
        return None
    v = finite(value, math.nan)
    return None if math.isnan(v) else v


def _direction(position: Position | None) -> int:
    if position == Position.LONG:
        return 1
    if position == Position.SHORT:
        return -1
    return 0


# ── 다리별 계산 ──

def leg_margin(leg: Leg, profile: VenueProfile, price: float) -> tuple[float, float]:
    """(BTC 증거금, USD 증거금). BTC 증거금 = size / (leverage × price)"""
    if not leg.active:
        return 0.0, 0.0
    margin_usd = leg.size / leg.leverage
    if profile.base_margined and price > 0:
        return leg.size / (leg.leverage * price), margin_usd
    return 0.0, margin_usd


def leg_fees(leg: Leg, profile: VenueProfile) -> float:
    """왕복 테이커 수수료 (진입 + 청산)"""
    if not leg.active or profile.taker_fee == 0:
        return 0.0
    return leg.size * profile.taker_fee * 2


def leg_daily_funding(leg: Leg, profile: VenueProfile, rate: float, price: float) -> float:
    """일간 펀딩 손익 (USD). 양수 펀딩비에서 롱은 지불, 숏은 수취"""
    if not leg.active or rate == 0:
        return 0.0
    if profile.base_margined:
        if price <= 0:
            return 0.0
        qty_base = leg.size / price
        amount = qty_base * abs(rate) * profile.funding_periods_per_day * price
    else:
        amount = leg.size * abs(rate) * profile.funding_periods_per_day
    pays = (leg.position == Position.LONG) == (rate > 0)
    return -amount if pays else amount


def leg_price_pnl(leg: Leg, price_change: float) -> float:
    """레버리지 방향 손익 = ±변동률 × 레버리지 × 증거금(USD)"""
    if not leg.active:
        return 0.0
    return _direction(leg.position) * price_change * leg.leverage * (leg.size / leg.leverage)


# ── 청산 / 손절 ──

def liquidation_price(entry: float, leverage: float, position: Position | None,
                      maint_margin: float, inverse: bool = False) -> float | None:
    """청산가

    선형: entry × (1 ∓ (1 - mm) / lev)
    인버스: entry × lev / (lev ± 1 ∓ lev × mm)
    """
    if entry <= 0 or leverage <= 0 or position is None:
        return None
    if inverse:
        if position == Position.LONG:
            denom = leverage + 1 - leverage * maint_margin
        else:
            denom = leverage - 1 + leverage * maint_margin
        if denom <= 0:
            return None
        price = entry * leverage / denom
    elif position == Position.LONG:
        price = entry * (1 - (1 - maint_margin) / leverage)
    else:
        price = entry * (1 + (1 - maint_margin) / leverage)
    price = finite_or_none(price)
    if price is None or price <= 0:
        return None
    return price


def stop_loss_price(entry: float, liquidation: float | None) -> float | None:
    """진입가와 청산가 사이 중간 지점"""
    if liquidation is None:
        return None
    return finite_or_none(entry + (liquidation - entry) * STOP_LOSS_FRACTION)


def liquidation_distance_pct(entry: float, liquidation: float | None) -> float | None:
    if liquidation is None or entry <= 0:
        return None
    return finite_or_none(abs(liquidation - entry) / entry * 100)


def effective_apy(apy: float, distance_pct: float | None) -> float:
    """5%/10% 역행 시 청산되는 전략은 APY 할인"""
    if distance_pct is None:
        return apy
    if distance_pct > 10:
        return apy
    if distance_pct > 5:
        return apy * 0.5
    return apy * 0.1


def market_direction(venue_leg: Leg, reference_leg: Leg) -> str:
    if venue_leg.active and reference_leg.active and venue_leg.position != reference_leg.position:
        return "NEUTRAL"
    exposure = (_direction(venue_leg.position) * venue_leg.size * venue_leg.active
                + _direction(reference_leg.position) * reference_leg.size * reference_leg.active)
    if exposure > 0:
        return "BULLISH"
    if exposure < 0:
        return "BEARISH"
    return "NEUTRAL"


# ── 메인 계산기 ──

def calculate_metrics(venue_leg: Leg, reference_leg: Leg, *,
                      venue_price: float, reference_price: float,
                      venue_rate: float, reference_rate: float,
                      venue: VenueProfile = TWILIGHT,
                      reference: VenueProfile = BINANCE_FUTURES) -> StrategyMetrics:
    """두 다리 전략의 전체 지표 계산"""
    venue_base, venue_usd = leg_margin(venue_leg, venue, venue_price)
    ref_base, ref_usd = leg_margin(reference_leg, reference, reference_price)
    total_margin = finite(venue_usd + ref_usd)

    total_fees = finite(leg_fees(venue_leg, venue) + leg_fees(reference_leg, reference))

    venue_daily = finite(leg_daily_funding(venue_leg, venue, venue_rate, venue_price))
    ref_daily = finite(leg_daily_funding(reference_leg, reference, reference_rate, reference_price))
    daily_funding = venue_daily + ref_daily
    monthly_funding = daily_funding * HOLDING_DAYS

    basis = 0.0
    if (venue_leg.active and reference_leg.active
            and venue_leg.position != reference_leg.position and venue_price > 0):
        min_size = min(venue_leg.size, reference_leg.size)
        basis = finite(abs(venue_price - reference_price) * min_size / venue_price)

    scenarios = []
    for change in SCENARIO_CHANGES:
        price_pnl = leg_price_pnl(venue_leg, change) + leg_price_pnl(reference_leg, change)
        revaluation = venue_base * venue_price * change
        if reference_price > 0:
            revaluation += ref_base * reference_price * change
        total = price_pnl + revaluation + basis + monthly_funding - total_fees
        scenarios.append(ScenarioPnL(
            price_change=change,
            price_pnl=finite(price_pnl),
            margin_revaluation=finite(revaluation),
            total=finite(total),
        ))

    monthly_pnl = finite(basis + monthly_funding - total_fees)
    monthly_roi = finite(monthly_pnl / total_margin * 100) if total_margin > 0 else 0.0
    apy = finite(monthly_roi * 12)

    venue_liq = None
    if venue_leg.active:
        venue_liq = liquidation_price(venue_price, venue_leg.leverage, venue_leg.position,
                                      venue.maint_margin, venue.inverse)
    ref_liq = None
    if reference_leg.active:
        ref_liq = liquidation_price(reference_price, reference_leg.leverage,
                                    reference_leg.position, reference.maint_margin,
                                    reference.inverse)
    distances = [d for d in (liquidation_distance_pct(venue_price, venue_liq),
                             liquidation_distance_pct(reference_price, ref_liq))
                 if d is not None]
    distance = min(distances) if distances else None

    breakeven_days = None
    if daily_funding > 0:
        breakeven_days = finite_or_none(total_fees / daily_funding)

    breakeven_move = 0.0
    net_funding = monthly_funding - total_fees
    exposure = sum(leg.leverage * (leg.size / leg.leverage)
                   for leg in (venue_leg, reference_leg) if leg.active)
    if net_funding < 0 and exposure > 0:
        breakeven_move = finite(abs(net_funding) / exposure * 100)

    return StrategyMetrics(
        venue_margin_base=finite(venue_base),
        venue_margin_usd=finite(venue_usd),
        reference_margin=finite(ref_usd),
        total_margin=total_margin,
        total_fees=total_fees,
        venue_daily_funding=venue_daily,
        reference_daily_funding=ref_daily,
        daily_funding_pnl=finite(daily_funding),
        monthly_funding_pnl=finite(monthly_funding),
        basis_profit=basis,
        scenarios=tuple(scenarios),
        monthly_pnl=monthly_pnl,
        daily_pnl=finite(monthly_pnl / HOLDING_DAYS),
        monthly_roi=monthly_roi,
        apy=apy,
        effective_apy=finite(effective_apy(apy, distance)),
        venue_liquidation_price=venue_liq,
        reference_liquidation_price=ref_liq,
        venue_stop_loss=stop_loss_price(venue_price, venue_liq),
        reference_stop_loss=stop_loss_price(reference_price, ref_liq),
        liquidation_distance_pct=distance,
        would_survive_5pct=distance is None or distance > 5,
        would_survive_10pct=distance is None or distance > 10,
        days_to_liquidation=None if distance is None else int(distance // DAILY_VOLATILITY_PCT),
        max_loss=total_margin,
        breakeven_days=breakeven_days,
        breakeven_price_move_pct=breakeven_move,
        market_direction=market_direction(venue_leg, reference_leg),
    )
