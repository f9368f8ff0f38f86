"""펀딩비 모델 - Twilight 풀 불균형 기반 펀딩비, 캡, 가상 거래 영향"""

from __future__ import annotations

import math

from twilight_lab.models import PoolConfig, Position, TradeImpact

DEFAULT_SENSITIVITY = 1.0   # psi
DEFAULT_SCALE = 100.0       # 원식이 100배 크게 나와 보정한 값
REFERENCE_PERIODS_PER_DAY = 3  # 8시간 주기


def pool_imbalance(long_notional: float, short_notional: float) -> float:
    """(long - short) / (long + short), 총합 0이면 0"""
    total = long_notional + short_notional
    if total <= 0:
        return 0.0
    return (long_notional - short_notional) / total


def pool_funding_rate(long_notional: float, short_notional: float,
                      sensitivity: float = DEFAULT_SENSITIVITY,
                      scale: float = DEFAULT_SCALE) -> float:
    """불균형 제곱 비례 펀딩비. 양수면 롱이 지불

    rate = imbalance² / (sensitivity × 8 × scale), 부호는 imbalance를 따름
    """
    denom = sensitivity * 8.0 * scale
    if denom == 0 or not math.isfinite(denom):
        return 0.0
    imbalance = pool_imbalance(long_notional, short_notional)
    rate = imbalance ** 2 / denom
    return rate if imbalance >= 0 else -rate


def apply_cap(raw_rate: float, reference_rate: float, cap_pct: float) -> float:
    """기준 거래소 펀딩비의 cap_pct% 로 제한. cap_pct <= 0 이면 그대로 반환"""
    if cap_pct <= 0:
        return raw_rate
    cap_value = (cap_pct / 100.0) * reference_rate
    if reference_rate >= 0:
        rate = min(raw_rate, cap_value)
    else:
        rate = max(raw_rate, cap_value)
    # 절대값은 |cap_value| 를 넘지 않음
    bound = abs(cap_value)
    return max(-bound, min(bound, rate))


def venue_funding_rate(pool: PoolConfig, reference_rate: float,
                       sensitivity: float = DEFAULT_SENSITIVITY,
                       scale: float = DEFAULT_SCALE) -> float:
    """풀 설정 기준 Twilight 실효 펀딩비 (캡 적용 후)"""
    raw = pool_funding_rate(pool.long_notional, pool.short_notional, sensitivity, scale)
    return apply_cap(raw, reference_rate, pool.funding_cap_pct)


def pool_skew(long_notional: float, short_notional: float) -> float:
    """롱 비중. 풀이 비어있으면 0.5 (균형)"""
    total = long_notional + short_notional
    if total <= 0:
        return 0.5
    return long_notional / total


def trade_impact(current_long: float, current_short: float, trade_size: float,
                 direction: Position,
                 sensitivity: float = DEFAULT_SENSITIVITY,
                 scale: float = DEFAULT_SCALE) -> TradeImpact:
    """풀 상태를 바꾸지 않고 거래 후 스큐/펀딩비를 시뮬레이션"""
    new_long, new_short = current_long, current_short
    if direction == Position.LONG:
        new_long += trade_size
    else:
        new_short += trade_size

    before = pool_imbalance(current_long, current_short)
    after = pool_imbalance(new_long, new_short)
    return TradeImpact(
        skew_before=pool_skew(current_long, current_short),
        skew_after=pool_skew(new_long, new_short),
        rate_before=pool_funding_rate(current_long, current_short, sensitivity, scale),
        rate_after=pool_funding_rate(new_long, new_short, sensitivity, scale),
        increases_imbalance=abs(after) > abs(before),
    )


def avg_rate_to_apr(avg_rate_per_8h: float) -> float:
    """8시간 평균 펀딩비 → 명목 대비 연율(%). 3회/일 × 365일"""
    return avg_rate_per_8h * REFERENCE_PERIODS_PER_DAY * 365 * 100
