"""CEX 비교 카탈로그 - 바이낸스 현물/마진/선물/캐시앤캐리 전략 지표

Twilight 카탈로그와 같은 기준(30일 보유, 평탄 가격 APY)으로 계산해
수수료와 차입 이자 차이를 비교할 수 있게 한다.
"""

from __future__ import annotations

from twilight_lab.metrics import (
    DAILY_VOLATILITY_PCT, HOLDING_DAYS, effective_apy, finite, liquidation_price,
    liquidation_distance_pct, stop_loss_price,
)
from twilight_lab.models import (
    CapitalConfig, CexStrategy, MarketState, Position, ScenarioPnL, StrategyMetrics,
    SCENARIO_CHANGES,
)

SPOT_TAKER_FEE = 0.001        # 0.1%
FUTURES_TAKER_FEE = 0.0004    # 0.04%
FUNDING_PERIODS_PER_DAY = 3
MARGIN_MAINT_MARGIN = 0.01
FUTURES_MAINT_MARGIN = 0.004

HEDGED_TYPES = ("cash-carry", "margin-hedge")


def _short_funding(size: float, rate: float) -> float:
    """숏 선물 다리의 일간 펀딩 손익 (양수 펀딩비면 수취)"""
    amount = size * abs(rate) * FUNDING_PERIODS_PER_DAY
    return amount if rate > 0 else -amount


def calculate_cex_metrics(strategy_type: str, position: str, size: float, leverage: float, *,
                          price: float, funding_rate: float,
                          capital: CapitalConfig) -> StrategyMetrics:
    """CEX 전략 한 개의 지표 (30일 보유 기준)"""
    usdt_daily = capital.usdt_interest_daily_pct / 100
    btc_daily = capital.btc_interest_daily_pct / 100

    margin = 0.0
    fees = 0.0
    daily_interest = 0.0
    daily_funding = 0.0

    if strategy_type == "spot":
        margin = size
        fees = size * SPOT_TAKER_FEE * 2
    elif strategy_type == "margin":
        margin = size / leverage
        fees = size * SPOT_TAKER_FEE * 2
        borrowed = size - margin
        daily_interest = borrowed * (usdt_daily if position == Position.LONG else btc_daily)
    elif strategy_type == "futures":
        margin = size / leverage
        fees = size * FUTURES_TAKER_FEE * 2
        daily_funding = _short_funding(size, funding_rate)
        if position == Position.LONG:
            daily_funding = -daily_funding
    elif strategy_type == "cash-carry":
        # 현물 전액 + 선물 증거금
        margin = size + size / leverage
        fees = size * SPOT_TAKER_FEE * 2 + size * FUTURES_TAKER_FEE * 2
        daily_funding = _short_funding(size, funding_rate)
    elif strategy_type == "margin-hedge":
        margin_leg = size / leverage
        margin = margin_leg + size / leverage
        fees = size * SPOT_TAKER_FEE * 2 + size * FUTURES_TAKER_FEE * 2
        daily_interest = (size - margin_leg) * usdt_daily
        daily_funding = _short_funding(size, funding_rate)
    else:
        raise ValueError(f"알 수 없는 전략 타입: {strategy_type}")

    monthly_interest = daily_interest * HOLDING_DAYS
    monthly_funding = daily_funding * HOLDING_DAYS
    direction = 1 if position == Position.LONG else -1

    scenarios = []
    for change in SCENARIO_CHANGES:
        price_pnl = 0.0 if strategy_type in HEDGED_TYPES else direction * size * change
        total = price_pnl + monthly_funding - monthly_interest - fees
        scenarios.append(ScenarioPnL(
            price_change=change, price_pnl=finite(price_pnl),
            margin_revaluation=0.0, total=finite(total),
        ))

    monthly_pnl = finite(monthly_funding - monthly_interest - fees)
    monthly_roi = finite(monthly_pnl / margin * 100) if margin > 0 else 0.0
    apy = finite(monthly_roi * 12)

    liq = None
    if strategy_type in ("margin", "futures"):
        mm = MARGIN_MAINT_MARGIN if strategy_type == "margin" else FUTURES_MAINT_MARGIN
        liq = liquidation_price(price, leverage, Position(position), mm)
    distance = liquidation_distance_pct(price, liq)

    if strategy_type in HEDGED_TYPES:
        market_direction = "NEUTRAL"
    else:
        market_direction = "BULLISH" if position == Position.LONG else "BEARISH"

    return StrategyMetrics(
        venue_margin_usd=finite(margin),
        total_margin=finite(margin),
        total_fees=finite(fees),
        daily_interest_cost=finite(daily_interest),
        monthly_interest_cost=finite(monthly_interest),
        reference_daily_funding=finite(daily_funding),
        daily_funding_pnl=finite(daily_funding),
        monthly_funding_pnl=finite(monthly_funding),
        scenarios=tuple(scenarios),
        monthly_pnl=monthly_pnl,
        daily_pnl=finite(monthly_pnl / HOLDING_DAYS),
        monthly_roi=monthly_roi,
        apy=apy,
        effective_apy=finite(effective_apy(apy, distance)),
        venue_liquidation_price=liq,
        venue_stop_loss=stop_loss_price(price, liq),
        liquidation_distance_pct=distance,
        would_survive_5pct=distance is None or distance > 5,
        would_survive_10pct=distance is None or distance > 10,
        days_to_liquidation=None if distance is None else int(distance // DAILY_VOLATILITY_PCT),
        max_loss=finite(margin),
        market_direction=market_direction,
    )


def build_cex_catalog(state: MarketState, capital: CapitalConfig) -> list[CexStrategy]:
    """CEX 비교 전략 목록 (APY 내림차순)"""
    tvl = capital.tvl
    price = state.spot_price
    rate = state.funding_rate
    strategies: list[CexStrategy] = []

    def add(name, description, category, risk, strategy_type, position, size, leverage):
        metrics = calculate_cex_metrics(
            strategy_type, position, size, leverage,
            price=price, funding_rate=rate, capital=capital,
        )
        strategies.append(CexStrategy(
            id=len(strategies) + 1, name=name, description=description,
            category=category, risk=risk, type=strategy_type, position=position,
            size=size, leverage=leverage, metrics=metrics,
        ))

    # ── 현물 ──
    add("Spot Long (No Leverage)",
        "Buy and hold BTC spot. No leverage, no interest, no funding. Simplest strategy.",
        "Spot", "LOW", "spot", "LONG", min(150, tvl), 1)
    add("Spot Long ($300)",
        "Full TVL in spot BTC. Maximum exposure without leverage.",
        "Spot", "LOW", "spot", "LONG", min(300, tvl), 1)

    # ── 마진 (이자 발생) ──
    for lev in (3, 5, 10):
        size = min(150, tvl * lev)
        risk = "HIGH" if lev >= 10 else "MEDIUM"
        add(f"Margin Long {lev}x",
            f"Leveraged long using borrowed USDT. Pays "
            f"{capital.usdt_interest_daily_pct:.3f}%/day interest on borrowed funds.",
            "Margin", risk, "margin", "LONG", size, lev)
        add(f"Margin Short {lev}x",
            f"Leveraged short using borrowed BTC. Pays "
            f"{capital.btc_interest_daily_pct:.3f}%/day interest on borrowed BTC.",
            "Margin", risk, "margin", "SHORT", size, lev)

    # ── 선물 ──
    for lev in (10, 20, 50):
        size = min(150, tvl)
        risk = "VERY HIGH" if lev >= 50 else "HIGH" if lev >= 20 else "MEDIUM"
        add(f"Futures Long {lev}x",
            f"Linear perp long. No interest but pays/receives funding "
            f"({rate * 100:.4f}% per 8h).",
            "Futures", risk, "futures", "LONG", size, lev)
        add(f"Futures Short {lev}x",
            f"Linear perp short. Collects funding when positive ({rate * 100:.4f}% per 8h).",
            "Futures", risk, "futures", "SHORT", size, lev)

    # ── 델타 중립 ──
    hedge_size = min(100, tvl / 2)
    add("Cash & Carry 10x",
        "Delta-neutral: Long spot + Short futures. Earns funding with no interest cost. "
        "Capital intensive.",
        "Delta-Neutral", "LOW", "cash-carry", "NEUTRAL", hedge_size, 10)
    add("Cash & Carry 20x",
        "Delta-neutral with higher leverage on futures side. More capital efficient but "
        "higher risk.",
        "Delta-Neutral", "MEDIUM", "cash-carry", "NEUTRAL", hedge_size, 20)
    for lev in (5, 10):
        add(f"Margin-Futures Hedge {lev}x",
            "Long margin + Short futures. Delta-neutral but pays interest on margin borrow.",
            "Margin-Hedge", "MEDIUM", "margin-hedge", "NEUTRAL", hedge_size, lev)

    # ── 비교용 ──
    add("Funding Farm (Short Futures Only)",
        "Pure funding collection via short futures. Exposed to price risk if BTC pumps.",
        "Funding", "HIGH", "futures", "SHORT", min(200, tvl), 10)
    add("Max Leverage Futures Long 100x",
        "Extreme leverage. Very high liquidation risk. For reference only.",
        "Futures", "EXTREME", "futures", "LONG", min(100, tvl), 100)

    return sorted(strategies, key=lambda s: s.apy, reverse=True)
