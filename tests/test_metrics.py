"""전략 지표 계산기 테스트
Feature: twilight-lab
Property 4: 동일 규모 헤지의 가격 중립성 (BTC 증거금 없음)
Property 5: BTC 증거금 헤지는 재평가분만큼만 차이
Property 6: 모든 지표는 유한값
"""

import math
from dataclasses import fields

import pytest
from hypothesis import given, strategies as st, settings

from twilight_lab.metrics import (
    BINANCE_FUTURES, TWILIGHT, calculate_metrics, effective_apy, finite, leg_daily_funding,
    leg_fees, leg_margin, liquidation_price, market_direction, stop_loss_price,
)
from twilight_lab.models import Leg, Position, SCENARIO_CHANGES, VenueProfile


LINEAR_VENUE = VenueProfile(name="Linear", taker_fee=0.0, funding_periods_per_day=3,
                            maint_margin=0.004)

price_st = st.floats(min_value=1000, max_value=200_000)
size_st = st.floats(min_value=1, max_value=1_000_000)
lev_st = st.integers(min_value=1, max_value=100)
rate_st = st.floats(min_value=-0.003, max_value=0.003)
side_st = st.sampled_from([Position.LONG, Position.SHORT])


def opposite(side):
    return Position.SHORT if side == Position.LONG else Position.LONG


# ── Property 4: 가격 중립성 ──

class TestHedgePriceNeutral:

    @given(side=side_st, size=size_st, lev=lev_st, p1=price_st, p2=price_st,
           r1=rate_st, r2=rate_st)
    @settings(max_examples=100)
    def test_pnl_independent_of_price_change(self, side, size, lev, p1, p2, r1, r2):
        m = calculate_metrics(
            Leg(side, size, lev), Leg(opposite(side), size, lev),
            venue_price=p1, reference_price=p2, venue_rate=r1, reference_rate=r2,
            venue=LINEAR_VENUE,
        )
        flat = m.pnl_flat
        for s in m.scenarios:
            assert s.total == pytest.approx(flat, rel=1e-9, abs=1e-9)
            assert s.margin_revaluation == 0


# ── Property 5: 재평가분 ──

class TestBaseMarginRevaluation:

    @given(side=side_st, size=size_st, lev=lev_st, p1=price_st, p2=price_st,
           r1=rate_st, r2=rate_st)
    @settings(max_examples=100)
    def test_difference_is_revaluation(self, side, size, lev, p1, p2, r1, r2):
        m = calculate_metrics(
            Leg(side, size, lev), Leg(opposite(side), size, lev),
            venue_price=p1, reference_price=p2, venue_rate=r1, reference_rate=r2,
        )
        flat = m.pnl_flat
        for s in m.scenarios:
            expected = m.venue_margin_base * p1 * s.price_change
            assert s.margin_revaluation == pytest.approx(expected, rel=1e-9, abs=1e-12)
            assert s.total - flat == pytest.approx(expected, rel=1e-6, abs=1e-6)


# ── Property 6: 유한값 ──

class TestFiniteOutputs:

    @given(
        venue_side=st.one_of(st.none(), side_st),
        ref_side=st.one_of(st.none(), side_st),
        size=st.floats(min_value=0, max_value=1e6),
        lev=st.integers(min_value=0, max_value=200),
        p1=st.floats(min_value=0, max_value=1e6),
        p2=st.floats(min_value=0, max_value=1e6),
        r1=rate_st, r2=rate_st,
    )
    @settings(max_examples=200)
    def test_all_fields_finite(self, venue_side, ref_side, size, lev, p1, p2, r1, r2):
        m = calculate_metrics(
            Leg(venue_side, size, lev), Leg(ref_side, size, lev),
            venue_price=p1, reference_price=p2, venue_rate=r1, reference_rate=r2,
        )
        for f in fields(m):
            value = getattr(m, f.name)
            if isinstance(value, float):
                assert math.isfinite(value), f.name
        for s in m.scenarios:
            assert math.isfinite(s.total)


# ── 단위 테스트 ──

class TestLiquidation:

    def test_long_10x_scenario(self):
        """LONG $150 10x @ 84,695, mm 0.4% → 청산 ≈ 76,254, 손절 ≈ 80,475"""
        m = calculate_metrics(
            Leg(Position.LONG, 150, 10), Leg(),
            venue_price=84695, reference_price=84670, venue_rate=0, reference_rate=0.0001,
        )
        assert m.venue_liquidation_price == pytest.approx(84695 * (1 - 0.996 / 10))
        assert m.venue_liquidation_price == pytest.approx(76254, abs=10)
        assert m.venue_stop_loss == pytest.approx(80475, abs=5)
        assert m.venue_stop_loss == pytest.approx(
            (84695 + m.venue_liquidation_price) / 2)

    def test_short_linear(self):
        liq = liquidation_price(84695, 10, Position.SHORT, 0.004)
        assert liq == pytest.approx(84695 * 1.0996)

    def test_inverse_formulas(self):
        assert liquidation_price(84000, 10, Position.LONG, 0.005, inverse=True) == \
            pytest.approx(84000 * 10 / 10.95)
        assert liquidation_price(84000, 10, Position.SHORT, 0.005, inverse=True) == \
            pytest.approx(84000 * 10 / 9.05)

    def test_degenerate_inputs(self):
        assert liquidation_price(0, 10, Position.LONG, 0.004) is None
        assert liquidation_price(84000, 0, Position.LONG, 0.004) is None
        assert liquidation_price(84000, 10, None, 0.004) is None
        # 1x 롱은 0 이하 → 청산 없음
        assert liquidation_price(84000, 1, Position.LONG, 0.0) is None
        assert stop_loss_price(84000, None) is None

    def test_survival_and_days(self):
        m10 = calculate_metrics(Leg(Position.LONG, 150, 10), Leg(),
                                venue_price=84695, reference_price=84670,
                                venue_rate=0, reference_rate=0)
        assert m10.liquidation_distance_pct == pytest.approx(9.96)
        assert m10.would_survive_5pct is True
        assert m10.would_survive_10pct is False
        assert m10.days_to_liquidation == 3

        m20 = calculate_metrics(Leg(Position.LONG, 150, 20), Leg(),
                                venue_price=84695, reference_price=84670,
                                venue_rate=0, reference_rate=0)
        assert m20.would_survive_5pct is False


class TestFundingAndFees:

    def test_reference_short_receives_positive_funding(self):
        daily = leg_daily_funding(Leg(Position.SHORT, 150, 10), BINANCE_FUTURES, 0.0001, 84670)
        assert daily == pytest.approx(0.045)

    def test_reference_long_pays_positive_funding(self):
        daily = leg_daily_funding(Leg(Position.LONG, 150, 10), BINANCE_FUTURES, 0.0001, 84670)
        assert daily == pytest.approx(-0.045)

    def test_negative_rate_flips(self):
        daily = leg_daily_funding(Leg(Position.LONG, 150, 10), BINANCE_FUTURES, -0.0001, 84670)
        assert daily == pytest.approx(0.045)

    def test_venue_funding_hourly_in_base_units(self):
        daily = leg_daily_funding(Leg(Position.LONG, 150, 10), TWILIGHT, 0.0002, 84695)
        assert daily == pytest.approx(-150 * 0.0002 * 24)

    def test_fees(self):
        assert leg_fees(Leg(Position.SHORT, 150, 10), BINANCE_FUTURES) == pytest.approx(0.12)
        assert leg_fees(Leg(Position.LONG, 150, 10), TWILIGHT) == 0

    def test_venue_margin_in_base(self):
        base, usd = leg_margin(Leg(Position.LONG, 150, 10), TWILIGHT, 84695)
        assert usd == pytest.approx(15)
        assert base == pytest.approx(15 / 84695)


class TestStrategyMetrics:

    def test_hedge_breakeven_and_basis(self):
        m = calculate_metrics(
            Leg(Position.LONG, 150, 10), Leg(Position.SHORT, 150, 10),
            venue_price=84695, reference_price=84670, venue_rate=0, reference_rate=0.0001,
        )
        assert m.total_fees == pytest.approx(0.12)
        assert m.daily_funding_pnl == pytest.approx(0.045)
        assert m.breakeven_days == pytest.approx(0.12 / 0.045)
        assert m.basis_profit == pytest.approx(25 * 150 / 84695)
        assert m.total_margin == pytest.approx(30)
        assert m.apy == pytest.approx(m.monthly_pnl / 30 * 100 * 12)
        assert m.market_direction == "NEUTRAL"

    def test_breakeven_price_move_when_funding_negative(self):
        m = calculate_metrics(
            Leg(), Leg(Position.LONG, 150, 10),
            venue_price=84695, reference_price=84670, venue_rate=0, reference_rate=0.0001,
        )
        assert m.breakeven_days is None
        assert m.breakeven_price_move_pct == pytest.approx((1.35 + 0.12) / 150 * 100)
        assert m.market_direction == "BULLISH"

    def test_no_basis_for_same_side(self):
        m = calculate_metrics(
            Leg(Position.LONG, 150, 10), Leg(Position.LONG, 150, 10),
            venue_price=84695, reference_price=84000, venue_rate=0, reference_rate=0,
        )
        assert m.basis_profit == 0

    def test_empty_strategy_zero_apy(self):
        m = calculate_metrics(Leg(), Leg(), venue_price=84695, reference_price=84670,
                              venue_rate=0.0001, reference_rate=0.0001)
        assert m.total_margin == 0
        assert m.apy == 0
        assert m.liquidation_distance_pct is None

    def test_scenarios_cover_five_moves(self):
        m = calculate_metrics(Leg(Position.LONG, 150, 10), Leg(),
                              venue_price=84695, reference_price=84670,
                              venue_rate=0, reference_rate=0)
        assert tuple(s.price_change for s in m.scenarios) == SCENARIO_CHANGES
        up5 = m.pnl_at(0.05)
        # 레버리지 손익 + BTC 증거금 재평가
        assert up5 == pytest.approx(0.05 * 150 + 15 * 0.05)


class TestHelpers:

    def test_effective_apy_haircuts(self):
        assert effective_apy(100, 12) == 100
        assert effective_apy(100, 8) == 50
        assert effective_apy(100, 4) == pytest.approx(10)
        assert effective_apy(100, None) == 100

    def test_finite(self):
        assert finite(float("nan")) == 0.0
        assert finite(float("inf"), 1.0) == 1.0
        assert finite(None) == 0.0
        assert finite(2.5) == 2.5

    def test_market_direction(self):
        assert market_direction(Leg(Position.SHORT, 10, 1), Leg()) == "BEARISH"
        assert market_direction(Leg(), Leg()) == "NEUTRAL"
