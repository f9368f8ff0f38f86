"""Config YAML 라운드트립 테스트
Feature: twilight-lab, Property 1: 설정 YAML 라운드트립
"""

import os
import tempfile

import pytest
from hypothesis import given, strategies as st, settings

from twilight_lab.config import Config


# ── Hypothesis 전략 ──

money_st = st.floats(min_value=0, max_value=1e9, allow_nan=False, allow_infinity=False)

config_st = st.builds(
    Config,
    tvl=money_st,
    pool_total=money_st,
    pool_skew=st.floats(min_value=0, max_value=1, allow_nan=False),
    funding_cap_pct=st.floats(min_value=0, max_value=100, allow_nan=False),
    funding_scale=st.floats(min_value=1, max_value=1000, allow_nan=False),
    venue_funding_periods_per_day=st.sampled_from([1, 3, 24]),
    live_mode=st.booleans(),
    manual_spot_price=money_st,
    symbol=st.sampled_from(["btcusdt", "ethusdt"]),
    use_inverse_feed=st.booleans(),
    price_throttle_ms=st.integers(min_value=0, max_value=10000),
    history_length=st.integers(min_value=1, max_value=1000),
    log_dir=st.just("./logs"),
)


# ── Property 1: Config YAML 라운드트립 ──

class TestConfigYamlRoundtrip:

    @given(config=config_st)
    @settings(max_examples=100)
    def test_yaml_roundtrip(self, config: Config):
        """YAML 저장 후 다시 읽으면 동일한 Config"""
        with tempfile.NamedTemporaryFile(suffix=".yaml", delete=False, mode="w") as f:
            tmp_path = f.name

        try:
            config.to_yaml(tmp_path)
            restored = Config.from_yaml(tmp_path)
            assert config == restored, f"Roundtrip failed: {config} != {restored}"
        finally:
            os.unlink(tmp_path)


# ── 단위 테스트 ──

class TestConfigUnit:

    def test_default_config(self):
        c = Config()
        assert c.tvl == 300.0
        assert c.funding_scale == 100.0
        assert c.live_mode is True
        assert c.reconnect_delay_ms == 3000
        assert c.inverse_reconnect_delay_ms == 5000
        assert c.history_length == 50

    def test_from_yaml_missing_file(self):
        c = Config.from_yaml("/nonexistent/path.yaml")
        assert c == Config()

    def test_from_yaml_ignores_unknown_keys(self):
        with tempfile.NamedTemporaryFile(suffix=".yaml", delete=False, mode="w") as f:
            f.write("tvl: 1000\nunknown_key: 42\n")
            tmp_path = f.name
        try:
            c = Config.from_yaml(tmp_path)
            assert c.tvl == 1000
        finally:
            os.unlink(tmp_path)

    def test_from_yaml_empty_file(self):
        with tempfile.NamedTemporaryFile(suffix=".yaml", delete=False, mode="w") as f:
            tmp_path = f.name
        try:
            assert Config.from_yaml(tmp_path) == Config()
        finally:
            os.unlink(tmp_path)

    def test_pool_config_derives_sides(self):
        c = Config(pool_total=10_000_000, pool_skew=0.7, funding_cap_pct=50)
        pool = c.pool_config()
        assert pool.long_notional == pytest.approx(7_000_000)
        assert pool.short_notional == pytest.approx(3_000_000)
        assert pool.long_notional + pool.short_notional == pytest.approx(pool.total_notional)
        assert pool.funding_cap_pct == 50

    def test_capital_config(self):
        c = Config(tvl=500, btc_interest_daily_pct=0.02)
        cap = c.capital_config()
        assert cap.tvl == 500
        assert cap.btc_interest_daily_pct == 0.02

    def test_to_dict(self):
        d = Config().to_dict()
        assert d["symbol"] == "btcusdt"
        assert "averages_ttl_seconds" in d
