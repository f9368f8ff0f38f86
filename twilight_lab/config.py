"""시스템 설정 모듈 - config.yaml 로드 및 Config 데이터클래스"""

from dataclasses import dataclass, asdict
from pathlib import Path

import yaml

from twilight_lab.models import CapitalConfig, PoolConfig


@dataclass
class Config:
    """시스템 설정 (config.yaml에서 로드)"""
    # 자본 / 풀
    tvl: float = 300.0
    pool_total: float = 0.0
    pool_skew: float = 0.5
    funding_cap_pct: float = 0.0
    funding_sensitivity: float = 1.0
    funding_scale: float = 100.0          # 경험적 보정 상수
    venue_funding_periods_per_day: int = 24
    btc_interest_daily_pct: float = 0.03
    usdt_interest_daily_pct: float = 0.05

    # 라이브 / 수동 모드
    live_mode: bool = True
    manual_spot_price: float = 84695.0
    manual_futures_price: float = 84670.0
    manual_funding_rate: float = 0.0001
    manual_inverse_price: float = 0.0
    manual_inverse_funding_rate: float = 0.0

    # 피드
    symbol: str = "btcusdt"
    inverse_symbol: str = "BTCUSD"
    spot_ws_url: str = "wss://stream.binance.com:9443/ws"
    futures_ws_url: str = "wss://fstream.binance.com/ws"
    inverse_ws_url: str = "wss://stream.bybit.com/v5/public/inverse"
    use_inverse_feed: bool = True
    price_throttle_ms: int = 100
    mark_price_throttle_ms: int = 3000
    reconnect_delay_ms: int = 3000
    inverse_reconnect_delay_ms: int = 5000
    inverse_ping_interval: float = 20.0

    # 히스토리 / 재계산
    history_length: int = 50
    history_interval: float = 1.0
    recompute_interval: float = 1.0
    stats_interval: int = 3600

    # 로그 / 평균 펀딩비 캐시
    log_dir: str = "./logs"
    averages_static_path: str = "./funding-averages.json"
    averages_cache_path: str = "./logs/funding_averages_cache.json"
    averages_ttl_seconds: int = 86400

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """YAML 파일에서 Config 객체 생성"""
        p = Path(path)
        if not p.exists():
            return cls()
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def to_yaml(self, path: str) -> None:
        """Config 객체를 YAML 파일로 저장"""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(asdict(self), f, default_flow_style=False, allow_unicode=True)

    def to_dict(self) -> dict:
        """Config를 딕셔너리로 변환"""
        return asdict(self)

    def pool_config(self) -> PoolConfig:
        return PoolConfig(
            total_notional=self.pool_total,
            skew=self.pool_skew,
            funding_cap_pct=self.funding_cap_pct,
        )

    def capital_config(self) -> CapitalConfig:
        return CapitalConfig(
            tvl=self.tvl,
            btc_interest_daily_pct=self.btc_interest_daily_pct,
            usdt_interest_daily_pct=self.usdt_interest_daily_pct,
        )
