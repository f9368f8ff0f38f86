"""피드 명세 및 페이로드 파서 - 엔드포인트 테이블, 메시지 → 필드 세트 변환

파서는 디코드된 JSON 객체를 받아 MarketState 필드 이름 기준의 dict를 반환하거나,
반영할 내용이 없으면 None을 반환한다. 필수 키가 없거나 형식이 틀리면
KeyError/ValueError/TypeError가 발생하며 연결 계층에서 메시지를 드롭한다.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from twilight_lab.models import FeedKind

if TYPE_CHECKING:
    from twilight_lab.config import Config

Parser = Callable[[Any], "dict[str, Any] | None"]


# ── 파서 ──

def _finite(value: Any) -> float:
    """숫자 필드 변환. NaN/inf 는 ValueError"""
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"유한하지 않은 값: {value!r}")
    return number


def parse_trade(data: dict) -> dict[str, float]:
    """바이낸스 체결 스트림: {"p": "84695.12", ...}"""
    return {"price": _finite(data["p"])}


def parse_mark_price(data: dict) -> dict[str, Any]:
    """바이낸스 markPriceUpdate: p=마크가격, r=펀딩비, T=다음 펀딩 시각(ms)"""
    return {
        "mark_price": _finite(data["p"]),
        "funding_rate": _finite(data["r"]),
        "next_funding_time": int(data["T"]),
    }


def is_inverse_ack(data: dict) -> bool:
    """바이비트 pong / subscribe 응답 여부"""
    op = data.get("op")
    if op in ("pong", "ping", "subscribe"):
        return True
    return data.get("ret_msg") == "pong" or ("success" in data and "topic" not in data)


def parse_inverse_ticker(data: dict, symbol: str = "BTCUSD") -> dict[str, Any] | None:
    """바이비트 tickers.{symbol} 메시지. 있는 필드만 반환 (델타 업데이트)"""
    if not isinstance(data, dict) or is_inverse_ack(data):
        return None
    if data.get("topic") != f"tickers.{symbol}":
        return None
    ticker = data.get("data") or {}
    if not isinstance(ticker, dict):
        raise TypeError(f"ticker 데이터 형식 오류: {type(ticker).__name__}")
    fields: dict[str, Any] = {}
    if ticker.get("lastPrice") not in (None, ""):
        fields["price"] = _finite(ticker["lastPrice"])
    if ticker.get("fundingRate") not in (None, ""):
        fields["inverse_funding_rate"] = _finite(ticker["fundingRate"])
    if ticker.get("nextFundingTime") not in (None, ""):
        fields["inverse_next_funding_time"] = int(ticker["nextFundingTime"])
    return fields or None


# ── 피드 명세 ──

@dataclass(frozen=True)
class FeedSpec:
    """피드 하나의 연결 파라미터"""
    kind: FeedKind
    url: str
    parser: Parser
    retry_delay: float                       # 초
    subscribe_message: dict | None = None
    ping_message: dict | None = None
    ping_interval: float | None = None       # 초
    connectivity_on_first_message: bool = False


def build_feed_specs(config: Config) -> list[FeedSpec]:
    """설정 기준 활성 피드 목록"""
    symbol = config.symbol.lower()
    retry = config.reconnect_delay_ms / 1000
    specs = [
        FeedSpec(FeedKind.SPOT, f"{config.spot_ws_url}/{symbol}@trade", parse_trade, retry),
        FeedSpec(FeedKind.FUTURES, f"{config.futures_ws_url}/{symbol}@trade", parse_trade,
                 retry),
        FeedSpec(FeedKind.MARK_PRICE, f"{config.futures_ws_url}/{symbol}@markPrice",
                 parse_mark_price, retry, connectivity_on_first_message=True),
    ]
    if config.use_inverse_feed:
        inverse_symbol = config.inverse_symbol
        specs.append(FeedSpec(
            FeedKind.INVERSE,
            config.inverse_ws_url,
            lambda data: parse_inverse_ticker(data, inverse_symbol),
            config.inverse_reconnect_delay_ms / 1000,
            subscribe_message={"op": "subscribe", "args": [f"tickers.{inverse_symbol}"]},
            ping_message={"op": "ping"},
            ping_interval=config.inverse_ping_interval,
        ))
    return specs
