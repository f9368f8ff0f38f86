"""1년 평균 펀딩비 모듈 - 정적 스냅샷 → 로컬 캐시 → REST API 집계

바이낸스 fapi/v1/fundingRate (BTCUSDT) 와 바이비트 v5/market/funding/history
(inverse BTCUSD) 를 과거 방향으로 페이지네이션해 최근 1년 평균을 계산한다.
스냅샷/캐시 파일 형식은 웹 대시보드가 쓰는 funding-averages.json 과 같다.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable

import aiohttp
import pandas as pd

from twilight_lab.models import FundingAverages

if TYPE_CHECKING:
    from twilight_lab.config import Config

logger = logging.getLogger(__name__)

MS_PER_DAY = 86400 * 1000
MAX_SAMPLES = 1100


class FundingAveragesUnavailable(Exception):
    """모든 소스(정적/캐시/API)에서 평균 펀딩비를 얻지 못함"""


def is_fresh(averages: FundingAverages | None, now: float) -> bool:
    if averages is None or not averages.fetched_at:
        return False
    return now < averages.fetched_at + averages.ttl_seconds


def average_rate(rows: list[dict], since_ms: int) -> float:
    """펀딩 시각 중복 제거 후 since_ms 이후 평균 (샘플 없으면 0)"""
    if not rows:
        return 0.0
    df = pd.DataFrame(rows).drop_duplicates(subset="funding_time")
    df = df[df["funding_time"] >= since_ms]
    if df.empty:
        return 0.0
    return float(df["funding_rate"].mean())


class FundingAveragesProvider:
    """1년 평균 펀딩비 제공자 (TTL 기반 하이브리드 저장)"""

    BINANCE_URL = "https://fapi.binance.com/fapi/v1/fundingRate"
    BYBIT_URL = "https://api.bybit.com/v5/market/funding/history"

    def __init__(self, config: Config, clock: Callable[[], float] = time.time,
                 session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession):
        self.config = config
        self._clock = clock
        self._session_factory = session_factory
        self.static_path = Path(config.averages_static_path)
        self.cache_path = Path(config.averages_cache_path)
        self.ttl_seconds = config.averages_ttl_seconds
        self.max_retries = 3
        self.retry_backoff = 1.0

    async def get_averages(self) -> FundingAverages:
        """정적 스냅샷 → 캐시 → API 순으로 신선한 값 반환"""
        now = self._clock()
        snapshots = []
        for path, source in ((self.static_path, "static"), (self.cache_path, "cache")):
            averages = self._load_snapshot(path, source)
            if is_fresh(averages, now):
                logger.info(f"[평균 펀딩] {source} 사용 ({path})")
                return averages
            if averages is not None:
                snapshots.append(averages)

        try:
            averages = await self.fetch_live()
        except Exception as e:
            if snapshots:
                stale = max(snapshots, key=lambda a: a.fetched_at)
                logger.warning(f"[평균 펀딩] API 실패, 만료된 {stale.source} 값 사용: {e}")
                return stale
            raise FundingAveragesUnavailable(str(e)) from e

        self._save_cache(averages)
        return averages

    async def fetch_live(self) -> FundingAverages:
        """바이낸스 + 바이비트 과거 펀딩비 조회 후 평균"""
        now = self._clock()
        now_ms = int(now * 1000)
        since_ms = now_ms - 365 * MS_PER_DAY
        async with self._session_factory() as session:
            binance_rows = await self._fetch_binance(session, now_ms, since_ms)
            bybit_rows = await self._fetch_bybit(session, now_ms, since_ms)
        averages = FundingAverages(
            reference_avg_1y=average_rate(binance_rows, since_ms),
            inverse_avg_1y=average_rate(bybit_rows, since_ms),
            fetched_at=int(now),
            ttl_seconds=self.ttl_seconds,
            source="api",
        )
        logger.info(
            f"[평균 펀딩] API 집계 완료: binance={averages.reference_avg_1y:.6f} "
            f"({len(binance_rows)}건), bybit={averages.inverse_avg_1y:.6f} ({len(bybit_rows)}건)"
        )
        return averages

    async def _fetch_binance(self, session, now_ms: int, since_ms: int) -> list[dict]:
        rows: list[dict] = []
        end_time = now_ms
        while len(rows) < MAX_SAMPLES:
            data = await self._get_json(session, self.BINANCE_URL, {
                "symbol": self.config.symbol.upper(), "limit": 1000, "endTime": end_time,
            })
            if not isinstance(data, list) or not data:
                break
            rows.extend({
                "funding_time": int(r["fundingTime"]),
                "funding_rate": float(r["fundingRate"]),
            } for r in data)
            # 오름차순 응답: 첫 항목이 가장 오래됨
            oldest = int(data[0]["fundingTime"])
            if oldest <= since_ms:
                break
            end_time = oldest - 1
        return rows

    async def _fetch_bybit(self, session, now_ms: int, since_ms: int) -> list[dict]:
        rows: list[dict] = []
        end_time = now_ms
        while len(rows) < MAX_SAMPLES:
            data = await self._get_json(session, self.BYBIT_URL, {
                "category": "inverse", "symbol": self.config.inverse_symbol,
                "limit": 200, "endTime": end_time,
            })
            items = ((data or {}).get("result") or {}).get("list")
            if not isinstance(items, list) or not items:
                break
            rows.extend({
                "funding_time": int(r["fundingRateTimestamp"]),
                "funding_rate": float(r["fundingRate"]),
            } for r in items)
            # 내림차순 응답: 마지막 항목이 가장 오래됨
            oldest = int(items[-1]["fundingRateTimestamp"])
            if oldest <= since_ms:
                break
            end_time = oldest - 1
        return rows

    async def _get_json(self, session, url: str, params: dict):
        """GET + JSON (최대 3회 재시도)"""
        last_error = "unknown"
        for attempt in range(self.max_retries):
            try:
                async with session.get(
                    url, params=params, timeout=aiohttp.ClientTimeout(total=10),
                ) as resp:
                    if resp.status != 200:
                        last_error = f"HTTP {resp.status}"
                        logger.warning(f"[평균 펀딩] {url} HTTP {resp.status}")
                        continue
                    return await resp.json()
            except Exception as e:
                last_error = str(e)
                logger.warning(
                    f"[평균 펀딩] {url} 조회 실패 (시도 {attempt+1}/{self.max_retries}): {e}")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_backoff * 2 ** attempt)
        raise FundingAveragesUnavailable(f"{url}: {last_error}")

    # ── 스냅샷 파일 ──

    def _load_snapshot(self, path: Path, source: str) -> FundingAverages | None:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return FundingAverages(
                reference_avg_1y=float(data.get("binanceAvg1y") or 0),
                inverse_avg_1y=float(data.get("bybitAvg1y") or 0),
                fetched_at=int(data.get("fetchedAt") or 0),
                ttl_seconds=int(data.get("ttlSeconds") or self.ttl_seconds),
                source=source,
            )
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"[평균 펀딩] {source} 파일 읽기 실패 ({path}): {e}")
            return None

    def _save_cache(self, averages: FundingAverages) -> None:
        payload = {
            "binanceAvg1y": averages.reference_avg_1y,
            "bybitAvg1y": averages.inverse_avg_1y,
            "fetchedAt": averages.fetched_at,
            "ttlSeconds": averages.ttl_seconds,
        }
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.cache_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
        except OSError as e:
            logger.warning(f"[평균 펀딩] 캐시 저장 실패 ({self.cache_path}): {e}")
