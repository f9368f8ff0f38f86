"""메인 애플리케이션 - 피드 연결, 전략 카탈로그 주기 재계산, 통계 로그"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

from twilight_lab.catalog import CatalogInputs, build_catalog, resolve_strategy, ttm_funding_apr
from twilight_lab.cex_comparison import build_cex_catalog
from twilight_lab.config import Config
from twilight_lab.feed_manager import FeedManager
from twilight_lab.funding_averages import FundingAveragesProvider, FundingAveragesUnavailable
from twilight_lab.history import HistoryRingBuffer
from twilight_lab.integrity_logger import IntegrityLogger
from twilight_lab.models import CexStrategy, FundingAverages, Strategy

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ],
)
logger = logging.getLogger(__name__)


class StrategyLab:
    """최신 시장 스냅샷으로 카탈로그를 다시 만들고 선택 전략을 id로 재매칭"""

    def __init__(self, config: Config, feed_manager: FeedManager):
        self.config = config
        self.feed_manager = feed_manager
        self.catalog: list[Strategy] = []
        self.cex_catalog: list[CexStrategy] = []
        self.averages: FundingAverages | None = None
        self.selected_id: int | None = None
        self.selected: Strategy | None = None
        self.price_history = HistoryRingBuffer(
            config.history_length, config.history_interval, ("spot", "futures"))
        self.funding_history = HistoryRingBuffer(
            config.history_length, config.history_interval, ("venue_rate", "reference_rate"))

    def select(self, strategy_id: int | None) -> Strategy | None:
        self.selected_id = strategy_id
        self.selected = resolve_strategy(self.catalog, strategy_id)
        return self.selected

    def recompute(self) -> list[Strategy]:
        state = self.feed_manager.market_state
        inputs = CatalogInputs.from_config(state, self.config)
        self.catalog = build_catalog(inputs)
        self.cex_catalog = build_cex_catalog(state, inputs.capital)

        if self.selected_id is not None:
            self.selected = resolve_strategy(self.catalog, self.selected_id)
            if self.selected is None:
                logger.info(f"[전략] 선택된 전략 #{self.selected_id} 이(가) 카탈로그에서 사라짐")
                self.selected_id = None

        self.price_history.append(state.spot_price, state.futures_price)
        self.funding_history.append(inputs.venue_rate, state.funding_rate)
        return self.catalog

    def ttm_apr(self, strategy: Strategy) -> float | None:
        return ttm_funding_apr(strategy, self.averages)

    def summary(self, top: int = 5) -> list[str]:
        lines = []
        for s in self.catalog[:top]:
            ttm = self.ttm_apr(s)
            ttm_text = "" if ttm is None else f" ttm={ttm:.1f}%"
            lines.append(
                f"#{s.id} {s.name} [{s.category}/{s.risk}] "
                f"apy={s.apy:.1f}% eff={s.metrics.effective_apy:.1f}%{ttm_text}"
            )
        return lines


async def recompute_loop(lab: StrategyLab, interval: float) -> None:
    """주기적 카탈로그 재계산. 한 번의 실패로 루프가 끝나지 않음"""
    last_top = None
    while True:
        try:
            catalog = lab.recompute()
            if catalog and catalog[0].id != last_top:
                last_top = catalog[0].id
                logger.info("[전략] 상위 전략 변경")
                for line in lab.summary():
                    logger.info(f"[전략] {line}")
        except Exception as e:
            logger.error(f"[에러-전략] 재계산 실패: {e} — {interval}초 후 재시도...")
        await asyncio.sleep(interval)


async def main(config_path: str = "config.yaml") -> None:
    """모듈 초기화 후 피드/재계산/통계 태스크 동시 실행"""
    config = Config.from_yaml(config_path)

    # 디렉토리 생성 (로깅 FileHandler보다 먼저)
    Path(config.log_dir).mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(
        Path(config.log_dir) / "twilight_lab.log", encoding="utf-8"
    )
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    logging.getLogger().addHandler(file_handler)

    # 모듈 초기화
    integrity_logger = IntegrityLogger(config.log_dir)
    feed_manager = FeedManager(config, integrity_logger)
    lab = StrategyLab(config, feed_manager)
    averages_provider = FundingAveragesProvider(config)

    logger.info("=== Twilight 전략 랩 시작 ===")
    logger.info(f"TVL: ${config.tvl} | 모드: {'라이브' if config.live_mode else '수동'}")
    await feed_manager.start()

    async def load_averages():
        try:
            lab.averages = await averages_provider.get_averages()
            logger.info(f"[평균 펀딩] 소스: {lab.averages.source}")
        except FundingAveragesUnavailable as e:
            logger.warning(f"[평균 펀딩] 사용 불가: {e}")

    async def periodic_log():
        while True:
            await asyncio.sleep(config.stats_interval)
            for feed, uptime in feed_manager.uptime_report().items():
                logger.info(f"[가동률] {feed}: {uptime:.2%}")
            await integrity_logger.write_periodic_log()

    tasks = [
        asyncio.create_task(load_averages()),
        asyncio.create_task(recompute_loop(lab, config.recompute_interval)),
        asyncio.create_task(periodic_log()),
    ]

    # graceful shutdown
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler():
        logger.info("종료 신호 수신, 피드 연결 정리 중...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    await shutdown_event.wait()

    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    try:
        await feed_manager.stop()
        await integrity_logger.write_periodic_log()
    except Exception as e:
        logger.error(f"종료 처리 실패: {e}")

    logger.info("=== 시스템 종료 ===")


if __name__ == "__main__":
    config_file = sys.argv[1] if len(sys.argv) > 1 else "config.yaml"
    asyncio.run(main(config_file))
