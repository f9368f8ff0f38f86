"""피드 무결성 로깅 모듈 - 드롭/스로틀/재연결 추적, 주기 통계, 가동률"""

from __future__ import annotations

import json
import logging
import time
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path

from twilight_lab.models import FeedCounters

logger = logging.getLogger(__name__)


class IntegrityLogger:
    """피드별 수신 품질 로깅"""

    MAX_EVENT_BUFFER = 10000  # 이벤트 기록 최대 보관 수

    def __init__(self, log_dir: Path | str):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._reconnects: list[dict] = []
        self._drops: list[dict] = []
        self._counters: dict[str, FeedCounters] = defaultdict(FeedCounters)

    def _trim(self, events: list[dict]) -> None:
        if len(events) >= self.MAX_EVENT_BUFFER:
            del events[:self.MAX_EVENT_BUFFER // 2]

    def record_reconnect(self, feed: str, reason: str, timestamp: float | None = None) -> None:
        """재연결 예약 기록"""
        self._trim(self._reconnects)
        self._reconnects.append({
            "timestamp": timestamp if timestamp is not None else time.time(),
            "feed": feed,
            "reason": reason,
        })
        self._counters[feed].reconnects += 1

    def record_drop(self, feed: str, reason: str, timestamp: float | None = None) -> None:
        """파싱 불가 메시지 드롭 기록"""
        self._trim(self._drops)
        self._drops.append({
            "timestamp": timestamp if timestamp is not None else time.time(),
            "feed": feed,
            "reason": reason,
        })
        self._counters[feed].dropped += 1

    def record_throttled(self, feed: str) -> None:
        """스로틀로 버린 업데이트 카운트"""
        self._counters[feed].throttled += 1

    def increment_message_count(self, feed: str) -> None:
        """메시지 수신 카운트 증가"""
        self._counters[feed].messages += 1

    def counters(self, feed: str) -> FeedCounters:
        return self._counters[feed]

    def get_periodic_stats(self) -> dict:
        """현재 주기 통계 반환"""
        now = datetime.now(timezone.utc)
        return {
            "timestamp": now.isoformat(),
            "reconnects": list(self._reconnects),
            "reconnect_count": len(self._reconnects),
            "drops": list(self._drops),
            "drop_count": len(self._drops),
            "feeds": {
                feed: {
                    "messages": c.messages,
                    "dropped": c.dropped,
                    "throttled": c.throttled,
                    "reconnects": c.reconnects,
                }
                for feed, c in self._counters.items()
            },
        }

    async def write_periodic_log(self) -> Path:
        """주기적 통계 JSON 로그 작성"""
        stats = self.get_periodic_stats()
        now = datetime.now(timezone.utc)
        log_file = self.log_dir / f"feed_stats_{now.strftime('%Y%m%d_%H')}.json"
        with open(log_file, "w") as f:
            json.dump(stats, f, indent=2, default=str)
        # 주기 통계 리셋
        self._reconnects.clear()
        self._drops.clear()
        self._counters.clear()
        logger.info(f"[로그] {log_file}")
        return log_file

    @staticmethod
    def compute_uptime(total_seconds: float, disconnected_seconds: float) -> float:
        """피드 가동률 계산 (0.0 ~ 1.0)"""
        if total_seconds <= 0:
            return 0.0
        disconnected_seconds = max(0.0, min(disconnected_seconds, total_seconds))
        return (total_seconds - disconnected_seconds) / total_seconds
