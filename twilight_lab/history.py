"""가격/펀딩비 히스토리 링 버퍼 - 고정 길이, 최소 간격 스로틀, DataFrame 변환"""

from __future__ import annotations

import time
from collections import deque
from typing import Callable

import pandas as pd

from twilight_lab.models import HistorySample


class HistoryRingBuffer:
    """(time, a, b) 샘플을 최대 maxlen개까지 보관 (오래된 것부터 밀려남)"""

    def __init__(self, maxlen: int = 50, min_interval: float = 1.0,
                 columns: tuple[str, str] = ("a", "b"),
                 clock: Callable[[], float] = time.time):
        if maxlen <= 0:
            raise ValueError(f"maxlen은 양수여야 함: {maxlen}")
        self.maxlen = maxlen
        self.min_interval = min_interval
        self.columns = columns
        self._clock = clock
        self._samples: deque[HistorySample] = deque(maxlen=maxlen)

    def __len__(self) -> int:
        return len(self._samples)

    def append(self, a: float, b: float, timestamp: float | None = None) -> bool:
        """샘플 추가. 직전 샘플과 min_interval 미만이면 버리고 False"""
        now = self._clock() if timestamp is None else timestamp
        last = self.latest()
        if last is not None and now - last.time < self.min_interval:
            return False
        self._samples.append(HistorySample(time=now, a=a, b=b))
        return True

    def samples(self) -> list[HistorySample]:
        return list(self._samples)

    def latest(self) -> HistorySample | None:
        return self._samples[-1] if self._samples else None

    def clear(self) -> None:
        self._samples.clear()

    def to_dataframe(self) -> pd.DataFrame:
        """time(UTC datetime) 인덱스 DataFrame"""
        a_col, b_col = self.columns
        df = pd.DataFrame(
            [(s.time, s.a, s.b) for s in self._samples],
            columns=["time", a_col, b_col],
        )
        df["time"] = pd.to_datetime(df["time"].astype(float), unit="s", utc=True)
        return df.set_index("time")
