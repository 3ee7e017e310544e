"""
数据回放器

功能：
1. 逐根回放历史K线
2. 提供截至当前K线的历史前缀（策略只能看到过去）
3. 回放进度

教学要点：
1. 迭代器模式
2. 时间驱动的回测
3. 避免未来函数（look-ahead bias）
"""

from bisect import bisect_right
from datetime import datetime
from typing import Iterator, Sequence

from .models import PredictionPoint, PriceBar, PriceSeries


class DataReplay:
    """
    数据回放器

    按时间顺序回放价格序列。第0根K线只作为收益率计算的种子，
    回放从第1根开始。
    """

    def __init__(self, series: PriceSeries, predictions: Sequence[PredictionPoint] = ()):
        self.series = series
        self.bars = series.bars
        # 预测按时间排序，供 predictions_until 二分截取
        self.predictions = tuple(sorted(predictions, key=lambda p: p.timestamp))
        self._prediction_times = [p.timestamp for p in self.predictions]

        self.current_index = 0
        self.current_time: datetime | None = self.bars[0].timestamp if self.bars else None

    def has_next(self) -> bool:
        """是否还有数据"""
        return self.current_index + 1 < len(self.bars)

    def next(self) -> tuple[int, PriceBar]:
        """
        前进到下一根K线

        Returns:
            (index, bar)

        Raises:
            StopIteration: 没有更多数据
        """
        if not self.has_next():
            raise StopIteration("No more data")

        self.current_index += 1
        bar = self.bars[self.current_index]
        self.current_time = bar.timestamp
        return self.current_index, bar

    def history(self) -> Sequence[PriceBar]:
        """截至当前K线（含）的历史前缀"""
        return self.bars[:self.current_index + 1]

    def previous_bar(self) -> PriceBar:
        return self.bars[self.current_index - 1]

    def predictions_until(self, timestamp: datetime) -> Sequence[PredictionPoint]:
        """时间不晚于 timestamp 的全部预测"""
        return self.predictions[:bisect_right(self._prediction_times, timestamp)]

    def reset(self):
        """重置到开始"""
        self.current_index = 0
        self.current_time = self.bars[0].timestamp if self.bars else None

    def __iter__(self) -> Iterator[tuple[int, PriceBar]]:
        return self

    def __next__(self) -> tuple[int, PriceBar]:
        return self.next()

    def __len__(self) -> int:
        return len(self.bars)

    @property
    def progress(self) -> float:
        """回放进度（0-1）"""
        if len(self.bars) == 0:
            return 1.0
        return self.current_index / len(self.bars)
