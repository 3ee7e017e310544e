"""
内存数据源

用于测试、示例和离线回测：行情与预测预先加载到内存中，
结果发布到内存列表。
"""

import threading
from datetime import datetime

from cryptosim.backtest.engine import SimulationResult
from cryptosim.backtest.models import PredictionPoint, PriceSeries
from cryptosim.exceptions import DataUnavailableError

from .base import MarketDataProvider, PredictionProvider, ResultSink, RunSummary


class InMemoryMarketData(MarketDataProvider):
    """按品种保存完整价格序列，查询时按区间截取"""

    def __init__(self, series: dict[str, PriceSeries] | None = None):
        self._series: dict[str, PriceSeries] = dict(series or {})

    def add_series(self, series: PriceSeries) -> None:
        self._series[series.symbol] = series

    def get_historical_series(self, symbol, start, end, interval="1d"):
        series = self._series.get(symbol)
        if series is None:
            raise DataUnavailableError(f"No price data for {symbol}")

        bars = tuple(bar for bar in series.bars if start <= bar.timestamp <= end)
        if len(bars) < 2:
            raise DataUnavailableError(
                f"Need at least 2 bars for {symbol} between {start:%Y-%m-%d} and {end:%Y-%m-%d}, "
                f"got {len(bars)}"
            )
        return PriceSeries(symbol=symbol, interval=series.interval, bars=bars)


class InMemoryPredictions(PredictionProvider):
    def __init__(self, predictions: dict[str, list[PredictionPoint]] | None = None):
        self._predictions: dict[str, list[PredictionPoint]] = {
            symbol: list(points) for symbol, points in (predictions or {}).items()
        }

    def add_predictions(self, symbol: str, points: list[PredictionPoint]) -> None:
        self._predictions.setdefault(symbol, []).extend(points)

    def get_predictions(self, symbol: str, start: datetime, end: datetime) -> list[PredictionPoint]:
        return sorted(
            (p for p in self._predictions.get(symbol, []) if start <= p.timestamp <= end),
            key=lambda p: p.timestamp,
        )


class InMemoryResultSink(ResultSink):
    """记录所有发布的结果（线程安全）"""

    def __init__(self):
        self.published: list[tuple[RunSummary, SimulationResult]] = []
        self._lock = threading.Lock()

    def publish(self, summary: RunSummary, result: SimulationResult) -> None:
        with self._lock:
            self.published.append((summary, result))

    @property
    def summaries(self) -> list[RunSummary]:
        with self._lock:
            return [summary for summary, _ in self.published]
