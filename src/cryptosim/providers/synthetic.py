"""
合成行情数据生成器

生成确定性的随机游走日线和稀疏的价格预测，用于测试、示例和 CLI：
- 每日随机波动 ±3%，叠加 sin(i/30) * 0.1% 的长期趋势
- 每 3 天生成一个预测点（预测价在当前价 ±2.5% 内，置信度 0.5-0.9）

相同 seed 得到完全相同的数据。
"""

import math
from datetime import datetime, timedelta

import numpy as np

from cryptosim.backtest.models import PredictionDirection, PredictionPoint, PriceBar, PriceSeries
from cryptosim.exceptions import DataUnavailableError

from .base import MarketDataProvider, PredictionProvider

DAILY_VOLATILITY = 0.03
PREDICTION_EVERY = 3


def generate_sample_data(
    symbol: str,
    start: datetime,
    end: datetime,
    base_price: float = 50_000.0,
    seed: int | None = 42,
) -> tuple[PriceSeries, list[PredictionPoint]]:
    """
    生成合成日线和预测

    Args:
        symbol: 品种代码
        start: 开始时间
        end: 结束时间（不含），天数向上取整
        base_price: 起始价格
        seed: 随机种子

    Returns:
        (价格序列, 预测列表)
    """
    if base_price <= 0:
        raise ValueError("base_price must be positive")

    days = math.ceil((end - start).total_seconds() / 86400)
    rng = np.random.default_rng(seed)

    bars: list[PriceBar] = []
    predictions: list[PredictionPoint] = []
    price = base_price

    for i in range(max(days, 0)):
        timestamp = start + timedelta(days=i)

        random_change = (rng.random() - 0.5) * 2 * DAILY_VOLATILITY
        trend = math.sin(i / 30) * 0.001
        price *= 1 + random_change + trend
        open_price = bars[-1].close if bars else price

        high = max(open_price, price) * (1 + rng.random() * 0.02)
        low = min(open_price, price) * (1 - rng.random() * 0.02)

        bars.append(PriceBar(
            timestamp=timestamp,
            open=open_price,
            high=high,
            low=low,
            close=price,
            volume=float(rng.random() * 1_000_000 + 500_000),
        ))

        if i % PREDICTION_EVERY == 0:
            predicted = price * (1 + (rng.random() - 0.5) * 0.05)
            predictions.append(PredictionPoint(
                timestamp=timestamp,
                predicted_price=predicted,
                confidence=float(0.5 + rng.random() * 0.4),
                direction=PredictionDirection.UP if predicted > price else PredictionDirection.DOWN,
            ))

    return PriceSeries(symbol=symbol, bars=tuple(bars)), predictions


class SyntheticDataProvider(MarketDataProvider, PredictionProvider):
    """
    合成数据源

    同一品种、同一区间、同一 seed 返回相同数据；
    行情和预测来自同一次生成，二者一致。
    """

    def __init__(self, base_price: float = 50_000.0, seed: int | None = 42):
        self.base_price = base_price
        self.seed = seed

    def _generate(self, symbol: str, start: datetime, end: datetime):
        return generate_sample_data(symbol, start, end, base_price=self.base_price, seed=self.seed)

    def get_historical_series(self, symbol, start, end, interval="1d"):
        series, _ = self._generate(symbol, start, end)
        if len(series) < 2:
            raise DataUnavailableError(
                f"Need at least 2 bars for {symbol}, got {len(series)}"
            )
        return series

    def get_predictions(self, symbol, start, end):
        _, predictions = self._generate(symbol, start, end)
        return predictions
