"""
Technical Analysis Indicators

支持两种接口：
1. pandas.Series (用于批量分析，高性能)
2. list[float] (用于逐K线回放，简单直观)

教学要点：
1. 技术指标的数学原理
2. 滑动窗口计算
3. 边界条件处理
"""
from typing import Sequence, Union

import numpy as np
import pandas as pd

from cryptosim.constants import BacktestConstants


def sma_value(prices: Sequence[float]) -> float:
    """
    Simple average of a price window.

    Returns 0.0 for an empty window.
    """
    if not prices:
        return 0.0
    return sum(prices) / len(prices)


def rsi_value(prices: Sequence[float]) -> float:
    """
    RSI of a single price window.

    Gains and losses are plain averages over the window's price changes
    (no exponential smoothing).

    Returns:
        RSI in [0, 100]; 100 when the window has no losses,
        50 when the window has fewer than 2 prices.
    """
    if len(prices) < 2:
        return BacktestConstants.RSI_NEUTRAL

    changes = [prices[i] - prices[i - 1] for i in range(1, len(prices))]
    avg_gain = sum(c for c in changes if c > 0) / len(changes)
    avg_loss = sum(-c for c in changes if c < 0) / len(changes)

    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    return 100 - (100 / (1 + rs))


def calculate_ma(prices: Union[pd.Series, list[float]], period: int = 5) -> Union[pd.Series, list[float | None]]:
    """
    Calculate Simple Moving Average (SMA).

    Args:
        prices: Price data (pd.Series or list[float])
        period: MA period

    Returns:
        MA values (same type as input); the first period-1 values are
        None (list) or NaN (Series).
    """
    if period <= 0:
        raise ValueError("Period must be positive")

    if isinstance(prices, pd.Series):
        return prices.rolling(window=period).mean()

    if not prices:
        return []

    if len(prices) < period:
        return [None] * len(prices)

    result: list[float | None] = [None] * (period - 1)
    for i in range(period - 1, len(prices)):
        result.append(sma_value(prices[i - period + 1:i + 1]))

    return result


def calculate_rsi(prices: Union[pd.Series, list[float]], period: int = 14) -> Union[pd.Series, list[float | None]]:
    """
    Calculate rolling RSI over `period` price changes.

    Args:
        prices: Price data
        period: RSI period

    Returns:
        RSI values (0-100); positions without a full window are None (list)
        or NaN (Series).

    教学要点：
    - RSI衡量价格变动的速度和幅度
    - RSI > 70: 超买
    - RSI < 30: 超卖
    """
    if period <= 0:
        raise ValueError("Period must be positive")

    if isinstance(prices, pd.Series):
        delta = prices.diff()
        gain = delta.clip(lower=0).rolling(window=period).mean()
        loss = (-delta.clip(upper=0)).rolling(window=period).mean()
        rs = gain / loss.replace(0, np.nan)
        rsi = 100 - (100 / (1 + rs))
        # 窗口内无下跌时 RSI = 100
        return rsi.where(loss != 0, 100.0).where(loss.notna())

    if not prices or len(prices) <= period:
        return [None] * len(prices)

    result: list[float | None] = [None] * period
    for i in range(period, len(prices)):
        result.append(rsi_value(prices[i - period:i + 1]))

    return result
