"""
交易信号源

定义信号源的标准接口，所有具体策略必须实现 decide 方法：
    decide(history, predictions, index) -> Signal

内置三种策略：
1. SignalDrivenSource    基于外部预测（AI 预测占位）
2. IndicatorDrivenSource 均线交叉 + RSI 过滤
3. BuyAndHoldSource      买入持有

教学要点：
1. 策略模式：回测循环只依赖抽象接口，可以替换成真实模型
2. 信号源只读历史数据，不持有账户状态
"""

from abc import ABC, abstractmethod
from typing import Sequence

from cryptosim.constants import BacktestConstants
from cryptosim.exceptions import ValidationError
from cryptosim.utils.indicators import rsi_value, sma_value

from .config import StrategyConfig
from .models import PredictionPoint, PriceBar, Signal


class SignalSource(ABC):
    """信号源抽象基类"""

    name: str = "signal_source"

    @abstractmethod
    def decide(
        self,
        history: Sequence[PriceBar],
        predictions: Sequence[PredictionPoint],
        index: int,
    ) -> Signal:
        """
        为当前K线给出交易信号

        Args:
            history: 从第0根到当前K线（含）的历史，history[index] 为当前K线
            predictions: 时间不晚于当前K线的预测（按时间升序）
            index: 当前K线下标

        Returns:
            BUY / SELL / HOLD
        """


class SignalDrivenSource(SignalSource):
    """
    基于外部预测的信号

    取最近一条预测：置信度不足或预期涨跌幅太小时观望，
    否则按预期涨跌方向买入/卖出。
    """

    name = BacktestConstants.STRATEGY_AI_PREDICTION

    def __init__(
        self,
        confidence_threshold: float = BacktestConstants.DEFAULT_CONFIDENCE_THRESHOLD,
        price_change_threshold: float = BacktestConstants.DEFAULT_PRICE_CHANGE_THRESHOLD,
    ):
        if not 0 <= confidence_threshold <= 1:
            raise ValidationError("confidence_threshold must be in [0, 1]", field="confidence_threshold")
        if price_change_threshold < 0:
            raise ValidationError("price_change_threshold must be non-negative", field="price_change_threshold")

        self.confidence_threshold = confidence_threshold
        self.price_change_threshold = price_change_threshold

    def decide(self, history, predictions, index):
        bar = history[index]

        latest = None
        for prediction in predictions:
            if prediction.timestamp <= bar.timestamp and (latest is None or prediction.timestamp >= latest.timestamp):
                latest = prediction

        if latest is None or latest.confidence < self.confidence_threshold:
            return Signal.HOLD

        expected_change = (latest.predicted_price - bar.close) / bar.close
        if abs(expected_change) < self.price_change_threshold:
            return Signal.HOLD

        return Signal.BUY if expected_change > 0 else Signal.SELL


class IndicatorDrivenSource(SignalSource):
    """
    技术指标信号：均线交叉 + RSI 过滤

    - 短均线 > 长均线 且 RSI 未超买 -> 买入
    - 短均线 < 长均线 且 RSI 未超卖 -> 卖出
    - 预热期（index < max(lookback, rsi_period)）内观望
    """

    name = BacktestConstants.STRATEGY_TECHNICAL_ANALYSIS

    def __init__(
        self,
        lookback: int = BacktestConstants.DEFAULT_LOOKBACK,
        rsi_period: int = BacktestConstants.DEFAULT_RSI_PERIOD,
        short_window: int = BacktestConstants.DEFAULT_SHORT_WINDOW,
        overbought: float = BacktestConstants.RSI_OVERBOUGHT,
        oversold: float = BacktestConstants.RSI_OVERSOLD,
    ):
        lookback, rsi_period, short_window = int(lookback), int(rsi_period), int(short_window)
        if lookback < 1:
            raise ValidationError("lookback must be >= 1", field="lookback")
        if rsi_period < 1:
            raise ValidationError("rsi_period must be >= 1", field="rsi_period")
        if not 1 <= short_window <= lookback + 1:
            raise ValidationError("short_window must be in [1, lookback + 1]", field="short_window")
        if not 0 <= oversold < overbought <= 100:
            raise ValidationError("expected 0 <= oversold < overbought <= 100", field="overbought")

        self.lookback = lookback
        self.rsi_period = rsi_period
        self.short_window = short_window
        self.overbought = overbought
        self.oversold = oversold

    @property
    def warmup(self) -> int:
        return max(self.lookback, self.rsi_period)

    def decide(self, history, predictions, index):
        if index < self.warmup:
            return Signal.HOLD

        closes = [bar.close for bar in history[index - self.warmup:index + 1]]
        window = closes[-(self.lookback + 1):]

        short_ma = sma_value(window[-self.short_window:])
        long_ma = sma_value(window)
        rsi = rsi_value(closes[-(self.rsi_period + 1):])

        bullish = short_ma > long_ma
        if bullish and rsi < self.overbought:
            return Signal.BUY
        if not bullish and rsi > self.oversold:
            return Signal.SELL
        return Signal.HOLD


class BuyAndHoldSource(SignalSource):
    """买入持有：第1根K线买入，之后一直持有"""

    name = BacktestConstants.STRATEGY_BUY_AND_HOLD

    def decide(self, history, predictions, index):
        return Signal.BUY if index == 1 else Signal.HOLD


def build_signal_source(strategy: StrategyConfig) -> SignalSource:
    """
    根据策略配置创建信号源

    Raises:
        ValidationError: 未知策略类型或参数非法
    """
    match strategy.kind:
        case BacktestConstants.STRATEGY_AI_PREDICTION:
            return SignalDrivenSource(
                confidence_threshold=strategy.get(
                    "confidence_threshold", BacktestConstants.DEFAULT_CONFIDENCE_THRESHOLD
                ),
                price_change_threshold=strategy.get(
                    "price_change_threshold", BacktestConstants.DEFAULT_PRICE_CHANGE_THRESHOLD
                ),
            )

        case BacktestConstants.STRATEGY_TECHNICAL_ANALYSIS:
            return IndicatorDrivenSource(
                lookback=strategy.get("lookback", BacktestConstants.DEFAULT_LOOKBACK),
                rsi_period=strategy.get("rsi_period", BacktestConstants.DEFAULT_RSI_PERIOD),
                short_window=strategy.get("short_window", BacktestConstants.DEFAULT_SHORT_WINDOW),
                overbought=strategy.get("overbought", BacktestConstants.RSI_OVERBOUGHT),
                oversold=strategy.get("oversold", BacktestConstants.RSI_OVERSOLD),
            )

        case BacktestConstants.STRATEGY_BUY_AND_HOLD:
            return BuyAndHoldSource()

    raise ValidationError(f"unknown strategy kind '{strategy.kind}'", field="strategy")
