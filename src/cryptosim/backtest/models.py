"""
回测数据模型 (Pydantic v2)

包含：
1. K线 (PriceBar) 与价格序列 (PriceSeries)
2. 外部预测点 (PredictionPoint)
3. 账户状态 (AccountState)
4. 成交记录 (Trade) 与权益曲线采样 (EquitySample)

所有模型均为不可变对象（frozen），一旦创建不可修改。
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Sequence

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from cryptosim.constants import BacktestConstants


class Signal(Enum):
    """交易信号"""
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class TradeSide(Enum):
    """成交方向"""
    BUY = "buy"
    SELL = "sell"


class PredictionDirection(Enum):
    """预测方向"""
    UP = "up"
    DOWN = "down"
    HOLD = "hold"


class PriceBar(BaseModel):
    """单根 OHLCV K线"""
    timestamp: datetime
    open: float = Field(gt=0, allow_inf_nan=False)
    high: float = Field(gt=0, allow_inf_nan=False)
    low: float = Field(gt=0, allow_inf_nan=False)
    close: float = Field(gt=0, allow_inf_nan=False)
    volume: float = Field(default=0.0, ge=0, allow_inf_nan=False)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def check_ohlc(self) -> "PriceBar":
        # 价格为正且有限、成交量非负由字段约束保证
        if self.high < max(self.open, self.close, self.low):
            raise ValueError("high must be >= open, close and low")
        if self.low > min(self.open, self.close, self.high):
            raise ValueError("low must be <= open, close and high")
        return self

    @classmethod
    def flat(cls, timestamp: datetime, price: float, volume: float = 0.0) -> "PriceBar":
        """用单一价格构造K线（开高低收相同）"""
        return cls(timestamp=timestamp, open=price, high=price, low=price, close=price, volume=volume)


class PriceSeries(BaseModel):
    """
    单一品种在某个区间内的有序K线序列

    K线按时间严格递增，加载后不可修改。
    """
    symbol: str
    interval: str = BacktestConstants.DEFAULT_INTERVAL
    bars: tuple[PriceBar, ...] = ()

    model_config = ConfigDict(frozen=True)

    @field_validator("bars")
    @classmethod
    def check_ordering(cls, bars: tuple[PriceBar, ...]) -> tuple[PriceBar, ...]:
        for prev, curr in zip(bars, bars[1:]):
            if curr.timestamp <= prev.timestamp:
                raise ValueError(
                    f"bars must be strictly increasing by timestamp: {prev.timestamp} >= {curr.timestamp}"
                )
        return bars

    @classmethod
    def from_records(cls, symbol: str, records: Sequence[dict[str, Any]], interval: str = "1d") -> "PriceSeries":
        """
        从字典列表构造价格序列

        Args:
            symbol: 品种代码，如 "BTC"
            records: [{timestamp, open, high, low, close, volume}, ...]
            interval: K线周期
        """
        bars = sorted((PriceBar(**r) for r in records), key=lambda b: b.timestamp)
        return cls(symbol=symbol, interval=interval, bars=tuple(bars))

    @classmethod
    def from_closes(
        cls,
        symbol: str,
        closes: Sequence[float],
        start: datetime,
        step: timedelta | None = None,
    ) -> "PriceSeries":
        """用收盘价序列构造日线序列（常用于测试和示例）"""
        step = step or timedelta(days=1)
        bars = tuple(PriceBar.flat(start + step * i, price) for i, price in enumerate(closes))
        return cls(symbol=symbol, bars=bars)

    def __len__(self) -> int:
        return len(self.bars)

    def __getitem__(self, index):
        return self.bars[index]

    @property
    def closes(self) -> list[float]:
        return [bar.close for bar in self.bars]

    @property
    def start(self) -> datetime | None:
        return self.bars[0].timestamp if self.bars else None

    @property
    def end(self) -> datetime | None:
        return self.bars[-1].timestamp if self.bars else None

    def to_frame(self) -> pd.DataFrame:
        """转换为以时间为索引的 DataFrame"""
        frame = pd.DataFrame([bar.model_dump() for bar in self.bars])
        if frame.empty:
            return frame
        return frame.set_index("timestamp")


class PredictionPoint(BaseModel):
    """外部预测源给出的价格预测"""
    timestamp: datetime
    predicted_price: float = Field(gt=0, allow_inf_nan=False)
    confidence: float = Field(ge=0, le=1, allow_inf_nan=False)
    direction: PredictionDirection = PredictionDirection.HOLD

    model_config = ConfigDict(frozen=True)


class AccountState(BaseModel):
    """
    账户状态

    不变量：portfolio_value == cash + position * 当前收盘价
    不允许做空（position >= 0），不允许透支（cash >= 0）。
    """
    cash: float = Field(ge=0)
    position: float = Field(default=0.0, ge=0)
    portfolio_value: float

    model_config = ConfigDict(frozen=True)

    @classmethod
    def initial(cls, capital: float) -> "AccountState":
        return cls(cash=capital, position=0.0, portfolio_value=capital)

    def mark(self, close: float) -> "AccountState":
        """按收盘价重新估值"""
        return AccountState(cash=self.cash, position=self.position, portfolio_value=self.value_at(close))

    def value_at(self, close: float) -> float:
        return self.cash + self.position * close


class Trade(BaseModel):
    """
    成交记录

    每笔成交创建一次，之后不可修改。
    """
    timestamp: datetime
    side: TradeSide
    price: float = Field(gt=0)
    quantity: float = Field(gt=0)
    fee: float = Field(ge=0)
    net_cash_delta: float
    cash_after: float = Field(ge=0)
    position_after: float = Field(ge=0)
    portfolio_value_after: float
    reason: str = BacktestConstants.DEFAULT_TRADE_REASON

    model_config = ConfigDict(frozen=True)

    @computed_field
    @property
    def gross_value(self) -> float:
        """成交金额（价格 * 数量）"""
        return self.price * self.quantity


class EquitySample(BaseModel):
    """权益曲线采样点，每处理一根K线记录一次"""
    timestamp: datetime
    portfolio_value: float
    cash: float
    position: float
    close: float
    daily_return: float
    drawdown_from_peak: float = Field(ge=0, le=1)

    model_config = ConfigDict(frozen=True)

    @property
    def date(self) -> str:
        return self.timestamp.strftime("%Y-%m-%d")
