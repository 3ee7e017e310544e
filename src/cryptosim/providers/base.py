"""
外部数据源抽象类

回测核心只依赖这里定义的接口：
1. MarketDataProvider  历史行情
2. PredictionProvider  外部价格预测（可选）
3. ResultSink          回测完成后的结果通知（单向）

具体实现可以是内存数据、合成数据，或真实的行情/存储服务。
"""

from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from cryptosim.backtest.engine import SimulationResult
from cryptosim.backtest.models import PredictionPoint, PriceSeries


class RunSummary(BaseModel):
    """回测完成后发布的摘要"""
    job_id: str
    symbol: str
    strategy: str
    final_capital: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float  # %
    total_return_pct: float
    completed_at: datetime

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_result(cls, job_id: str, result: SimulationResult, completed_at: datetime) -> "RunSummary":
        stats = result.metrics.statistics
        return cls(
            job_id=job_id,
            symbol=result.config.symbol,
            strategy=result.strategy_name,
            final_capital=result.final_value,
            total_trades=len(result.trades),
            winning_trades=stats.winning_trades,
            losing_trades=stats.losing_trades,
            win_rate=result.metrics.win_rate,
            total_return_pct=result.metrics.total_return_pct,
            completed_at=completed_at,
        )


class MarketDataProvider(ABC):
    """历史行情数据源"""

    @abstractmethod
    def get_historical_series(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: str = "1d",
    ) -> PriceSeries:
        """
        获取 [start, end] 区间内的K线

        Raises:
            DataUnavailableError: 区间内不足2根K线
        """


class PredictionProvider(ABC):
    """外部价格预测数据源"""

    @abstractmethod
    def get_predictions(self, symbol: str, start: datetime, end: datetime) -> list[PredictionPoint]:
        """获取 [start, end] 区间内的预测点，没有预测时返回空列表"""


class ResultSink(ABC):
    """回测结果接收方"""

    @abstractmethod
    def publish(self, summary: RunSummary, result: SimulationResult) -> None:
        """发布已完成的回测结果"""
