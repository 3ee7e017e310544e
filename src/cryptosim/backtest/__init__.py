"""
CryptoSim 回测系统

完整的回测引擎，支持：
1. 历史数据逐根回放
2. 信号生成（预测驱动 / 技术指标 / 买入持有）
3. 模拟成交（资金、手续费、仓位约束）
4. 性能指标计算与报告生成

教学要点：
1. 策略与执行分离
2. 不可变的结果快照
3. 性能评估方法
"""

from .config import SimulationConfig, StrategyConfig, create_simulation_config
from .data_replay import DataReplay
from .engine import DrawdownTracker, ProgressUpdate, SimulationLoop, SimulationResult
from .executor import TradeExecutor
from .models import (
    AccountState,
    EquitySample,
    PredictionDirection,
    PredictionPoint,
    PriceBar,
    PriceSeries,
    Signal,
    Trade,
    TradeSide,
)
from .performance import BenchmarkResult, PerformanceAnalyzer, PerformanceMetrics, TradeStatistics
from .report import ReportGenerator, SimulationReport
from .signals import (
    BuyAndHoldSource,
    IndicatorDrivenSource,
    SignalDrivenSource,
    SignalSource,
    build_signal_source,
)

__all__ = [
    "SimulationConfig",
    "StrategyConfig",
    "create_simulation_config",
    "DataReplay",
    "DrawdownTracker",
    "ProgressUpdate",
    "SimulationLoop",
    "SimulationResult",
    "TradeExecutor",
    "AccountState",
    "EquitySample",
    "PredictionDirection",
    "PredictionPoint",
    "PriceBar",
    "PriceSeries",
    "Signal",
    "Trade",
    "TradeSide",
    "BenchmarkResult",
    "PerformanceAnalyzer",
    "PerformanceMetrics",
    "TradeStatistics",
    "ReportGenerator",
    "SimulationReport",
    "BuyAndHoldSource",
    "IndicatorDrivenSource",
    "SignalDrivenSource",
    "SignalSource",
    "build_signal_source",
]
