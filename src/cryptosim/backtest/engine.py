"""
回测引擎

完整的回测流程：
1. 数据回放（逐根K线）
2. 信号生成（SignalSource）
3. 交易执行（TradeExecutor）
4. 账户、回撤与权益曲线更新
5. 性能分析（PerformanceAnalyzer）

教学要点：
1. 策略与执行分离
2. 每根K线的决策、成交、指标更新作为一个原子单元
3. 协作式取消：只在挂起点（每 N 根K线）检查取消并上报进度
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Protocol, Sequence

from cryptosim.constants import BacktestConstants
from cryptosim.exceptions import CancelledError, ExecutionError, InsufficientDataError, SimulationError
from cryptosim.logging_config import get_logger

from .config import SimulationConfig
from .data_replay import DataReplay
from .executor import TradeExecutor
from .models import AccountState, EquitySample, PredictionPoint, PriceSeries, Signal, Trade, TradeSide
from .performance import BenchmarkResult, PerformanceAnalyzer, PerformanceMetrics
from .signals import SignalSource

logger = get_logger(__name__)


class CancelToken(Protocol):
    """取消标志（threading.Event 满足该协议）"""

    def is_set(self) -> bool: ...


@dataclass(frozen=True)
class ProgressUpdate:
    """进度更新"""
    progress: float  # 0-100
    bars_processed: int
    total_bars: int
    current_date: datetime
    portfolio_value: float
    total_trades: int


ProgressCallback = Callable[[ProgressUpdate], None]


@dataclass(frozen=True)
class SimulationResult:
    """
    回测结果快照

    回测正常结束时创建一次，之后不可修改。
    """
    config: SimulationConfig
    strategy_name: str
    trades: tuple[Trade, ...]
    equity_curve: tuple[EquitySample, ...]
    metrics: PerformanceMetrics
    benchmark: BenchmarkResult
    final_state: AccountState

    @property
    def final_value(self) -> float:
        return self.final_state.portfolio_value


class DrawdownTracker:
    """
    回撤跟踪器

    峰值以初始资金为起点；回撤 = (峰值 - 当前值) / 峰值，峰值非正时为0。
    同时记录组合处于前高之下的最长连续K线数。
    """

    def __init__(self, initial_peak: float):
        self.peak = initial_peak
        self.max_drawdown = 0.0
        self.current_duration = 0
        self.max_duration = 0

    def update(self, value: float) -> float:
        """用最新组合价值更新，返回当前回撤"""
        if value > self.peak:
            self.peak = value

        drawdown = (self.peak - value) / self.peak if self.peak > 0 else 0.0
        drawdown = max(drawdown, 0.0)

        if drawdown > 0:
            self.current_duration += 1
            self.max_duration = max(self.max_duration, self.current_duration)
        else:
            self.current_duration = 0

        self.max_drawdown = max(self.max_drawdown, drawdown)
        return drawdown


class SimulationLoop:
    """
    回测主循环

    每个实例只被一个任务使用；运行期间独占账户状态、成交记录和权益曲线。
    """

    def __init__(
        self,
        executor: TradeExecutor | None = None,
        analyzer: PerformanceAnalyzer | None = None,
        progress_interval: int = BacktestConstants.DEFAULT_PROGRESS_INTERVAL,
    ):
        if progress_interval < 1:
            raise ValueError("progress_interval must be >= 1")

        self.executor = executor or TradeExecutor()
        self.analyzer = analyzer or PerformanceAnalyzer()
        self.progress_interval = progress_interval

    def check_inputs(self, config: SimulationConfig, series: PriceSeries) -> None:
        """
        运行前检查参数和数据长度

        第一根K线只作为起点，不产生权益采样；N根K线得到 N-1 个采样，
        性能分析至少需要2个，因此序列至少 MIN_SIMULATION_BARS 根。
        """
        config.check_parameters()
        if len(series) < BacktestConstants.MIN_SIMULATION_BARS:
            raise InsufficientDataError(
                f"At least {BacktestConstants.MIN_SIMULATION_BARS} price bars are required, got {len(series)}"
            )

    def run(
        self,
        config: SimulationConfig,
        series: PriceSeries,
        signal_source: SignalSource,
        predictions: Sequence[PredictionPoint] = (),
        on_progress: ProgressCallback | None = None,
        cancel_token: CancelToken | None = None,
    ) -> SimulationResult:
        """
        运行回测

        Args:
            config: 回测配置
            series: 价格序列（至少3根K线）
            signal_source: 信号源
            predictions: 外部预测（可选）
            on_progress: 进度回调
            cancel_token: 取消标志

        Returns:
            回测结果

        Raises:
            InsufficientDataError: 价格序列不足以产生2个权益采样
            CancelledError: 在挂起点观察到取消请求
            ExecutionError: 策略或撮合抛出意外异常
        """
        self.check_inputs(config, series)

        total_bars = len(series)
        replay = DataReplay(series, predictions)

        state = AccountState.initial(config.initial_capital)
        trades: list[Trade] = []
        equity_curve: list[EquitySample] = []
        drawdown = DrawdownTracker(config.initial_capital)
        entry_price: float | None = None
        last_progress = 0.0

        logger.info(
            "simulation_started",
            symbol=config.symbol,
            strategy=signal_source.name,
            bars=total_bars,
            initial_capital=config.initial_capital,
        )

        self._check_cancelled(cancel_token, bars_processed=0, progress=last_progress)

        while replay.has_next():
            i, bar = replay.next()
            prev_bar = replay.previous_bar()
            prev_value = state.value_at(prev_bar.close)

            state = state.mark(bar.close)

            try:
                signal = signal_source.decide(replay.history(), replay.predictions_until(bar.timestamp), i)
                side, reason = self._resolve_order(signal, state, bar.close, entry_price, config)

                trade = None
                if side is not None:
                    trade = self.executor.execute(
                        side, bar, state.position, state.cash, state.portfolio_value, config, reason=reason
                    )
            except SimulationError:
                raise
            except Exception as e:
                raise ExecutionError(f"Bar {i} ({bar.timestamp:%Y-%m-%d}): {e}", bar_index=i) from e

            if trade is not None:
                trades.append(trade)
                state = AccountState(
                    cash=trade.cash_after,
                    position=trade.position_after,
                    portfolio_value=trade.cash_after + trade.position_after * bar.close,
                )
                entry_price = trade.price if trade.side == TradeSide.BUY else None
                logger.debug(
                    "trade_executed",
                    side=trade.side.value,
                    price=trade.price,
                    quantity=trade.quantity,
                    fee=trade.fee,
                    reason=trade.reason,
                )

            current_drawdown = drawdown.update(state.portfolio_value)
            daily_return = state.portfolio_value / prev_value - 1 if prev_value > 0 else 0.0

            equity_curve.append(EquitySample(
                timestamp=bar.timestamp,
                portfolio_value=state.portfolio_value,
                cash=state.cash,
                position=state.position,
                close=bar.close,
                daily_return=daily_return,
                drawdown_from_peak=min(current_drawdown, 1.0),
            ))

            # 挂起点：先检查取消，再上报进度
            if i % self.progress_interval == 0 or i == total_bars - 1:
                self._check_cancelled(cancel_token, bars_processed=i, progress=last_progress)
                last_progress = i / total_bars * 100
                if on_progress is not None:
                    on_progress(ProgressUpdate(
                        progress=last_progress,
                        bars_processed=i,
                        total_bars=total_bars,
                        current_date=bar.timestamp,
                        portfolio_value=state.portfolio_value,
                        total_trades=len(trades),
                    ))

        try:
            metrics = self.analyzer.analyze(
                config.initial_capital, state.portfolio_value, equity_curve, trades
            )
            benchmark = self.analyzer.benchmark(
                config.initial_capital, series[0].close, series[-1].close, len(equity_curve)
            )
        except SimulationError:
            raise
        except Exception as e:
            raise ExecutionError(f"Performance analysis failed: {e}") from e

        logger.info(
            "simulation_completed",
            symbol=config.symbol,
            trades=len(trades),
            final_value=round(state.portfolio_value, 2),
            total_return_pct=round(metrics.total_return_pct, 4),
            max_drawdown=round(metrics.max_drawdown, 4),
        )

        return SimulationResult(
            config=config,
            strategy_name=signal_source.name,
            trades=tuple(trades),
            equity_curve=tuple(equity_curve),
            metrics=metrics,
            benchmark=benchmark,
            final_state=state,
        )

    @staticmethod
    def _resolve_order(
        signal: Signal,
        state: AccountState,
        close: float,
        entry_price: float | None,
        config: SimulationConfig,
    ) -> tuple[TradeSide | None, str]:
        """
        将信号转换为订单方向

        - 持仓时止损/止盈优先于策略信号
        - 买入只在空仓时触发，卖出只在持仓时触发，同一根K线不会反手
        """
        if state.position > 0 and entry_price is not None:
            if config.stop_loss is not None and close <= entry_price * (1 - config.stop_loss):
                return TradeSide.SELL, BacktestConstants.STOP_LOSS_REASON
            if config.take_profit is not None and close >= entry_price * (1 + config.take_profit):
                return TradeSide.SELL, BacktestConstants.TAKE_PROFIT_REASON

        if signal == Signal.BUY and state.position == 0:
            return TradeSide.BUY, BacktestConstants.DEFAULT_TRADE_REASON
        if signal == Signal.SELL and state.position > 0:
            return TradeSide.SELL, BacktestConstants.DEFAULT_TRADE_REASON
        return None, ""

    @staticmethod
    def _check_cancelled(cancel_token: CancelToken | None, bars_processed: int, progress: float) -> None:
        """取消时携带最近一次上报的进度"""
        if cancel_token is not None and cancel_token.is_set():
            logger.info("simulation_cancelled", bars_processed=bars_processed, progress=progress)
            raise CancelledError(bars_processed=bars_processed, progress=progress)
