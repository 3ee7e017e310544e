"""
性能分析器

计算回测性能指标：
1. 收益率指标（总收益、年化收益）
2. 风险指标（波动率、最大回撤及持续时间）
3. 风险调整收益（Sharpe、Sortino、Calmar）
4. 交易统计（胜率、利润因子、单笔盈亏）
5. 买入持有基准

注意：Sharpe/Sortino 沿用简化口径 avg / std（年化因子 sqrt(365) 在分子分母中抵消），
以保持与历史报表输出一致；标准差为总体标准差。

教学要点：
1. 量化交易性能评估
2. 纯函数：相同输入得到相同输出
3. 统计分析
"""

import math
import statistics
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from cryptosim.constants import BacktestConstants
from cryptosim.exceptions import InsufficientDataError

from .models import EquitySample, Trade, TradeSide


@dataclass(frozen=True)
class TradeStatistics:
    """单笔交易统计（买入 -> 卖出 配对）"""
    total_trades: int  # 完成的买卖配对数
    winning_trades: int
    losing_trades: int
    average_win: float
    average_loss: float
    largest_win: float
    largest_loss: float
    average_trade_duration: float  # 平均持仓天数


@dataclass(frozen=True)
class BenchmarkResult:
    """买入持有基准"""
    total_return: float
    total_return_pct: float
    annualized_return: float
    sharpe_ratio: float  # 假设年化波动率16%的简化 Sharpe
    final_value: float


@dataclass(frozen=True)
class PerformanceMetrics:
    """性能指标"""

    # 收益指标
    total_return: float  # 总收益（金额）
    total_return_pct: float  # 总收益率（%）
    annualized_return: float  # 年化收益率（小数）
    avg_return: float  # 单根K线平均收益
    std_return: float  # 单根K线收益总体标准差

    # 风险指标
    max_drawdown: float  # 最大回撤（0-1）
    max_drawdown_duration: int  # 最长回撤持续K线数

    # 风险调整收益
    sharpe_ratio: float
    sortino_ratio: float
    calmar_ratio: float

    # 交易统计
    ledger_trades: int  # 成交笔数（买+卖）
    win_rate: float  # 胜率（%）
    profit_factor: float
    gross_profit: float
    gross_loss: float
    statistics: TradeStatistics

    # 时间与资金
    start_date: datetime
    end_date: datetime
    trading_days: int
    initial_capital: float
    final_capital: float
    peak_capital: float
    min_capital: float

    @property
    def volatility(self) -> float:
        """收益波动率（单根K线收益的总体标准差）"""
        return self.std_return

    def to_dict(self) -> dict:
        """转换为字典"""
        return {
            "total_return": f"{self.total_return:,.2f}",
            "total_return_pct": f"{self.total_return_pct:.2f}%",
            "annualized_return": f"{self.annualized_return:.2%}",
            "max_drawdown": f"{self.max_drawdown:.2%}",
            "max_drawdown_duration": self.max_drawdown_duration,
            "sharpe_ratio": f"{self.sharpe_ratio:.2f}",
            "sortino_ratio": f"{self.sortino_ratio:.2f}",
            "calmar_ratio": f"{self.calmar_ratio:.2f}",
            "win_rate": f"{self.win_rate:.2f}%",
            "profit_factor": f"{self.profit_factor:.2f}",
            "total_trades": self.ledger_trades,
            "trading_days": self.trading_days,
        }


def pair_trades(trades: Sequence[Trade]) -> list[tuple[Trade, Trade]]:
    """
    将成交记录配对为 (买入, 卖出)

    每笔卖出与之前最近一笔未配对的买入配对；没有对应买入的卖出被忽略。
    """
    pairs = []
    open_buy: Trade | None = None

    for trade in trades:
        if trade.side == TradeSide.BUY:
            open_buy = trade
        elif open_buy is not None:
            pairs.append((open_buy, trade))
            open_buy = None

    return pairs


class PerformanceAnalyzer:
    """
    性能分析器

    无状态，analyze 为纯函数。
    """

    def __init__(self, days_per_year: int = BacktestConstants.DAYS_PER_YEAR):
        self.days_per_year = days_per_year

    def analyze(
        self,
        initial_capital: float,
        final_value: float,
        equity_curve: Sequence[EquitySample],
        trades: Sequence[Trade],
    ) -> PerformanceMetrics:
        """
        计算性能指标

        Args:
            initial_capital: 初始资金
            final_value: 期末组合价值
            equity_curve: 权益曲线（每根K线一个采样）
            trades: 成交记录

        Raises:
            InsufficientDataError: 权益曲线少于2个采样
        """
        if len(equity_curve) < 2:
            raise InsufficientDataError(
                f"At least 2 equity samples are required, got {len(equity_curve)}"
            )

        trading_days = len(equity_curve)

        # 收益指标
        total_return = final_value - initial_capital
        total_return_pct = total_return / initial_capital * 100
        annualized_return = self._annualize(final_value / initial_capital, trading_days)

        returns = [sample.daily_return for sample in equity_curve]
        avg_return = statistics.fmean(returns)
        std_return = statistics.pstdev(returns)

        # 风险指标
        max_drawdown, max_dd_duration = self._calculate_max_drawdown(equity_curve)

        # 风险调整收益
        sharpe_ratio = self._calculate_sharpe_ratio(avg_return, std_return)
        sortino_ratio = self._calculate_sortino_ratio(returns, avg_return)
        calmar_ratio = annualized_return / max_drawdown if max_drawdown > 0 else 0.0

        # 交易统计
        pairs = pair_trades(trades)
        win_rate, profit_factor, gross_profit, gross_loss = self._calculate_win_loss(pairs)
        trade_stats = self._calculate_trade_stats(pairs)

        values = [sample.portfolio_value for sample in equity_curve]

        return PerformanceMetrics(
            total_return=total_return,
            total_return_pct=total_return_pct,
            annualized_return=annualized_return,
            avg_return=avg_return,
            std_return=std_return,
            max_drawdown=max_drawdown,
            max_drawdown_duration=max_dd_duration,
            sharpe_ratio=sharpe_ratio,
            sortino_ratio=sortino_ratio,
            calmar_ratio=calmar_ratio,
            ledger_trades=len(trades),
            win_rate=win_rate,
            profit_factor=profit_factor,
            gross_profit=gross_profit,
            gross_loss=gross_loss,
            statistics=trade_stats,
            start_date=equity_curve[0].timestamp,
            end_date=equity_curve[-1].timestamp,
            trading_days=trading_days,
            initial_capital=initial_capital,
            final_capital=final_value,
            peak_capital=max(values),
            min_capital=min(values),
        )

    def benchmark(
        self,
        initial_capital: float,
        start_price: float,
        end_price: float,
        trading_days: int,
    ) -> BenchmarkResult:
        """
        买入持有基准：期初用全部资金买入（允许非整数数量），持有到期末
        """
        units = initial_capital / start_price
        final_value = units * end_price
        total_return = final_value - initial_capital
        annualized_return = self._annualize(final_value / initial_capital, trading_days)
        sharpe_ratio = (
            annualized_return / BacktestConstants.BENCHMARK_VOLATILITY if annualized_return > 0 else 0.0
        )

        return BenchmarkResult(
            total_return=total_return,
            total_return_pct=total_return / initial_capital * 100,
            annualized_return=annualized_return,
            sharpe_ratio=sharpe_ratio,
            final_value=final_value,
        )

    def _annualize(self, growth: float, trading_days: int) -> float:
        if trading_days <= 0:
            return 0.0
        try:
            return growth ** (self.days_per_year / trading_days) - 1
        except OverflowError:
            return math.inf

    def _calculate_max_drawdown(self, equity_curve: Sequence[EquitySample]) -> tuple[float, int]:
        """计算最大回撤和最长回撤持续K线数"""
        max_dd = 0.0
        max_dd_duration = 0
        current_dd_duration = 0

        for sample in equity_curve:
            max_dd = max(max_dd, sample.drawdown_from_peak)

            if sample.drawdown_from_peak > 0:
                current_dd_duration += 1
                max_dd_duration = max(max_dd_duration, current_dd_duration)
            else:
                current_dd_duration = 0

        return max_dd, max_dd_duration

    @staticmethod
    def _calculate_sharpe_ratio(avg_return: float, std_return: float) -> float:
        """计算夏普比率（简化口径）"""
        if std_return == 0:
            return 0.0
        annual_factor = math.sqrt(BacktestConstants.DAYS_PER_YEAR)
        return (avg_return * annual_factor) / (std_return * annual_factor)

    @staticmethod
    def _calculate_sortino_ratio(returns: Sequence[float], avg_return: float) -> float:
        """计算索提诺比率（只考虑下行波动）"""
        negative_returns = [r for r in returns if r < 0]
        if not negative_returns:
            return 0.0

        downside_std = math.sqrt(sum(r ** 2 for r in negative_returns) / len(negative_returns))
        if downside_std == 0:
            return 0.0

        annual_factor = math.sqrt(BacktestConstants.DAYS_PER_YEAR)
        return (avg_return * annual_factor) / (downside_std * annual_factor)

    @staticmethod
    def _calculate_win_loss(pairs: Sequence[tuple[Trade, Trade]]) -> tuple[float, float, float, float]:
        """
        按成交金额计算胜率与利润因子

        Returns:
            (win_rate%, profit_factor, gross_profit, gross_loss)
        """
        wins = 0
        gross_profit = 0.0
        gross_loss = 0.0

        for buy, sell in pairs:
            diff = sell.gross_value - buy.gross_value
            if diff > 0:
                wins += 1
                gross_profit += diff
            elif diff < 0:
                gross_loss += abs(diff)

        win_rate = wins / len(pairs) * 100 if pairs else 0.0

        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        elif gross_profit > 0:
            profit_factor = BacktestConstants.PROFIT_FACTOR_CAP
        else:
            profit_factor = 1.0

        return win_rate, profit_factor, gross_profit, gross_loss

    @staticmethod
    def _calculate_trade_stats(pairs: Sequence[tuple[Trade, Trade]]) -> TradeStatistics:
        """计算单笔交易统计（扣除双边手续费）"""
        if not pairs:
            return TradeStatistics(
                total_trades=0,
                winning_trades=0,
                losing_trades=0,
                average_win=0.0,
                average_loss=0.0,
                largest_win=0.0,
                largest_loss=0.0,
                average_trade_duration=0.0,
            )

        pnls = [sell.gross_value - buy.gross_value - sell.fee - buy.fee for buy, sell in pairs]
        wins = [pnl for pnl in pnls if pnl > 0]
        losses = [pnl for pnl in pnls if pnl < 0]

        durations = [(sell.timestamp - buy.timestamp).total_seconds() / 86400 for buy, sell in pairs]

        return TradeStatistics(
            total_trades=len(pairs),
            winning_trades=len(wins),
            losing_trades=len(losses),
            average_win=statistics.fmean(wins) if wins else 0.0,
            average_loss=abs(statistics.fmean(losses)) if losses else 0.0,
            largest_win=max(wins) if wins else 0.0,
            largest_loss=abs(min(losses)) if losses else 0.0,
            average_trade_duration=statistics.fmean(durations),
        )
