"""
交易执行器

功能：
1. 判断交易是否可行（资金约束、持仓约束、仓位上限）
2. 计算成交数量、手续费与成交后的账户状态

教学要点：
1. 预留5%现金缓冲吸收手续费/滑点（保守设计）
2. 不做空、不透支
3. 不可行的交易返回 None，由回测循环视为观望
"""

import math

from cryptosim.constants import BacktestConstants

from .config import SimulationConfig
from .models import PriceBar, Trade, TradeSide


class TradeExecutor:
    """
    交易执行器

    无状态：账户状态由回测循环持有并传入。
    """

    def __init__(self, cash_buffer: float = BacktestConstants.CASH_BUFFER):
        self.cash_buffer = cash_buffer

    def execute(
        self,
        side: TradeSide,
        bar: PriceBar,
        position: float,
        cash: float,
        portfolio_value: float,
        config: SimulationConfig,
        reason: str = BacktestConstants.DEFAULT_TRADE_REASON,
    ) -> Trade | None:
        """
        按收盘价执行一笔交易

        Args:
            side: 买入/卖出
            bar: 当前K线（以收盘价成交）
            position: 当前持仓数量
            cash: 当前现金
            portfolio_value: 当前组合价值
            config: 回测配置（手续费率、仓位上限）
            reason: 成交原因

        Returns:
            成交记录；交易不可行时返回 None
        """
        if side == TradeSide.BUY:
            return self._buy(bar, position, cash, portfolio_value, config, reason)
        return self._sell(bar, position, cash, config, reason)

    def _buy(
        self,
        bar: PriceBar,
        position: float,
        cash: float,
        portfolio_value: float,
        config: SimulationConfig,
        reason: str,
    ) -> Trade | None:
        price = bar.close
        max_buy_value = portfolio_value * config.max_position_fraction
        spendable = min(max_buy_value, cash * self.cash_buffer)

        if spendable < price:
            # 连一个单位都买不起
            return None

        quantity = math.floor(spendable / price)
        # 手续费率高于现金缓冲时缩减数量，保证现金不为负
        quantity = min(quantity, math.floor(cash / (price * (1 + config.trading_fee_rate))))
        if quantity > 0 and self._buy_cost(quantity, price, config.trading_fee_rate) > cash:
            quantity -= 1
        if quantity <= 0:
            return None

        gross = quantity * price
        fee = gross * config.trading_fee_rate
        cash_after = cash - (gross + fee)
        position_after = position + quantity

        return Trade(
            timestamp=bar.timestamp,
            side=TradeSide.BUY,
            price=price,
            quantity=quantity,
            fee=fee,
            net_cash_delta=-(gross + fee),
            cash_after=cash_after,
            position_after=position_after,
            portfolio_value_after=cash_after + position_after * price,
            reason=reason,
        )

    def _sell(
        self,
        bar: PriceBar,
        position: float,
        cash: float,
        config: SimulationConfig,
        reason: str,
    ) -> Trade | None:
        if position <= 0:
            return None

        price = bar.close
        # 整仓卖出
        quantity = position
        gross = quantity * price
        fee = gross * config.trading_fee_rate
        cash_after = cash + (gross - fee)

        return Trade(
            timestamp=bar.timestamp,
            side=TradeSide.SELL,
            price=price,
            quantity=quantity,
            fee=fee,
            net_cash_delta=gross - fee,
            cash_after=cash_after,
            position_after=0.0,
            portfolio_value_after=cash_after,
            reason=reason,
        )

    @staticmethod
    def _buy_cost(quantity: int, price: float, fee_rate: float) -> float:
        gross = quantity * price
        return gross + gross * fee_rate
