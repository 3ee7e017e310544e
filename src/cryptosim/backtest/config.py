"""
回测配置 (Pydantic v2)

SimulationConfig 在任务创建时校验一次，之后不可修改。
校验失败统一抛出 cryptosim.exceptions.ValidationError。
"""

from datetime import datetime, timedelta
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field, model_validator

from cryptosim.config.settings import SimulationSettings
from cryptosim.constants import BacktestConstants
from cryptosim.exceptions import ValidationError

STRATEGY_KINDS = (
    BacktestConstants.STRATEGY_AI_PREDICTION,
    BacktestConstants.STRATEGY_TECHNICAL_ANALYSIS,
    BacktestConstants.STRATEGY_BUY_AND_HOLD,
)


def _is_aware(value: datetime) -> bool:
    return value.tzinfo is not None and value.utcoffset() is not None


class StrategyConfig(BaseModel):
    """策略类型 + 参数"""
    kind: str = BacktestConstants.STRATEGY_BUY_AND_HOLD
    parameters: dict[str, float] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def get(self, name: str, default: Any) -> Any:
        return self.parameters.get(name, default)


class SimulationConfig(BaseModel):
    """回测配置"""
    symbol: str
    start_date: datetime
    end_date: datetime
    initial_capital: float
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    trading_fee_rate: float = BacktestConstants.DEFAULT_TRADING_FEE_RATE
    max_position_fraction: float = BacktestConstants.DEFAULT_MAX_POSITION_FRACTION
    stop_loss: float | None = None    # 止损比例，如 0.05 = 5%
    take_profit: float | None = None  # 止盈比例，如 0.15 = 15%

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def check_timezones(self) -> "SimulationConfig":
        # 带时区与不带时区的日期无法比较
        if _is_aware(self.start_date) != _is_aware(self.end_date):
            raise ValidationError(
                "start_date and end_date must both be timezone-aware or both naive", field="end_date"
            )
        return self

    def check_parameters(self) -> None:
        """
        校验与时间无关的参数

        回测循环启动时调用；不读取系统时钟，保证回测可复现。

        Raises:
            ValidationError: 参数非法
        """
        if not self.symbol:
            raise ValidationError("symbol is required", field="symbol")
        if self.initial_capital <= 0:
            raise ValidationError("initial_capital must be positive", field="initial_capital")
        if not 0 <= self.trading_fee_rate < 1:
            raise ValidationError("trading_fee_rate must be in [0, 1)", field="trading_fee_rate")
        if not 0 < self.max_position_fraction <= 1:
            raise ValidationError(
                "max_position_fraction must be in (0, 1]", field="max_position_fraction"
            )
        if self.stop_loss is not None and not 0 < self.stop_loss < 1:
            raise ValidationError("stop_loss must be in (0, 1)", field="stop_loss")
        if self.take_profit is not None and self.take_profit <= 0:
            raise ValidationError("take_profit must be positive", field="take_profit")
        if self.strategy.kind not in STRATEGY_KINDS:
            raise ValidationError(
                f"unknown strategy kind '{self.strategy.kind}', expected one of {STRATEGY_KINDS}",
                field="strategy",
            )

    def validate_for_submission(
        self,
        now: datetime | None = None,
        max_days: int = BacktestConstants.MAX_BACKTEST_DAYS,
    ) -> None:
        """
        提交任务时的完整校验

        Args:
            now: 当前时间（默认读取系统时钟，测试时可注入）
            max_days: 回测区间最长天数

        Raises:
            ValidationError: 参数或日期区间非法
        """
        self.check_parameters()

        if self.start_date >= self.end_date:
            raise ValidationError("start_date must be before end_date", field="start_date")

        if now is None:
            now = datetime.now(tz=self.end_date.tzinfo)
        elif _is_aware(now) != _is_aware(self.end_date):
            raise ValidationError(
                "now must match the timezone awareness of end_date", field="end_date"
            )
        if self.end_date > now:
            raise ValidationError("end_date cannot be in the future", field="end_date")

        if self.end_date - self.start_date > timedelta(days=max_days):
            raise ValidationError(
                f"backtest period cannot exceed {max_days} days", field="end_date"
            )


def create_simulation_config(
    symbol: str,
    start_date: datetime | str,
    end_date: datetime | str,
    settings: SimulationSettings | None = None,
    **overrides: Any,
) -> SimulationConfig:
    """
    按默认设置创建回测配置

    默认策略为 AI 预测信号（置信度阈值 0.6，价格变动阈值 2%），
    手续费与仓位比例取自 SimulationSettings。

    Raises:
        ValidationError: 字段类型或取值非法
    """
    settings = settings or SimulationSettings()

    data: dict[str, Any] = {
        "symbol": symbol,
        "start_date": start_date,
        "end_date": end_date,
        "initial_capital": settings.default_initial_capital,
        "strategy": {
            "kind": BacktestConstants.STRATEGY_AI_PREDICTION,
            "parameters": {
                "confidence_threshold": BacktestConstants.DEFAULT_CONFIDENCE_THRESHOLD,
                "price_change_threshold": BacktestConstants.DEFAULT_PRICE_CHANGE_THRESHOLD,
            },
        },
        "trading_fee_rate": settings.default_trading_fee_rate,
        "max_position_fraction": settings.default_max_position_fraction,
    }
    data.update(overrides)

    try:
        config = SimulationConfig.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(loc) for loc in first["loc"]) or None
        raise ValidationError(f"invalid simulation config: {first['msg']}", field=field) from e

    config.check_parameters()
    return config
