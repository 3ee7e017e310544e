"""共享测试夹具"""

from datetime import datetime, timedelta

import pytest

from cryptosim.backtest.config import SimulationConfig, StrategyConfig
from cryptosim.backtest.models import PriceSeries

START = datetime(2024, 1, 1)


@pytest.fixture
def start_date() -> datetime:
    return START


@pytest.fixture
def make_series():
    """用收盘价列表构造价格序列"""

    def _make(closes, symbol="BTC", start=START, step=None) -> PriceSeries:
        return PriceSeries.from_closes(symbol, closes, start=start, step=step)

    return _make


@pytest.fixture
def make_config():
    """构造回测配置，默认买入持有、零手续费"""

    def _make(
        kind="buy_and_hold",
        parameters=None,
        start=START,
        end=START + timedelta(days=30),
        **overrides,
    ) -> SimulationConfig:
        data = {
            "symbol": "BTC",
            "start_date": start,
            "end_date": end,
            "initial_capital": 10_000.0,
            "strategy": StrategyConfig(kind=kind, parameters=parameters or {}),
            "trading_fee_rate": 0.0,
            "max_position_fraction": 1.0,
        }
        data.update(overrides)
        return SimulationConfig(**data)

    return _make
