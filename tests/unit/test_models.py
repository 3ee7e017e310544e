"""
回测数据模型单元测试

测试范围：
1. K线 OHLC 校验
2. 价格序列排序与转换
3. 预测点、账户状态、成交记录
"""

from datetime import datetime, timedelta

import pydantic
import pytest

from cryptosim.backtest.models import (
    AccountState,
    EquitySample,
    PredictionPoint,
    PriceBar,
    PriceSeries,
    Trade,
    TradeSide,
)


class TestPriceBar:

    def test_valid_bar(self, start_date):
        bar = PriceBar(timestamp=start_date, open=100, high=110, low=95, close=105, volume=10)
        assert bar.close == 105

    def test_flat_bar(self, start_date):
        bar = PriceBar.flat(start_date, 100.0)
        assert bar.open == bar.high == bar.low == bar.close == 100.0

    @pytest.mark.parametrize(
        "fields",
        [
            {"open": 100, "high": 99, "low": 95, "close": 98},   # high < open
            {"open": 100, "high": 110, "low": 101, "close": 105},  # low > open
            {"open": 0, "high": 110, "low": 95, "close": 105},   # 非正价格
            {"open": 100, "high": 110, "low": 95, "close": 105, "volume": -1},
            {"open": float("nan"), "high": float("nan"), "low": float("nan"), "close": float("nan")},
            {"open": 100, "high": float("inf"), "low": 95, "close": 105},
            {"open": 100, "high": 110, "low": 95, "close": 105, "volume": float("nan")},
        ],
    )
    def test_invalid_bar(self, start_date, fields):
        with pytest.raises(pydantic.ValidationError):
            PriceBar(timestamp=start_date, **fields)

    def test_bar_is_frozen(self, start_date):
        bar = PriceBar.flat(start_date, 100.0)
        with pytest.raises(pydantic.ValidationError):
            bar.close = 101.0


class TestPriceSeries:

    def test_from_closes(self, make_series, start_date):
        series = make_series([100.0, 110.0, 121.0])

        assert len(series) == 3
        assert series.closes == [100.0, 110.0, 121.0]
        assert series.start == start_date
        assert series.end == start_date + timedelta(days=2)
        assert series[1].close == 110.0

    def test_from_records_sorts_bars(self, start_date):
        records = [
            {"timestamp": start_date + timedelta(days=1), "open": 2, "high": 2, "low": 2, "close": 2},
            {"timestamp": start_date, "open": 1, "high": 1, "low": 1, "close": 1},
        ]
        series = PriceSeries.from_records("ETH", records)
        assert series.closes == [1, 2]

    def test_rejects_unordered_bars(self, start_date):
        bars = (PriceBar.flat(start_date + timedelta(days=1), 1.0), PriceBar.flat(start_date, 2.0))
        with pytest.raises(pydantic.ValidationError):
            PriceSeries(symbol="BTC", bars=bars)

    def test_rejects_duplicate_timestamps(self, start_date):
        bars = (PriceBar.flat(start_date, 1.0), PriceBar.flat(start_date, 2.0))
        with pytest.raises(pydantic.ValidationError):
            PriceSeries(symbol="BTC", bars=bars)

    def test_to_frame(self, make_series):
        frame = make_series([1.0, 2.0, 3.0]).to_frame()
        assert list(frame["close"]) == [1.0, 2.0, 3.0]
        assert frame.index.name == "timestamp"

    def test_empty_series(self):
        series = PriceSeries(symbol="BTC")
        assert len(series) == 0
        assert series.start is None
        assert series.to_frame().empty


class TestPredictionPoint:

    @pytest.mark.parametrize("confidence", [-0.1, 1.1])
    def test_confidence_bounds(self, start_date, confidence):
        with pytest.raises(pydantic.ValidationError):
            PredictionPoint(timestamp=start_date, predicted_price=100.0, confidence=confidence)

    def test_predicted_price_positive(self, start_date):
        with pytest.raises(pydantic.ValidationError):
            PredictionPoint(timestamp=start_date, predicted_price=0.0, confidence=0.5)

    @pytest.mark.parametrize("price", [float("inf"), float("nan")])
    def test_predicted_price_finite(self, start_date, price):
        with pytest.raises(pydantic.ValidationError):
            PredictionPoint(timestamp=start_date, predicted_price=price, confidence=0.5)

    def test_confidence_not_nan(self, start_date):
        with pytest.raises(pydantic.ValidationError):
            PredictionPoint(timestamp=start_date, predicted_price=100.0, confidence=float("nan"))


class TestAccountState:

    def test_initial(self):
        state = AccountState.initial(10_000.0)
        assert state.cash == 10_000.0
        assert state.position == 0.0
        assert state.portfolio_value == 10_000.0

    def test_mark_revalues_position(self):
        state = AccountState(cash=500.0, position=10.0, portfolio_value=1500.0)
        marked = state.mark(120.0)

        assert marked.portfolio_value == pytest.approx(1700.0)
        assert marked.cash == 500.0
        assert state.portfolio_value == 1500.0

    def test_no_negative_cash(self):
        with pytest.raises(pydantic.ValidationError):
            AccountState(cash=-1.0, position=0.0, portfolio_value=-1.0)


class TestTradeAndEquity:

    def test_trade_gross_value(self, start_date):
        trade = Trade(
            timestamp=start_date,
            side=TradeSide.BUY,
            price=100.0,
            quantity=5,
            fee=0.5,
            net_cash_delta=-500.5,
            cash_after=499.5,
            position_after=5,
            portfolio_value_after=999.5,
        )
        assert trade.gross_value == pytest.approx(500.0)
        assert trade.model_dump()["gross_value"] == pytest.approx(500.0)
        assert trade.reason == "Strategy signal"

    def test_trade_quantity_positive(self, start_date):
        with pytest.raises(pydantic.ValidationError):
            Trade(
                timestamp=start_date,
                side=TradeSide.SELL,
                price=100.0,
                quantity=0,
                fee=0.0,
                net_cash_delta=0.0,
                cash_after=0.0,
                position_after=0.0,
                portfolio_value_after=0.0,
            )

    def test_equity_sample_date(self):
        sample = EquitySample(
            timestamp=datetime(2024, 3, 5, 12),
            portfolio_value=1.0,
            cash=1.0,
            position=0.0,
            close=1.0,
            daily_return=0.0,
            drawdown_from_peak=0.0,
        )
        assert sample.date == "2024-03-05"
