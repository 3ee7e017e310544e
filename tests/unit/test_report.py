"""回测报告单元测试"""

import json

import pytest

from cryptosim.backtest.engine import SimulationLoop
from cryptosim.backtest.report import ReportGenerator, SimulationReport
from cryptosim.backtest.signals import BuyAndHoldSource


@pytest.fixture
def report(make_config, make_series):
    config = make_config(stop_loss=0.05)
    series = make_series([100.0, 110.0, 121.0, 100.0, 105.0])
    result = SimulationLoop().run(config, series, BuyAndHoldSource())
    return SimulationReport(result=result, description="unit test")


@pytest.fixture
def generator(report):
    return ReportGenerator(report)


class TestSimulationReport:

    def test_to_dict_sections(self, report):
        data = report.to_dict()

        assert data["strategy_name"] == "buy_and_hold"
        assert data["config"]["symbol"] == "BTC"
        assert set(data) >= {"performance", "statistics", "benchmark", "capital", "period", "trades"}
        assert len(data["trades"]) == 2
        assert data["trades"][0]["side"] == "buy"
        assert data["trades"][1]["reason"] == "Stop loss"
        assert len(data["daily_returns"]) == 4
        assert data["period"]["start_date"] == "2024-01-02"

    def test_to_dict_keeps_raw_numbers(self, report):
        perf = report.to_dict()["performance"]
        assert perf["total_return_pct"] == pytest.approx(report.result.metrics.total_return_pct)
        assert isinstance(perf["max_drawdown"], float)


class TestReportGenerator:

    def test_to_json_is_valid(self, generator):
        data = json.loads(generator.to_json())
        assert data["description"] == "unit test"
        assert data["statistics"]["total_trades"] == 1

    def test_markdown_contains_key_sections(self, generator):
        markdown = generator.generate_markdown()

        assert markdown.startswith("# 回测报告：BTC / buy_and_hold")
        for section in ("关键指标总览", "收益分析", "风险分析", "交易统计", "买入持有基准"):
            assert section in markdown
        assert "unit test" in markdown

    def test_trades_frame(self, generator):
        frame = generator.trades_frame()

        assert len(frame) == 2
        assert list(frame["side"]) == ["buy", "sell"]
        assert "gross_value" in frame.columns

    def test_equity_frame(self, generator, report):
        frame = generator.equity_frame()

        assert len(frame) == len(report.result.equity_curve)
        assert frame.index.name == "timestamp"
        assert {"portfolio_value", "drawdown_from_peak", "daily_return"} <= set(frame.columns)

    @pytest.mark.parametrize("fmt, suffix", [("markdown", ".md"), ("json", ".json")])
    def test_save_to_file(self, generator, tmp_path, fmt, suffix):
        path = generator.save_to_file(tmp_path / "report", format=fmt)

        assert path.suffix == suffix
        assert path.exists()
        assert path.read_text(encoding="utf-8")

    def test_unsupported_format(self, generator, tmp_path):
        with pytest.raises(ValueError, match="Unsupported"):
            generator.save_to_file(tmp_path / "report", format="pdf")

    @pytest.mark.parametrize(
        "pct, expected",
        [(35.0, "优秀"), (20.0, "良好"), (10.0, "一般"), (1.0, "较差"), (-5.0, "亏损")],
    )
    def test_return_grades(self, pct, expected):
        assert expected in ReportGenerator._grade_return(pct)
