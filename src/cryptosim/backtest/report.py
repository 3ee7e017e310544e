"""
回测报告生成器 (Pydantic v2)

功能：
1. 字典 / JSON 格式导出
2. Markdown 格式回测报告
3. pandas DataFrame 导出（成交记录、权益曲线）

教学要点：
1. 报告生成模式
2. 结果展示与数据导出分离
"""

import json
from datetime import datetime
from pathlib import Path

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field

from cryptosim.logging_config import get_logger

from .engine import SimulationResult

logger = get_logger(__name__)


class SimulationReport(BaseModel):
    """
    回测报告（Pydantic v2）

    包含回测结果及说明信息
    """
    result: SimulationResult
    description: str = ""
    generated_at: datetime = Field(default_factory=datetime.now)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def strategy_name(self) -> str:
        return self.result.strategy_name

    def to_dict(self) -> dict:
        """导出为字典（数值保持原始精度）"""
        r = self.result
        m = r.metrics
        s = m.statistics
        b = r.benchmark

        return {
            "strategy_name": self.strategy_name,
            "description": self.description,
            "generated_at": self.generated_at.isoformat(),
            "config": r.config.model_dump(mode="json"),
            "performance": {
                "total_return": m.total_return,
                "total_return_pct": m.total_return_pct,
                "annualized_return": m.annualized_return,
                "sharpe_ratio": m.sharpe_ratio,
                "sortino_ratio": m.sortino_ratio,
                "calmar_ratio": m.calmar_ratio,
                "max_drawdown": m.max_drawdown,
                "max_drawdown_duration": m.max_drawdown_duration,
                "win_rate": m.win_rate,
                "profit_factor": m.profit_factor,
            },
            "statistics": {
                "total_trades": s.total_trades,
                "winning_trades": s.winning_trades,
                "losing_trades": s.losing_trades,
                "average_win": s.average_win,
                "average_loss": s.average_loss,
                "largest_win": s.largest_win,
                "largest_loss": s.largest_loss,
                "average_trade_duration": s.average_trade_duration,
            },
            "benchmark": {
                "total_return": b.total_return,
                "total_return_pct": b.total_return_pct,
                "sharpe_ratio": b.sharpe_ratio,
            },
            "capital": {
                "initial": m.initial_capital,
                "final": m.final_capital,
                "peak": m.peak_capital,
                "min": m.min_capital,
            },
            "period": {
                "start_date": m.start_date.strftime("%Y-%m-%d"),
                "end_date": m.end_date.strftime("%Y-%m-%d"),
                "trading_days": m.trading_days,
            },
            "trades": [trade.model_dump(mode="json") for trade in r.trades],
            "daily_returns": [
                {
                    "date": sample.date,
                    "portfolio_value": sample.portfolio_value,
                    "return": sample.daily_return,
                    "drawdown": sample.drawdown_from_peak,
                }
                for sample in r.equity_curve
            ],
        }


class ReportGenerator:
    """
    回测报告生成器

    教学要点：
    1. 多格式报告生成
    2. 文件I/O操作
    """

    def __init__(self, report: SimulationReport):
        self.report = report

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.report.to_dict(), indent=indent, ensure_ascii=False)

    def trades_frame(self) -> pd.DataFrame:
        """成交记录 DataFrame"""
        rows = [trade.model_dump() for trade in self.report.result.trades]
        frame = pd.DataFrame(rows)
        if not frame.empty:
            frame["side"] = frame["side"].map(lambda side: side.value)
        return frame

    def equity_frame(self) -> pd.DataFrame:
        """权益曲线 DataFrame（以时间为索引）"""
        frame = pd.DataFrame([sample.model_dump() for sample in self.report.result.equity_curve])
        if frame.empty:
            return frame
        return frame.set_index("timestamp")

    def generate_markdown(self) -> str:
        """
        生成Markdown格式报告

        Returns:
            Markdown文本
        """
        r = self.report.result
        m = r.metrics
        s = m.statistics
        b = r.benchmark

        description = f"**策略说明**: {self.report.description}\n" if self.report.description else ""

        return f"""# 回测报告：{r.config.symbol} / {self.report.strategy_name}

**生成时间**: {self.report.generated_at.strftime("%Y-%m-%d %H:%M:%S")}

{description}
---

## 📊 关键指标总览

| 指标类别 | 指标名称 | 数值 | 评级 |
|---------|---------|-----|------|
| **收益** | 总收益率 | {m.total_return_pct:.2f}% | {self._grade_return(m.total_return_pct)} |
| **风险** | 最大回撤 | {m.max_drawdown:.2%} | {self._grade_drawdown(m.max_drawdown)} |
| **风险** | 夏普比率 | {m.sharpe_ratio:.4f} | - |
| **交易** | 胜率 | {m.win_rate:.2f}% | {self._grade_winrate(m.win_rate)} |

---

## 💰 收益分析

- **总收益**: ${m.total_return:,.2f}
- **年化收益率**: {m.annualized_return:.2%}
- **单日平均收益**: {m.avg_return:.4%}
- **收益波动率**: {m.std_return:.4%}

## 📉 风险分析

- **最大回撤**: {m.max_drawdown:.2%}
- **最长回撤持续**: {m.max_drawdown_duration} 根K线
- **夏普比率**: {m.sharpe_ratio:.4f}
- **索提诺比率**: {m.sortino_ratio:.4f}
- **卡玛比率**: {m.calmar_ratio:.4f}

## 🔄 交易统计

- **成交笔数**: {m.ledger_trades}
- **完整买卖配对**: {s.total_trades}
- **盈利 / 亏损**: {s.winning_trades} / {s.losing_trades}
- **胜率**: {m.win_rate:.2f}%
- **利润因子**: {m.profit_factor:.2f}
- **平均盈利 / 平均亏损**: ${s.average_win:,.2f} / ${s.average_loss:,.2f}
- **最大单笔盈利 / 亏损**: ${s.largest_win:,.2f} / ${s.largest_loss:,.2f}
- **平均持仓天数**: {s.average_trade_duration:.1f}

## 📈 买入持有基准

- **基准收益率**: {b.total_return_pct:.2f}%
- **基准夏普（假设16%波动率）**: {b.sharpe_ratio:.2f}
- **超额收益**: {m.total_return_pct - b.total_return_pct:+.2f}%

## 💵 资金状况

- **初始资金**: ${m.initial_capital:,.2f}
- **最终资金**: ${m.final_capital:,.2f}
- **最高资金**: ${m.peak_capital:,.2f}
- **最低资金**: ${m.min_capital:,.2f}

## 📅 回测周期

- **开始日期**: {m.start_date.strftime("%Y-%m-%d")}
- **结束日期**: {m.end_date.strftime("%Y-%m-%d")}
- **交易天数**: {m.trading_days}

---

*报告由 CryptoSim 回测系统自动生成*
"""

    def save_to_file(self, filepath: str | Path, format: str = "markdown") -> Path:
        """
        保存报告到文件

        Args:
            filepath: 文件路径（后缀按格式替换）
            format: 格式（markdown/json）

        Returns:
            实际写入的文件路径
        """
        filepath = Path(filepath)

        match format.lower():
            case "markdown" | "md":
                content = self.generate_markdown()
                filepath = filepath.with_suffix(".md")
            case "json":
                content = self.to_json()
                filepath = filepath.with_suffix(".json")
            case _:
                raise ValueError(f"Unsupported report format: {format}")

        filepath.write_text(content, encoding="utf-8")
        logger.info("report_saved", path=str(filepath), format=format)
        return filepath

    # 评级辅助方法
    @staticmethod
    def _grade_return(pct: float) -> str:
        """评级：总收益率（%）"""
        if pct >= 30: return "⭐⭐⭐⭐⭐ 优秀"
        if pct >= 15: return "⭐⭐⭐⭐ 良好"
        if pct >= 5: return "⭐⭐⭐ 一般"
        if pct >= 0: return "⭐⭐ 较差"
        return "⭐ 亏损"

    @staticmethod
    def _grade_drawdown(value: float) -> str:
        """评级：最大回撤"""
        if value <= 0.05: return "⭐⭐⭐⭐⭐ 优秀"
        if value <= 0.10: return "⭐⭐⭐⭐ 良好"
        if value <= 0.20: return "⭐⭐⭐ 一般"
        if value <= 0.30: return "⭐⭐ 较差"
        return "⭐ 危险"

    @staticmethod
    def _grade_winrate(pct: float) -> str:
        """评级：胜率（%）"""
        if pct >= 60: return "⭐⭐⭐⭐⭐ 优秀"
        if pct >= 50: return "⭐⭐⭐⭐ 良好"
        if pct >= 40: return "⭐⭐⭐ 一般"
        if pct >= 30: return "⭐⭐ 较差"
        return "⭐ 危险"
