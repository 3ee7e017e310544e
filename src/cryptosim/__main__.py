"""
CryptoSim 命令行入口

在合成行情上运行一次回测并输出报告：

    python -m cryptosim --symbol BTC --strategy technical_analysis --days 180
"""

import argparse
import sys
from datetime import datetime, timedelta

from cryptosim.backtest.config import STRATEGY_KINDS, create_simulation_config
from cryptosim.backtest.report import ReportGenerator, SimulationReport
from cryptosim.config.settings import SimulationSettings
from cryptosim.constants import BacktestConstants
from cryptosim.exceptions import SimulationError
from cryptosim.jobs import JobStatus, SimulationService
from cryptosim.logging_config import configure_logging
from cryptosim.providers import SyntheticDataProvider


def _parse_date(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date '{value}', expected YYYY-MM-DD") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cryptosim",
        description="CryptoSim 回测：在合成行情上运行一次回测并输出报告",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例用法:
  python -m cryptosim --symbol BTC
  python -m cryptosim --strategy buy_and_hold --days 90 --format json
  python -m cryptosim --start 2024-01-01 --end 2024-06-30 --stop-loss 0.05 --take-profit 0.15
        """,
    )
    _ = parser.add_argument("--symbol", default="BTC", help="品种代码（默认 BTC）")
    _ = parser.add_argument(
        "--strategy",
        choices=STRATEGY_KINDS,
        default=BacktestConstants.STRATEGY_AI_PREDICTION,
        help="策略类型",
    )
    _ = parser.add_argument("--start", type=_parse_date, help="开始日期 YYYY-MM-DD")
    _ = parser.add_argument("--end", type=_parse_date, help="结束日期 YYYY-MM-DD（默认今天）")
    _ = parser.add_argument("--days", type=int, default=180, help="未指定 --start 时的回测天数")
    _ = parser.add_argument("--capital", type=float, help="初始资金")
    _ = parser.add_argument("--fee", type=float, help="手续费率，如 0.001")
    _ = parser.add_argument("--stop-loss", type=float, help="止损比例，如 0.05")
    _ = parser.add_argument("--take-profit", type=float, help="止盈比例，如 0.15")
    _ = parser.add_argument("--base-price", type=float, default=50_000.0, help="合成行情起始价格")
    _ = parser.add_argument("--seed", type=int, default=42, help="合成行情随机种子")
    _ = parser.add_argument("--format", choices=("markdown", "json"), default="markdown", help="报告格式")
    _ = parser.add_argument("--output", help="报告保存路径（默认输出到标准输出）")
    _ = parser.add_argument("--log-level", default="WARNING", help="日志级别")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(log_level=args.log_level.upper())

    end = args.end or datetime.combine(datetime.now().date(), datetime.min.time())
    start = args.start or end - timedelta(days=args.days)

    overrides = {"strategy": {"kind": args.strategy}}
    if args.capital is not None:
        overrides["initial_capital"] = args.capital
    if args.fee is not None:
        overrides["trading_fee_rate"] = args.fee
    if args.stop_loss is not None:
        overrides["stop_loss"] = args.stop_loss
    if args.take_profit is not None:
        overrides["take_profit"] = args.take_profit

    settings = SimulationSettings()
    provider = SyntheticDataProvider(base_price=args.base_price, seed=args.seed)

    try:
        config = create_simulation_config(args.symbol, start, end, settings=settings, **overrides)
        with SimulationService(market_data=provider, prediction_provider=provider, settings=settings) as service:
            job_id = service.submit(config)
            snapshot = service.wait(job_id)
            result = service.get_result(job_id)
    except SimulationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    if snapshot.status != JobStatus.COMPLETED or result is None:
        print(f"❌ Backtest {snapshot.status.value}: {snapshot.error}", file=sys.stderr)
        return 1

    generator = ReportGenerator(SimulationReport(result=result, description=f"synthetic data, seed={args.seed}"))
    if args.output:
        path = generator.save_to_file(args.output, format=args.format)
        print(f"✅ 报告已保存: {path}")
    elif args.format == "json":
        print(generator.to_json())
    else:
        print(generator.generate_markdown())
    return 0


if __name__ == "__main__":
    sys.exit(main())
