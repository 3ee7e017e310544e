"""
CryptoSim 常量定义
"""


# ==================== Backtest Constants ====================

class BacktestConstants:
    """回测系统常量"""

    # 默认回测参数
    DEFAULT_INITIAL_CAPITAL = 50_000.0     # 初始资金：5万
    DEFAULT_TRADING_FEE_RATE = 0.001       # 手续费率：千分之1
    DEFAULT_MAX_POSITION_FRACTION = 0.25   # 单次最大仓位：组合价值的25%
    DEFAULT_INTERVAL = "1d"                # K线周期

    # 下单参数
    CASH_BUFFER = 0.95                     # 买入时最多动用95%现金，预留手续费/滑点
    DEFAULT_TRADE_REASON = "Strategy signal"
    STOP_LOSS_REASON = "Stop loss"
    TAKE_PROFIT_REASON = "Take profit"

    # 性能指标计算参数（加密货币 7x24 交易）
    DAYS_PER_YEAR = 365
    BENCHMARK_VOLATILITY = 0.16            # 基准假设年化波动率16%
    PROFIT_FACTOR_CAP = 999.0              # 无亏损时的利润因子

    # 信号参数
    DEFAULT_CONFIDENCE_THRESHOLD = 0.6
    DEFAULT_PRICE_CHANGE_THRESHOLD = 0.02  # 2%
    DEFAULT_LOOKBACK = 20
    DEFAULT_RSI_PERIOD = 14
    DEFAULT_SHORT_WINDOW = 10
    RSI_OVERBOUGHT = 70.0
    RSI_OVERSOLD = 30.0
    RSI_NEUTRAL = 50.0

    # 任务调度
    MIN_SIMULATION_BARS = 3                # 首根K线只作起点，至少产生2个权益采样
    DEFAULT_PROGRESS_INTERVAL = 100        # 每处理N根K线检查一次取消并上报进度
    MAX_BACKTEST_DAYS = 365                # 回测区间最长1年
    MAX_ACTIVE_JOBS = 3                    # 同时运行的回测任务上限

    # 策略类型
    STRATEGY_AI_PREDICTION = "ai_prediction"
    STRATEGY_TECHNICAL_ANALYSIS = "technical_analysis"
    STRATEGY_BUY_AND_HOLD = "buy_and_hold"
