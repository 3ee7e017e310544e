"""
CryptoSim 配置设置
使用 pydantic-settings 进行配置验证和环境变量管理

环境变量统一使用 CRYPTOSIM_ 前缀，例如：
    CRYPTOSIM_MAX_ACTIVE_JOBS=5
    CRYPTOSIM_PROGRESS_INTERVAL=50
"""

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cryptosim.constants import BacktestConstants

# 在导入配置类之前优先加载项目根目录下的 .env
_ = load_dotenv()


class SimulationSettings(BaseSettings):
    """回测引擎与任务调度配置"""

    model_config = SettingsConfigDict(
        env_prefix="CRYPTOSIM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 回测默认参数
    default_initial_capital: float = Field(
        default=BacktestConstants.DEFAULT_INITIAL_CAPITAL, description="默认初始资金"
    )
    default_trading_fee_rate: float = Field(
        default=BacktestConstants.DEFAULT_TRADING_FEE_RATE, description="默认手续费率"
    )
    default_max_position_fraction: float = Field(
        default=BacktestConstants.DEFAULT_MAX_POSITION_FRACTION,
        description="单次买入占组合价值的最大比例",
    )

    # 校验与调度
    max_backtest_days: int = Field(
        default=BacktestConstants.MAX_BACKTEST_DAYS, description="回测区间最长天数"
    )
    progress_interval: int = Field(
        default=BacktestConstants.DEFAULT_PROGRESS_INTERVAL,
        description="每处理N根K线检查一次取消并上报进度",
    )
    max_active_jobs: int = Field(
        default=BacktestConstants.MAX_ACTIVE_JOBS, description="同时运行的回测任务上限"
    )

    # 日志
    log_level: str = Field(default="INFO", description="日志级别")
    json_logs: bool = Field(default=False, description="是否输出JSON日志")

    @field_validator("default_initial_capital")
    @classmethod
    def validate_capital(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("default_initial_capital must be positive")
        return v

    @field_validator("default_max_position_fraction")
    @classmethod
    def validate_position_fraction(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("default_max_position_fraction must be in (0, 1]")
        return v

    @field_validator("max_backtest_days", "progress_interval", "max_active_jobs")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be >= 1")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()
