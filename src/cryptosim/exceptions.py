"""
回测系统异常定义

异常层次：
- SimulationError
  - ValidationError        配置校验失败（提交时同步抛出，不重试）
  - InsufficientDataError  价格数据不足
    - DataUnavailableError 行情数据源无法提供足够数据
  - CancelledError         协作式取消，用于干净地退出回测循环
  - ExecutionError         策略/撮合过程中的意外异常
  - JobStateError          非法的任务状态转换
  - JobNotFoundError       任务不存在
  - JobLimitError          活跃任务数超过上限
"""


class SimulationError(Exception):
    """回测系统异常基类"""


class ValidationError(SimulationError):
    """配置校验失败"""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class InsufficientDataError(SimulationError):
    """价格序列太短，无法回测或计算指标"""


class DataUnavailableError(InsufficientDataError):
    """行情数据源在给定区间内不足2根K线"""


class CancelledError(SimulationError):
    """回测被取消（不是真正的失败）"""

    def __init__(self, bars_processed: int = 0, progress: float = 0.0):
        super().__init__(f"Simulation cancelled after {bars_processed} bars")
        self.bars_processed = bars_processed
        self.progress = progress


class ExecutionError(SimulationError):
    """策略或撮合过程中抛出的意外异常"""

    def __init__(self, message: str, bar_index: int | None = None):
        super().__init__(message)
        self.bar_index = bar_index


class JobStateError(SimulationError):
    """非法的任务状态转换"""


class JobNotFoundError(SimulationError):
    """任务不存在"""


class JobLimitError(SimulationError):
    """活跃任务数超过上限"""
