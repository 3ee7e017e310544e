"""
回测工作线程

每个任务一个线程，线程内独占自己的回测循环、账户状态和成交记录。
工作线程只通过消息与服务通信：

    START -> PROGRESS* -> RESULT | ERROR | CANCELLED

教学要点：
1. 线程隔离：任务之间没有共享的可变状态
2. 消息传递代替直接修改任务对象
3. 协作式取消：threading.Event 只在挂起点被检查
"""

import queue
import threading
from typing import Callable, Sequence

from cryptosim.backtest.config import SimulationConfig, StrategyConfig
from cryptosim.backtest.engine import ProgressUpdate, SimulationLoop
from cryptosim.backtest.models import PredictionPoint, PriceSeries
from cryptosim.backtest.signals import SignalSource, build_signal_source
from cryptosim.exceptions import CancelledError, DataUnavailableError, ExecutionError, SimulationError
from cryptosim.logging_config import get_logger, job_log_context
from cryptosim.providers.base import MarketDataProvider, PredictionProvider

from .messages import (
    CancelledPayload,
    ErrorPayload,
    MessageType,
    ProgressPayload,
    StartPayload,
    WorkerMessage,
)

logger = get_logger(__name__)


class SimulationWorker(threading.Thread):
    """执行单个回测任务的后台线程"""

    def __init__(
        self,
        job_id: str,
        config: SimulationConfig,
        outbox: "queue.Queue[WorkerMessage]",
        cancel_event: threading.Event,
        loop: SimulationLoop,
        series: PriceSeries | None = None,
        predictions: Sequence[PredictionPoint] | None = None,
        market_data: MarketDataProvider | None = None,
        prediction_provider: PredictionProvider | None = None,
        signal_factory: Callable[[StrategyConfig], SignalSource] = build_signal_source,
    ):
        super().__init__(name=f"simulation-{job_id[:8]}", daemon=True)
        self.job_id = job_id
        self.config = config
        self.outbox = outbox
        self.cancel_event = cancel_event
        self.loop = loop
        self.series = series
        self.predictions = predictions
        self.market_data = market_data
        self.prediction_provider = prediction_provider
        self.signal_factory = signal_factory
        self._bars_processed = 0

    def _post(self, message_type: MessageType, payload=None) -> None:
        self.outbox.put(WorkerMessage(job_id=self.job_id, type=message_type, payload=payload))

    def _on_progress(self, update: ProgressUpdate) -> None:
        self._bars_processed = update.bars_processed
        self._post(MessageType.PROGRESS, ProgressPayload.from_update(update))

    def _load_series(self) -> PriceSeries:
        if self.series is not None:
            return self.series
        if self.market_data is None:
            raise DataUnavailableError(f"No price series given and no market data provider for {self.config.symbol}")
        return self.market_data.get_historical_series(
            self.config.symbol, self.config.start_date, self.config.end_date
        )

    def _load_predictions(self) -> Sequence[PredictionPoint]:
        if self.predictions is not None:
            return self.predictions
        if self.prediction_provider is None:
            return ()
        return self.prediction_provider.get_predictions(
            self.config.symbol, self.config.start_date, self.config.end_date
        )

    def run(self) -> None:
        with job_log_context(self.job_id, symbol=self.config.symbol):
            self._execute()

    def _execute(self) -> None:
        try:
            series = self._load_series()
            predictions = self._load_predictions()
            signal_source = self.signal_factory(self.config.strategy)
            self.loop.check_inputs(self.config, series)

            self._post(MessageType.START, StartPayload(total_bars=len(series)))

            result = self.loop.run(
                self.config,
                series,
                signal_source,
                predictions=predictions,
                on_progress=self._on_progress,
                cancel_token=self.cancel_event,
            )
        except CancelledError as e:
            self._post(
                MessageType.CANCELLED,
                CancelledPayload(bars_processed=e.bars_processed, progress=e.progress),
            )
        except SimulationError as e:
            bars = e.bar_index if isinstance(e, ExecutionError) and e.bar_index is not None else self._bars_processed
            logger.warning("worker_simulation_error", error_type=type(e).__name__, error=str(e))
            self._post(
                MessageType.ERROR,
                ErrorPayload(error_type=type(e).__name__, message=str(e), bars_processed=bars),
            )
        except Exception as e:
            # 数据源等外部依赖抛出的意外异常，记录为任务失败
            logger.exception("worker_unexpected_error", error=str(e))
            self._post(
                MessageType.ERROR,
                ErrorPayload(error_type=type(e).__name__, message=str(e), bars_processed=self._bars_processed),
            )
        else:
            self._post(MessageType.RESULT, result)
