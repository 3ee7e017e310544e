"""
回测任务服务

功能：
1. 提交回测（同步校验配置，异步执行）
2. 查询任务状态与进度
3. 协作式取消
4. 获取回测结果、发布结果摘要
5. 任务统计与清理

工作线程把消息写入服务的出站队列，分发线程按顺序把消息应用到任务对象上，
并把进度推送给监听器。

教学要点：
1. 生产者-消费者模式（queue.Queue）
2. 状态机驱动的任务生命周期
3. 监听器异常隔离：回调失败只记录日志，不影响回测
"""

import queue
import statistics
import threading
from datetime import datetime
from typing import Callable, Sequence

from cryptosim.backtest.config import SimulationConfig, StrategyConfig
from cryptosim.backtest.engine import SimulationLoop, SimulationResult
from cryptosim.backtest.models import PredictionPoint, PriceSeries
from cryptosim.backtest.signals import SignalSource, build_signal_source
from cryptosim.config.settings import SimulationSettings
from cryptosim.exceptions import JobLimitError, JobNotFoundError, SimulationError
from cryptosim.logging_config import get_logger
from cryptosim.providers.base import MarketDataProvider, PredictionProvider, ResultSink, RunSummary

from .messages import SHUTDOWN, MessageType, ProgressPayload, WorkerMessage
from .state import JobSnapshot, JobStatus, SimulationJob
from .worker import SimulationWorker

logger = get_logger(__name__)

ProgressListener = Callable[[str, ProgressPayload], None]


class SimulationService:
    """
    回测任务服务

    显式创建并注入数据源，不使用模块级单例。
    可作为上下文管理器使用，退出时自动 shutdown。
    """

    def __init__(
        self,
        market_data: MarketDataProvider | None = None,
        prediction_provider: PredictionProvider | None = None,
        result_sink: ResultSink | None = None,
        settings: SimulationSettings | None = None,
        signal_factory: Callable[[StrategyConfig], SignalSource] = build_signal_source,
    ):
        self.market_data = market_data
        self.prediction_provider = prediction_provider
        self.result_sink = result_sink
        self.settings = settings or SimulationSettings()
        self.signal_factory = signal_factory

        self._jobs: dict[str, SimulationJob] = {}
        self._workers: dict[str, SimulationWorker] = {}
        self._finished: dict[str, threading.Event] = {}
        self._listeners: dict[str, list[ProgressListener]] = {}
        self._lock = threading.RLock()
        self._closed = False

        self._outbox: "queue.Queue[WorkerMessage]" = queue.Queue()
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name="simulation-dispatcher", daemon=True
        )
        self._dispatcher.start()

    # ==================== 提交与查询 ====================

    def submit(
        self,
        config: SimulationConfig,
        series: PriceSeries | None = None,
        predictions: Sequence[PredictionPoint] | None = None,
    ) -> str:
        """
        提交回测任务

        Args:
            config: 回测配置
            series: 价格序列；为空时由行情数据源在工作线程中加载
            predictions: 外部预测；为空时从预测数据源加载（没有数据源则不使用预测）

        Returns:
            任务ID

        Raises:
            ValidationError: 配置非法（同步抛出）
            JobLimitError: 活跃任务数已达上限
        """
        config.validate_for_submission(max_days=self.settings.max_backtest_days)

        with self._lock:
            if self._closed:
                raise SimulationError("SimulationService has been shut down")

            active = sum(1 for job in self._jobs.values() if not job.status.is_terminal)
            if active >= self.settings.max_active_jobs:
                raise JobLimitError(
                    f"Too many active simulations ({active}/{self.settings.max_active_jobs})"
                )

            job = SimulationJob(config)
            worker = SimulationWorker(
                job_id=job.id,
                config=config,
                outbox=self._outbox,
                cancel_event=job.cancel_event,
                loop=SimulationLoop(progress_interval=self.settings.progress_interval),
                series=series,
                predictions=predictions,
                market_data=self.market_data,
                prediction_provider=self.prediction_provider,
                signal_factory=self.signal_factory,
            )
            self._jobs[job.id] = job
            self._workers[job.id] = worker
            self._finished[job.id] = threading.Event()

        logger.info(
            "job_submitted",
            job_id=job.id,
            symbol=config.symbol,
            strategy=config.strategy.kind,
            start_date=config.start_date.isoformat(),
            end_date=config.end_date.isoformat(),
        )
        worker.start()
        return job.id

    def _get(self, job_id: str) -> SimulationJob:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    def get_job(self, job_id: str) -> JobSnapshot:
        return self._get(job_id).snapshot()

    def cancel(self, job_id: str) -> bool:
        """
        请求取消任务

        Returns:
            已处于终态的任务返回 False
        """
        requested = self._get(job_id).request_cancel()
        logger.info("job_cancel_requested", job_id=job_id, accepted=requested)
        return requested

    def get_result(self, job_id: str) -> SimulationResult | None:
        """获取回测结果（仅 completed 状态）"""
        job = self._get(job_id)
        if job.status != JobStatus.COMPLETED:
            return None
        return job.result

    def wait(self, job_id: str, timeout: float | None = None) -> JobSnapshot:
        """等待任务进入终态（或超时），返回当前快照"""
        self._get(job_id)
        with self._lock:
            finished = self._finished.get(job_id)
        if finished is not None:
            finished.wait(timeout)
        return self.get_job(job_id)

    def list_jobs(self) -> list[JobSnapshot]:
        with self._lock:
            jobs = list(self._jobs.values())
        return sorted((job.snapshot() for job in jobs), key=lambda s: s.created_at)

    def active_jobs(self) -> list[JobSnapshot]:
        return [snapshot for snapshot in self.list_jobs() if not snapshot.is_terminal]

    def stats(self) -> dict:
        """任务统计：按状态计数和平均执行时间（秒）"""
        snapshots = self.list_jobs()
        by_status = {status.value: 0 for status in JobStatus}
        for snapshot in snapshots:
            by_status[snapshot.status.value] += 1

        durations = [
            s.execution_time for s in snapshots
            if s.status == JobStatus.COMPLETED and s.execution_time is not None
        ]
        return {
            "total": len(snapshots),
            "active": by_status[JobStatus.QUEUED.value] + by_status[JobStatus.RUNNING.value],
            "by_status": by_status,
            "average_execution_time": statistics.fmean(durations) if durations else 0.0,
        }

    # ==================== 监听器 ====================

    def add_progress_listener(self, job_id: str, callback: ProgressListener) -> None:
        self._get(job_id)
        with self._lock:
            self._listeners.setdefault(job_id, []).append(callback)

    def remove_progress_listener(self, job_id: str, callback: ProgressListener) -> bool:
        with self._lock:
            listeners = self._listeners.get(job_id, [])
            if callback in listeners:
                listeners.remove(callback)
                return True
            return False

    def _notify_progress(self, job_id: str, payload: ProgressPayload) -> None:
        with self._lock:
            listeners = list(self._listeners.get(job_id, []))

        for callback in listeners:
            try:
                callback(job_id, payload)
            except Exception as e:
                logger.warning("progress_listener_failed", job_id=job_id, error=str(e))

    # ==================== 生命周期 ====================

    def cleanup_finished(self) -> int:
        """删除所有终态任务，返回删除数量"""
        with self._lock:
            finished_ids = [job_id for job_id, job in self._jobs.items() if job.status.is_terminal]
            for job_id in finished_ids:
                self._jobs.pop(job_id, None)
                self._workers.pop(job_id, None)
                self._finished.pop(job_id, None)
                self._listeners.pop(job_id, None)

        if finished_ids:
            logger.info("jobs_cleaned_up", count=len(finished_ids))
        return len(finished_ids)

    def shutdown(self, cancel_running: bool = True, timeout: float | None = None) -> None:
        """
        停止服务

        Args:
            cancel_running: 是否取消仍在运行的任务
            timeout: 等待每个工作线程结束的最长时间
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            jobs = list(self._jobs.values())
            workers = list(self._workers.values())

        if cancel_running:
            for job in jobs:
                job.request_cancel()

        for worker in workers:
            worker.join(timeout)

        # 工作线程的剩余消息先于哨兵被处理
        self._outbox.put(SHUTDOWN)
        self._dispatcher.join(timeout)
        logger.info("simulation_service_stopped", jobs=len(jobs))

    def __enter__(self) -> "SimulationService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # ==================== 消息分发 ====================

    def _dispatch_loop(self) -> None:
        while True:
            message = self._outbox.get()
            try:
                if message is SHUTDOWN:
                    return
                self._apply(message)
            except SimulationError as e:
                logger.error(
                    "worker_message_rejected",
                    job_id=message.job_id,
                    message_type=message.type.value,
                    error=str(e),
                )
            except Exception as e:
                # 分发线程必须存活；非进度消息处理失败时仍释放等待者
                logger.exception(
                    "worker_message_failed",
                    job_id=message.job_id,
                    message_type=message.type.value,
                )
                if message.type != MessageType.PROGRESS:
                    self._recover(message, e)
            finally:
                self._outbox.task_done()

    def _apply(self, message: WorkerMessage) -> None:
        with self._lock:
            job = self._jobs.get(message.job_id)
        if job is None:
            return

        payload = message.payload
        match message.type:
            case MessageType.START:
                job.mark_running(total_bars=payload.total_bars)
                logger.info("job_started", job_id=job.id, total_bars=payload.total_bars)

            case MessageType.PROGRESS:
                job.update_progress(payload.progress, payload.bars_processed)
                self._notify_progress(job.id, payload)

            case MessageType.RESULT:
                job.complete(payload)
                logger.info(
                    "job_completed",
                    job_id=job.id,
                    trades=len(payload.trades),
                    final_value=round(payload.final_value, 2),
                    total_return_pct=round(payload.metrics.total_return_pct, 4),
                )
                self._publish(job, payload)
                self._mark_finished(job.id)

            case MessageType.ERROR:
                job.fail(f"{payload.error_type}: {payload.message}", bars_processed=payload.bars_processed)
                logger.error(
                    "job_failed",
                    job_id=job.id,
                    error_type=payload.error_type,
                    error=payload.message,
                    bars_processed=payload.bars_processed,
                )
                self._mark_finished(job.id)

            case MessageType.CANCELLED:
                job.mark_cancelled(bars_processed=payload.bars_processed, progress=payload.progress)
                logger.info(
                    "job_cancelled",
                    job_id=job.id,
                    bars_processed=payload.bars_processed,
                    progress=round(payload.progress, 2),
                )
                self._mark_finished(job.id)

    def _recover(self, message: WorkerMessage, error: Exception) -> None:
        """消息处理意外失败：未到终态的任务记为失败并停止其工作线程"""
        with self._lock:
            job = self._jobs.get(message.job_id)
        if job is None:
            return

        if job.request_cancel():
            job.fail(f"{type(error).__name__}: {error}")
        self._mark_finished(job.id)

    def _publish(self, job: SimulationJob, result: SimulationResult) -> None:
        if self.result_sink is None:
            return
        try:
            summary = RunSummary.from_result(job.id, result, completed_at=job.finished_at or datetime.now())
            self.result_sink.publish(summary, result)
        except Exception as e:
            logger.error("result_publish_failed", job_id=job.id, error=str(e))

    def _mark_finished(self, job_id: str) -> None:
        with self._lock:
            self._workers.pop(job_id, None)
            finished = self._finished.get(job_id)
        if finished is not None:
            finished.set()
