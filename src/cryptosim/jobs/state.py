"""
回测任务状态机

状态流转：
    queued -> running -> completed | failed | cancelled
    queued -> failed | cancelled

终态（completed / failed / cancelled）不可再转换。
所有修改都在任务自身的锁内完成，调用方读取的是不可变快照。
"""

import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from cryptosim.backtest.config import SimulationConfig
from cryptosim.backtest.engine import SimulationResult
from cryptosim.exceptions import JobStateError


class JobStatus(Enum):
    """任务状态"""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class JobSnapshot:
    """任务的只读快照"""
    id: str
    symbol: str
    status: JobStatus
    progress: float
    created_at: datetime
    started_at: datetime | None
    finished_at: datetime | None
    error: str | None
    bars_processed: int
    total_bars: int
    cancel_requested: bool
    has_result: bool

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def execution_time(self) -> float | None:
        """运行耗时（秒）"""
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class SimulationJob:
    """
    回测任务

    由 SimulationService 持有；结果只在 completed 状态下可读。
    """

    def __init__(self, config: SimulationConfig, job_id: str | None = None):
        self.id = job_id or uuid.uuid4().hex
        self.config = config
        self.status = JobStatus.QUEUED
        self.progress = 0.0
        self.created_at = datetime.now()
        self.started_at: datetime | None = None
        self.finished_at: datetime | None = None
        self.result: SimulationResult | None = None
        self.error: str | None = None
        self.bars_processed = 0
        self.total_bars = 0

        self.cancel_event = threading.Event()
        self._lock = threading.Lock()

    def _transition(self, target: JobStatus) -> None:
        # 调用方需持有 self._lock
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise JobStateError(
                f"Job {self.id}: illegal transition {self.status.value} -> {target.value}"
            )
        self.status = target
        if target == JobStatus.RUNNING:
            self.started_at = datetime.now()
        elif target.is_terminal:
            self.finished_at = datetime.now()

    def mark_running(self, total_bars: int = 0) -> None:
        with self._lock:
            self._transition(JobStatus.RUNNING)
            self.total_bars = total_bars

    def update_progress(self, progress: float, bars_processed: int | None = None) -> float:
        """
        更新进度

        进度限制在 [0, 100] 且单调不减；返回更新后的进度。
        """
        with self._lock:
            if self.status.is_terminal:
                raise JobStateError(f"Job {self.id} is {self.status.value}, progress is frozen")
            clamped = min(max(progress, 0.0), 100.0)
            self.progress = max(self.progress, clamped)
            if bars_processed is not None:
                self.bars_processed = max(self.bars_processed, bars_processed)
            return self.progress

    def complete(self, result: SimulationResult) -> None:
        with self._lock:
            self._transition(JobStatus.COMPLETED)
            self.result = result
            self.progress = 100.0
            self.bars_processed = len(result.equity_curve)

    def fail(self, error: str, bars_processed: int | None = None) -> None:
        with self._lock:
            self._transition(JobStatus.FAILED)
            self.error = error
            if bars_processed is not None:
                self.bars_processed = bars_processed

    def mark_cancelled(self, bars_processed: int | None = None, progress: float | None = None) -> None:
        """取消完成：保留进度信息，不记录错误，不保留部分结果"""
        with self._lock:
            self._transition(JobStatus.CANCELLED)
            if bars_processed is not None:
                self.bars_processed = bars_processed
            if progress is not None:
                self.progress = max(self.progress, min(max(progress, 0.0), 100.0))

    def request_cancel(self) -> bool:
        """
        请求取消

        Returns:
            任务已处于终态时返回 False，否则设置取消标志并返回 True
        """
        with self._lock:
            if self.status.is_terminal:
                return False
            self.cancel_event.set()
            return True

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()

    def snapshot(self) -> JobSnapshot:
        with self._lock:
            return JobSnapshot(
                id=self.id,
                symbol=self.config.symbol,
                status=self.status,
                progress=self.progress,
                created_at=self.created_at,
                started_at=self.started_at,
                finished_at=self.finished_at,
                error=self.error,
                bars_processed=self.bars_processed,
                total_bars=self.total_bars,
                cancel_requested=self.cancel_event.is_set(),
                has_result=self.result is not None,
            )

    def __repr__(self) -> str:
        return f"SimulationJob(id={self.id!r}, symbol={self.config.symbol!r}, status={self.status.value})"
