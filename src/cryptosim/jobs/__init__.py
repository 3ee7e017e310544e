"""
回测任务管理

提交、查询、取消回测任务；每个任务在独立的后台线程中运行。
"""

from .messages import MessageType, ProgressPayload, WorkerMessage
from .service import SimulationService
from .state import JobSnapshot, JobStatus, SimulationJob
from .worker import SimulationWorker

__all__ = [
    "MessageType",
    "ProgressPayload",
    "WorkerMessage",
    "SimulationService",
    "JobSnapshot",
    "JobStatus",
    "SimulationJob",
    "SimulationWorker",
]
