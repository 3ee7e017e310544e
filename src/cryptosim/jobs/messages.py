"""
Worker channel protocol.

A worker thread never touches its SimulationJob directly. It posts typed
messages to the service's outbound queue and the service dispatcher applies
them to the job in order.
"""

from dataclasses import dataclass
from enum import Enum

from cryptosim.backtest.engine import ProgressUpdate, SimulationResult


class MessageType(Enum):
    START = "start"
    PROGRESS = "progress"
    RESULT = "result"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StartPayload:
    total_bars: int


@dataclass(frozen=True)
class ProgressPayload:
    progress: float
    bars_processed: int
    total_bars: int
    portfolio_value: float
    total_trades: int

    @classmethod
    def from_update(cls, update: ProgressUpdate) -> "ProgressPayload":
        return cls(
            progress=update.progress,
            bars_processed=update.bars_processed,
            total_bars=update.total_bars,
            portfolio_value=update.portfolio_value,
            total_trades=update.total_trades,
        )


@dataclass(frozen=True)
class ErrorPayload:
    error_type: str
    message: str
    bars_processed: int = 0


@dataclass(frozen=True)
class CancelledPayload:
    bars_processed: int
    progress: float


Payload = StartPayload | ProgressPayload | SimulationResult | ErrorPayload | CancelledPayload


@dataclass(frozen=True)
class WorkerMessage:
    job_id: str
    type: MessageType
    payload: Payload | None = None


# Sentinel that tells the dispatcher to exit
SHUTDOWN = WorkerMessage(job_id="", type=MessageType.CANCELLED)
