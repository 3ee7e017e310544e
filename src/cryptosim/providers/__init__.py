"""External data contracts and bundled implementations."""

from .base import MarketDataProvider, PredictionProvider, ResultSink, RunSummary
from .memory import InMemoryMarketData, InMemoryPredictions, InMemoryResultSink
from .synthetic import SyntheticDataProvider, generate_sample_data

__all__ = [
    "MarketDataProvider",
    "PredictionProvider",
    "ResultSink",
    "RunSummary",
    "InMemoryMarketData",
    "InMemoryPredictions",
    "InMemoryResultSink",
    "SyntheticDataProvider",
    "generate_sample_data",
]
