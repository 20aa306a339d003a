from .driver import BenchmarkDriver, BenchmarkReport, SetupError
from .metrics import MetricSample, MetricsScrapeError, MetricsScraper
from .pool import PhaseResult, WorkerPool, WorkQueue, WorkQueueClosed
from .retry import RetryPolicy, fixed_delay

__all__ = [
    "BenchmarkDriver",
    "BenchmarkReport",
    "MetricSample",
    "MetricsScrapeError",
    "MetricsScraper",
    "PhaseResult",
    "RetryPolicy",
    "SetupError",
    "WorkQueue",
    "WorkQueueClosed",
    "WorkerPool",
    "fixed_delay",
]
