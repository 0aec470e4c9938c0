# matebench
"""
Throughput and latency benchmarking for mate-solving engines.

A pool of workers drives persistent engine subprocesses over a batch of
positions and aggregates solve outcomes and timings into a report:

- EngineSession: one engine subprocess and its protocol state machine
- JobQueue: exactly-once hand-out of positions with bounded requeueing
- WorkerPool: supervises workers, restarts broken engines, handles cancellation
- ResultAggregator: thread-safe accumulation into a BenchmarkReport
"""

__version__ = "1.0.0"

from matebench.config import BenchmarkConfig, ConfigManager, EngineConfig, RunConfig
from matebench.errors import (ConfigurationError, MateBenchError, PoolExhaustedError,
                              ProtocolError, SessionStartFailure, SolveTimeout)
from matebench.job_queue import JobQueue
from matebench.pool import WorkerPool, run_benchmark
from matebench.positions import PositionRecord, PositionSource
from matebench.results import BenchmarkReport, OutcomeKind, ResultAggregator, SolveOutcome
from matebench.session import EngineSession, SessionState

__all__ = [
    "BenchmarkConfig",
    "BenchmarkReport",
    "ConfigManager",
    "ConfigurationError",
    "EngineConfig",
    "EngineSession",
    "JobQueue",
    "MateBenchError",
    "OutcomeKind",
    "PoolExhaustedError",
    "PositionRecord",
    "PositionSource",
    "ProtocolError",
    "ResultAggregator",
    "RunConfig",
    "SessionStartFailure",
    "SessionState",
    "SolveOutcome",
    "SolveTimeout",
    "WorkerPool",
    "run_benchmark",
]
