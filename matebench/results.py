# Solve outcomes and aggregation
"""
Per-position solve outcomes and their thread-safe aggregation into a
``BenchmarkReport``.

Timing statistics are accumulated incrementally (Welford) so memory for the
distribution stays constant regardless of how many positions are benchmarked.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class OutcomeKind(Enum):
    MATE_FOUND = "mate"
    NO_MATE = "nomate"
    TIMEOUT = "timeout"
    ENGINE_ERROR = "error"


@dataclass(frozen=True)
class SolveOutcome:
    """Result of solving one position."""
    index: int
    kind: OutcomeKind
    elapsed: float
    depth: Optional[int] = None
    nodes: int = 0
    raw_output: Optional[str] = None
    source: Optional[str] = None
    worker_id: Optional[int] = None

    @property
    def solved(self) -> bool:
        return self.kind is OutcomeKind.MATE_FOUND

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "kind": self.kind.value,
            "elapsed": self.elapsed,
            "depth": self.depth,
            "nodes": self.nodes,
            "raw_output": self.raw_output,
            "source": self.source,
            "worker_id": self.worker_id,
        }


@dataclass
class TimingStats:
    """Running min/max/mean/variance of solve durations."""
    count: int = 0
    min: float = math.inf
    max: float = 0.0
    mean: float = 0.0
    _m2: float = 0.0

    def add(self, value: float):
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self._m2 += delta * (value - self.mean)
        if value < self.min:
            self.min = value
        if value > self.max:
            self.max = value

    @property
    def stddev(self) -> float:
        if self.count < 2:
            return 0.0
        return math.sqrt(self._m2 / (self.count - 1))

    def to_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "min": self.min if self.count else 0.0,
            "max": self.max,
            "mean": self.mean,
            "stddev": self.stddev,
        }


@dataclass
class SourceStats:
    """Per-file breakdown, mirroring the per-file lines the benchmark prints."""
    source: str
    positions: int = 0
    mate: int = 0
    nomate: int = 0
    timeouts: int = 0
    errors: int = 0
    nodes: int = 0
    solve_time: float = 0.0

    def add(self, outcome: SolveOutcome):
        self.positions += 1
        self.nodes += outcome.nodes
        self.solve_time += outcome.elapsed
        if outcome.kind is OutcomeKind.MATE_FOUND:
            self.mate += 1
        elif outcome.kind is OutcomeKind.NO_MATE:
            self.nomate += 1
        elif outcome.kind is OutcomeKind.TIMEOUT:
            self.timeouts += 1
        else:
            self.errors += 1

    @property
    def nps(self) -> float:
        return self.nodes / self.solve_time if self.solve_time > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "positions": self.positions,
            "mate": self.mate,
            "nomate": self.nomate,
            "timeouts": self.timeouts,
            "errors": self.errors,
            "nodes": self.nodes,
            "solve_time": self.solve_time,
            "nps": self.nps,
        }


@dataclass
class BenchmarkReport:
    """Aggregate of every recorded SolveOutcome."""
    total_positions: int
    solved: int
    failed: int
    counts: Dict[OutcomeKind, int]
    timing: TimingStats
    total_nodes: int
    wall_time: float
    worker_restarts: Dict[int, int] = field(default_factory=dict)
    worker_respawns: Dict[int, int] = field(default_factory=dict)
    fatal_workers: Tuple[int, ...] = ()
    sources: Dict[str, SourceStats] = field(default_factory=dict)
    unsolved_indices: List[int] = field(default_factory=list)
    outcomes: List[SolveOutcome] = field(default_factory=list)
    cancelled: bool = False
    unrecorded: int = 0

    @property
    def recorded(self) -> int:
        return self.solved + self.failed

    @property
    def success_rate(self) -> float:
        if self.recorded == 0:
            return 0.0
        return self.solved / self.recorded

    @property
    def nps(self) -> float:
        """Nodes per second over the summed solve time of all positions."""
        total = self.timing.mean * self.timing.count
        return self.total_nodes / total if total > 0 else 0.0

    @property
    def total_restarts(self) -> int:
        return sum(self.worker_restarts.values())

    @property
    def total_respawns(self) -> int:
        """Engines replaced after a timeout; these do not count as restarts."""
        return sum(self.worker_respawns.values())

    def ordered_outcomes(self) -> List[SolveOutcome]:
        """Outcomes restored to input order."""
        return sorted(self.outcomes, key=lambda o: o.index)

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary."""
        return {
            "total_positions": self.total_positions,
            "recorded": self.recorded,
            "solved": self.solved,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "counts": {kind.value: n for kind, n in self.counts.items()},
            "timing": self.timing.to_dict(),
            "total_nodes": self.total_nodes,
            "nps": self.nps,
            "wall_time": self.wall_time,
            "worker_restarts": {str(k): v for k, v in self.worker_restarts.items()},
            "worker_respawns": {str(k): v for k, v in self.worker_respawns.items()},
            "fatal_workers": list(self.fatal_workers),
            "sources": {name: s.to_dict() for name, s in self.sources.items()},
            "unsolved_indices": list(self.unsolved_indices),
            "outcomes": [o.to_dict() for o in self.ordered_outcomes()],
            "cancelled": self.cancelled,
            "unrecorded": self.unrecorded,
        }


class ResultAggregator:
    """Thread-safe accumulator of SolveOutcomes.

    ``record`` may be called concurrently from every worker. ``finalize`` is
    called once, after the pool has joined.
    """

    def __init__(self, total_positions: int):
        self.total_positions = total_positions
        self._lock = threading.Lock()
        self._counts: Dict[OutcomeKind, int] = {kind: 0 for kind in OutcomeKind}
        self._timing = TimingStats()
        self._nodes = 0
        self._sources: Dict[str, SourceStats] = {}
        self._unsolved: List[int] = []
        self._outcomes: List[SolveOutcome] = []
        self._seen = set()
        self._started = time.perf_counter()

    def record(self, outcome: SolveOutcome):
        with self._lock:
            if outcome.index in self._seen:
                # A second outcome for one position means the queue handed it out twice.
                raise ValueError(f"Outcome for position {outcome.index} recorded twice")
            self._seen.add(outcome.index)
            self._counts[outcome.kind] += 1
            self._timing.add(outcome.elapsed)
            self._nodes += outcome.nodes
            self._outcomes.append(outcome)
            if not outcome.solved:
                self._unsolved.append(outcome.index)
            if outcome.source is not None:
                stats = self._sources.get(outcome.source)
                if stats is None:
                    stats = self._sources[outcome.source] = SourceStats(outcome.source)
                stats.add(outcome)

        logger.debug(f"Recorded position {outcome.index}: {outcome.kind.value} in {outcome.elapsed:.3f}s")

    @property
    def recorded(self) -> int:
        with self._lock:
            return len(self._outcomes)

    def finalize(self, worker_restarts: Optional[Dict[int, int]] = None,
                 fatal_workers: Tuple[int, ...] = (), cancelled: bool = False,
                 worker_respawns: Optional[Dict[int, int]] = None) -> BenchmarkReport:
        with self._lock:
            solved = self._counts[OutcomeKind.MATE_FOUND]
            recorded = len(self._outcomes)
            return BenchmarkReport(
                total_positions=self.total_positions,
                solved=solved,
                failed=recorded - solved,
                counts=dict(self._counts),
                timing=replace(self._timing),
                total_nodes=self._nodes,
                wall_time=time.perf_counter() - self._started,
                worker_restarts=dict(worker_restarts or {}),
                worker_respawns=dict(worker_respawns or {}),
                fatal_workers=tuple(fatal_workers),
                sources=dict(self._sources),
                unsolved_indices=sorted(self._unsolved),
                outcomes=list(self._outcomes),
                cancelled=cancelled,
                unrecorded=self.total_positions - recorded,
            )
