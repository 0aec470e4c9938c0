# Worker pool
"""
Workers pair one engine session with the shared job queue; the pool launches
them, joins them, and turns their results into a BenchmarkReport.
"""

import logging
import threading
import time
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from matebench.config import EngineConfig, RunConfig
from matebench.errors import ConfigurationError, PoolExhaustedError, ProtocolError, SessionStartFailure
from matebench.job_queue import JobQueue
from matebench.positions import PositionRecord
from matebench.results import BenchmarkReport, OutcomeKind, ResultAggregator, SolveOutcome
from matebench.session import EngineSession

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SolveOutcome], None]


class Worker:
    """Drives one engine session against the job queue until the queue runs dry
    or no session can be started within the restart bound."""

    def __init__(self, worker_id: int, engine_config: EngineConfig, run_config: RunConfig,
                 job_queue: JobQueue, aggregator: ResultAggregator,
                 progress: Optional[ProgressCallback] = None):
        self.worker_id = worker_id
        self.engine_config = engine_config
        self.run_config = run_config
        self.queue = job_queue
        self.aggregator = aggregator
        self.progress = progress

        self.session: Optional[EngineSession] = None
        self.launches = 0
        self.restarts = 0
        self.respawns = 0
        self.processed = 0
        self.fatal = False
        self.last_error: Optional[str] = None
        self._session_lock = threading.Lock()
        # How the previous session ended: broken counts against max_restarts.
        self._broken = False
        self._timed_out = False

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")
        record = None
        try:
            while True:
                record = self.queue.claim()
                if record is None:
                    break
                session = self._ensure_session()
                if session is None or self.queue.cancelled:
                    self.queue.release(record)
                    record = None
                    if not self.queue.cancelled:
                        self.fatal = True
                        logger.error(f"Worker {self.worker_id} giving up after {self.restarts} restart(s): {self.last_error}")
                    break
                self._solve(session, record)
                record = None
        except Exception as e:
            logger.exception(f"Worker {self.worker_id} crashed: {e}")
            self.fatal = True
            self.last_error = str(e)
        finally:
            if record is not None:
                self.queue.release(record)
            self._discard_session()
        logger.debug(f"Worker {self.worker_id} finished: {self.processed} positions, "
                     f"{self.restarts} restart(s), {self.respawns} respawn(s) after timeouts")

    def abort(self):
        """Kill the current engine from another thread."""
        with self._session_lock:
            session = self.session
        if session is not None:
            session.abort()

    def _solve(self, session: EngineSession, record: PositionRecord):
        try:
            outcome = session.solve(record, self.run_config.solve_timeout)
        except ProtocolError as e:
            if self.queue.cancelled:
                self.queue.release(record)
                return
            self._broken = True
            self.last_error = e.args[0]
            self._discard_session()
            if not self.queue.requeue(record):
                outcome = e.outcome or SolveOutcome(
                    index=record.index, kind=OutcomeKind.ENGINE_ERROR, elapsed=0.0,
                    raw_output=e.args[0], source=record.source,
                )
                self._record(outcome)
            return

        self._timed_out = outcome.kind is OutcomeKind.TIMEOUT and not session.is_alive
        self._record(outcome)
        self.queue.complete(record)

    def _record(self, outcome: SolveOutcome):
        outcome = replace(outcome, worker_id=self.worker_id)
        self.aggregator.record(outcome)
        self.processed += 1
        if self.progress is not None:
            self.progress(outcome)

    def _ensure_session(self) -> Optional[EngineSession]:
        """Return a live session, starting one if needed.

        Only replacements for a failed start or a protocol death count against
        ``max_restarts``; a session killed by a timeout is replaced for free.
        """
        if self.session is not None and self.session.is_alive:
            return self.session
        if self.launches > 0 and not self._timed_out and not self._broken:
            self._broken = True
            self.last_error = "Engine exited unexpectedly between positions"
        self._discard_session()

        while True:
            if self.queue.cancelled:
                return None
            if self._broken:
                if self.restarts >= self.run_config.max_restarts:
                    return None
                self.restarts += 1
                logger.warning(f"Worker {self.worker_id}: restarting engine ({self.restarts}/{self.run_config.max_restarts})")
            elif self._timed_out:
                self.respawns += 1
                logger.info(f"Worker {self.worker_id}: respawning engine after a timeout")
            self.launches += 1
            session = EngineSession(
                self.engine_config,
                name=f"{Path(self.engine_config.path).name}#{self.worker_id}",
                shutdown_grace=self.run_config.shutdown_grace,
                answer_margin=self.run_config.answer_margin,
            )
            with self._session_lock:
                self.session = session
            try:
                session.start()
                self._broken = self._timed_out = False
                return session
            except SessionStartFailure as e:
                logger.error(f"Worker {self.worker_id}: {e}")
                self._broken = True
                self.last_error = str(e)
                with self._session_lock:
                    self.session = None

    def _discard_session(self):
        with self._session_lock:
            session, self.session = self.session, None
        if session is not None:
            session.close()


class WorkerPool:
    """Runs ``run_config.workers`` workers over a batch of positions."""

    def __init__(self, engine_config: EngineConfig, run_config: Optional[RunConfig] = None,
                 progress: Optional[ProgressCallback] = None):
        self.engine_config = engine_config
        self.run_config = run_config or RunConfig()
        self.progress = progress

        self.queue: Optional[JobQueue] = None
        self.aggregator: Optional[ResultAggregator] = None
        self.workers: List[Worker] = []
        self._cancel_requested = threading.Event()

    def run(self, positions: Iterable[PositionRecord]) -> BenchmarkReport:
        """Benchmark every position and return the report.

        Raises ConfigurationError before launching anything when the setup is
        unusable, PoolExhaustedError when all workers died with work left.
        """
        records = list(positions)
        if not records:
            raise ConfigurationError("No positions to benchmark")
        self.engine_config.validate()
        self.run_config.validate()

        self.queue = JobQueue(records, max_requeues=self.run_config.max_requeues)
        self.aggregator = ResultAggregator(len(records))
        self.workers = [
            Worker(i, self.engine_config, self.run_config, self.queue, self.aggregator, self.progress)
            for i in range(self.run_config.workers)
        ]
        if self._cancel_requested.is_set():
            self.queue.cancel()

        logger.info(f"Benchmarking {len(records)} positions with {len(self.workers)} workers "
                    f"(threads={self.engine_config.threads}, hash={self.engine_config.hash_mb}MB)")

        threads = [
            threading.Thread(target=w.run, name=f"matebench-worker-{w.worker_id}", daemon=True)
            for w in self.workers
        ]
        for t in threads:
            t.start()

        try:
            self._join(threads)
        except KeyboardInterrupt:
            logger.warning("Interrupted")
            self.cancel()
            self._join(threads, timeout=self._cancel_timeout())
        if self.queue.cancelled:
            # cancel() may have come from another thread while we were joining.
            self._join(threads, timeout=self._cancel_timeout())

        report = self.aggregator.finalize(
            worker_restarts={w.worker_id: w.restarts for w in self.workers},
            worker_respawns={w.worker_id: w.respawns for w in self.workers},
            fatal_workers=tuple(w.worker_id for w in self.workers if w.fatal),
            cancelled=self.queue.cancelled,
        )

        if not report.cancelled and self.queue.remaining() > 0:
            errors = sorted({w.last_error for w in self.workers if w.last_error})
            raise PoolExhaustedError(
                f"All {len(self.workers)} workers failed with {self.queue.remaining()} positions left",
                context_data={"report": report, "errors": errors},
            )

        logger.info(f"Benchmark finished: {report.solved}/{report.recorded} solved, "
                    f"{report.failed} failed, {report.total_restarts} restart(s)"
                    + (" [cancelled]" if report.cancelled else ""))
        return report

    def cancel(self):
        """Stop handing out positions and kill every live engine. Safe from any thread."""
        self._cancel_requested.set()
        if self.queue is None:
            return
        logger.warning("Cancelling benchmark run")
        self.queue.cancel()
        for worker in self.workers:
            worker.abort()

    def _cancel_timeout(self) -> float:
        return self.run_config.shutdown_grace + 2.0

    @staticmethod
    def _join(threads: List[threading.Thread], timeout: Optional[float] = None):
        deadline = None if timeout is None else time.monotonic() + timeout
        for t in threads:
            while t.is_alive():
                if deadline is not None and time.monotonic() >= deadline:
                    logger.error(f"{t.name} did not stop in time")
                    break
                t.join(0.1)


def run_benchmark(engine_config: EngineConfig, positions: Iterable[PositionRecord],
                  run_config: Optional[RunConfig] = None,
                  progress: Optional[ProgressCallback] = None) -> BenchmarkReport:
    """Convenience wrapper: build a pool and run it once."""
    return WorkerPool(engine_config, run_config, progress).run(positions)
