# Engine session
"""
One live protocol conversation with one engine subprocess.

The session walks ``STARTING -> READY -> SOLVING -> READY`` for every solved
position and ends in ``DEAD`` on a timeout, a closed stream, a malformed answer
or teardown. A dead session never solves again; the owning worker starts a
fresh one instead.

The engine's stdout is drained by a reader thread into a queue so that every
read can honour a deadline.
"""

import logging
import queue
import subprocess
import threading
import time
from collections import deque
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import psutil

from matebench.config import EngineConfig
from matebench.errors import ConfigurationError, ProtocolError, SessionStartFailure, SolveTimeout
from matebench.positions import PositionRecord
from matebench.protocol import get_dialect
from matebench.results import OutcomeKind, SolveOutcome

logger = logging.getLogger(__name__)

_EOF = object()
_TAIL_LINES = 20


class SessionState(Enum):
    STARTING = "starting"
    READY = "ready"
    SOLVING = "solving"
    DEAD = "dead"


def _children(pid: int) -> List[psutil.Process]:
    try:
        return psutil.Process(pid).children(recursive=True)
    except psutil.NoSuchProcess:
        return []


def _reap(procs: List[psutil.Process], timeout: float = 0.5):
    """Kill whatever is still running among ``procs``."""
    _, alive = psutil.wait_procs(procs, timeout=0)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    psutil.wait_procs(alive, timeout=timeout)


def kill_process_tree(process: subprocess.Popen):
    """Force-kill ``process`` and every descendant it spawned."""
    children = _children(process.pid)
    if process.poll() is None:
        process.kill()
    _reap(children)
    process.wait()


class EngineSession:
    """Persistent engine subprocess speaking a mate-search dialect."""

    def __init__(self, config: EngineConfig, name: Optional[str] = None, shutdown_grace: float = 2.0,
                 answer_margin: float = 1.0):
        self.config = config
        self.dialect = get_dialect(config.dialect)
        self.name = name or Path(config.path).name
        self.shutdown_grace = shutdown_grace
        self.answer_margin = answer_margin

        self.state = SessionState.STARTING
        self.process: Optional[subprocess.Popen] = None
        self.engine_info: Dict[str, str] = {}

        self._lines: queue.Queue = queue.Queue()
        self._reader: Optional[threading.Thread] = None
        self._tail = deque(maxlen=_TAIL_LINES)
        self._recognizer = self.dialect.recognizer_factory()
        self._lock = threading.Lock()
        self._closed = False
        self._aborted = False
        self._tag = self.dialect.name.upper()

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def is_alive(self) -> bool:
        return (self.state is not SessionState.DEAD
                and self.process is not None
                and self.process.poll() is None)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # -- lifecycle -----------------------------------------------------

    def start(self):
        """Spawn the engine and run the handshake; raise SessionStartFailure on any failure."""
        try:
            command = self.config.command()
        except ConfigurationError as e:
            self.state = SessionState.DEAD
            raise SessionStartFailure(f"Cannot launch {self.name}: {e.args[0]}") from e

        logger.info(f"Starting engine: {self.name} ({' '.join(command)})")
        try:
            self.process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                cwd=self.config.working_dir,
                bufsize=1,
            )
        except OSError as e:
            self.state = SessionState.DEAD
            raise SessionStartFailure(f"Failed to spawn {self.name}: {e}") from e

        self._reader = threading.Thread(target=self._read_loop, name=f"{self.name}-reader", daemon=True)
        self._reader.start()

        deadline = time.monotonic() + self.config.startup_timeout
        try:
            if self._aborted:
                raise ProtocolError("session aborted during startup")
            self._handshake(deadline)
        except (SolveTimeout, ProtocolError) as e:
            self.close(grace=0.0)
            raise SessionStartFailure(
                f"Engine {self.name} failed to become ready: {e.args[0]}",
                context_data={"tail": list(self._tail)},
            ) from e

        self.state = SessionState.READY
        logger.info(f"Engine {self.name} ready (pid {self.pid}, {self.engine_info.get('name', 'unknown')})")

    def _handshake(self, deadline: float):
        d = self.dialect
        self._send(d.handshake)
        while True:
            line = self._next_line(deadline)
            if line.startswith("id name "):
                self.engine_info["name"] = line[len("id name "):].strip()
            elif line.startswith("id author "):
                self.engine_info["author"] = line[len("id author "):].strip()
            elif line.strip() == d.handshake_ok:
                break

        self._send(d.setoption(d.threads_option, self.config.threads))
        self._send(d.setoption(d.hash_option, self.config.hash_mb))
        options = dict(d.default_options)
        options.update(self.config.options)
        for name, value in options.items():
            self._send(d.setoption(name, value))

        self._send(d.ready)
        while self._next_line(deadline).strip() != d.ready_ok:
            pass
        if d.new_game:
            self._send(d.new_game)

    def close(self, grace: Optional[float] = None):
        """Quit the engine, force-killing it after the grace period. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.state = SessionState.DEAD

        process = self.process
        if process is None:
            return
        grace = self.shutdown_grace if grace is None else grace
        children = _children(process.pid)

        if process.poll() is None:
            try:
                self._send(self.dialect.quit)
            except ProtocolError:
                logger.debug(f"{self.name}: stdin already closed, skipping quit")
            try:
                process.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                logger.warning(f"Engine {self.name} did not exit within {grace:.1f}s, killing it")
                kill_process_tree(process)
        _reap(children)

        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(timeout=1.0)
        for stream in (process.stdin, process.stdout):
            try:
                if stream:
                    stream.close()
            except OSError:
                pass
        logger.info(f"Stopped engine {self.name} (exit code {process.returncode})")

    def abort(self):
        """Kill the engine from another thread; the owner's pending read fails promptly."""
        self._aborted = True
        process = self.process
        if process is not None and process.poll() is None:
            logger.warning(f"Aborting engine {self.name} (pid {process.pid})")
            kill_process_tree(process)

    # -- solving -------------------------------------------------------

    def solve(self, record: PositionRecord, timeout: float) -> SolveOutcome:
        """Search ``record`` for a mate.

        ``timeout`` is the budget sent to the engine; the harness waits
        ``answer_margin`` longer for the terminal line. An engine that reports
        its own timeout stays ready; one that misses the extended deadline is
        killed and yields a ``TIMEOUT`` outcome. A closed stream or malformed answer kills the session and raises
        ``ProtocolError`` carrying an ``ENGINE_ERROR`` outcome.
        """
        if self.state is not SessionState.READY or self._aborted:
            raise ProtocolError(f"Session {self.name} is {self.state.value}, cannot solve")

        self._discard_stale()
        self._recognizer.reset()
        self._tail.clear()
        self.state = SessionState.SOLVING

        started = time.perf_counter()
        deadline = time.monotonic() + timeout + self.answer_margin
        try:
            self._send(self.dialect.position_command(record.payload))
            self._send(self.dialect.search_command(timeout))
            while True:
                line = self._next_line(deadline)
                verdict = self._recognizer.feed(line)
                if verdict is not None:
                    break
        except SolveTimeout:
            elapsed = time.perf_counter() - started
            logger.warning(f"{self.name}: no answer for position {record.index} within {timeout + self.answer_margin:.1f}s")
            outcome = self._outcome(record, OutcomeKind.TIMEOUT, elapsed, raw_output="\n".join(self._tail) or None)
            self.close()
            return outcome
        except ProtocolError as e:
            elapsed = time.perf_counter() - started
            logger.warning(f"{self.name}: protocol failure on position {record.index}: {e.args[0]}")
            outcome = self._outcome(record, OutcomeKind.ENGINE_ERROR, elapsed, raw_output="\n".join(self._tail) or None)
            self.close()
            raise ProtocolError(e.args[0], outcome=outcome) from e

        elapsed = time.perf_counter() - started
        self.state = SessionState.READY
        return self._outcome(record, verdict.kind, elapsed, depth=verdict.depth, raw_output=line)

    def _outcome(self, record: PositionRecord, kind: OutcomeKind, elapsed: float,
                 depth: Optional[int] = None, raw_output: Optional[str] = None) -> SolveOutcome:
        return SolveOutcome(
            index=record.index,
            kind=kind,
            elapsed=elapsed,
            depth=depth,
            nodes=self._recognizer.nodes,
            raw_output=raw_output,
            source=record.source,
        )

    # -- stream plumbing -----------------------------------------------

    def _read_loop(self):
        stdout = self.process.stdout
        try:
            for line in iter(stdout.readline, ""):
                self._lines.put(line.rstrip("\r\n"))
        except (OSError, ValueError):
            pass
        finally:
            self._lines.put(_EOF)

    def _send(self, command: str):
        process = self.process
        if process is None or process.stdin is None:
            raise ProtocolError(f"Engine {self.name} has no input stream")
        logger.debug(f"{self._tag} -> {self.name}: {command}")
        try:
            process.stdin.write(command + "\n")
            process.stdin.flush()
        except (BrokenPipeError, OSError, ValueError) as e:
            raise ProtocolError(f"Failed to send '{command}' to {self.name}: {e}") from e

    def _next_line(self, deadline: float) -> str:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise SolveTimeout(f"Engine {self.name} did not answer in time")
        try:
            line = self._lines.get(timeout=remaining)
        except queue.Empty:
            raise SolveTimeout(f"Engine {self.name} did not answer in time") from None
        if line is _EOF:
            self._lines.put(_EOF)
            code = self.process.poll() if self.process else None
            raise ProtocolError(f"Engine {self.name} closed its output (exit code {code})")
        logger.debug(f"{self._tag} <- {self.name}: {line}")
        self._tail.append(line)
        return line

    def _discard_stale(self):
        """Drop lines left over from a previous search."""
        while True:
            try:
                line = self._lines.get_nowait()
            except queue.Empty:
                return
            if line is _EOF:
                self._lines.put(_EOF)
                return
