"""Pytest configuration and shared fixtures for the matebench test suite."""

import logging
import sys
from pathlib import Path
from typing import Callable, List

import psutil
import pytest

from matebench.config import EngineConfig, RunConfig
from matebench.positions import PositionRecord, records_from_payloads


# Configure test logging
logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

STUB_ENGINE = Path(__file__).parent / "stub_engine.py"

MATE_SFEN = "3sks3/9/4+P4/9/9/9/9/9/9 b G2r2b3g4s4n4l17p 1"


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: Tests that drive real engine subprocesses"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take a long time to run"
    )


def stub_processes() -> List[psutil.Process]:
    """Live stub engines started by this test process."""
    found = []
    for child in psutil.Process().children(recursive=True):
        try:
            if child.status() == psutil.STATUS_ZOMBIE:
                continue
            if any(str(STUB_ENGINE) in part for part in child.cmdline()):
                found.append(child)
        except psutil.NoSuchProcess:
            continue
    return found


@pytest.fixture
def stub_engine() -> Callable[..., EngineConfig]:
    """Factory for an EngineConfig that launches the stub engine with the given flags."""

    def factory(*flags: str, startup_timeout: float = 5.0, **kwargs) -> EngineConfig:
        return EngineConfig(
            path=sys.executable,
            args=(str(STUB_ENGINE), *flags),
            startup_timeout=startup_timeout,
            **kwargs,
        )

    return factory


@pytest.fixture
def positions() -> Callable[[int], List[PositionRecord]]:
    def factory(count: int, source: str = "mate.sfen") -> List[PositionRecord]:
        return records_from_payloads([MATE_SFEN] * count, source=source)

    return factory


@pytest.fixture
def fast_run() -> RunConfig:
    """Run parameters tuned for quick tests."""
    return RunConfig(workers=2, solve_timeout=5.0, max_requeues=2, max_restarts=3, shutdown_grace=1.0)


@pytest.fixture
def no_leaked_engines():
    """Fail the test if any stub engine outlives it."""
    yield
    leaked = stub_processes()
    for proc in leaked:
        proc.kill()
    assert not leaked, f"Leaked engine processes: {[p.pid for p in leaked]}"


@pytest.fixture
def engine_processes() -> Callable[[], List[psutil.Process]]:
    return stub_processes
