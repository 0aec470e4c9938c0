import os
import sys

import pytest
import yaml

from matebench.config import BenchmarkConfig, ConfigManager, EngineConfig, RunConfig
from matebench.errors import ConfigurationError


def test_defaults():
    engine = EngineConfig(path=sys.executable)
    run = RunConfig()
    assert (engine.threads, engine.hash_mb, engine.dialect) == (1, 16, "usi")
    assert run.workers == 4
    assert run.solve_timeout == 30.0
    engine.validate()
    run.validate()


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"threads": 0}, "Threads"),
        ({"hash_mb": 0}, "Hash"),
        ({"dialect": "xboard"}, "Unknown engine dialect"),
        ({"startup_timeout": 0}, "Startup timeout"),
    ],
)
def test_engine_validation(kwargs, message):
    with pytest.raises(ConfigurationError, match=message):
        EngineConfig(path=sys.executable, **kwargs).validate()


@pytest.mark.parametrize(
    "kwargs",
    [{"workers": 0}, {"solve_timeout": 0}, {"max_requeues": -1}, {"max_restarts": -1}, {"answer_margin": -1}],
)
def test_run_validation(kwargs):
    with pytest.raises(ConfigurationError):
        RunConfig(**kwargs).validate()


def test_missing_engine(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        EngineConfig(path=str(tmp_path / "no-such-engine")).validate()
    with pytest.raises(ConfigurationError, match="PATH"):
        EngineConfig(path="definitely-not-an-installed-mate-engine").validate()


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_non_executable_engine(tmp_path):
    engine = tmp_path / "engine"
    engine.write_text("#!/bin/sh\n")
    engine.chmod(0o644)
    with pytest.raises(ConfigurationError, match="not executable"):
        EngineConfig(path=str(engine)).validate()


def test_command_includes_args():
    engine = EngineConfig(path=sys.executable, args=("stub.py", "--mode", "mate"))
    command = engine.command()
    assert command[1:] == ["stub.py", "--mode", "mate"]


def test_load_config(tmp_path):
    path = tmp_path / "bench.yaml"
    path.write_text(yaml.safe_dump({
        "engine": {
            "path": sys.executable,
            "args": ["stub.py"],
            "threads": 2,
            "hash": 256,
            "options": {"PvInterval": 0},
        },
        "run": {"workers": 8, "timeout": 5, "max_restarts": 1, "answer_margin": 0.5},
        "positions": ["mate3.sfen"],
    }))

    config = ConfigManager.load_config(str(path))

    assert config.engine.threads == 2
    assert config.engine.hash_mb == 256
    assert config.engine.args == ("stub.py",)
    assert config.engine.options == {"PvInterval": 0}
    assert config.run.workers == 8
    assert config.run.solve_timeout == 5.0
    assert config.run.max_restarts == 1
    assert config.run.max_requeues == 2
    assert config.run.answer_margin == 0.5
    assert config.position_files == ["mate3.sfen"]


def test_save_then_load(tmp_path):
    config = BenchmarkConfig(
        engine=EngineConfig(path="/opt/engines/mate", threads=4, hash_mb=1024, options={"MultiPV": "1"}),
        run=RunConfig(workers=2, solve_timeout=10.0, answer_margin=2.5),
        position_files=["a.sfen"],
    )
    path = tmp_path / "saved.yaml"
    ConfigManager.save_config(config, str(path))
    assert ConfigManager.load_config(str(path)) == config


@pytest.mark.parametrize(
    "content, message",
    [
        ("run: {workers: 2}\n", "engine.path"),
        ("- just\n- a list\n", "mapping"),
        ("engine: [unclosed\n", "Invalid YAML"),
    ],
)
def test_bad_config_files(tmp_path, content, message):
    path = tmp_path / "bad.yaml"
    path.write_text(content)
    with pytest.raises(ConfigurationError, match=message):
        ConfigManager.load_config(str(path))


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        ConfigManager.load_config(str(tmp_path / "missing.yaml"))
