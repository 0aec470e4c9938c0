# matebench configuration
"""
Configuration management for matebench.
Handles the engine configuration shared by every session and the run parameters
consumed by the worker pool.
"""

import os
import shutil
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from matebench.errors import ConfigurationError
from matebench.protocol import get_dialect


@dataclass(frozen=True)
class EngineConfig:
    """Configuration for a mate-solving engine, applied identically to every session."""
    path: str
    threads: int = 1
    hash_mb: int = 16
    args: Tuple[str, ...] = ()
    dialect: str = "usi"
    options: Dict[str, Any] = field(default_factory=dict)
    working_dir: Optional[str] = None
    startup_timeout: float = 10.0

    def resolve_executable(self) -> str:
        """Return the absolute executable path, looking bare names up on PATH."""
        if os.sep not in self.path and (os.altsep is None or os.altsep not in self.path):
            found = shutil.which(self.path)
            if found is None:
                raise ConfigurationError(f"Engine not found on PATH: {self.path}")
            return found

        candidate = Path(self.path).expanduser()
        if not candidate.is_file():
            raise ConfigurationError(f"Engine not found: {candidate}")
        if not os.access(candidate, os.X_OK):
            raise ConfigurationError(f"Engine is not executable: {candidate}")
        return str(candidate.resolve())

    def command(self) -> List[str]:
        return [self.resolve_executable(), *self.args]

    def validate(self):
        """Raise ConfigurationError for values no engine could accept."""
        if self.threads < 1:
            raise ConfigurationError("Threads must be greater than 0")
        if self.hash_mb < 1:
            raise ConfigurationError("Hash size must be greater than 0")
        if self.startup_timeout <= 0:
            raise ConfigurationError("Startup timeout must be positive")
        if self.working_dir and not Path(self.working_dir).is_dir():
            raise ConfigurationError(f"Working directory does not exist: {self.working_dir}")
        try:
            get_dialect(self.dialect)
        except KeyError as e:
            raise ConfigurationError(e.args[0]) from e
        self.resolve_executable()


@dataclass
class RunConfig:
    """Run parameters for the worker pool."""
    workers: int = 4
    solve_timeout: float = 30.0
    max_requeues: int = 2
    max_restarts: int = 3
    shutdown_grace: float = 2.0
    # Extra wait past the budget sent to the engine, so its own timeout answer arrives.
    answer_margin: float = 1.0

    def validate(self):
        if self.workers < 1:
            raise ConfigurationError("Workers must be greater than 0")
        if self.solve_timeout <= 0:
            raise ConfigurationError("Solve timeout must be positive")
        if self.max_requeues < 0:
            raise ConfigurationError("Requeue bound must not be negative")
        if self.max_restarts < 0:
            raise ConfigurationError("Restart bound must not be negative")
        if self.shutdown_grace < 0:
            raise ConfigurationError("Shutdown grace period must not be negative")
        if self.answer_margin < 0:
            raise ConfigurationError("Answer margin must not be negative")


@dataclass
class BenchmarkConfig:
    """Main benchmark configuration."""
    engine: EngineConfig
    run: RunConfig = field(default_factory=RunConfig)
    position_files: List[str] = field(default_factory=list)


class ConfigManager:
    """Manages benchmark configurations."""

    @staticmethod
    def load_config(config_path: str) -> BenchmarkConfig:
        """Load benchmark configuration from YAML file."""
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError as e:
            raise ConfigurationError(f"Config file not found: {config_path}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config root must be a mapping: {config_path}")

        engine_data = data.get('engine') or {}
        if 'path' not in engine_data:
            raise ConfigurationError("Config is missing 'engine.path'")

        engine = EngineConfig(
            path=str(engine_data['path']),
            threads=int(engine_data.get('threads', 1)),
            hash_mb=int(engine_data.get('hash', 16)),
            args=tuple(str(a) for a in engine_data.get('args', []) or []),
            dialect=str(engine_data.get('dialect', 'usi')),
            options=dict(engine_data.get('options', {}) or {}),
            working_dir=engine_data.get('working_dir'),
            startup_timeout=float(engine_data.get('startup_timeout', 10.0)),
        )

        run_data = data.get('run') or {}
        run = RunConfig(
            workers=int(run_data.get('workers', 4)),
            solve_timeout=float(run_data.get('timeout', 30.0)),
            max_requeues=int(run_data.get('max_requeues', 2)),
            max_restarts=int(run_data.get('max_restarts', 3)),
            shutdown_grace=float(run_data.get('shutdown_grace', 2.0)),
            answer_margin=float(run_data.get('answer_margin', 1.0)),
        )

        return BenchmarkConfig(
            engine=engine,
            run=run,
            position_files=[str(p) for p in data.get('positions', []) or []],
        )

    @staticmethod
    def save_config(config: BenchmarkConfig, output_path: str):
        """Save benchmark configuration to YAML file."""
        engine = asdict(config.engine)
        data = {
            'engine': {
                'path': engine['path'],
                'threads': engine['threads'],
                'hash': engine['hash_mb'],
                'args': list(engine['args']),
                'dialect': engine['dialect'],
                'options': engine['options'],
                'working_dir': engine['working_dir'],
                'startup_timeout': engine['startup_timeout'],
            },
            'run': {
                'workers': config.run.workers,
                'timeout': config.run.solve_timeout,
                'max_requeues': config.run.max_requeues,
                'max_restarts': config.run.max_restarts,
                'shutdown_grace': config.run.shutdown_grace,
                'answer_margin': config.run.answer_margin,
            },
            'positions': list(config.position_files),
        }

        with open(output_path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, indent=2)
