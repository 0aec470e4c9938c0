#!/usr/bin/env python3
"""
Command line entry point.

Usage:
    matebench -e ./engine positions/*.sfen
    matebench -e ./engine -w 8 -t 2 -h 256 --json results/run.json mate3.sfen mate5.sfen
    matebench --config bench.yaml
"""

import argparse
import logging
import sys
from collections import Counter
from dataclasses import replace
from typing import List, Optional

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn, TimeRemainingColumn

from matebench import __version__
from matebench.config import BenchmarkConfig, ConfigManager, EngineConfig, RunConfig
from matebench.errors import ConfigurationError, PoolExhaustedError
from matebench.logging_utils import setup_logging
from matebench.pool import WorkerPool
from matebench.positions import PositionSource
from matebench.reporting import export_json, print_report

logger = logging.getLogger("matebench.cli")

EXIT_OK = 0
EXIT_POOL_EXHAUSTED = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="matebench",
        description="A benchmarking tool for mate engines",
        add_help=False,
    )
    parser.add_argument("sfen_paths", nargs="*", help="SFEN files to solve, one position per line")
    parser.add_argument("-e", "--engine-path", type=str, default=None, help="Path to the engine executable")
    parser.add_argument("-w", "--workers", type=int, default=None, help="Number of workers (default: 4)")
    parser.add_argument("-t", "--threads", type=int, default=None, help="Threads per engine (default: 1)")
    parser.add_argument("-h", "--hash", type=int, default=None, help="Hash size in MB (default: 16)")
    parser.add_argument("--timeout", type=float, default=None, help="Seconds allowed per position (default: 30)")
    parser.add_argument("--dialect", type=str, default=None, help="Engine protocol: usi or uci (default: usi)")
    parser.add_argument("--engine-option", action="append", default=None,
                        help="Extra engine option, e.g. --engine-option 'MultiPV=1'")
    parser.add_argument("--max-requeues", type=int, default=None, help="Retries per position after an engine crash")
    parser.add_argument("--max-restarts", type=int, default=None, help="Engine restarts allowed per worker")
    parser.add_argument("--answer-margin", type=float, default=None,
                        help="Seconds to wait past the engine budget before killing it (default: 1)")
    parser.add_argument("--config", type=str, default=None, help="YAML configuration file")
    parser.add_argument("--json", type=str, default=None, help="Write the report as JSON to this path")
    parser.add_argument("--log-dir", type=str, default=None, help="Write text and JSONL logs to this directory")
    parser.add_argument("--no-progress", action="store_true", help="Disable the progress bar")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging (includes engine traffic)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--help", action="help", help="Show this help message and exit")
    return parser


def parse_engine_options(raw: Optional[List[str]]) -> dict:
    options = {}
    for item in raw or []:
        if "=" not in item:
            raise ConfigurationError(f"Engine option must be NAME=VALUE: {item!r}")
        name, value = item.split("=", 1)
        options[name.strip()] = value.strip()
    return options


def resolve_config(args: argparse.Namespace) -> BenchmarkConfig:
    """Merge the optional YAML config with command line overrides."""
    if args.config:
        config = ConfigManager.load_config(args.config)
    else:
        if not args.engine_path:
            raise ConfigurationError("An engine path is required (-e/--engine-path)")
        config = BenchmarkConfig(engine=EngineConfig(path=args.engine_path), run=RunConfig())

    engine_overrides = {}
    if args.engine_path:
        engine_overrides["path"] = args.engine_path
    if args.threads is not None:
        engine_overrides["threads"] = args.threads
    if args.hash is not None:
        engine_overrides["hash_mb"] = args.hash
    if args.dialect is not None:
        engine_overrides["dialect"] = args.dialect
    extra = parse_engine_options(args.engine_option)
    if extra:
        engine_overrides["options"] = {**config.engine.options, **extra}

    run_overrides = {}
    if args.workers is not None:
        run_overrides["workers"] = args.workers
    if args.timeout is not None:
        run_overrides["solve_timeout"] = args.timeout
    if args.max_requeues is not None:
        run_overrides["max_requeues"] = args.max_requeues
    if args.max_restarts is not None:
        run_overrides["max_restarts"] = args.max_restarts
    if args.answer_margin is not None:
        run_overrides["answer_margin"] = args.answer_margin

    return BenchmarkConfig(
        engine=replace(config.engine, **engine_overrides),
        run=replace(config.run, **run_overrides),
        position_files=list(args.sfen_paths) or config.position_files,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console(stderr=True)
    setup_logging(args.log_dir, level=logging.DEBUG if args.verbose else logging.INFO, console=console)

    try:
        config = resolve_config(args)
        records = PositionSource(config.position_files).load()
    except ConfigurationError as e:
        logger.error(str(e))
        return EXIT_CONFIG

    per_source = Counter(r.source for r in records)
    progress = Progress(
        TextColumn("{task.description}"),
        BarColumn(bar_width=40),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        console=console,
        disable=args.no_progress,
    )
    tasks = {source: progress.add_task(str(source), total=count) for source, count in per_source.items()}

    def on_outcome(outcome):
        task = tasks.get(outcome.source)
        if task is not None:
            progress.advance(task)

    pool = WorkerPool(config.engine, config.run, progress=on_outcome)
    try:
        with progress:
            report = pool.run(records)
    except ConfigurationError as e:
        logger.error(str(e))
        return EXIT_CONFIG
    except PoolExhaustedError as e:
        logger.error(str(e))
        for err in e.context_data.get("errors", []):
            logger.error(f"  {err}")
        partial = e.context_data.get("report")
        if partial is not None and args.json:
            export_json(partial, args.json)
        return EXIT_POOL_EXHAUSTED

    print_report(report, Console())
    if args.json:
        export_json(report, args.json)
    return EXIT_CANCELLED if report.cancelled else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
