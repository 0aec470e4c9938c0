# Report rendering
"""
Terminal and JSON output for a BenchmarkReport.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from matebench.results import BenchmarkReport, OutcomeKind

logger = logging.getLogger(__name__)

MAX_LISTED_INDICES = 10


def format_indices(indices: List[int], limit: int = MAX_LISTED_INDICES) -> str:
    """First ``limit`` indices, comma separated, with an ellipsis if there are more."""
    shown = ", ".join(str(i) for i in indices[:limit])
    if len(indices) > limit:
        shown += ", ..."
    return shown


def build_sources_table(report: BenchmarkReport) -> Table:
    table = Table(title="Per file", box=box.SIMPLE_HEAVY)
    table.add_column("File")
    table.add_column("Positions", justify="right")
    table.add_column("Mate", justify="right")
    table.add_column("Nomate", justify="right")
    table.add_column("Timeout", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Time (s)", justify="right")
    table.add_column("Nodes", justify="right")
    table.add_column("NPS", justify="right")
    for name, stats in sorted(report.sources.items()):
        table.add_row(
            name,
            str(stats.positions),
            str(stats.mate),
            str(stats.nomate),
            str(stats.timeouts),
            str(stats.errors),
            f"{stats.solve_time:.1f}",
            str(stats.nodes),
            f"{stats.nps:,.0f}",
        )
    return table


def build_summary_table(report: BenchmarkReport) -> Table:
    table = Table(title="Summary" + (" (cancelled)" if report.cancelled else ""), box=box.SIMPLE_HEAVY, show_header=False)
    table.add_column("Metric")
    table.add_column("Value", justify="right")

    timing = report.timing
    table.add_row("Positions", f"{report.recorded}/{report.total_positions}")
    table.add_row("Solved", f"{report.solved} ({report.success_rate:.1%})")
    table.add_row("Failed", str(report.failed))
    for kind in (OutcomeKind.NO_MATE, OutcomeKind.TIMEOUT, OutcomeKind.ENGINE_ERROR):
        if report.counts.get(kind):
            table.add_row(f"  {kind.value}", str(report.counts[kind]))
    if timing.count:
        table.add_row("Solve time min/mean/max", f"{timing.min:.3f} / {timing.mean:.3f} / {timing.max:.3f} s")
        table.add_row("Solve time stddev", f"{timing.stddev:.3f} s")
    table.add_row("Wall time", f"{report.wall_time:.1f} s")
    table.add_row("Total nodes", str(report.total_nodes))
    table.add_row("NPS", f"{report.nps:,.2f}")
    if report.total_restarts:
        restarts = ", ".join(f"w{w}={n}" for w, n in sorted(report.worker_restarts.items()) if n)
        table.add_row("Engine restarts", f"{report.total_restarts} ({restarts})")
    if report.total_respawns:
        table.add_row("Respawns after timeout", str(report.total_respawns))
    if report.fatal_workers:
        table.add_row("Failed workers", ", ".join(str(w) for w in report.fatal_workers))
    if report.unrecorded:
        table.add_row("Unrecorded", str(report.unrecorded))
    if report.unsolved_indices:
        table.add_row("Error or nomate indices", format_indices(report.unsolved_indices))
    return table


def print_report(report: BenchmarkReport, console: Optional[Console] = None):
    console = console or Console()
    if report.sources:
        console.print(build_sources_table(report))
    console.print(build_summary_table(report))


def export_json(report: BenchmarkReport, output_path: str):
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as f:
        json.dump(report.to_dict(), f, indent=2)
    logger.info(f"Report written to {path}")
