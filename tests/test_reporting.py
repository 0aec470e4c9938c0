import json

from rich.console import Console

from matebench.reporting import export_json, format_indices, print_report
from matebench.results import OutcomeKind, ResultAggregator, SolveOutcome


def sample_report(cancelled=False):
    agg = ResultAggregator(total_positions=14)
    for i in range(12):
        kind = OutcomeKind.MATE_FOUND if i == 0 else OutcomeKind.NO_MATE
        agg.record(SolveOutcome(index=i, kind=kind, elapsed=0.5, nodes=1000, source="mate3.sfen",
                                depth=3 if i == 0 else None))
    agg.record(SolveOutcome(index=12, kind=OutcomeKind.TIMEOUT, elapsed=2.0, source="mate5.sfen"))
    return agg.finalize(worker_restarts={0: 0, 1: 2}, fatal_workers=(1,), cancelled=cancelled)


def test_format_indices():
    assert format_indices([]) == ""
    assert format_indices([3, 1]) == "3, 1"
    assert format_indices(list(range(12))) == "0, 1, 2, 3, 4, 5, 6, 7, 8, 9, ..."
    assert format_indices(list(range(4)), limit=2) == "0, 1, ..."


def test_print_report_renders_summary_and_sources():
    console = Console(record=True, width=120)
    print_report(sample_report(cancelled=True), console)
    text = console.export_text()

    assert "Summary (cancelled)" in text
    assert "13/14" in text
    assert "mate3.sfen" in text and "mate5.sfen" in text
    assert "w1=2" in text
    assert "Unrecorded" in text
    assert "10, ..." in text


def test_export_json_creates_parent_dirs(tmp_path):
    path = tmp_path / "nested" / "report.json"
    export_json(sample_report(), str(path))

    data = json.loads(path.read_text())
    assert data["solved"] == 1
    assert data["failed"] == 12
    assert data["fatal_workers"] == [1]
    assert len(data["outcomes"]) == 13
