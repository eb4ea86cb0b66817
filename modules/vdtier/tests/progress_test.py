from rich.panel import Panel
from rich.text import Text

from vdtier.progress import ProgressReporter, _format_eta


def test_progress_bar_returns_rich_text() -> None:
    reporter = ProgressReporter(enable_dash=False)
    bar = reporter._progress_bar(42.5)
    assert isinstance(bar, Text)
    assert "[green]" not in bar.plain
    assert "42.5%" in bar.plain


def test_progress_never_moves_backwards_and_is_clamped() -> None:
    reporter = ProgressReporter()
    reporter.begin_run(["a", "b"])
    reporter.set_progress(0.4)
    reporter.set_progress(0.1)
    assert reporter.progress == 0.4
    reporter.set_progress(7)
    assert reporter.progress == 1.0
    reporter.begin_run()
    assert reporter.progress == 0.0
    assert reporter.is_running is True


def test_stage_lifecycle() -> None:
    reporter = ProgressReporter()
    reporter.begin_run(["first", "second", "third"])
    reporter.start_stage("first")
    reporter.start_stage("second")
    reporter.mark_stage_skipped("third")
    reporter.end_run()
    statuses = [reporter.stage_records[k]["status"] for k in reporter.stage_order]
    assert statuses == ["done", "done", "skipped"]
    assert reporter.progress == 1.0
    assert reporter.is_running is False
    assert reporter.stage == "done"


def test_counters_snapshot_and_logs() -> None:
    reporter = ProgressReporter()
    reporter.begin_run()
    reporter.inc_group("exact", 2)
    reporter.inc_group("exact")
    reporter.inc_counter("assets_skipped", 3)
    reporter.set_status("Comparing videos…")
    snap = reporter.snapshot()
    assert snap["groups"] == {"exact": 3}
    assert snap["current_step"] == "Comparing videos…"
    assert reporter.assets_skipped == 3

    for idx in range(205):
        reporter.add_log(f"msg-{idx}", "warning", source="pipe")
    logs = reporter.recent_logs(2)
    assert [m for _, m, _, _ in logs] == ["msg-203", "msg-204"]
    assert logs[-1][0] == "WARNING" and logs[-1][3] == "PIPE"
    assert len(reporter.recent_logs(500)) == 200


def test_render_without_live_dashboard() -> None:
    reporter = ProgressReporter(enable_dash=False, banner="Roots: 1")
    reporter.start()
    assert reporter._live is None
    reporter.begin_run(["metadata cache"])
    reporter.start_stage("metadata cache")
    reporter.add_log("hello")
    assert isinstance(reporter._render(), Panel)
    reporter.stop()


def test_format_eta() -> None:
    assert _format_eta(None) == "--"
    assert _format_eta(5) == "5s"
    assert _format_eta(125) == "2m 05s"
    assert _format_eta(3700) == "1h 01m"
