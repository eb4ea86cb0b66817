#!/usr/bin/env python3
"""
vdtier.progress

Observable detection state (progress, current step, running flag) plus an
optional Rich-powered live dashboard that renders it.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from rich.align import Align
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


def _format_eta(seconds: Optional[float]) -> str:
    """Pretty-print an ETA in h/m/s."""
    if seconds is None or seconds == float("inf"):
        return "--"
    secs = max(0, int(seconds))
    minutes, sec = divmod(secs, 60)
    hours, minute = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minute:02d}m"
    if minute > 0:
        return f"{minute}m {sec:02d}s"
    return f"{sec}s"


def _stage_key(name: str) -> str:
    """Stable key for stage lookups."""
    return name.strip().lower().replace(" ", "_")


class ProgressReporter:
    """
    Thread-safe progress state written by the detector and read by the UI.

    `progress` only moves forward within a run (reset by `begin_run`) and is
    clamped to [0, 1].
    """

    def __init__(self, enable_dash: bool = False, *, refresh_rate: float = 0.25, banner: str = ""):
        self.enable_dash = bool(enable_dash)
        self.refresh_rate = max(0.1, min(1.0, float(refresh_rate)))
        self.banner = banner

        self.lock = threading.Lock()
        self.start_ts = time.time()
        self.stage_start_ts = self.start_ts

        self.console = Console(highlight=False, soft_wrap=False)
        self._live: Optional[Live] = None
        self._last_print = 0.0

        # Observable run state
        self.progress = 0.0
        self.current_step = ""
        self.is_running = False
        self.stage = "idle"

        # Stage timeline
        self.stage_order: List[str] = []
        self.stage_records: Dict[str, Dict[str, Any]] = {}

        # Results
        self.group_counts: Dict[str, int] = {}
        self.cache_created = 0
        self.descriptors_extracted = 0
        self.assets_skipped = 0

        self._log_messages: List[Tuple[str, str, float, str]] = []

    # ------------------------------------------------------------------ run lifecycle

    def begin_run(self, stages: Sequence[str] = ()) -> None:
        now = time.time()
        with self.lock:
            self.start_ts = now
            self.stage_start_ts = now
            self.progress = 0.0
            self.current_step = ""
            self.is_running = True
            self.stage = "idle"
            self.stage_order = []
            self.stage_records = {}
            self.group_counts = {}
            self.cache_created = 0
            self.descriptors_extracted = 0
            self.assets_skipped = 0
            for name in stages:
                self._ensure_stage_entry(name)
        self._print_now()

    def end_run(self) -> None:
        with self.lock:
            key = _stage_key(self.stage)
            entry = self.stage_records.get(key)
            if entry and entry.get("status") == "running":
                self._finalize_stage_entry(key, status="done")
            self.progress = 1.0
            self.is_running = False
            self.stage = "done"
        self._print_now()

    def set_progress(self, value: float) -> None:
        v = max(0.0, min(1.0, float(value)))
        with self.lock:
            if v > self.progress:
                self.progress = v
        self._print_if_due()

    def set_status(self, text: str) -> None:
        with self.lock:
            self.current_step = text
        self._print_if_due()

    def start_stage(self, name: str) -> None:
        """Begin a new stage; the previous running stage is marked done."""
        now = time.time()
        with self.lock:
            prev_key = _stage_key(self.stage)
            prev = self.stage_records.get(prev_key)
            if prev and prev.get("status") == "running":
                self._finalize_stage_entry(prev_key, status="done", now=now)
            entry = self._ensure_stage_entry(name)
            entry["status"] = "running"
            entry["start"] = now
            self.stage = name
            self.stage_start_ts = now
        self._print_now()

    def mark_stage_skipped(self, name: str) -> None:
        with self.lock:
            self._ensure_stage_entry(name)
            self._finalize_stage_entry(_stage_key(name), status="skipped")
        self._print_if_due()

    def inc_group(self, tier: str, n: int = 1) -> None:
        with self.lock:
            self.group_counts[tier] = self.group_counts.get(tier, 0) + int(n)
        self._print_if_due()

    def inc_counter(self, name: str, n: int = 1) -> None:
        with self.lock:
            setattr(self, name, getattr(self, name) + int(n))

    def snapshot(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "progress": self.progress,
                "current_step": self.current_step,
                "is_running": self.is_running,
                "stage": self.stage,
                "groups": dict(self.group_counts),
            }

    # ------------------------------------------------------------------ logs

    def add_log(self, message: str, level: str = "INFO", *, source: str = "pipeline") -> None:
        entry = (level.upper(), str(message), time.time(), source.upper())
        with self.lock:
            self._log_messages.append(entry)
            if len(self._log_messages) > 200:
                self._log_messages.pop(0)
        self._print_if_due()

    def recent_logs(self, n: int = 5) -> List[Tuple[str, str, float, str]]:
        with self.lock:
            return list(self._log_messages[-n:])

    # ------------------------------------------------------------------ dashboard

    def start(self) -> None:
        """Start dashboard rendering if enabled."""
        if self.enable_dash and self._live is None:
            self._live = Live(
                self._render(),
                console=self.console,
                refresh_per_second=max(4, int(round(1 / self.refresh_rate))),
                transient=False,
            )
            self._live.start()

    def stop(self) -> None:
        if self._live is not None:
            self._live.update(self._render(), refresh=True)
            self._live.stop()
            self._live = None
            self.console.print(Panel(Align.center(Text("Detection Complete", style="bold green")), border_style="green"))

    def flush(self) -> None:
        self._print_now()

    def _print_if_due(self) -> None:
        if self._live is None:
            return
        if (time.time() - self._last_print) >= self.refresh_rate:
            self._print_now()

    def _print_now(self) -> None:
        if self._live is None:
            return
        self._last_print = time.time()
        self._live.update(self._render(), refresh=True)

    def _ensure_stage_entry(self, display: str) -> Dict[str, Any]:
        key = _stage_key(display)
        entry = self.stage_records.get(key)
        if entry is None:
            entry = {
                "display": display,
                "status": "pending",
                "index": len(self.stage_order),
                "start": None,
                "end": None,
                "duration": None,
            }
            self.stage_order.append(key)
            self.stage_records[key] = entry
        return entry

    def _finalize_stage_entry(self, key: str, *, status: str, now: Optional[float] = None) -> None:
        entry = self.stage_records.get(key)
        if entry is None:
            return
        ts = now or time.time()
        if entry.get("start") is None:
            entry["start"] = ts
        entry["end"] = ts
        entry["duration"] = max(0.0, ts - entry["start"]) if status == "done" else 0.0
        entry["status"] = status

    def _render(self) -> Panel:
        with self.lock:
            elapsed = max(0.0, time.time() - self.start_ts)
            pct = self.progress * 100.0
            eta = (elapsed / self.progress - elapsed) if 0.0 < self.progress < 1.0 else None
            stages = [self.stage_records[k].copy() for k in self.stage_order]
            groups = dict(self.group_counts)
            logs = list(self._log_messages[-6:])
            status = self.current_step
            stage_elapsed = max(0.0, time.time() - self.stage_start_ts)
            stage = self.stage
            counters = (self.cache_created, self.descriptors_extracted, self.assets_skipped)

        header = Table.grid(expand=True)
        header.add_column(ratio=3)
        header.add_column(justify="right", ratio=2)
        header.add_row(Text(stage.upper(), style="bold cyan"), Text(f"Elapsed: {int(elapsed)}s  ETA: {_format_eta(eta)}", style="bold"))
        header.add_row(self._progress_bar(pct), Text(self.banner, style="dim"))
        header.add_row(Text(status, style="italic magenta"), Text(""))

        timeline = Table(box=None, expand=True, padding=(0, 1))
        timeline.add_column("#", justify="right", width=4)
        timeline.add_column("Stage", justify="left")
        timeline.add_column("Time", justify="right")
        style_map = {"running": "bold yellow", "done": "green", "pending": "magenta", "skipped": "grey62"}
        for entry in stages:
            st = entry.get("status", "pending")
            style = style_map.get(st, "grey62")
            if st == "running":
                time_text = f"{int(stage_elapsed)}s"
            elif entry.get("duration") is not None:
                time_text = f"{entry['duration']:.1f}s"
            else:
                time_text = "--"
            timeline.add_row(
                Text(f"{entry['index'] + 1}.", style=style),
                Text(str(entry["display"]).upper(), style=style),
                Text(time_text, style=style),
            )

        stats = Table.grid(expand=True)
        stats.add_column(justify="left")
        stats.add_column(justify="right")
        for tier in ("exact", "near", "visual"):
            stats.add_row(f"{tier.title()} groups", Text(f"{groups.get(tier, 0):,}", style="bold"))
        stats.add_row("New cache entries", Text(f"{counters[0]:,}", style="bold"))
        stats.add_row("Descriptors extracted", Text(f"{counters[1]:,}", style="bold"))
        stats.add_row("Assets skipped", Text(f"{counters[2]:,}", style="bold"))

        log_grid = Table.grid(expand=True)
        log_grid.add_column(justify="left")
        if not logs:
            log_grid.add_row(Text("No log entries yet.", style="dim"))
        for level, message, ts, source in logs:
            style = {"ERROR": "bold red", "WARNING": "yellow", "INFO": "white", "DEBUG": "cyan"}.get(level, "white")
            log_grid.add_row(Text(f"[{int(ts - self.start_ts):>4}s] {level:<7} {source:<8} {message}", style=style))

        body = Group(
            header,
            Panel(timeline, title="Stage Timeline", border_style="magenta"),
            Panel(stats, title="Results", border_style="blue"),
            Panel(log_grid, title="Log", border_style="grey39"),
        )
        return Panel(body, title="Tiered Video Duplicate Detection", border_style="cyan")

    def _progress_bar(self, pct: float) -> Text:
        """Return a colorized progress bar string."""
        pct_clamped = max(0.0, min(100.0, pct))
        width = 42
        filled = int(round((pct_clamped / 100.0) * width))
        remaining = width - filled
        bar = Text(justify="left")
        if filled:
            bar.append("█" * filled, style="green")
        if remaining:
            bar.append("░" * remaining, style="grey30")
        bar.append(f" {pct_clamped:5.1f}%")
        return bar
