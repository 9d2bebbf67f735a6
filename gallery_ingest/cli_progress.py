"""Console rendering and progress helpers for the gallery-ingest CLI."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Set
import time

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from .orchestrator.chapters import chapter_counts
from .orchestrator.models import IngestResult, UploadState, UploadSummary, UploadTask
from .orchestrator.reconciler import summarize_stages
from .utils.events import PhaseProgress

console = Console()


def _human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


def render_configuration_summary(config: Dict[str, Any], out: Optional[Console] = None) -> None:
    """Render startup configuration summary."""
    out = out or console
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]gallery-ingest[/bold green]",
        subtitle="[dim]bulk photo ingestion[/dim]",
        border_style="blue",
    )
    out.print(panel)


def render_chapter_table(result: IngestResult, out: Optional[Console] = None) -> None:
    """Render chapters with their photo counts."""
    out = out or console
    if not result.chapters and not result.plan.assignments:
        return

    title = "Chapters"
    if result.plan.is_best_effort:
        title += " [dim](automatic groups)[/dim]"
    table = Table(title=title, show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Chapter", style="bold")
    table.add_column("Photos", justify="right")

    counts = chapter_counts(result.chapters, result.plan.assignments)
    for chapter in result.chapters:
        table.add_row(str(chapter.position + 1), chapter.title, str(counts.get(chapter.title, 0)))
    unassigned = len(result.plan.unassigned)
    if unassigned:
        table.add_row("-", "[dim](no chapter)[/dim]", str(unassigned))
    out.print(table)


class IngestProgressDisplay:
    """Event-based console display for an ingestion process."""

    def __init__(self, out: Optional[Console] = None):
        self._console = out or console
        self._active_tasks: Dict[str, TaskID] = {}
        self._announced: Set[str] = set()
        self._unsettled: Optional[Set[str]] = None
        self._summary = UploadSummary()
        self._phase_task_id: Optional[TaskID] = None
        self._overall_task_id: Optional[TaskID] = None
        self._live: Optional[Live] = None

        self._meta_progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=28),
            TextColumn("{task.completed}/{task.total}"),
            TextColumn("[dim]{task.fields[detail]}", justify="left"),
            expand=False,
            console=self._console,
        )
        self._file_progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold green]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=42),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            expand=False,
            console=self._console,
        )

    @property
    def summary(self) -> UploadSummary:
        return self._summary

    def _emit_timeline(self, status: str, name: str, detail: Optional[str] = None) -> None:
        stamp = time.strftime("%H:%M:%S")
        palette = {"DONE": "green", "FAIL": "red", "RTRY": "yellow", "INFO": "blue"}
        color = palette.get(status, "white")
        detail_label = f" [dim]{detail}[/dim]" if detail else ""
        self._console.print(f"[dim]{stamp}[/dim] [{color}]{status:<4}[/{color}] {name}{detail_label}")

    def _start_live(self) -> None:
        if self._live is not None:
            return
        self._live = Live(
            Group(self._meta_progress, self._file_progress),
            console=self._console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        self._phase_task_id = self._meta_progress.add_task(
            "phase", label="Phase", total=1, completed=0, detail="waiting...",
        )
        self._overall_task_id = self._meta_progress.add_task(
            "overall", label="Overall", total=1, completed=0, detail="uploaded=0 failed=0",
        )

    def _stop_live(self) -> None:
        if self._live is None:
            return
        self._live.stop()
        self._live = None

    def _update_phase_task(self, phase_name: str, message: str, current: int = 0, total: int = 0) -> None:
        self._start_live()
        safe_total = max(total, 1)
        self._meta_progress.update(
            self._phase_task_id,
            label=f"Phase {phase_name}",
            completed=min(max(current, 0), safe_total),
            total=safe_total,
            detail=((message or "").strip() or "working...")[:120],
        )

    def on_phase_start(self, phase_name: str, message: str) -> None:
        self._update_phase_task(phase_name, message, 0, 1)

    def on_phase_progress(self, progress: PhaseProgress) -> None:
        self._update_phase_task(progress.phase, progress.message, progress.current, progress.total)

    def on_phase_complete(self, phase_name: str, message: str) -> None:
        self._update_phase_task(phase_name, f"done: {message}" if message else "done", 1, 1)

    def on_summary(self, summary: UploadSummary) -> None:
        self._summary = summary
        self._start_live()
        settled = summary.completed + summary.failed
        self._meta_progress.update(
            self._overall_task_id,
            label="Overall",
            completed=settled,
            total=max(summary.total, 1),
            detail=(
                f"uploaded={summary.completed} failed={summary.failed} "
                f"active={summary.in_progress} avg={summary.avg_progress:.0f}%"
            ),
        )

    def on_progress(self, tasks: Mapping[str, UploadTask]) -> None:
        """Mirror in-flight files as progress bars and log settled ones once."""
        self._start_live()
        if self._unsettled is None:
            self._unsettled = set(tasks)
        for key in list(self._unsettled):
            task = tasks[key]
            task_id = self._active_tasks.get(key)

            if task.state.is_in_flight:
                if task_id is None:
                    task_id = self._file_progress.add_task(
                        "upload", label=task.file.name[:60], total=max(task.total_bytes, 1),
                    )
                    self._active_tasks[key] = task_id
                self._file_progress.update(
                    task_id, completed=task.bytes_transferred, total=max(task.total_bytes, 1),
                )
                retry_key = f"{key}#{task.attempt}"
                if task.state == UploadState.RETRYING and retry_key not in self._announced:
                    self._announced.add(retry_key)
                    self._emit_timeline("RTRY", task.file.name, f"attempt {task.attempt}: {task.error}")
                continue

            if task.state.is_terminal:
                self._unsettled.discard(key)
                if task_id is not None:
                    self._file_progress.remove_task(self._active_tasks.pop(key))
                if task.state == UploadState.SUCCESS:
                    self._emit_timeline("DONE", task.file.name, _human_size(task.total_bytes))
                else:
                    self._emit_timeline("FAIL", task.file.name, task.error)

    def on_error(self, error: Exception) -> None:
        self._stop_live()
        self._console.print(f"[red]Error:[/red] {error}")

    def on_finish(self, result: IngestResult) -> None:
        self._stop_live()
        render_chapter_table(result, self._console)

        tree = result.tree
        if tree is not None and tree.read_error_count:
            self._console.print(f"[yellow]Unreadable entries:[/yellow] {tree.read_error_count}")
            for error in tree.read_errors:
                self._console.print(f"  [dim]{error}[/dim]")
        stages = summarize_stages(result.reconcile.matched_by)
        if stages:
            self._console.print(f"[dim]Matched by {', '.join(stages)}[/dim]")
        if result.reconcile.miss_count:
            self._console.print(
                f"[yellow]Photos without chapter match:[/yellow] {result.reconcile.miss_count}"
            )
        for failure in result.upload.failures:
            self._console.print(f"  [red]failed[/red] {failure.name}: {failure.reason}")

        status = "[green]OK[/green]" if result.success else "[red]INCOMPLETE[/red]"
        self._console.print(
            f"[bold]Finished[/bold] {status} uploaded={result.uploaded_count} "
            f"failed={result.failed_count} total={result.upload.summary.total} "
            f"chapters={len(result.chapters)}"
        )
