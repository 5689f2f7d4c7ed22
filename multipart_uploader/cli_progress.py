"""Console rendering and progress helpers for the multipart-up CLI."""
from __future__ import annotations

import time
from typing import Any, Dict, Optional

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

from .models import PartProgressRecord, UploadOutcome, UploadState

# Parts shown with their own bar; beyond this only the overall bar is drawn
MAX_PART_BARS = 16

console = Console()


def _echo(message: str) -> None:
    console.print(message)


def human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]multipart-up[/bold green]",
        subtitle="[dim]multipart upload CLI[/dim]",
        border_style="blue",
    )
    console.print(panel)


class MultipartProgressDisplay:
    """Event-based console display for one multipart upload."""

    def __init__(self, filename: str, file_size: int):
        self.filename = filename
        self.file_size = file_size
        self._part_tasks: Dict[int, TaskID] = {}
        self._overall_task_id: Optional[TaskID] = None
        self._live: Optional[Live] = None

        self._overall = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=42),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("[dim]{task.fields[detail]}", justify="left"),
            expand=False,
            console=console,
        )
        self._parts = Progress(
            TextColumn("[green]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=32),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            expand=False,
            console=console,
        )

    def start(self) -> None:
        if self._live is not None:
            return
        self._live = Live(
            Group(self._overall, self._parts),
            console=console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        self._overall_task_id = self._overall.add_task(
            "overall",
            label=self.filename[:48],
            total=100,
            completed=0,
            detail="initiating...",
        )

    def stop(self) -> None:
        if self._live is None:
            return
        self._live.stop()
        self._live = None

    def on_state_change(self, state: UploadState) -> None:
        if self._overall_task_id is not None:
            self._overall.update(self._overall_task_id, detail=state.value.replace("_", " "))
        # Final frame stays on screen above the result panel
        if state.is_terminal:
            self.stop()

    def on_part_start(self, record: PartProgressRecord) -> None:
        if len(self._part_tasks) >= MAX_PART_BARS:
            return
        self._part_tasks[record.part_number] = self._parts.add_task(
            "part",
            label=f"part {record.part_number:>4}",
            total=max(record.size, 1),
        )

    def on_part_progress(self, record: PartProgressRecord) -> None:
        task_id = self._part_tasks.get(record.part_number)
        if task_id is not None:
            self._parts.update(task_id, completed=record.bytes_uploaded)

    def on_part_complete(self, record: PartProgressRecord) -> None:
        task_id = self._part_tasks.pop(record.part_number, None)
        if task_id is not None:
            self._parts.remove_task(task_id)

    def on_part_fail(self, record: PartProgressRecord, error: Exception) -> None:
        task_id = self._part_tasks.pop(record.part_number, None)
        if task_id is not None:
            self._parts.remove_task(task_id)
        stamp = time.strftime("%H:%M:%S")
        _echo(f"[dim]{stamp}[/dim] [red]FAIL[/red] part {record.part_number}: {error}")

    def on_progress(self, percent: int, counts: Dict[str, int]) -> None:
        if self._overall_task_id is None:
            return
        self._overall.update(
            self._overall_task_id,
            completed=percent,
            detail=(
                f"completed={counts.get('completed', 0)} "
                f"uploading={counts.get('uploading', 0)} "
                f"pending={counts.get('pending', 0)}"
            ),
        )

    def on_finish(self, outcome: UploadOutcome) -> None:
        self.stop()
        if outcome.success:
            _echo(f"[green]Uploaded:[/green] {self.filename} ({human_size(self.file_size)})")
            if outcome.location:
                _echo(f"[bold]Location:[/bold] {outcome.location}")
            return

        stage = outcome.stage.value if outcome.stage else "unknown"
        _echo(f"[red]Failed:[/red] {self.filename} while {stage} - {outcome.message}")

    def attach(self, orchestrator) -> None:
        orchestrator.on("state_change", self.on_state_change)
        orchestrator.on("part_start", self.on_part_start)
        orchestrator.on("part_progress", self.on_part_progress)
        orchestrator.on("part_complete", self.on_part_complete)
        orchestrator.on("part_fail", self.on_part_fail)
        orchestrator.on("progress", self.on_progress)
