"""Console rendering and progress helpers for the chunk-up CLI."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from .models import RemoteFile, UploadResult, UploadState
from .utils.events import TransferProgress

console = Console()
err_console = Console(stderr=True)


def format_size(size: int = 0) -> str:
    """Human readable size: B below 1 KB, then KB/MB/GB with two decimals."""
    if size <= 0:
        return "0 B"
    if size < 1024:
        return f"{size} B"
    if size < 1024 ** 2:
        return f"{size / 1024:.2f} KB"
    if size < 1024 ** 3:
        return f"{size / 1024 ** 2:.2f} MB"
    return f"{size / 1024 ** 3:.2f} GB"


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
        title="[bold green]chunk-up[/bold green]",
        subtitle="[dim]resumable chunked uploader[/dim]",
        border_style="blue",
    )
    console.print(panel)


def render_file_list(files: Iterable[RemoteFile]) -> None:
    table = Table(title="Remote files")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Uploaded")
    table.add_column("URL", overflow="fold")

    count = 0
    for item in files:
        table.add_row(
            str(item.id),
            item.origin_file_name,
            format_size(item.size),
            item.upload_time or "-",
            item.url or "-",
        )
        count += 1

    if count == 0:
        console.print("[dim]No files.[/dim]")
        return
    console.print(table)


class ConsoleNotifier:
    """INotifier that prints terminal failures to stderr."""

    def error(self, message: str) -> None:
        err_console.print(f"[bold red]ERROR:[/bold red] {message}")


class SingleFileUploadProgress:
    """Single-file upload progress renderer driven by orchestrator events."""

    def __init__(self, file_path: Path):
        self.file_path = Path(file_path)
        self.filename = self.file_path.name
        try:
            self.file_size = self.file_path.stat().st_size
        except OSError:
            self.file_size = 0
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[filename]}", justify="left"),
            TextColumn("[dim]{task.fields[phase]}"),
            BarColumn(bar_width=42),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            expand=False,
            console=console,
        )
        self._task_id = None

    def start(self) -> None:
        if self._task_id is not None:
            return
        self._progress.start()
        self._task_id = self._progress.add_task(
            "upload",
            filename=self.filename[:60],
            phase="hashing",
            total=self.file_size or None,
        )

    def attach(self, orchestrator) -> None:
        orchestrator.on("state", self.on_state)
        orchestrator.on("progress", self.on_progress)
        orchestrator.on("part_retry", self.on_part_retry)

    def on_state(self, session, state: UploadState) -> None:
        if self._task_id is not None:
            self._progress.update(self._task_id, phase=state.value)

    def on_progress(self, progress: TransferProgress) -> None:
        if self._task_id is not None:
            self._progress.update(
                self._task_id,
                completed=progress.bytes_done,
                total=progress.total_bytes or None,
            )

    def on_part_retry(self, index: int, attempt: int, error: Exception) -> None:
        self._progress.console.print(
            f"[yellow]part {index + 1} attempt {attempt} failed:[/yellow] {error}"
        )

    def complete(self, result: UploadResult) -> None:
        self._progress.stop()
        if result.success:
            label = "deduplicated" if result.status.value == "deduplicated" else "uploaded"
            console.print(
                f"[green]OK[/green] {self.filename} ({format_size(self.file_size)}) {label}"
                f", {result.uploaded_parts} part(s) sent"
            )
            if result.url:
                console.print(f"   [dim]{result.url}[/dim]")
            return
        console.print(f"[red]FAILED[/red] {self.filename}: {result.error or 'unknown error'}")
        if result.login_required:
            console.print("[yellow]Credentials were rejected; log in again (--token).[/yellow]")

