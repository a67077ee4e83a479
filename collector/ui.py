"""
Console progress narrative for a collection run.

Everything printed here is also logged (with more detail) through loguru; the
console output is meant for a human watching a cron job or a terminal.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from .orchestrator import RunSummary


class ProgressReporter:
    """Rich console narrative: phases, per-item outcomes, totals."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(highlight=False)

    def banner(self, title: str, lines: list[str]) -> None:
        self.console.print(Panel("\n".join(lines), title=title, expand=False))

    def phase(self, title: str) -> None:
        self.console.rule(f"[bold]{title}")

    def item(self, index: int, total: int, label: str) -> None:
        self.console.print(f"\n[{index}/{total}] {label}")

    def success(self, message: str) -> None:
        self.console.print(f"  [green]OK[/green] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"  [yellow]WARN[/yellow] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"  [red]ERROR[/red] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"  {message}")

    def waiting(self, seconds: float, reason: str = "rate limit") -> None:
        if seconds > 0:
            self.console.print(f"  [dim]waiting {seconds:.0f}s ({reason})...[/dim]")

    def skipped(self, title: str, reason: str) -> None:
        self.console.print(f"\n[yellow]Skipping {title}[/yellow]: {reason}")

    def phase_total(self, label: str, records: int) -> None:
        self.console.print(f"\nTotal {label}: [bold]{records}[/bold]")

    def summary(self, summary: "RunSummary") -> None:
        table = Table(title=f"Collection complete ({summary.mode.value}, {summary.elapsed_s:.0f}s)")
        table.add_column("Phase")
        table.add_column("Records", justify="right")
        table.add_column("OK", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Note")
        for result in summary.phases:
            note = f"skipped: {result.skip_reason}" if result.skipped else ""
            table.add_row(
                result.name,
                str(result.records),
                str(result.succeeded),
                str(result.failed),
                note,
            )
        self.console.print(table)
        for path in summary.outputs:
            rows = summary.output_rows.get(path)
            self.console.print(f"  data: {path}" + (f" ({rows} rows)" if rows is not None else ""))
