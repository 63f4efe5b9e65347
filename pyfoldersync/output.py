"""Console output helpers for the CLI."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.table import Table

from .utils import format_size


class OutputFormatter:
    """Formats CLI output as rich text or JSON.

    Informational messages are suppressed in quiet mode and when JSON output
    is requested, so stdout then only carries the JSON document. Warnings
    and errors always go to stderr.
    """

    def __init__(self, json_output: bool = False, quiet: bool = False):
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console()
        self.err_console = Console(stderr=True)

    def _silent(self) -> bool:
        return self.quiet or self.json_output

    def print(self, message: str = "") -> None:
        if not self.json_output:
            self.console.print(message, highlight=False)

    def info(self, message: str) -> None:
        if not self._silent():
            self.console.print(message, highlight=False)

    def success(self, message: str) -> None:
        if not self._silent():
            self.console.print(f"[green]✓[/green] {message}", highlight=False)

    def progress_message(self, message: str) -> None:
        if not self._silent():
            self.console.print(f"[dim]{message}[/dim]", highlight=False)

    def warning(self, message: str) -> None:
        self.err_console.print(f"[yellow]Warning:[/yellow] {message}", highlight=False)

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]Error:[/red] {message}", highlight=False)

    def output_json(self, data: Any) -> None:
        self.console.print_json(json.dumps(data, default=str))

    def output_table(
        self,
        rows: list[dict[str, Any]],
        columns: list[str],
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        """Print rows as a table (or as a JSON list in JSON mode)."""
        if self.json_output:
            self.output_json(rows)
            return
        headers = headers or {}
        table = Table(show_header=True, header_style="bold")
        for column in columns:
            table.add_column(headers.get(column, column))
        for row in rows:
            table.add_row(*(str(row.get(column, "")) for column in columns))
        self.console.print(table)

    def print_summary(self, title: str, items: list[tuple[str, Any]]) -> None:
        if self._silent():
            return
        table = Table(title=title, show_header=False, box=None)
        table.add_column("Field", style="bold")
        table.add_column("Value")
        for key, value in items:
            table.add_row(key, str(value))
        self.console.print(table)

    @staticmethod
    def format_size(size_bytes: Optional[int]) -> str:
        return format_size(size_bytes)
