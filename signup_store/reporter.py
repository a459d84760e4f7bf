from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from signup_store.domain.models import Record


def print_records(records: Sequence[Record], console: Optional[Console] = None) -> None:
    """
    Render the customer table as a rich table.

    Rows are numbered from 1 in file order, matching the row numbers of the
    data file below its header.
    """
    console = console or Console()

    if not records:
        console.print("[yellow]No records yet.[/yellow]")
        return

    table = Table(
        title="Sign-ups",
        box=box.ROUNDED,
        caption=f"{len(records):,} record(s)",
    )
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Email", style="magenta")
    table.add_column("Phone", justify="right", style="green")
    table.add_column("Date", style="blue")
    table.add_column("Prize", style="bold yellow")

    for number, record in enumerate(records, start=1):
        table.add_row(
            str(number),
            escape(record.name),
            escape(record.email),
            escape(record.phone),
            escape(record.date) or "-",
            escape(record.prize) or "-",
        )

    console.print(table)


def print_sync_status(
    status: Mapping[str, Any],
    report: Optional[Mapping[str, Any]] = None,
    console: Optional[Console] = None,
) -> None:
    """
    Render the sync state (and the outcome of a sync run, when given).
    """
    console = console or Console()

    table = Table(title="Remote Sync", box=box.ROUNDED, show_header=False)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value")

    rows: Dict[str, Any] = dict(status)
    if report is not None:
        rows["attempted"] = report.get("attempted")
        rows["outcome"] = report.get("outcome")
        if report.get("error"):
            rows["last_error"] = report["error"]

    for key, value in rows.items():
        if key == "dirty":
            rendered = "[red]pending upload[/red]" if value else "[green]clean[/green]"
        elif value is None:
            rendered = "[dim]-[/dim]"
        else:
            rendered = escape(str(value))
        table.add_row(key, rendered)

    console.print(table)


__all__ = ["print_records", "print_sync_status"]
