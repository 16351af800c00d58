from __future__ import annotations

from typing import Optional, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from polystore.schema.reconciler import DdlStep

_KIND_STYLES = {
    "create": "bold green",
    "add_column": "yellow",
    "create_index": "cyan",
}


def print_steps(
    title: str,
    steps: Sequence[DdlStep],
    console: Optional[Console] = None,
) -> None:
    """
    Render schema steps as a rich table.

    An empty plan prints a single "up to date" line instead of an empty table.
    """
    console = console or Console()

    if not steps:
        console.print(f"[green]{title}: schema up to date.[/green]")
        return

    table = Table(title=title, box=box.ROUNDED, caption=f"{len(steps)} step(s)")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Step", no_wrap=True)
    table.add_column("Object", style="magenta", no_wrap=True)
    table.add_column("Column", style="blue")
    table.add_column("Statement", overflow="fold")

    for position, step in enumerate(steps, start=1):
        kind = step.kind.value
        table.add_row(
            str(position),
            f"[{_KIND_STYLES.get(kind, 'white')}]{kind}[/]",
            step.object_name,
            step.column or "",
            escape(step.statement),
        )

    console.print(table)
