"""
Status and summary output utilities using rich.
"""

from contextlib import contextmanager
from typing import Iterator

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()


@contextmanager
def operation_status(operation: str, out: Console | None = None) -> Iterator[None]:
    """
    Context manager to show operation status.

    Usage:
        with operation_status("Compiling main.bicep"):
            # do work
            pass

    Args:
        operation: Description of the operation
        out: Console to print to (module console by default)

    Yields:
        None
    """
    out = out or console
    out.print(f"[bold blue]{operation}...[/bold blue]")

    try:
        yield
        out.print(f"[green]✓ {operation} complete[/green]")
    except Exception as e:
        out.print(f"[red]✗ {operation} failed: {e}[/red]")
        raise


def show_summary(title: str, items: dict[str, str | int], out: Console | None = None):
    """
    Show a formatted summary box.

    Args:
        title: Summary title
        items: Dictionary of items to show (key: value pairs)
        out: Console to print to (module console by default)
    """
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="white")

    for key, value in items.items():
        table.add_row(key, str(value))

    panel = Panel(table, title=f"[bold]{title}[/bold]", border_style="blue")
    (out or console).print(panel)
