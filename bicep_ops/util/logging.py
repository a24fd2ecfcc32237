"""
Logging configuration for the CLI.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(verbose: bool = False, console: Console | None = None) -> None:
    """
    Route library logging through rich.

    Args:
        verbose: Log at DEBUG instead of WARNING
        console: Console to write to (stderr console by default)
    """
    level = logging.DEBUG if verbose else logging.WARNING
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        markup=False,
        rich_tracebacks=verbose,
    )
    root = logging.getLogger("bicep_ops")
    root.handlers = [handler]
    root.setLevel(level)
    root.propagate = False
