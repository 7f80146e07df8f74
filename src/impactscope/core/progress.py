"""User-facing console feedback for CLI operations.

Design principles:
- One Reporter per CLI invocation, passed explicitly (no shared console state)
- Single line updates, no spam
- Graceful degradation in non-TTY (CI, pipes)

Usage::

    reporter = Reporter()
    reporter.status("Scanning services...")

    with reporter.task("Discovering tests"):
        do_work()
    # Prints: ✓ Discovering tests (3.2s)

    reporter.status("No tests reference azurerm_foo", style="warning")
"""

from __future__ import annotations

import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from rich.console import Console
from rich.table import Table

from impactscope.core.logging import get_logger

_STYLES = {
    "success": "[green]✓[/green] ",
    "error": "[red]✗[/red] ",
    "warning": "[yellow]![/yellow] ",
    "info": "  ",
    "none": "",
}


def pluralize(count: int, singular: str, plural: str | None = None) -> str:
    """Return grammatically correct singular/plural form.

    Args:
        count: The number of items
        singular: Singular form (e.g., "file")
        plural: Plural form (default: singular + "s")

    Returns:
        Formatted string like "1 file" or "3 files"
    """
    if plural is None:
        plural = singular + "s"
    word = singular if count == 1 else plural
    return f"{count} {word}"


class Reporter:
    """Styled status lines and tables on a rich console."""

    def __init__(self, console: Console | None = None, *, quiet: bool = False) -> None:
        self.console = console or Console(stderr=True)
        self.quiet = quiet
        self._log = get_logger("progress")

    def status(self, message: str, *, style: str = "info", indent: int = 0) -> None:
        """Print a styled status message."""
        self._log.debug("status", message=message, style=style)
        if self.quiet:
            return
        prefix = _STYLES.get(style, "")
        self.console.print(f"{' ' * indent}{prefix}{message}", highlight=False)

    @contextmanager
    def task(self, name: str) -> Iterator[None]:
        """Named task with timing; prints success or failure with elapsed time."""
        self._log.debug("task_start", task=name)
        self.status(f"{name}...", style="none")
        start = time.perf_counter()
        try:
            yield
        except Exception as e:
            elapsed = time.perf_counter() - start
            self.status(f"{name} failed: {e}", style="error")
            self._log.error("task_failed", task=name, elapsed_s=elapsed, error=str(e))
            raise
        elapsed = time.perf_counter() - start
        self.status(f"{name} ({elapsed:.1f}s)", style="success")
        self._log.debug("task_done", task=name, elapsed_s=elapsed)

    def table(
        self,
        title: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[str]],
    ) -> None:
        """Render a simple table; skipped when quiet."""
        if self.quiet:
            return
        table = Table(title=title, title_justify="left", show_lines=False)
        for column in columns:
            table.add_column(column, overflow="fold")
        for row in rows:
            table.add_row(*row)
        self.console.print(table)
