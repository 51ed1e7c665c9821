"""Console sink for diagnostics and CLI output.

The calculator never writes to the terminal itself; it is handed a `Console`
at construction and reports through it.

Usage:
    from lattice_energy.console import Console

    console = Console(debug=True)
    with console.spinner("Sweeping dimensions..."):
        rows = calc.compute_batch(1, 26)

    console.success("Done", detail="26 dimensions")
    console.warn("Clamped influence", detail="12.0 -> 10.0")
    console.error("Simulation failed", detail=str(err))
    console.debug("vertex 0: amplitude=0.1")
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Optional

from rich.console import Console as RichConsole
from rich.markup import escape
from rich.panel import Panel


class Console:
    """Minimal logging interface with rich output."""

    __slots__ = ("_console", "debug_enabled")

    def __init__(self, *, debug: bool = False, quiet: bool = False, stderr: bool = False) -> None:
        self._console = RichConsole(quiet=quiet, stderr=stderr, highlight=False)
        self.debug_enabled = bool(debug)

    @contextmanager
    def spinner(self, message: str):
        """Show a spinner while work is in progress."""
        if self._console.quiet:
            yield
            return
        with self._console.status(f"[bold cyan]{message}", spinner="dots"):
            yield

    def success(self, message: str, *, detail: Optional[str] = None) -> None:
        """Green success message."""
        self._console.print(f"[bold green]✓[/bold green] {message}" + (f" [dim]{escape(detail)}[/dim]" if detail else ""))

    def warn(self, message: str, *, detail: Optional[str] = None) -> None:
        """Yellow warning message."""
        self._console.print(f"[yellow]⚠[/yellow] {message}" + (f" [dim]{escape(detail)}[/dim]" if detail else ""))

    def error(self, message: str, *, detail: Optional[str] = None) -> None:
        """Red error message."""
        self._console.print(f"[bold red]✗[/bold red] {message}" + (f" [dim]{escape(detail)}[/dim]" if detail else ""))

    def info(self, message: str, *, detail: Optional[str] = None) -> None:
        """Blue info message."""
        self._console.print(f"[blue]•[/blue] {message}" + (f" [dim]{escape(detail)}[/dim]" if detail else ""))

    def debug(self, message: str, *, detail: Optional[str] = None) -> None:
        """Dim trace message, only shown when debug is enabled."""
        if not self.debug_enabled:
            return
        self._console.print(f"[green]·[/green] [dim]{escape(message)}[/dim]" + (f" [dim]{escape(detail)}[/dim]" if detail else ""))

    def header(self, title: str, **fields: str) -> None:
        """Show a panel with key-value fields."""
        lines = [f"[bold]{k}:[/bold] {v}" for k, v in fields.items()]
        self._console.print(Panel("\n".join(lines), title=f"[cyan]{title}[/cyan]", border_style="blue"))

    def render(self, renderable: Any) -> None:
        """Print a rich renderable (tables, panels)."""
        self._console.print(renderable)
