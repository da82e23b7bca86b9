"""Rich console output and logging setup."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

console = Console()
err_console = Console(stderr=True)


def setup_logging(log_level: str = "info", log_file: str | None = None, *, quiet: bool = False) -> None:
    """Configure the root logger once for a CLI run.

    Args:
        log_level: Logging level name (debug, info, warning, error).
        log_file: Optional path that also receives plain-text logs.
        quiet: Drop the console handler entirely.

    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    handlers: list[logging.Handler] = []
    if not quiet:
        handler = RichHandler(
            console=err_console,
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        handlers.append(handler)
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
        )
        handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    # Keep httpx request lines out of INFO output.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def print_with_style(message: str, style: str = "bold green") -> None:
    """Print a message with a style."""
    console.print(f"[{style}]{message}[/{style}]")


def print_error_message(message: str, suggestion: str | None = None) -> None:
    """Print an error message in a red panel."""
    text = f"[bold red]{message}[/bold red]"
    if suggestion:
        text += f"\n\n{suggestion}"
    console.print(Panel(text, title="Error", border_style="red"))


def print_reply(content: str, footer: str | None = None) -> None:
    """Print an assistant reply in a panel."""
    console.print(Panel(Text(content), title="Assistant", border_style="cyan", subtitle=footer))


def rows_table(title: str, columns: list[str], rows: list[list[str]]) -> Table:
    """Build a simple rich table."""
    table = Table(title=title)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*row)
    return table
