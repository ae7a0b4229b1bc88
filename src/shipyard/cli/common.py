"""Console output helpers shared by the shipyard commands."""

import asyncio
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Palette
ELECTRIC_PURPLE = "#e135ff"
NEON_CYAN = "#80ffea"
SUCCESS_GREEN = "#50fa7b"
ERROR_RED = "#ff6363"

console = Console()

P = ParamSpec("P")
R = TypeVar("R")


def success(message: str) -> None:
    console.print(f"[{SUCCESS_GREEN}]✓[/{SUCCESS_GREEN}] {message}")


def error(message: str) -> None:
    console.print(f"[{ERROR_RED}]✗[/{ERROR_RED}] {message}")


def info(message: str) -> None:
    console.print(f"[{NEON_CYAN}]→[/{NEON_CYAN}] {message}")


def create_table(title: str | None = None, *columns: str) -> Table:
    """Create a styled table."""
    table = Table(title=title, border_style=NEON_CYAN)
    for i, col in enumerate(columns):
        table.add_column(col, style=ELECTRIC_PURPLE if i == 0 else NEON_CYAN)
    return table


def create_panel(content: str, title: str | None = None) -> Panel:
    return Panel(
        content,
        title=f"[{ELECTRIC_PURPLE}]{title}[/{ELECTRIC_PURPLE}]" if title else None,
        border_style=NEON_CYAN,
    )


def run_async(func: Callable[P, Awaitable[R]]) -> Callable[P, R]:
    """Decorator to run async functions in sync context (for Typer commands)."""

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


def format_status(status: str) -> str:
    """Format a build status with its color."""
    status_colors = {
        "pending": "dim",
        "building": ELECTRIC_PURPLE,
        "ready": SUCCESS_GREEN,
        "error": ERROR_RED,
    }
    color = status_colors.get(status.lower(), NEON_CYAN)
    return f"[{color}]{status}[/{color}]"
