"""Console output helpers for the ew-engine CLI.

Usage:
    from cli.console import console, print_panel, print_success, print_error

    console.print("Hello world", style="bold")
    print_success("Operation completed")
    print_error("Something went wrong")
    print_panel("Title", "Content here")
"""

import json
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()


def print_success(message: str) -> None:
    """Print a success message (green checkmark)."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message (red X)."""
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message (yellow warning sign)."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_panel(title: str, content: str, style: str = "blue") -> None:
    """Print content in a panel/box."""
    console.print(Panel(content, title=title, border_style=style))


def create_table(title: str = "") -> Table:
    return Table(title=title) if title else Table()


def print_json(data: Any) -> None:
    """Print machine-readable JSON without rich markup or wrapping."""
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


def confidence_style(confidence: float) -> str:
    """Colour a confidence value by band (cache / confident / ambiguous / none)."""
    if confidence >= 1.0:
        return f"[bold green]{confidence:.2f}[/bold green]"
    if confidence >= 0.85:
        return f"[green]{confidence:.2f}[/green]"
    if confidence >= 0.70:
        return f"[yellow]{confidence:.2f}[/yellow]"
    if confidence > 0:
        return f"[red]{confidence:.2f}[/red]"
    return "[dim]0.00[/dim]"


__all__ = [
    "console",
    "print_success",
    "print_error",
    "print_warning",
    "print_panel",
    "create_table",
    "print_json",
    "confidence_style",
]
