"""Pattern cache CLI commands."""

from pathlib import Path

import typer

from ew_engine.config import get_section
from ew_engine.pattern_cache import compute_signature

from .console import console, create_table, print_json, print_panel, print_success
from .context import CONFIG_OPTION, JSON_OPTION, STATE_DIR_OPTION, open_session

app = typer.Typer(
    name="cache",
    help="Inspect and maintain the pattern cache",
    no_args_is_help=True,
)


@app.command(name="list")
def list_entries(
    state_dir: Path | None = STATE_DIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """List cached request signatures."""
    session = open_session("default", state_dir, config)
    entries = sorted(session.cache.entries(), key=lambda e: e.last_used, reverse=True)

    if as_json:
        print_json([e.to_dict() for e in entries])
        return

    if not entries:
        console.print("[dim]Pattern cache is empty.[/dim]")
        return

    table = create_table("Pattern Cache")
    table.add_column("Signature", style="cyan")
    table.add_column("Systems", style="green")
    table.add_column("Hits", justify="right")
    table.add_column("Last used", style="dim")
    for entry in entries:
        signature = entry.signature
        if len(signature) > 50:
            signature = signature[:47] + "..."
        table.add_row(
            signature,
            ", ".join(entry.result.systems),
            str(entry.hit_count),
            entry.last_used.isoformat(timespec="seconds"),
        )
    console.print(table)


@app.command(name="show")
def show_entry(
    request: str = typer.Argument(..., help="Request whose cache entry to show"),
    state_dir: Path | None = STATE_DIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Show the cache entry a request maps to, if any."""
    session = open_session("default", state_dir, config)
    signature = compute_signature(request)
    entry = session.cache.get_entry(signature)

    if as_json:
        print_json(entry.to_dict() if entry else None)
        return

    if entry is None:
        console.print(f"[dim]No cache entry for signature '{signature}'.[/dim]")
        return

    status = "serving" if entry.hit_count >= session.cache.promotion_threshold else "pending"
    print_panel(
        "Pattern Cache Entry",
        "\n".join([
            f"[bold]Signature:[/bold] {entry.signature}",
            f"[bold]Systems:[/bold] {', '.join(entry.result.systems)}",
            f"[bold]Domains:[/bold] {', '.join(entry.result.domains) or '(none)'}",
            f"[bold]Live confidence:[/bold] {entry.result.confidence:.2f}",
            f"[bold]Hits:[/bold] {entry.hit_count} ({status})",
            f"[bold]Last used:[/bold] {entry.last_used.isoformat(timespec='seconds')}",
        ]),
    )


@app.command(name="evict")
def evict_entries(
    days: int | None = typer.Option(
        None,
        "--days",
        "-d",
        help="Evict entries unused for this many days (default: cache.retention_days)",
    ),
    state_dir: Path | None = STATE_DIR_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Evict cache entries that have not been used recently."""
    session = open_session("default", state_dir, config)
    if days is None:
        days = int(get_section(session.config, "cache")["retention_days"])
    removed = session.cache.evict(days)
    print_success(f"Evicted {removed} cache entries older than {days} days")


@app.command(name="clear")
def clear_entries(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    transitions: bool = typer.Option(
        False,
        "--transitions",
        help="Also clear the transition table behind suggested expansions",
    ),
    state_dir: Path | None = STATE_DIR_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Remove every pattern cache entry."""
    if not yes and not typer.confirm("Clear the pattern cache for all sessions?"):
        raise typer.Abort()
    session = open_session("default", state_dir, config)
    removed = session.cache.clear()
    print_success(f"Cleared {removed} cache entries")
    if transitions:
        removed = session.tracker.transitions.clear()
        print_success(f"Cleared {removed} transition records")
