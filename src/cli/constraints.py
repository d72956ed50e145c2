"""Constraint store CLI commands: declare, resolve and archive constraints."""

from pathlib import Path

import typer

from ew_engine.constraints import ConstraintType, Priority, Resolution

from .console import console, create_table, print_error, print_json, print_success, print_warning
from .context import CONFIG_OPTION, JSON_OPTION, SESSION_OPTION, STATE_DIR_OPTION, open_session

app = typer.Typer(
    name="constraints",
    help="Declare and resolve analysis constraints",
    no_args_is_help=True,
)


@app.command(name="add")
def add_constraint(
    constraint_id: str = typer.Option(..., "--id", help="Unique constraint id"),
    source: str = typer.Option(..., "--source", help="Stage that declared the constraint"),
    constraint_type: ConstraintType = typer.Option(
        ConstraintType.REQUIRES,
        "--type",
        "-t",
        help="requires, recommends, prohibits or conflicts_with",
    ),
    target: str = typer.Option(..., "--target", help="Constrained aspect (e.g. storage-engine)"),
    value: str = typer.Option(..., "--value", help="Required value (e.g. lsm)"),
    priority: Priority = typer.Option(Priority.SOFT, "--priority", "-p", help="hard or soft"),
    impacts: list[str] | None = typer.Option(
        None,
        "--impact",
        help="Affected external system (repeatable)",
    ),
    session_id: str = SESSION_OPTION,
    state_dir: Path | None = STATE_DIR_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Append a constraint to the session's active store."""
    session = open_session(session_id, state_dir, config)
    outcome = session.append_constraint({
        "id": constraint_id,
        "source": source,
        "constraint_type": constraint_type.value,
        "target": target,
        "value": value,
        "priority": priority.value,
        "impacts": impacts or [],
    })
    if not outcome["ok"]:
        print_error(outcome["error"])
        raise typer.Exit(1)
    print_success(f"Constraint {outcome['constraint_id']} added to session {session_id}")


@app.command(name="resolve")
def resolve_constraints(
    session_id: str = SESSION_OPTION,
    state_dir: Path | None = STATE_DIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Detect conflicts and resolve what can be resolved automatically.

    Unresolved conflicts are listed for human adjudication.
    """
    session = open_session(session_id, state_dir, config)
    outcome = session.resolve_constraints()

    if as_json:
        print_json(outcome.to_dict())
        return

    meta = outcome.metadata
    if not outcome.conflicts:
        console.print(f"[green]No conflicts[/green] among {meta['total_declared']} constraints.")
    else:
        table = create_table("Constraint Conflicts")
        table.add_column("Conflict", style="cyan")
        table.add_column("Tier", style="magenta")
        table.add_column("Type", style="blue")
        table.add_column("Resolution")
        table.add_column("Rationale", style="dim")
        for conflict in outcome.conflicts:
            resolution = {
                Resolution.ACCEPT_A: f"[green]accept {conflict.constraint_a_id}[/green]",
                Resolution.ACCEPT_B: f"[green]accept {conflict.constraint_b_id}[/green]",
                Resolution.UNRESOLVED: "[red]unresolved[/red]",
            }[conflict.resolution]
            table.add_row(
                conflict.conflict_id,
                conflict.tier.value,
                conflict.type.value,
                resolution,
                conflict.rationale,
            )
        console.print(table)

    console.print(
        f"\n[dim]Declared: {meta['total_declared']} | "
        f"Accepted: {meta['total_accepted']} | "
        f"Rejected: {meta['total_rejected']} | "
        f"Conflicts: {meta['total_conflicts']} | "
        f"Unresolved: {meta['total_unresolved']}[/dim]"
    )
    if meta["total_unresolved"]:
        print_warning(f"{meta['total_unresolved']} conflicts need adjudication")


@app.command(name="archive")
def archive_constraints(
    session_id: str = SESSION_OPTION,
    state_dir: Path | None = STATE_DIR_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Archive the active constraints (with their resolution) and reset the store."""
    session = open_session(session_id, state_dir, config)
    path = session.archive_constraints()
    if path is None:
        console.print(f"[dim]No constraints to archive for session {session_id}.[/dim]")
        return
    print_success(f"Archived constraints to {path}")
