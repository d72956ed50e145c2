"""ew-engine CLI entry point."""

from pathlib import Path

import typer

from ew_engine.config import get_corpus_path
from ew_engine.health_check import get_health_status

from . import __version__
from .cache import app as cache_app
from .console import confidence_style, console, create_table, print_json, print_panel, print_success
from .constraints import app as constraints_app
from .context import CONFIG_OPTION, JSON_OPTION, SESSION_OPTION, STATE_DIR_OPTION, open_session

app = typer.Typer(
    name="ew-engine",
    help="ew-engine - request classification and constraint resolution",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"ew-engine version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """ew-engine - request classification and constraint resolution."""
    pass


@app.command(name="classify")
def classify_command(
    request: str = typer.Argument(..., help="Free-text request to classify"),
    session_id: str = SESSION_OPTION,
    state_dir: Path | None = STATE_DIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    no_record: bool = typer.Option(
        False,
        "--no-record",
        help="Do not write history, transitions or cache",
    ),
    as_json: bool = JSON_OPTION,
) -> None:
    """Classify a request into systems and domains."""
    session = open_session(session_id, state_dir, config)
    if not no_record:
        session.run_cleanup()
    result = session.classify(request, record=not no_record)

    if as_json:
        print_json({"query": request, **result.to_dict()})
        return

    if not result.systems:
        console.print("[yellow]No classification[/yellow] (confidence 0).")
        console.print("[dim]Fall back to another classifier or ask for clarification.[/dim]")
        return

    lines = [
        f"[bold]Systems:[/bold] {', '.join(result.systems)}",
        f"[bold]Domains:[/bold] {', '.join(result.domains) or '(none)'}",
        f"[bold]Pattern:[/bold] {result.pattern.value}",
        f"[bold]Confidence:[/bold] {confidence_style(result.confidence)}",
        f"[bold]Source:[/bold] {result.classifier_source.value}",
    ]
    if result.prior_boost:
        lines.append(f"[bold]Session boost:[/bold] +{result.prior_boost:.2f}")
    if result.needs_verification:
        lines.append("[yellow]Below 0.85: confirm before dispatching expensive analysis[/yellow]")
    print_panel("Classification", "\n".join(lines))

    if result.suggested_expansions:
        table = create_table("Suggested Expansions")
        table.add_column("System", style="cyan")
        table.add_column("Domain", style="green")
        table.add_column("Confidence", justify="right")
        table.add_column("Rationale", style="dim")
        for suggestion in result.suggested_expansions:
            table.add_row(
                suggestion.system,
                suggestion.domain or "-",
                f"{suggestion.transition_confidence:.2f}",
                suggestion.rationale,
            )
        console.print(table)


@app.command(name="cleanup")
def cleanup_command(
    force: bool = typer.Option(False, "--force", "-f", help="Ignore the cleanup interval"),
    state_dir: Path | None = STATE_DIR_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Trim histories, evict stale cache entries and prune archives."""
    session = open_session("default", state_dir, config)
    summary = session.run_cleanup(force=force)
    if summary is None:
        console.print("[dim]Cleanup ran recently; use --force to run anyway.[/dim]")
        return
    print_success(
        f"Cleanup done: {summary['history_trimmed']} history entries trimmed, "
        f"{summary['cache_evicted']} cache entries evicted, "
        f"{summary['archives_removed']} archives removed"
    )


@app.command(name="health")
def health_command(
    session_id: str = SESSION_OPTION,
    state_dir: Path | None = STATE_DIR_OPTION,
    config: Path | None = CONFIG_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Report the state of the corpus and state files."""
    session = open_session(session_id, state_dir, config)
    status = get_health_status(
        session.layout,
        session_id,
        corpus_path=get_corpus_path(session.config),
        clock=session.clock,
    )

    if as_json:
        print_json(status)
    else:
        table = create_table(f"Engine Health ({status['overall']})")
        table.add_column("Check", style="cyan")
        table.add_column("Status")
        table.add_column("Detail", style="dim")
        for name in ("corpus", "pattern_cache", "transitions", "history", "constraints"):
            check = status[name]
            style = {"healthy": "green", "missing": "dim", "corrupt": "red"}.get(check["status"], "red")
            detail = check.get("reason") or check.get("path", "")
            table.add_row(name, f"[{style}]{check['status']}[/{style}]", str(detail))
        console.print(table)

    if status["overall"] == "unhealthy":
        raise typer.Exit(1)


app.add_typer(constraints_app, name="constraints")
app.add_typer(cache_app, name="cache")


if __name__ == "__main__":
    app()
