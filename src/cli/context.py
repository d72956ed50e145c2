"""Shared options and session construction for CLI commands."""

from pathlib import Path

import typer

from ew_engine.config import ConfigurationError, configure_logging, load_config
from ew_engine.corpus_loader import CorpusError
from ew_engine.session import EngineSession
from ew_engine.state_files import DEFAULT_SESSION_ID

from .console import print_error

SESSION_OPTION = typer.Option(
    DEFAULT_SESSION_ID,
    "--session",
    "-s",
    help="Session identifier",
)
STATE_DIR_OPTION = typer.Option(
    None,
    "--state-dir",
    help="State directory (default: EW_STATE_DIR or ~/.ew-engine)",
)
CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Config file (default: EW_CONFIG_PATH or ew-engine.yaml in the state dir)",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Print machine-readable JSON",
)


def open_session(
    session_id: str,
    state_dir: Path | None = None,
    config_path: Path | None = None,
) -> EngineSession:
    """Load configuration, set up logging and open a session, or exit 1."""
    try:
        config = load_config(str(config_path) if config_path else None)
        session = EngineSession(session_id, config=config, state_root=state_dir)
        configure_logging(config, session.layout.root)
    except (ConfigurationError, CorpusError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(1)
    return session
