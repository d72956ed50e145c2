"""Shared pytest fixtures for ew-engine tests.

Every test gets its own temporary state directory and a controllable clock,
so history windows, cache retention and archive names are deterministic.
"""

import copy
import logging
from collections.abc import Callable
from logging.handlers import RotatingFileHandler
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from ew_engine.config import DEFAULT_CONFIG
from ew_engine.corpus_loader import KeywordCorpus, get_default_corpus
from ew_engine.session import EngineSession

ENV_VARS = (
    "EW_CONFIG_PATH",
    "EW_STATE_DIR",
    "EW_CORPUS_PATH",
    "EW_LOG_LEVEL",
    "EW_PROGRESSIVE_CLASSIFICATION",
)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's EW_* environment out of tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def drop_session_log_handlers():
    """Remove session.log handlers that CLI runs install on the root logger."""
    root = logging.getLogger()
    before = list(root.handlers)
    yield
    for handler in list(root.handlers):
        if handler not in before and isinstance(handler, RotatingFileHandler):
            root.removeHandler(handler)
            handler.close()


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Return an empty state directory."""
    return tmp_path / "state"


@pytest.fixture
def clock() -> FixedClock:
    """Return a clock fixed at 2026-01-15 12:00 UTC."""
    return FixedClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture(scope="session")
def corpus() -> KeywordCorpus:
    """Return the bundled keyword corpus."""
    return get_default_corpus()


@pytest.fixture
def config() -> dict[str, Any]:
    """Return a fresh copy of the default configuration."""
    return copy.deepcopy(DEFAULT_CONFIG)


@pytest.fixture
def make_session(
    state_dir: Path,
    clock: FixedClock,
    corpus: KeywordCorpus,
    config: dict[str, Any],
) -> Callable[..., EngineSession]:
    """Factory for sessions sharing one state directory and clock.

    Keyword arguments are classifier feature flags, e.g.
    make_session("s1", pattern_cache=False).
    """

    def factory(session_id: str = "default", **features: bool) -> EngineSession:
        session_config = copy.deepcopy(config)
        session_config["classifier"]["features"] = dict(features)
        return EngineSession(
            session_id,
            config=session_config,
            state_root=state_dir,
            corpus=corpus,
            clock=clock,
        )

    return factory
