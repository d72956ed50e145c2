"""Unit tests for engine config module.

Tests YAML configuration loading, environment variable overrides,
path resolution and logging setup.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from ew_engine.config import (
    DEFAULT_CONFIG,
    ConfigurationError,
    _deep_merge,
    _resolve_path,
    configure_logging,
    get_classifier_config,
    get_corpus_path,
    get_section,
    get_state_dir,
    load_config,
)


class TestDeepMerge:
    """Tests for _deep_merge helper function."""

    def test_merge_nested_dicts(self):
        """Merge nested dictionaries."""
        base = {"outer": {"a": 1, "b": 2}}
        override = {"outer": {"b": 3}}

        result = _deep_merge(base, override)

        assert result == {"outer": {"a": 1, "b": 3}}

    def test_merge_does_not_modify_base(self):
        """Merge should not modify the base dictionary."""
        base = {"a": 1}
        original_base = base.copy()

        _deep_merge(base, {"b": 2})

        assert base == original_base


class TestResolvePath:
    """Tests for _resolve_path helper function."""

    def test_resolve_none_returns_none(self, tmp_path: Path):
        assert _resolve_path(None, tmp_path) is None

    def test_resolve_relative_path(self, tmp_path: Path):
        """Resolve relative path makes it absolute from base_dir."""
        result = _resolve_path("relative/path", tmp_path)
        assert result == (tmp_path / "relative/path").resolve()

    def test_resolve_expands_home(self, tmp_path: Path):
        result = _resolve_path("~/ew", tmp_path)
        assert result == Path.home() / "ew"


class TestDefaultConfig:
    """Tests for DEFAULT_CONFIG structure."""

    def test_default_engine_is_none(self):
        """Default engine should be None (use registered default)."""
        assert DEFAULT_CONFIG["classifier"]["engine"] is None

    def test_calibration_tiers(self):
        calibration = DEFAULT_CONFIG["calibration"]
        assert calibration["single_with_subdomain"] == 0.85
        assert calibration["single"] == 0.70
        assert calibration["multi"] == 0.60
        assert calibration["multi_ceiling"] == 0.69

    def test_cache_and_session_constants(self):
        assert DEFAULT_CONFIG["cache"]["promotion_threshold"] == 3
        assert DEFAULT_CONFIG["cache"]["retention_days"] == 90
        assert DEFAULT_CONFIG["session"]["boost_cap"] == 0.10
        assert DEFAULT_CONFIG["session"]["max_history"] == 1000
        assert DEFAULT_CONFIG["constraints"]["archive_keep"] == 20


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_returns_defaults_without_file(self, tmp_path: Path):
        """Load returns defaults when no config file exists."""
        with patch.dict(os.environ, {"EW_STATE_DIR": str(tmp_path)}, clear=True):
            config = load_config()

        assert config["cache"]["promotion_threshold"] == 3

    def test_load_from_explicit_path(self, tmp_path: Path):
        """Load reads from explicit config path."""
        config_path = tmp_path / "custom.yaml"
        with open(config_path, "w") as f:
            yaml.dump({"cache": {"promotion_threshold": 5}}, f)

        config = load_config(str(config_path))

        assert config["cache"]["promotion_threshold"] == 5
        # Default value preserved
        assert config["cache"]["retention_days"] == 90

    def test_load_from_env_var(self, tmp_path: Path):
        """Load reads from EW_CONFIG_PATH env var."""
        config_path = tmp_path / "env-config.yaml"
        with open(config_path, "w") as f:
            yaml.dump({"logging": {"level": "DEBUG"}}, f)

        with patch.dict(os.environ, {"EW_CONFIG_PATH": str(config_path)}):
            config = load_config()

        assert config["logging"]["level"] == "DEBUG"

    def test_load_default_config_file_from_state_dir(self, tmp_path: Path):
        """Load reads ew-engine.yaml from the state directory."""
        with open(tmp_path / "ew-engine.yaml", "w") as f:
            yaml.dump({"session": {"window_minutes": 10}}, f)

        with patch.dict(os.environ, {"EW_STATE_DIR": str(tmp_path)}, clear=True):
            config = load_config()

        assert config["session"]["window_minutes"] == 10

    def test_invalid_default_file_is_ignored(self, tmp_path: Path):
        """Invalid YAML in the implicit default file falls back to defaults."""
        (tmp_path / "ew-engine.yaml").write_text("invalid: yaml: content: [")

        with patch.dict(os.environ, {"EW_STATE_DIR": str(tmp_path)}, clear=True):
            config = load_config()

        assert config["session"]["window_minutes"] == 30

    def test_load_invalid_yaml_raises(self, tmp_path: Path):
        """Load raises ConfigurationError for invalid YAML in an explicit file."""
        config_path = tmp_path / "invalid.yaml"
        config_path.write_text("invalid: yaml: content: [")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(str(config_path))

    def test_missing_explicit_file_uses_defaults(self, tmp_path: Path):
        config = load_config(str(tmp_path / "absent.yaml"))
        assert config["cache"]["retention_days"] == 90

    def test_env_overrides(self, tmp_path: Path):
        env = {
            "EW_STATE_DIR": str(tmp_path / "state"),
            "EW_CORPUS_PATH": str(tmp_path / "corpus"),
            "EW_LOG_LEVEL": "debug",
        }
        with patch.dict(os.environ, env, clear=True):
            config = load_config()

        assert config["state"]["path"] == str(tmp_path / "state")
        assert config["corpus"]["path"] == str(tmp_path / "corpus")
        assert config["logging"]["level"] == "DEBUG"

    def test_progressive_classification_rollback(self, tmp_path: Path):
        """EW_PROGRESSIVE_CLASSIFICATION=0 disables the session-context feature."""
        env = {"EW_STATE_DIR": str(tmp_path), "EW_PROGRESSIVE_CLASSIFICATION": "0"}
        with patch.dict(os.environ, env, clear=True):
            config = load_config()

        assert config["classifier"]["features"] == {"progressive_classification": False}


class TestGetters:
    """Tests for config getter helpers."""

    def test_state_dir_from_config(self, tmp_path: Path):
        config = {"state": {"path": str(tmp_path)}}
        assert get_state_dir(config) == tmp_path

    def test_state_dir_default(self):
        assert get_state_dir({"state": {"path": None}}) == Path.home() / ".ew-engine"

    def test_corpus_path_none_means_bundled(self):
        assert get_corpus_path({"corpus": {"path": None}}) is None

    def test_classifier_config_extracts_section(self):
        config = {"classifier": {"engine": "ew-keyword-1.0", "features": {"pattern_cache": False}}}

        result = get_classifier_config(config)

        assert result == {
            "classifier": {"engine": "ew-keyword-1.0", "features": {"pattern_cache": False}}
        }

    def test_classifier_config_handles_missing_section(self):
        result = get_classifier_config({})
        assert result["classifier"]["engine"] is None
        assert result["classifier"]["features"] == {}

    def test_get_section_fills_defaults(self):
        section = get_section({"cache": {"retention_days": 7}}, "cache")
        assert section == {"promotion_threshold": 3, "retention_days": 7}


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_unknown_level_raises(self):
        with pytest.raises(ConfigurationError, match="Unknown logging level"):
            configure_logging({"logging": {"level": "CHATTY"}})

    def test_adds_session_log_once(self, tmp_path: Path):
        """Session log handler is installed once per state directory."""
        config = {"logging": {"level": "INFO", "file": True}}
        root = logging.getLogger()

        def session_handlers():
            log_path = str((tmp_path / "session.log").absolute())
            return [
                h for h in root.handlers
                if isinstance(h, RotatingFileHandler) and h.baseFilename == log_path
            ]

        try:
            configure_logging(config, tmp_path)
            configure_logging(config, tmp_path)
            assert len(session_handlers()) == 1
        finally:
            for handler in session_handlers():
                root.removeHandler(handler)
                handler.close()
