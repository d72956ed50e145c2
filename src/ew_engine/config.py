"""Engine Configuration

Configuration loading with environment variable support and sensible defaults.

The scoring constants below were chosen empirically. They are defaults, not
truths, and every one of them can be overridden from the config file.

Environment Variables:
    EW_CONFIG_PATH: Path to config file (default: ew-engine.yaml in state dir)
    EW_STATE_DIR: Override state directory (history, cache, constraints)
    EW_CORPUS_PATH: Override keyword corpus directory
    EW_LOG_LEVEL: Override logging level
    EW_PROGRESSIVE_CLASSIFICATION: "0" disables session-context features

Configuration Schema:
    classifier:
        engine: str - Engine version (default: registered default)
        features: dict - Feature flags (e.g., {"pattern_cache": False})
    calibration: fast-path tiers and weighted formula constants
    session: history bound, recency window, decay and boost constants
    cache: promotion threshold and retention window
    constraints: archive retention count
    maintenance: cleanup interval
    state:
        path: str - State directory (default: ~/.ew-engine)
    corpus:
        path: str - Keyword corpus directory (default: bundled corpus)
    logging:
        level: str - Logging level (default: "INFO")
        file: bool - Also write a rotating session.log in the state dir
"""

import copy
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
SESSION_LOG_NAME = "session.log"
SESSION_LOG_MAX_BYTES = 512 * 1024
SESSION_LOG_BACKUPS = 5

DEFAULT_STATE_DIR = Path.home() / ".ew-engine"
CONFIG_FILE_NAME = "ew-engine.yaml"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    "classifier": {
        "engine": None,  # Use registered default engine
        "features": {},  # No feature overrides
    },
    "calibration": {
        "single_with_subdomain": 0.85,
        "single": 0.70,
        "multi": 0.60,
        "weighted_single_base": 0.70,
        "dominance_slope": 0.40,
        "subdomain_bonus": 0.10,
        "weighted_multi_base": 0.60,
        "gap_slope": 0.30,
        "multi_ceiling": 0.69,
        "live_ceiling": 0.99,
        "reconstruction_gap": 0.3,
    },
    "session": {
        "recent_limit": 5,
        "window_minutes": 30,
        "decay": 0.7,
        "boost_scale": 0.05,
        "boost_cap": 0.10,
        "reweight_scale": 0.05,
        "reweight_cap": 0.10,
        "max_history": 1000,
        "keep_ratio": 0.8,
        "transition_threshold": 0.20,
    },
    "cache": {
        "promotion_threshold": 3,
        "retention_days": 90,
    },
    "constraints": {
        "archive_keep": 20,
    },
    "maintenance": {
        "cleanup_interval_minutes": 60,
    },
    "state": {
        "path": None,  # Use DEFAULT_STATE_DIR
    },
    "corpus": {
        "path": None,  # Use bundled corpus
    },
    "logging": {
        "level": "INFO",
        "file": True,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge override dict into base dict.

    Args:
        base: Base dictionary (defaults)
        override: Override dictionary (user config)

    Returns:
        Merged dictionary with override values taking precedence
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _resolve_path(path: Optional[str], base_dir: Path) -> Optional[Path]:
    """
    Resolve a path, making relative paths absolute from base_dir.

    Args:
        path: Path string (absolute or relative) or None
        base_dir: Base directory for relative path resolution

    Returns:
        Resolved absolute Path or None if path was None
    """
    if path is None:
        return None

    path_obj = Path(path).expanduser()
    if path_obj.is_absolute():
        return path_obj
    return (base_dir / path_obj).resolve()


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise yaml.YAMLError(f"top-level document must be a mapping, got {type(data).__name__}")
    return data


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file with environment variable overrides.

    Configuration Loading Order (later overrides earlier):
    1. Default values (DEFAULT_CONFIG)
    2. Config file (from EW_CONFIG_PATH or config_path parameter)
    3. Environment variable overrides

    Args:
        config_path: Explicit config file path (overrides EW_CONFIG_PATH)

    Returns:
        Merged configuration dictionary

    Raises:
        ConfigurationError: If an explicit config file is invalid YAML

    Examples:
        # Load with defaults (no config file required)
        config = load_config()

        # Load from specific file
        config = load_config("/path/to/ew-engine.yaml")
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    cwd = Path.cwd()

    file_path = config_path or os.environ.get("EW_CONFIG_PATH")

    if file_path:
        # Explicit config path - must be valid if it exists
        resolved_path = _resolve_path(file_path, cwd)
        if resolved_path and resolved_path.exists():
            try:
                config = _deep_merge(config, _read_yaml(resolved_path))
                logger.info(f"Loaded configuration from: {resolved_path}")
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in config file: {e}")
            except IOError as e:
                raise ConfigurationError(f"Cannot read config file: {e}")
        else:
            logger.warning(f"Config file not found (using defaults): {file_path}")
    else:
        # Check for default config file (optional)
        default_config_path = _state_dir_from_env_or_default() / CONFIG_FILE_NAME
        if default_config_path.exists():
            try:
                config = _deep_merge(config, _read_yaml(default_config_path))
                logger.info(f"Loaded configuration from: {default_config_path}")
            except yaml.YAMLError as e:
                logger.warning(f"Invalid YAML in default config (ignoring): {e}")
            except IOError as e:
                logger.warning(f"Cannot read default config (ignoring): {e}")
        else:
            logger.debug("No config file found, using defaults")

    _apply_env_overrides(config)
    return config


def _state_dir_from_env_or_default() -> Path:
    override = os.environ.get("EW_STATE_DIR")
    if override:
        return Path(override).expanduser()
    return DEFAULT_STATE_DIR


def _apply_env_overrides(config: Dict[str, Any]) -> None:
    state_override = os.environ.get("EW_STATE_DIR")
    if state_override:
        config.setdefault("state", {})["path"] = state_override
        logger.info(f"State directory override from env: {state_override}")

    corpus_override = os.environ.get("EW_CORPUS_PATH")
    if corpus_override:
        config.setdefault("corpus", {})["path"] = corpus_override
        logger.info(f"Corpus path override from env: {corpus_override}")

    level_override = os.environ.get("EW_LOG_LEVEL")
    if level_override:
        config.setdefault("logging", {})["level"] = level_override.upper()

    # Rollback switch for the session-context features
    if os.environ.get("EW_PROGRESSIVE_CLASSIFICATION") == "0":
        features = config.setdefault("classifier", {}).setdefault("features", {})
        features["progressive_classification"] = False
        logger.info("Progressive classification disabled from env")


def get_state_dir(config: Dict[str, Any]) -> Path:
    """
    Get the state directory from config or default.

    Args:
        config: Configuration dictionary from load_config()

    Returns:
        Path to the state directory (not created here)
    """
    path_str = config.get("state", {}).get("path")
    resolved = _resolve_path(path_str, Path.cwd())
    return resolved if resolved else DEFAULT_STATE_DIR


def get_corpus_path(config: Dict[str, Any]) -> Optional[Path]:
    """Get the keyword corpus directory, or None for the bundled corpus."""
    return _resolve_path(config.get("corpus", {}).get("path"), Path.cwd())


def get_classifier_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Extract classifier configuration for create_classifier() factory.

    Args:
        config: Configuration dictionary from load_config()

    Returns:
        Dictionary suitable for passing to create_classifier()
    """
    classifier = config.get("classifier", {})
    return {
        "classifier": {
            "engine": classifier.get("engine"),
            "features": classifier.get("features") or {},
        }
    }


def get_section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Return a config section merged over its defaults."""
    return _deep_merge(DEFAULT_CONFIG.get(name, {}), config.get(name) or {})


def configure_logging(config: Dict[str, Any], state_dir: Optional[Path] = None) -> None:
    """
    Configure root logging for entry points.

    Library code only creates module loggers; handlers are installed here,
    once, by whichever entry point owns the process.

    Args:
        config: Configuration dictionary from load_config()
        state_dir: Directory for the rotating session log (None = stderr only)
    """
    logging_config = get_section(config, "logging")
    level_name = str(logging_config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown logging level: '{level_name}'")

    logging.basicConfig(level=level, format=LOG_FORMAT)

    if state_dir is not None and logging_config.get("file", True):
        log_path = str((state_dir / SESSION_LOG_NAME).absolute())
        root = logging.getLogger()
        if any(
            isinstance(h, RotatingFileHandler) and h.baseFilename == log_path
            for h in root.handlers
        ):
            return
        try:
            state_dir.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                log_path,
                maxBytes=SESSION_LOG_MAX_BYTES,
                backupCount=SESSION_LOG_BACKUPS,
            )
        except OSError as e:
            logger.warning(f"Session log unavailable (stderr only): {e}")
            return
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(level)
        root.addHandler(handler)
