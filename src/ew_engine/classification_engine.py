"""Classification Engine Abstract Interface

Defines the abstract interface for swappable classification engines.

Architecture:
    Orchestrator → EngineSession → ClassificationEngine

    The ClassificationEngine interface lets the scoring approach evolve
    without affecting the session facade or its callers. Engines only read
    session state (cache, history, transitions); EngineSession owns every
    write.

Versions:
    - ew-keyword-1.0: Keyword matching, weighted cross-scoring, session context
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ew_engine.config import ConfigurationError
from ew_engine.confidence import CalibrationSettings
from ew_engine.corpus_loader import KeywordCorpus
from ew_engine.models import ClassificationResult
from ew_engine.pattern_cache import PatternCache
from ew_engine.session_context import SessionContextTracker


class ClassificationError(Exception):
    """Raised when classification cannot complete due to system error."""
    pass


class FeatureSpec:
    """Specification for a feature flag."""

    def __init__(
        self,
        name: str,
        description: str,
        default: bool = True,
        category: str = "general"
    ):
        """
        Define a feature flag specification.

        Args:
            name: Feature identifier (e.g., "pattern_cache")
            description: Human-readable description
            default: Default value (True = enabled by default)
            category: Grouping category (e.g., "session", "scoring")
        """
        self.name = name
        self.description = description
        self.default = default
        self.category = category


class ClassificationEngine(ABC):
    """
    Abstract interface for classification engines.

    Attributes:
        corpus: Immutable keyword corpus
        cache: Pattern cache to consult (None = no cache lookups)
        tracker: Session context tracker (None = no session context)
        calibration: Confidence calibration constants
        features: Effective feature flags (defaults merged with overrides)
    """

    def __init__(
        self,
        corpus: KeywordCorpus,
        cache: Optional[PatternCache] = None,
        tracker: Optional[SessionContextTracker] = None,
        calibration: Optional[CalibrationSettings] = None,
        features: Optional[Dict[str, bool]] = None,
    ):
        self.corpus = corpus
        self.cache = cache
        self.tracker = tracker
        self.calibration = calibration or CalibrationSettings()
        self.features = {**self.get_default_features(), **(features or {})}

    def is_enabled(self, feature: str) -> bool:
        return bool(self.features.get(feature, False))

    @abstractmethod
    def classify(self, request: str) -> ClassificationResult:
        """
        Classify a request into systems and domains.

        Must not write session state; identical inputs and state give
        identical results.

        Args:
            request: Free-text request

        Returns:
            ClassificationResult (systems may be empty with confidence 0)

        Raises:
            ClassificationError: If classification cannot complete due to system error
        """
        pass

    @property
    @abstractmethod
    def version(self) -> str:
        """Return engine version identifier (e.g. 'ew-keyword-1.0')."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Return human-readable description of the classification approach."""
        pass

    @classmethod
    def get_available_features(cls) -> List[FeatureSpec]:
        """
        Return list of feature flags available for this engine.

        Override in subclasses to declare engine-specific feature flags.
        """
        return []

    @classmethod
    def get_default_features(cls) -> Dict[str, bool]:
        """Return dict of feature defaults for this engine."""
        return {f.name: f.default for f in cls.get_available_features()}


# Engine registry for factory function
_ENGINE_REGISTRY: Dict[str, type] = {}


def register_engine(version: str):
    """
    Decorator to register a classification engine implementation.

    Usage:
        @register_engine("ew-keyword-1.0")
        class KeywordClassifier(ClassificationEngine):
            ...
    """
    def decorator(cls):
        _ENGINE_REGISTRY[version] = cls
        return cls
    return decorator


# Default engine version - set after the classifier module registers its engine
DEFAULT_ENGINE_VERSION: Optional[str] = None


def set_default_engine(version: str):
    """Set the default engine version for the factory function."""
    global DEFAULT_ENGINE_VERSION
    DEFAULT_ENGINE_VERSION = version


def get_default_engine() -> str:
    """Get the default engine version, falling back to first registered if not set."""
    if DEFAULT_ENGINE_VERSION and DEFAULT_ENGINE_VERSION in _ENGINE_REGISTRY:
        return DEFAULT_ENGINE_VERSION
    if _ENGINE_REGISTRY:
        return next(iter(_ENGINE_REGISTRY.keys()))
    raise ConfigurationError("No classification engines registered")


def create_classifier(
    corpus: KeywordCorpus,
    config: Optional[Dict[str, Any]] = None,
    cache: Optional[PatternCache] = None,
    tracker: Optional[SessionContextTracker] = None,
    calibration: Optional[CalibrationSettings] = None,
) -> ClassificationEngine:
    """
    Factory function to create a classification engine from configuration.

    Args:
        corpus: Keyword corpus
        config: Optional dict (see get_classifier_config()) with:
            - classifier.engine: Engine version (uses default if not specified)
            - classifier.features: Feature flags dict
        cache: Pattern cache for lookups
        tracker: Session context tracker
        calibration: Calibration constants

    Returns:
        ClassificationEngine implementation instance

    Raises:
        ConfigurationError: If the engine version or a feature is unknown

    Examples:
        engine = create_classifier(corpus)
        engine = create_classifier(corpus, {"classifier": {
            "features": {"pattern_cache": False}
        }})
    """
    default_version = get_default_engine()
    engine_version = default_version
    features = None
    if config:
        classifier_config = config.get("classifier", {})
        # Use 'or' to handle None values from config (not just missing keys)
        engine_version = classifier_config.get("engine") or default_version
        features = classifier_config.get("features")

    if engine_version not in _ENGINE_REGISTRY:
        available = list(_ENGINE_REGISTRY.keys())
        raise ConfigurationError(
            f"Unknown classification engine: '{engine_version}'. "
            f"Available engines: {available}"
        )

    if features:
        validate_features(engine_version, features)

    engine_class = _ENGINE_REGISTRY[engine_version]
    return engine_class(
        corpus,
        cache=cache,
        tracker=tracker,
        calibration=calibration,
        features=features,
    )


def get_available_engines() -> List[str]:
    """Return list of registered engine version identifiers."""
    return list(_ENGINE_REGISTRY.keys())


def get_engine_features(version: str) -> List[FeatureSpec]:
    """
    Get available feature flags for a specific engine version.

    Raises:
        ConfigurationError: If engine version is unknown
    """
    if version not in _ENGINE_REGISTRY:
        available = list(_ENGINE_REGISTRY.keys())
        raise ConfigurationError(
            f"Unknown classification engine: '{version}'. "
            f"Available engines: {available}"
        )
    return _ENGINE_REGISTRY[version].get_available_features()


def validate_features(version: str, features: Dict[str, bool]) -> None:
    """
    Validate that provided features are valid for the engine.

    Raises:
        ConfigurationError: If any feature is not available for this engine
    """
    available_names = {f.name for f in get_engine_features(version)}

    for feature_name in features.keys():
        if feature_name not in available_names:
            raise ConfigurationError(
                f"Feature '{feature_name}' is not available for engine '{version}'. "
                f"Available features: {sorted(available_names) if available_names else '(none)'}"
            )
