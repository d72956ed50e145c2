"""
Classification Models - Data classes for classification results and history.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# Confidence below which a live classification should be confirmed by an
# external classifier before it drives expensive analysis.
VERIFICATION_THRESHOLD = 0.85


def utc_now() -> datetime:
    """Current time as an aware UTC datetime (the default engine clock)."""
    return datetime.now(timezone.utc)


class ClassificationPattern(str, Enum):
    """Cardinality class of the matched system set."""

    NONE = "none"  # 0 systems
    SINGLE = "single"  # 1 system
    MULTI = "multi"  # 2 systems
    CROSS = "cross"  # 3+ systems

    @classmethod
    def from_count(cls, count: int) -> "ClassificationPattern":
        if count < 0:
            raise ValueError(f"System count cannot be negative: {count}")
        if count == 0:
            return cls.NONE
        if count == 1:
            return cls.SINGLE
        if count == 2:
            return cls.MULTI
        return cls.CROSS


class ClassifierSource(str, Enum):
    """Which path produced a classification."""

    PATTERN_CACHE = "pattern-cache"
    KEYWORD_FAST_PATH = "keyword-fast-path"
    KEYWORD_WEIGHTED = "keyword-weighted"
    KEYWORD_WEIGHTED_CONTEXT = "keyword-weighted+context"


@dataclass(frozen=True)
class SuggestedExpansion:
    """Advisory system/domain suggestion derived from session transitions."""

    system: str
    domain: str
    transition_confidence: float
    count: int
    rationale: str

    def to_dict(self) -> dict:
        return {
            "system": self.system,
            "domain": self.domain,
            "transition_confidence": self.transition_confidence,
            "count": self.count,
            "rationale": self.rationale,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SuggestedExpansion":
        return cls(
            system=data.get("system", ""),
            domain=data.get("domain", ""),
            transition_confidence=float(data.get("transition_confidence", 0.0)),
            count=int(data.get("count", 0)),
            rationale=data.get("rationale", ""),
        )


@dataclass(frozen=True)
class ClassificationResult:
    """
    Outcome of classifying one request.

    The pattern is derived from the number of systems, so a result whose
    pattern disagrees with its system set cannot be constructed. Confidence
    1.0 is reserved for pattern-cache hits.
    """

    systems: tuple[str, ...] = ()
    domains: tuple[str, ...] = ()
    confidence: float = 0.0
    classifier_source: ClassifierSource = ClassifierSource.KEYWORD_FAST_PATH
    prior_boost: float = 0.0
    suggested_expansions: tuple[SuggestedExpansion, ...] = field(default=())

    def __post_init__(self):
        # Normalize list inputs so results stay hashable and comparable
        object.__setattr__(self, "systems", tuple(dict.fromkeys(self.systems)))
        object.__setattr__(self, "domains", tuple(dict.fromkeys(self.domains)))
        object.__setattr__(self, "suggested_expansions", tuple(self.suggested_expansions))
        object.__setattr__(self, "classifier_source", ClassifierSource(self.classifier_source))

        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence out of range [0, 1]: {self.confidence}")
        if self.confidence >= 1.0 and self.classifier_source != ClassifierSource.PATTERN_CACHE:
            raise ValueError(
                f"Confidence 1.0 is reserved for pattern-cache hits "
                f"(source={self.classifier_source.value})"
            )

    @property
    def pattern(self) -> ClassificationPattern:
        return ClassificationPattern.from_count(len(self.systems))

    @property
    def is_classified(self) -> bool:
        return bool(self.systems) and self.confidence > 0.0

    @property
    def needs_verification(self) -> bool:
        """True when a classification exists but is not confident enough to trust alone."""
        return 0.0 < self.confidence < VERIFICATION_THRESHOLD

    def as_cache_hit(self) -> "ClassificationResult":
        """Return this result as served from the pattern cache."""
        return replace(
            self,
            confidence=1.0,
            classifier_source=ClassifierSource.PATTERN_CACHE,
            prior_boost=0.0,
            suggested_expansions=(),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for persistence and output."""
        return {
            "systems": list(self.systems),
            "domains": list(self.domains),
            "pattern": self.pattern.value,
            "confidence": self.confidence,
            "classifier_source": self.classifier_source.value,
            "prior_boost": self.prior_boost,
            "suggested_expansions": [s.to_dict() for s in self.suggested_expansions],
            "needs_verification": self.needs_verification,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ClassificationResult":
        """Create from a persisted dictionary. Derived fields are recomputed."""
        return cls(
            systems=tuple(data.get("systems") or ()),
            domains=tuple(data.get("domains") or ()),
            confidence=float(data.get("confidence", 0.0)),
            classifier_source=ClassifierSource(
                data.get("classifier_source", ClassifierSource.KEYWORD_FAST_PATH.value)
            ),
            prior_boost=float(data.get("prior_boost", 0.0)),
            suggested_expansions=tuple(
                SuggestedExpansion.from_dict(s) for s in data.get("suggested_expansions") or ()
            ),
        )


@dataclass(frozen=True)
class SessionHistoryEntry:
    """One completed classification in a session's history. Never mutated."""

    signature: str
    query: str
    result: ClassificationResult
    timestamp: datetime
    prev_signature: str | None = None

    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "query": self.query,
            "classification": self.result.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "prev_signature": self.prev_signature,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionHistoryEntry":
        """Create from a history line. Raises KeyError/ValueError on malformed data."""
        timestamp = datetime.fromisoformat(data["timestamp"])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return cls(
            signature=data["signature"],
            query=data.get("query", ""),
            result=ClassificationResult.from_dict(data["classification"]),
            timestamp=timestamp,
            prev_signature=data.get("prev_signature"),
        )
