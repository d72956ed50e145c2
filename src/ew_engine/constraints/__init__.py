"""Constraint store, conflict detection and resolution."""

from ew_engine.constraints.conflicts import (
    ConflictDetector,
    ConflictRecord,
    ConflictResolver,
    ConflictTier,
    ConflictType,
    Resolution,
    ResolutionOutcome,
    SemanticRule,
)
from ew_engine.constraints.models import (
    Constraint,
    ConstraintType,
    ConstraintValidationError,
    Priority,
)
from ew_engine.constraints.store import ConstraintStore, prune_archive

__all__ = [
    "ConflictDetector",
    "ConflictRecord",
    "ConflictResolver",
    "ConflictTier",
    "ConflictType",
    "Constraint",
    "ConstraintStore",
    "ConstraintType",
    "ConstraintValidationError",
    "Priority",
    "Resolution",
    "ResolutionOutcome",
    "SemanticRule",
    "prune_archive",
]
