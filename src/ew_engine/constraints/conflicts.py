"""
Conflict Detection and Resolution

Two tiers of conflict are detected over a constraint snapshot:

Structural:
    Two constraints on the same target with different values. Exactly one
    hard side makes the conflict auto-resolvable: the hard constraint wins
    and the soft one is rejected.

Semantic:
    Two constraints that match a known-incompatible rule pair (for example
    strong consistency next to low write latency). These are trade-offs,
    never resolved automatically, whatever their priorities.

Unresolved conflicts are always returned; the resolver never drops them
and never removes their members from the resolved set.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from re import Pattern
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ew_engine.constraints.models import Constraint

logger = logging.getLogger(__name__)

HARD_WINS_RATIONALE = "Hard constraint takes precedence over soft constraint"
ADJUDICATION_RATIONALE = "Requires external or human adjudication"


class ConflictTier(str, Enum):
    STRUCTURAL = "structural"
    SEMANTIC = "semantic"


class ConflictType(str, Enum):
    HARD_VS_HARD = "hard_vs_hard"
    HARD_VS_SOFT = "hard_vs_soft"
    SOFT_VS_SOFT = "soft_vs_soft"

    @classmethod
    def for_pair(cls, a: Constraint, b: Constraint) -> "ConflictType":
        if a.is_hard and b.is_hard:
            return cls.HARD_VS_HARD
        if a.is_hard or b.is_hard:
            return cls.HARD_VS_SOFT
        return cls.SOFT_VS_SOFT


class Resolution(str, Enum):
    ACCEPT_A = "accept_a"
    ACCEPT_B = "accept_b"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class SemanticRule:
    """A known-incompatible pair of target/value patterns."""

    id: str
    a_target: Pattern
    a_value: Pattern
    b_target: Pattern
    b_value: Pattern
    rationale: str

    @staticmethod
    def _side_matches(target: Pattern, value: Pattern, constraint: Constraint) -> bool:
        return bool(target.search(constraint.target)) and bool(value.search(constraint.value))

    def matches_a(self, constraint: Constraint) -> bool:
        return self._side_matches(self.a_target, self.a_value, constraint)

    def matches_b(self, constraint: Constraint) -> bool:
        return self._side_matches(self.b_target, self.b_value, constraint)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SemanticRule":
        """
        Build a rule from its corpus entry.

        Raises:
            KeyError: If a side lacks target or value
            re.error: If a pattern does not compile
        """
        def compile_side(side: Dict[str, Any]) -> Tuple[Pattern, Pattern]:
            return (
                re.compile(str(side["target"]), re.IGNORECASE),
                re.compile(str(side["value"]), re.IGNORECASE),
            )

        a_target, a_value = compile_side(data["a"])
        b_target, b_value = compile_side(data["b"])
        return cls(
            id=str(data["id"]),
            a_target=a_target,
            a_value=a_value,
            b_target=b_target,
            b_value=b_value,
            rationale=" ".join(str(data["rationale"]).split()),
        )


@dataclass(frozen=True)
class ConflictRecord:
    """A detected conflict between two constraints, with its resolution."""

    conflict_id: str
    constraint_a_id: str
    constraint_b_id: str
    tier: ConflictTier
    type: ConflictType
    auto_resolvable: bool
    resolution: Resolution = Resolution.UNRESOLVED
    rationale: str = ""
    rule_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "conflict_id": self.conflict_id,
            "constraint_a": self.constraint_a_id,
            "constraint_b": self.constraint_b_id,
            "tier": self.tier.value,
            "type": self.type.value,
            "auto_resolvable": self.auto_resolvable,
            "resolution": self.resolution.value,
            "rationale": self.rationale,
        }
        if self.rule_id:
            data["rule_id"] = self.rule_id
        return data


def _pair_key(a: Constraint, b: Constraint) -> str:
    first, second = sorted((a.id, b.id))
    return f"{first}-{second}"


class ConflictDetector:
    """Pairwise conflict detection over a constraint snapshot (O(n^2))."""

    def __init__(self, rules: Iterable[SemanticRule] = ()):
        self.rules = tuple(rules)

    def detect(self, constraints: Sequence[Constraint]) -> List[ConflictRecord]:
        conflicts = self.detect_structural(constraints) + self.detect_semantic(constraints)
        if conflicts:
            logger.info(f"Detected {len(conflicts)} conflicts among {len(constraints)} constraints")
        return conflicts

    def detect_structural(self, constraints: Sequence[Constraint]) -> List[ConflictRecord]:
        records: Dict[str, ConflictRecord] = {}
        for i, a in enumerate(constraints):
            for b in constraints[i + 1:]:
                if a.target != b.target or a.value == b.value:
                    continue
                conflict_id = f"cf-{_pair_key(a, b)}"
                if conflict_id in records:
                    continue
                conflict_type = ConflictType.for_pair(a, b)
                records[conflict_id] = ConflictRecord(
                    conflict_id=conflict_id,
                    constraint_a_id=a.id,
                    constraint_b_id=b.id,
                    tier=ConflictTier.STRUCTURAL,
                    type=conflict_type,
                    auto_resolvable=conflict_type == ConflictType.HARD_VS_SOFT,
                )
        return list(records.values())

    def detect_semantic(self, constraints: Sequence[Constraint]) -> List[ConflictRecord]:
        records: Dict[str, ConflictRecord] = {}
        for rule in self.rules:
            for a in constraints:
                if not rule.matches_a(a):
                    continue
                for b in constraints:
                    if b is a or b.id == a.id or not rule.matches_b(b):
                        continue
                    conflict_id = f"sem-{rule.id}-{_pair_key(a, b)}"
                    if conflict_id in records:
                        continue
                    records[conflict_id] = ConflictRecord(
                        conflict_id=conflict_id,
                        constraint_a_id=a.id,
                        constraint_b_id=b.id,
                        tier=ConflictTier.SEMANTIC,
                        type=ConflictType.for_pair(a, b),
                        auto_resolvable=False,
                        rationale=rule.rationale,
                        rule_id=rule.id,
                    )
        return list(records.values())


@dataclass(frozen=True)
class ResolutionOutcome:
    """Resolved constraint set, every conflict and summary counts."""

    resolved_set: Tuple[Constraint, ...]
    conflicts: Tuple[ConflictRecord, ...]
    rejected_ids: Tuple[str, ...]
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def unresolved(self) -> Tuple[ConflictRecord, ...]:
        return tuple(c for c in self.conflicts if c.resolution == Resolution.UNRESOLVED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflicts": [c.to_dict() for c in self.conflicts],
            "resolved_set": [c.to_dict() for c in self.resolved_set],
            "rejected_ids": list(self.rejected_ids),
            "metadata": dict(self.metadata),
        }


class ConflictResolver:
    """Applies the hard-over-soft rule and escalates everything else."""

    def resolve(
        self,
        constraints: Sequence[Constraint],
        conflicts: Sequence[ConflictRecord],
        resolved_at: datetime,
    ) -> ResolutionOutcome:
        by_id = {c.id: c for c in constraints}
        resolved_conflicts = []
        rejected = []

        for conflict in conflicts:
            if conflict.auto_resolvable:
                a = by_id[conflict.constraint_a_id]
                if a.is_hard:
                    resolution, loser = Resolution.ACCEPT_A, conflict.constraint_b_id
                else:
                    resolution, loser = Resolution.ACCEPT_B, conflict.constraint_a_id
                rationale = HARD_WINS_RATIONALE
                if loser not in rejected:
                    rejected.append(loser)
            else:
                resolution = Resolution.UNRESOLVED
                rationale = (
                    f"{conflict.rationale} {ADJUDICATION_RATIONALE}"
                    if conflict.rationale else ADJUDICATION_RATIONALE
                )
            resolved_conflicts.append(ConflictRecord(
                conflict_id=conflict.conflict_id,
                constraint_a_id=conflict.constraint_a_id,
                constraint_b_id=conflict.constraint_b_id,
                tier=conflict.tier,
                type=conflict.type,
                auto_resolvable=conflict.auto_resolvable,
                resolution=resolution,
                rationale=rationale,
                rule_id=conflict.rule_id,
            ))

        rejected_set = set(rejected)
        resolved_set = tuple(c for c in constraints if c.id not in rejected_set)
        unresolved = sum(1 for c in resolved_conflicts if c.resolution == Resolution.UNRESOLVED)
        metadata = {
            "total_declared": len(constraints),
            "total_accepted": len(resolved_set),
            "total_rejected": len(constraints) - len(resolved_set),
            "total_conflicts": len(resolved_conflicts),
            "total_resolved": len(resolved_conflicts) - unresolved,
            "total_unresolved": unresolved,
            "resolved_at": resolved_at.isoformat(),
        }

        if unresolved:
            logger.warning(f"{unresolved} constraint conflicts need adjudication")
        return ResolutionOutcome(
            resolved_set=resolved_set,
            conflicts=tuple(resolved_conflicts),
            rejected_ids=tuple(rejected),
            metadata=metadata,
        )
