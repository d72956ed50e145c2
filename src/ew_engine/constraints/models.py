"""
Constraint Models - declarative constraints emitted by analysis stages.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Tuple


class ConstraintValidationError(ValueError):
    """Raised when a constraint record fails type or enum validation."""
    pass


class ConstraintType(str, Enum):
    REQUIRES = "requires"
    RECOMMENDS = "recommends"
    PROHIBITS = "prohibits"
    CONFLICTS_WITH = "conflicts_with"


class Priority(str, Enum):
    HARD = "hard"
    SOFT = "soft"


REQUIRED_FIELDS = ("id", "source", "constraint_type", "target", "value", "priority")


@dataclass(frozen=True)
class Constraint:
    """
    A requirement, recommendation or prohibition declared by one stage.

    Never mutated after creation.
    """

    id: str
    source: str
    constraint_type: ConstraintType
    target: str
    value: str
    priority: Priority
    impacts: Tuple[str, ...] = ()

    @property
    def is_hard(self) -> bool:
        return self.priority == Priority.HARD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "constraint_type": self.constraint_type.value,
            "target": self.target,
            "value": self.value,
            "priority": self.priority.value,
            "impacts": list(self.impacts),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Constraint":
        """
        Validate and build a Constraint.

        Raises:
            ConstraintValidationError: On a missing/empty field, an unknown
                constraint_type or priority, or a malformed impacts list
        """
        if not isinstance(data, dict):
            raise ConstraintValidationError(
                f"Constraint must be an object, got {type(data).__name__}"
            )

        missing = [k for k in REQUIRED_FIELDS if k not in data]
        if missing:
            raise ConstraintValidationError(f"Constraint missing required fields: {missing}")

        for key in ("id", "source", "target", "value"):
            if not isinstance(data[key], str) or not data[key].strip():
                raise ConstraintValidationError(f"Constraint field '{key}' must be a non-empty string")

        try:
            constraint_type = ConstraintType(data["constraint_type"])
        except ValueError:
            allowed = [t.value for t in ConstraintType]
            raise ConstraintValidationError(
                f"Invalid constraint_type '{data['constraint_type']}' (allowed: {allowed})"
            )

        try:
            priority = Priority(data["priority"])
        except ValueError:
            allowed = [p.value for p in Priority]
            raise ConstraintValidationError(
                f"Invalid priority '{data['priority']}' (allowed: {allowed})"
            )

        impacts = data.get("impacts") or []
        if not isinstance(impacts, (list, tuple)) or not all(isinstance(i, str) for i in impacts):
            raise ConstraintValidationError("Constraint 'impacts' must be a list of strings")

        return cls(
            id=data["id"],
            source=data["source"],
            constraint_type=constraint_type,
            target=data["target"],
            value=data["value"],
            priority=priority,
            impacts=tuple(impacts),
        )
