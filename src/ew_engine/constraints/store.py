"""
Constraint Store - the active constraint list of one session.

Append is the only mutation. Constraints leave the active list only through
archive_and_reset, which copies the whole document (plus its resolution, if
any) into the archive directory and starts an empty list.

Document format:
    {"session_id": ..., "constraints": [...], "conflicts": [...],
     "resolved_set": [...], "metadata": {"created_at": ..., "total_declared": n}}

A bare JSON array of constraints (the legacy format) is still read.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ew_engine.constraints.models import Constraint, ConstraintValidationError
from ew_engine.models import utc_now
from ew_engine.state_files import read_json, write_json_atomic

logger = logging.getLogger(__name__)

ARCHIVE_GLOB = "constraints-*.json"


def _empty_document(session_id: str, created_at: str) -> Dict[str, Any]:
    return {
        "session_id": session_id,
        "constraints": [],
        "conflicts": [],
        "resolved_set": [],
        "metadata": {"created_at": created_at, "total_declared": 0},
    }


class ConstraintStore:
    """Append-only constraint list persisted as one JSON document."""

    def __init__(
        self,
        path: Path,
        archive_dir: Path,
        session_id: str,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.path = Path(path)
        self.archive_dir = Path(archive_dir)
        self.session_id = session_id
        self.clock = clock

    def _load_document(self) -> Dict[str, Any]:
        data = read_json(self.path, default=None)
        if data is None:
            return _empty_document(self.session_id, "")
        if isinstance(data, list):
            # Legacy flat-array format
            document = _empty_document(self.session_id, "")
            document["constraints"] = data
            document["metadata"]["total_declared"] = len(data)
            return document
        if not isinstance(data, dict) or not isinstance(data.get("constraints", []), list):
            logger.warning(f"Unexpected constraints document in {self.path}, treating as empty")
            return _empty_document(self.session_id, "")
        data.setdefault("constraints", [])
        data.setdefault("metadata", {})
        return data

    def snapshot(self) -> List[Constraint]:
        """
        Current constraints in append order.

        Unreadable records are skipped, as are records whose id was already
        seen earlier in the list (the first declaration wins).
        """
        constraints = []
        seen_ids = set()
        for record in self._load_document()["constraints"]:
            try:
                constraint = Constraint.from_dict(record)
            except ConstraintValidationError as e:
                logger.warning(f"Skipping stored constraint that fails validation: {e}")
                continue
            if constraint.id in seen_ids:
                logger.warning(f"Skipping stored constraint with duplicate id '{constraint.id}'")
                continue
            seen_ids.add(constraint.id)
            constraints.append(constraint)
        return constraints

    def append(self, constraint: Union[Constraint, Dict[str, Any]]) -> Constraint:
        """
        Validate and append a constraint.

        Raises:
            ConstraintValidationError: If the record is malformed or its id is
                already in the store
        """
        if not isinstance(constraint, Constraint):
            constraint = Constraint.from_dict(constraint)

        document = self._load_document()
        existing_ids = {
            record.get("id") for record in document["constraints"] if isinstance(record, dict)
        }
        if constraint.id in existing_ids:
            raise ConstraintValidationError(f"Duplicate constraint id: '{constraint.id}'")

        document["constraints"].append(constraint.to_dict())
        metadata = document["metadata"]
        if not metadata.get("created_at"):
            metadata["created_at"] = self.clock().isoformat()
        metadata["total_declared"] = len(document["constraints"])
        write_json_atomic(self.path, document)

        logger.info(
            f"Constraint {constraint.id} appended from {constraint.source} "
            f"({constraint.priority.value} {constraint.constraint_type.value} "
            f"{constraint.target}={constraint.value})"
        )
        return constraint

    def archive_and_reset(self, resolution: Optional[Dict[str, Any]] = None) -> Optional[Path]:
        """
        Move the active document to the archive and start an empty one.

        Args:
            resolution: Optional resolution output to store with the archive

        Returns:
            Path of the archive file, or None when there was nothing to archive
        """
        if not self.path.exists():
            return None

        now = self.clock()
        document = self._load_document()
        if resolution:
            document["conflicts"] = resolution.get("conflicts", [])
            document["resolved_set"] = resolution.get("resolved_set", [])
            document["metadata"] = {**document.get("metadata", {}), **resolution.get("metadata", {})}
        document["metadata"]["archived_at"] = now.isoformat()

        archive_path = self.archive_dir / (
            f"constraints-{self.session_id}-{now.strftime('%Y%m%dT%H%M%S%fZ')}.json"
        )
        write_json_atomic(archive_path, document)
        write_json_atomic(self.path, _empty_document(self.session_id, now.isoformat()))

        logger.info(f"Archived constraints to {archive_path.name}")
        return archive_path

    def prune_archive(self, keep: int = 20) -> int:
        return prune_archive(self.archive_dir, keep)


def prune_archive(archive_dir: Path, keep: int = 20) -> int:
    """
    Keep only the most recent `keep` constraint archives.

    Returns:
        Number of archives removed
    """
    archive_dir = Path(archive_dir)
    if not archive_dir.is_dir():
        return 0

    archives = sorted(
        archive_dir.glob(ARCHIVE_GLOB),
        key=lambda p: (p.stat().st_mtime, p.name),
        reverse=True,
    )
    removed = 0
    for path in archives[keep:]:
        try:
            path.unlink()
            removed += 1
        except OSError as e:
            logger.warning(f"Could not remove archive {path.name}: {e}")

    if removed:
        logger.info(f"Cleaned constraint archives: removed {removed} old files (kept {keep})")
    return removed
