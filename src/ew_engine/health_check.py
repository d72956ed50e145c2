"""
Health check module for engine state.

Reports, per state file, whether it is present and readable. Corrupt state
is recovered from silently at runtime (treated as empty), so this is where
operators see it.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from ew_engine.corpus_loader import CorpusError, get_default_corpus
from ew_engine.models import utc_now
from ew_engine.state_files import DEFAULT_SESSION_ID, StateLayout

logger = logging.getLogger(__name__)


def check_json_file(path: Path, expected_key: Optional[str] = None) -> dict[str, Any]:
    """
    Check a JSON state document.

    Returns:
        Dictionary with:
        - status: "healthy" | "missing" | "corrupt"
        - path: File path
        - reason: Explanation
    """
    if not path.exists():
        return {"status": "missing", "path": str(path), "reason": "File not created yet"}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        return {"status": "corrupt", "path": str(path), "reason": str(e)}

    if expected_key and not (isinstance(data, dict) and isinstance(data.get(expected_key), dict)):
        return {
            "status": "corrupt",
            "path": str(path),
            "reason": f"Missing '{expected_key}' mapping",
        }
    return {"status": "healthy", "path": str(path), "reason": "Readable"}


def check_constraints_file(path: Path) -> dict[str, Any]:
    """Check a constraint store document (nested or legacy array format)."""
    result = check_json_file(path)
    if result["status"] != "healthy":
        return result
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, list) or (isinstance(data, dict) and isinstance(data.get("constraints", []), list)):
        return result
    return {"status": "corrupt", "path": str(path), "reason": "No constraints list"}


def check_history_file(path: Path) -> dict[str, Any]:
    """
    Check a history JSON-lines file.

    Returns:
        Dictionary with status, path, entries (readable lines), corrupt_lines
    """
    if not path.exists():
        return {"status": "missing", "path": str(path), "entries": 0, "corrupt_lines": 0}

    entries = 0
    corrupt = 0
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    json.loads(line)
                    entries += 1
                except ValueError:
                    corrupt += 1
    except OSError as e:
        return {"status": "corrupt", "path": str(path), "entries": 0, "corrupt_lines": 0, "reason": str(e)}

    return {
        "status": "corrupt" if corrupt else "healthy",
        "path": str(path),
        "entries": entries,
        "corrupt_lines": corrupt,
    }


def check_corpus(corpus_path: Optional[Path] = None) -> dict[str, Any]:
    """Check that the keyword corpus loads."""
    try:
        corpus = get_default_corpus(corpus_path)
    except CorpusError as e:
        return {"status": "error", "reason": str(e)}
    return {
        "status": "healthy",
        "schema_version": corpus.schema_version,
        "systems": len(corpus.systems),
        "cross_groups": len(corpus.cross_groups),
        "semantic_rules": len(corpus.semantic_rules),
    }


def get_health_status(
    layout: StateLayout,
    session_id: str = DEFAULT_SESSION_ID,
    corpus_path: Optional[Path] = None,
    clock: Callable[[], datetime] = utc_now,
) -> dict[str, Any]:
    """
    Get health status of the engine state for one session.

    Returns:
        Dictionary with:
        - overall: "healthy" | "degraded" | "unhealthy"
        - corpus, pattern_cache, transitions, history, constraints: checks
        - timestamp: Check timestamp (ISO format)

    "missing" files are normal for a fresh state directory and do not
    degrade the overall status; corrupt files do; a broken corpus is fatal.
    """
    checks = {
        "corpus": check_corpus(corpus_path),
        "pattern_cache": check_json_file(layout.pattern_cache, expected_key="entries"),
        "transitions": check_json_file(layout.transitions, expected_key="transitions"),
        "history": check_history_file(layout.history(session_id)),
        "constraints": check_constraints_file(layout.constraints(session_id)),
    }

    if checks["corpus"]["status"] != "healthy":
        overall = "unhealthy"
    elif any(c["status"] == "corrupt" for c in checks.values()):
        overall = "degraded"
    else:
        overall = "healthy"

    if overall != "healthy":
        logger.warning(f"Engine state {overall} (session {session_id})")

    return {
        "overall": overall,
        "session_id": session_id,
        "state_root": str(layout.root),
        **checks,
        "timestamp": clock().isoformat(),
    }
