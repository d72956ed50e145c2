"""
State Files - on-disk layout and crash-safe JSON persistence.

Every mutation writes a temporary file in the target directory and swaps it
into place with os.replace, so a concurrent reader sees either the old or the
new document, never a partial one. Readers treat a missing or corrupt file
as empty and log the condition instead of failing.

Layout (under the state root):
    pattern-cache.json                   process-wide pattern cache
    transitions.json                     process-wide transition table
    constraints-archive/                 archived constraint sets
    sessions/<session_id>/history.jsonl  classification history
    sessions/<session_id>/constraints.json  active constraint store
    .last-cleanup                        maintenance marker
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Iterable, List

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


class StateLayout:
    """Resolves state file locations under one root directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def pattern_cache(self) -> Path:
        return self.root / "pattern-cache.json"

    @property
    def transitions(self) -> Path:
        return self.root / "transitions.json"

    @property
    def constraints_archive(self) -> Path:
        return self.root / "constraints-archive"

    @property
    def sessions_dir(self) -> Path:
        return self.root / "sessions"

    @property
    def cleanup_marker(self) -> Path:
        return self.root / ".last-cleanup"

    def session_dir(self, session_id: str) -> Path:
        if not SESSION_ID_PATTERN.match(session_id or "") or session_id in (".", ".."):
            raise ValueError(f"Invalid session id: '{session_id}'")
        return self.sessions_dir / session_id

    def history(self, session_id: str) -> Path:
        return self.session_dir(session_id) / "history.jsonl"

    def constraints(self, session_id: str) -> Path:
        return self.session_dir(session_id) / "constraints.json"

    def session_ids(self) -> List[str]:
        """List sessions that have state on disk."""
        if not self.sessions_dir.is_dir():
            return []
        return sorted(
            p.name for p in self.sessions_dir.iterdir()
            if p.is_dir() and SESSION_ID_PATTERN.match(p.name)
        )


def read_json(path: Path, default: Any = None) -> Any:
    """
    Read a JSON document.

    Returns default when the file is missing, unreadable or not valid JSON.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return default
    except (OSError, ValueError) as e:
        logger.warning(f"Corrupt or unreadable state file {path} (treating as empty): {e}")
        return default


def read_jsonl(path: Path) -> List[dict]:
    """
    Read a JSON-lines file, skipping blank and corrupt lines.

    Returns an empty list when the file is missing or unreadable.
    """
    records = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except ValueError:
                    logger.warning(f"Skipping corrupt line {line_number} in {path}")
                    continue
                if isinstance(record, dict):
                    records.append(record)
                else:
                    logger.warning(f"Skipping non-object line {line_number} in {path}")
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.warning(f"Unreadable state file {path} (treating as empty): {e}")
        return []
    return records


def _write_atomic(path: Path, text: str) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise


def write_json_atomic(path: Path, data: Any) -> None:
    """Write a JSON document via temp file + atomic rename."""
    _write_atomic(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def write_jsonl_atomic(path: Path, records: Iterable[dict]) -> None:
    """Rewrite a JSON-lines file via temp file + atomic rename."""
    lines = [json.dumps(r, ensure_ascii=False, sort_keys=True) for r in records]
    _write_atomic(path, "".join(line + "\n" for line in lines))
