"""
Session Maintenance

Periodic cleanup of on-disk state, run at most once per cleanup interval
(tracked by a marker file under the state root):

- trim every session history over its bound
- evict pattern cache entries unused for the retention window
- keep only the most recent constraint archives
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from ew_engine.config import get_section
from ew_engine.constraints.store import prune_archive
from ew_engine.models import utc_now
from ew_engine.pattern_cache import PatternCache
from ew_engine.session_context import SessionHistory
from ew_engine.state_files import StateLayout, read_json, write_json_atomic

logger = logging.getLogger(__name__)


def _last_cleanup(layout: StateLayout) -> Optional[datetime]:
    data = read_json(layout.cleanup_marker, default=None)
    if not isinstance(data, dict) or not data.get("last_cleanup"):
        return None
    try:
        return datetime.fromisoformat(data["last_cleanup"])
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed cleanup marker {layout.cleanup_marker}")
        return None


def run_session_cleanup(
    layout: StateLayout,
    config: Dict[str, Any],
    force: bool = False,
    clock: Callable[[], datetime] = utc_now,
) -> Optional[Dict[str, int]]:
    """
    Trim histories, evict stale cache entries and prune archives.

    Args:
        layout: State layout to clean
        config: Configuration from load_config()
        force: Run even if the interval has not elapsed
        clock: Returns the current aware datetime

    Returns:
        Counts of removed items, or None if skipped because the last cleanup
        is more recent than the interval
    """
    now = clock()
    interval = timedelta(minutes=float(get_section(config, "maintenance")["cleanup_interval_minutes"]))
    last = _last_cleanup(layout)
    if not force and last is not None and last.tzinfo is not None and now - last < interval:
        logger.debug(f"Cleanup skipped (last run {last.isoformat()})")
        return None

    session = get_section(config, "session")
    cache = get_section(config, "cache")
    constraints = get_section(config, "constraints")

    trimmed = 0
    for session_id in layout.session_ids():
        history = SessionHistory(
            layout.history(session_id),
            max_entries=int(session["max_history"]),
            keep_ratio=float(session["keep_ratio"]),
        )
        removed = history.trim()
        if removed:
            logger.info(f"Trimmed session history {session_id}: removed {removed} entries")
        trimmed += removed

    evicted = PatternCache(layout.pattern_cache, clock=clock).evict(int(cache["retention_days"]))
    archives = prune_archive(layout.constraints_archive, int(constraints["archive_keep"]))

    write_json_atomic(layout.cleanup_marker, {"last_cleanup": now.isoformat()})
    summary = {
        "history_trimmed": trimmed,
        "cache_evicted": evicted,
        "archives_removed": archives,
    }
    logger.info(f"Session cleanup complete: {summary}")
    return summary
