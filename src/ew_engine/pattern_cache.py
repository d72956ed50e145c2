"""
Pattern Cache - promotes repeatedly seen requests to a direct lookup.

A request signature is its lower-cased words, de-duplicated and sorted, so
"Index design for DynamoDB?" and "dynamodb index design" share one entry.
Once a signature has been classified promotion_threshold times in the
session history, its result is cached and later requests with the same
signature are answered with confidence 1.0 without re-scoring.

The cache file is process-wide. Writes are serialized within the process and
land via atomic replace, so concurrent readers see whole documents only.
"""

import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ew_engine.models import ClassificationResult, utc_now
from ew_engine.session_context import SessionHistory
from ew_engine.state_files import read_json, write_json_atomic

logger = logging.getLogger(__name__)

_NON_WORD = re.compile(r"[^\w]+|_+")
_cache_lock = threading.Lock()


def compute_signature(request: str) -> str:
    """Order- and punctuation-independent key for a request."""
    words = _NON_WORD.sub(" ", request.lower()).split()
    return " ".join(sorted(set(words)))


@dataclass(frozen=True)
class PatternCacheEntry:
    signature: str
    result: ClassificationResult
    hit_count: int
    last_used: datetime

    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "result": self.result.to_dict(),
            "hit_count": self.hit_count,
            "last_used": self.last_used.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PatternCacheEntry":
        last_used = datetime.fromisoformat(data["last_used"])
        if last_used.tzinfo is None:
            last_used = last_used.replace(tzinfo=timezone.utc)
        return cls(
            signature=data["signature"],
            result=ClassificationResult.from_dict(data["result"]),
            hit_count=int(data["hit_count"]),
            last_used=last_used,
        )


class PatternCache:
    """Signature -> classification cache backed by one JSON document."""

    def __init__(
        self,
        path: Path,
        promotion_threshold: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.path = Path(path)
        self.promotion_threshold = promotion_threshold
        self.clock = clock

    def _load(self) -> Dict[str, PatternCacheEntry]:
        data = read_json(self.path, default={})
        raw = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(raw, dict):
            if data:
                logger.warning(f"Unexpected pattern cache document in {self.path}, ignoring")
            return {}
        entries = {}
        for signature, value in raw.items():
            try:
                entries[signature] = PatternCacheEntry.from_dict(value)
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed cache entry '{signature}': {e}")
        return entries

    def _save(self, entries: Dict[str, PatternCacheEntry]) -> None:
        write_json_atomic(
            self.path,
            {"entries": {sig: e.to_dict() for sig, e in sorted(entries.items())}},
        )

    def entries(self) -> List[PatternCacheEntry]:
        return list(self._load().values())

    def get_entry(self, signature: str) -> Optional[PatternCacheEntry]:
        return self._load().get(signature)

    def lookup(self, signature: str) -> Optional[ClassificationResult]:
        """
        Return the cached result as a cache hit, or None.

        Entries below the promotion threshold never hit.
        """
        entry = self._load().get(signature)
        if entry is None or entry.hit_count < self.promotion_threshold:
            return None
        return entry.result.as_cache_hit()

    def touch(self, signature: str) -> None:
        """Refresh last_used of an entry after a hit."""
        with _cache_lock:
            entries = self._load()
            entry = entries.get(signature)
            if entry is None:
                return
            entries[signature] = PatternCacheEntry(
                signature=entry.signature,
                result=entry.result,
                hit_count=entry.hit_count,
                last_used=self.clock(),
            )
            self._save(entries)

    def promote(self, signature: str, result: ClassificationResult, history: SessionHistory) -> bool:
        """
        Cache result for signature once history holds it often enough.

        Results without systems are never cached. Re-promoting with the same
        result leaves the cached result unchanged.

        Returns:
            True if the entry was inserted or updated
        """
        if not signature or not result.systems:
            return False
        occurrences = history.count_signature(signature)
        if occurrences < self.promotion_threshold:
            return False

        with _cache_lock:
            entries = self._load()
            entries[signature] = PatternCacheEntry(
                signature=signature,
                result=result,
                hit_count=occurrences,
                last_used=self.clock(),
            )
            self._save(entries)
        logger.info(f"Promoted query signature to pattern cache ({occurrences} hits): {signature}")
        return True

    def evict(self, max_age_days: int = 90) -> int:
        """
        Remove entries not used within max_age_days.

        Returns:
            Number of entries removed
        """
        cutoff = self.clock() - timedelta(days=max_age_days)
        with _cache_lock:
            entries = self._load()
            kept = {sig: e for sig, e in entries.items() if e.last_used >= cutoff}
            removed = len(entries) - len(kept)
            if removed:
                self._save(kept)
                logger.info(f"Evicted pattern cache: {len(entries)} -> {len(kept)} entries")
        return removed

    def clear(self) -> int:
        """Remove every entry. Returns the number removed."""
        with _cache_lock:
            count = len(self._load())
            if self.path.exists():
                self.path.unlink()
        return count
