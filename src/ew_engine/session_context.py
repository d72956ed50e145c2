"""
Session Context - rolling classification history and topic transitions.

The tracker biases new classifications toward what the session has recently
been about. It is strictly a refinement: it can raise confidence a little
and suggest related areas, but it never creates a classification where the
matcher found nothing.

Prior boost:
    boost = min(cap, scale * sum(overlap_i * decay ** i))
    where i = 0 is the most recent entry and overlap_i is the fraction of the
    current systems that entry i also classified.

Transitions:
    Each live classification preceded by a different one increments the
    (from, to) record. For a given target pair, every source whose share of
    outgoing transitions reaches the threshold is suggested.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ew_engine.models import SessionHistoryEntry, SuggestedExpansion, utc_now
from ew_engine.state_files import read_json, read_jsonl, write_json_atomic, write_jsonl_atomic

logger = logging.getLogger(__name__)

_transitions_lock = threading.Lock()


@dataclass(frozen=True)
class SessionSettings:
    """Session constants (defaults match DEFAULT_CONFIG['session'])."""

    recent_limit: int = 5
    window_minutes: int = 30
    decay: float = 0.7
    boost_scale: float = 0.05
    boost_cap: float = 0.10
    reweight_scale: float = 0.05
    reweight_cap: float = 0.10
    max_history: int = 1000
    keep_ratio: float = 0.8
    transition_threshold: float = 0.20

    @classmethod
    def from_config(cls, section: Optional[Dict[str, Any]]) -> "SessionSettings":
        section = section or {}
        fields = cls.__dataclass_fields__
        # Coerce to the type of each default (int counts, float factors)
        return cls(**{
            k: type(fields[k].default)(v) for k, v in section.items() if k in fields
        })


# =============================================================================
# HISTORY
# =============================================================================


class SessionHistory:
    """
    Append-only classification history for one session (JSON lines).

    When the bound is exceeded the oldest entries are dropped, keeping the
    most recent keep_ratio share.
    """

    def __init__(self, path: Path, max_entries: int = 1000, keep_ratio: float = 0.8):
        self.path = Path(path)
        self.max_entries = max_entries
        self.keep_ratio = keep_ratio

    def entries(self) -> List[SessionHistoryEntry]:
        """All readable entries, oldest first."""
        result = []
        for record in read_jsonl(self.path):
            try:
                result.append(SessionHistoryEntry.from_dict(record))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed history entry in {self.path}: {e}")
        return result

    def append(self, entry: SessionHistoryEntry) -> None:
        records = read_jsonl(self.path)
        records.append(entry.to_dict())
        if len(records) > self.max_entries:
            keep = int(self.max_entries * self.keep_ratio)
            logger.info(f"Trimming history {self.path.parent.name}: {len(records)} -> {keep}")
            records = records[-keep:] if keep > 0 else []
        write_jsonl_atomic(self.path, records)

    def trim(self, max_entries: Optional[int] = None) -> int:
        """
        Trim to the most recent keep_ratio share if over max_entries.

        Returns:
            Number of entries removed
        """
        max_entries = self.max_entries if max_entries is None else max_entries
        records = read_jsonl(self.path)
        if len(records) <= max_entries:
            return 0
        keep = int(max_entries * self.keep_ratio)
        kept = records[-keep:] if keep > 0 else []
        write_jsonl_atomic(self.path, kept)
        return len(records) - len(kept)

    def last_entry(self) -> Optional[SessionHistoryEntry]:
        entries = self.entries()
        return entries[-1] if entries else None

    def find_latest(self, signature: str) -> Optional[SessionHistoryEntry]:
        for entry in reversed(self.entries()):
            if entry.signature == signature:
                return entry
        return None

    def count_signature(self, signature: str) -> int:
        return sum(1 for record in read_jsonl(self.path) if record.get("signature") == signature)


# =============================================================================
# TRANSITIONS
# =============================================================================


@dataclass(frozen=True)
class TransitionRecord:
    """Count of classifications of `to` immediately following `from`."""

    from_system: str
    from_domain: str
    to_system: str
    to_domain: str
    count: int
    last_seen: str

    @property
    def key(self) -> str:
        return transition_key(self.from_system, self.from_domain, self.to_system, self.to_domain)

    def to_dict(self) -> dict:
        return {
            "from_system": self.from_system,
            "from_domain": self.from_domain,
            "to_system": self.to_system,
            "to_domain": self.to_domain,
            "count": self.count,
            "last_seen": self.last_seen,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TransitionRecord":
        return cls(
            from_system=str(data["from_system"]),
            from_domain=str(data.get("from_domain") or ""),
            to_system=str(data["to_system"]),
            to_domain=str(data.get("to_domain") or ""),
            count=int(data.get("count", 0)),
            last_seen=str(data.get("last_seen", "")),
        )


def transition_key(from_system: str, from_domain: str, to_system: str, to_domain: str) -> str:
    return f"{from_system}:{from_domain}->{to_system}:{to_domain}"


class TransitionTable:
    """Process-wide (from, to) transition counts in one JSON document."""

    def __init__(self, path: Path, clock: Callable[[], datetime] = utc_now):
        self.path = Path(path)
        self.clock = clock

    def _load(self) -> Dict[str, TransitionRecord]:
        data = read_json(self.path, default={})
        raw = data.get("transitions") if isinstance(data, dict) else None
        if not isinstance(raw, dict):
            if data:
                logger.warning(f"Unexpected transitions document in {self.path}, ignoring")
            return {}
        records = {}
        for key, value in raw.items():
            try:
                records[key] = TransitionRecord.from_dict(value)
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed transition {key}: {e}")
        return records

    def records(self) -> List[TransitionRecord]:
        return list(self._load().values())

    def increment(self, from_system: str, from_domain: str, to_system: str, to_domain: str) -> TransitionRecord:
        key = transition_key(from_system, from_domain, to_system, to_domain)
        with _transitions_lock:
            records = self._load()
            previous = records.get(key)
            record = TransitionRecord(
                from_system=from_system,
                from_domain=from_domain,
                to_system=to_system,
                to_domain=to_domain,
                count=(previous.count if previous else 0) + 1,
                last_seen=self.clock().isoformat(),
            )
            records[key] = record
            write_json_atomic(
                self.path,
                {"transitions": {k: r.to_dict() for k, r in sorted(records.items())}},
            )
        return record

    def clear(self) -> int:
        """Remove every transition record. Returns the number removed."""
        with _transitions_lock:
            count = len(self._load())
            if self.path.exists():
                self.path.unlink()
        return count


# =============================================================================
# TRACKER
# =============================================================================


class SessionContextTracker:
    """Reads session history and transitions to produce context signals."""

    def __init__(
        self,
        history: SessionHistory,
        transitions: TransitionTable,
        settings: Optional[SessionSettings] = None,
        clock: Callable[[], datetime] = utc_now,
        primary_domain: Optional[Callable[[Sequence[str], Sequence[str]], str]] = None,
    ):
        self.history = history
        self.transitions = transitions
        self.settings = settings or SessionSettings()
        self.clock = clock
        self.primary_domain = primary_domain or _first_domain

    def read_recent(
        self,
        n: Optional[int] = None,
        window_minutes: Optional[int] = None,
    ) -> List[SessionHistoryEntry]:
        """Up to n entries from the last window_minutes, most recent first."""
        n = self.settings.recent_limit if n is None else n
        window = self.settings.window_minutes if window_minutes is None else window_minutes
        cutoff = self.clock() - timedelta(minutes=window)

        recent = []
        for entry in reversed(self.history.entries()):
            if len(recent) >= n:
                break
            if entry.timestamp >= cutoff:
                recent.append(entry)
        return recent

    def compute_prior_boost(
        self,
        current_systems: Sequence[str],
        recent_entries: Sequence[SessionHistoryEntry],
        total_binary_matches: int,
    ) -> float:
        """
        Confidence boost from recent entries that classified the same systems.

        Returns 0 when the binary matcher found nothing; the boost only
        refines an existing signal.
        """
        if total_binary_matches <= 0 or not current_systems:
            return 0.0
        s = self.settings
        current = set(current_systems)

        total = 0.0
        for index, entry in enumerate(recent_entries):
            overlap = len(current & set(entry.result.systems)) / len(current)
            total += overlap * (s.decay ** index)

        return round(min(s.boost_cap, s.boost_scale * total), 4)

    def reweight_scores(
        self,
        scores: Mapping[str, float],
        recent_entries: Sequence[SessionHistoryEntry],
    ) -> Dict[str, float]:
        """
        Lift cross-scores of systems the session has recently been about.

        Each positive score is multiplied by (1 + lift) where lift is capped
        at reweight_cap. Zero scores stay zero.
        """
        s = self.settings
        adjusted = {}
        for system_id, score in scores.items():
            if score <= 0:
                adjusted[system_id] = score
                continue
            presence = sum(
                s.decay ** index
                for index, entry in enumerate(recent_entries)
                if system_id in entry.result.systems
            )
            lift = min(s.reweight_cap, s.reweight_scale * presence)
            adjusted[system_id] = score * (1 + lift)
        return adjusted

    def lookup_transitions(
        self,
        system: str,
        domain: str,
        threshold: Optional[float] = None,
    ) -> List[SuggestedExpansion]:
        """
        Areas that frequently lead into (system, domain).

        For every source whose transitions into the target reach the threshold
        share of all transitions leaving that source, suggest the source.
        Sorted by confidence, strongest first.
        """
        if not system:
            return []
        threshold = self.settings.transition_threshold if threshold is None else threshold
        records = self.transitions.records()

        totals: Dict[tuple, int] = {}
        for record in records:
            source = (record.from_system, record.from_domain)
            totals[source] = totals.get(source, 0) + record.count

        suggestions = []
        for record in records:
            if (record.to_system, record.to_domain) != (system, domain or ""):
                continue
            source = (record.from_system, record.from_domain)
            if totals[source] <= 0:
                continue
            confidence = round(record.count / totals[source], 4)
            if confidence < threshold:
                continue
            source_label = _label(record.from_system, record.from_domain)
            suggestions.append(SuggestedExpansion(
                system=record.from_system,
                domain=record.from_domain,
                transition_confidence=confidence,
                count=record.count,
                rationale=(
                    f"{source_label} was followed by {_label(system, domain)} "
                    f"in {record.count} of {totals[source]} transitions"
                ),
            ))

        suggestions.sort(key=lambda s: (-s.transition_confidence, s.system, s.domain))
        return suggestions

    def record_transition(self, prev_signature: Optional[str], system: str, domain: str) -> bool:
        """
        Count a move from the entry with prev_signature to (system, domain).

        Returns:
            True if a transition was recorded
        """
        if not prev_signature or not system:
            return False
        previous = self.history.find_latest(prev_signature)
        if previous is None or not previous.result.systems:
            return False

        from_system = previous.result.systems[0]
        from_domain = self.primary_domain(previous.result.systems, previous.result.domains)
        if (from_system, from_domain) == (system, domain or ""):
            return False

        record = self.transitions.increment(from_system, from_domain, system, domain or "")
        logger.debug(f"Transition {record.key} count={record.count}")
        return True


def _first_domain(systems: Sequence[str], domains: Sequence[str]) -> str:
    return domains[0] if systems and domains else ""


def _label(system: str, domain: str) -> str:
    return f"{system}/{domain}" if domain else system
