"""
Engine Session - the inbound interface used by an orchestration layer.

One EngineSession serves one session id. Its history and constraint store
are private to that id; the pattern cache and the transition table are
shared by every session under the same state root.

Usage:
    session = EngineSession("review-42")
    result = session.classify("design a composite index for range queries")
    session.append_constraint({...})
    outcome = session.resolve_constraints()
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from ew_engine.classification_engine import create_classifier
from ew_engine.classifier import KeywordClassifier  # noqa: F401 (registers engine)
from ew_engine.config import (
    get_classifier_config,
    get_corpus_path,
    get_section,
    get_state_dir,
    load_config,
)
from ew_engine.confidence import CalibrationSettings
from ew_engine.constraints import (
    ConflictDetector,
    ConflictResolver,
    Constraint,
    ConstraintStore,
    ConstraintValidationError,
    ResolutionOutcome,
)
from ew_engine.corpus_loader import KeywordCorpus, get_default_corpus
from ew_engine.maintenance import run_session_cleanup
from ew_engine.models import (
    ClassificationResult,
    ClassifierSource,
    SessionHistoryEntry,
    utc_now,
)
from ew_engine.pattern_cache import PatternCache, compute_signature
from ew_engine.session_context import (
    SessionContextTracker,
    SessionHistory,
    SessionSettings,
    TransitionTable,
)
from ew_engine.state_files import DEFAULT_SESSION_ID, StateLayout

logger = logging.getLogger(__name__)


class EngineSession:
    """Classification and constraint resolution for one session."""

    def __init__(
        self,
        session_id: str = DEFAULT_SESSION_ID,
        config: Optional[Dict[str, Any]] = None,
        state_root: Optional[Path] = None,
        corpus: Optional[KeywordCorpus] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            session_id: Session identifier ([A-Za-z0-9._-]+)
            config: Configuration from load_config() (loaded if None)
            state_root: State directory (defaults to the configured one)
            corpus: Keyword corpus (defaults to the configured/bundled one)
            clock: Returns the current aware datetime

        Raises:
            ValueError: If session_id is invalid
            ConfigurationError: If the classifier configuration is invalid
            CorpusError: If the corpus cannot be loaded
        """
        self.config = config if config is not None else load_config()
        self.layout = StateLayout(Path(state_root) if state_root else get_state_dir(self.config))
        self.layout.session_dir(session_id)
        self.session_id = session_id
        self.clock = clock
        self.corpus = corpus or get_default_corpus(get_corpus_path(self.config))

        settings = SessionSettings.from_config(get_section(self.config, "session"))
        cache_config = get_section(self.config, "cache")

        self.history = SessionHistory(
            self.layout.history(session_id),
            max_entries=settings.max_history,
            keep_ratio=settings.keep_ratio,
        )
        self.tracker = SessionContextTracker(
            self.history,
            TransitionTable(self.layout.transitions, clock=clock),
            settings=settings,
            clock=clock,
            primary_domain=self.corpus.primary_domain,
        )
        self.cache = PatternCache(
            self.layout.pattern_cache,
            promotion_threshold=int(cache_config["promotion_threshold"]),
            clock=clock,
        )
        self.engine = create_classifier(
            self.corpus,
            get_classifier_config(self.config),
            cache=self.cache,
            tracker=self.tracker,
            calibration=CalibrationSettings.from_config(get_section(self.config, "calibration")),
        )

        self.store = ConstraintStore(
            self.layout.constraints(session_id),
            self.layout.constraints_archive,
            session_id,
            clock=clock,
        )
        self.detector = ConflictDetector(self.corpus.semantic_rules)
        self.resolver = ConflictResolver()

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(self, request: str, record: bool = True) -> ClassificationResult:
        """
        Classify a request.

        With record=True a live result is written to session state: the
        transition from the previous entry, the history entry itself, then
        cache promotion. A cache hit only refreshes the entry's last_used.
        With record=False no state is touched.
        """
        result = self.engine.classify(request)
        if not record:
            return result

        signature = compute_signature(request)
        if result.classifier_source == ClassifierSource.PATTERN_CACHE:
            self.cache.touch(signature)
            return result

        previous = self.history.last_entry()
        if previous is not None and self.engine.is_enabled("progressive_classification"):
            self.tracker.record_transition(
                previous.signature,
                result.systems[0] if result.systems else "",
                self.corpus.primary_domain(result.systems, result.domains),
            )

        self.history.append(SessionHistoryEntry(
            signature=signature,
            query=request,
            result=result,
            timestamp=self.clock(),
            prev_signature=previous.signature if previous else None,
        ))

        if self.engine.is_enabled("pattern_cache"):
            self.cache.promote(signature, result, self.history)
        return result

    # ------------------------------------------------------------------
    # Constraints
    # ------------------------------------------------------------------

    def append_constraint(self, constraint: Union[Constraint, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Append a constraint to the session store.

        Returns:
            {"ok": True, "constraint_id": ...} or {"ok": False, "error": ...}
        """
        try:
            stored = self.store.append(constraint)
        except ConstraintValidationError as e:
            logger.warning(f"Rejected constraint: {e}")
            return {"ok": False, "error": str(e)}
        return {"ok": True, "constraint_id": stored.id}

    def resolve_constraints(self) -> ResolutionOutcome:
        """Detect and resolve conflicts over the current constraint snapshot."""
        constraints = self.store.snapshot()
        conflicts = self.detector.detect(constraints)
        return self.resolver.resolve(constraints, conflicts, resolved_at=self.clock())

    def archive_constraints(self) -> Optional[Path]:
        """
        Archive the active constraints with their resolution and reset.

        Returns:
            Archive file path, or None when the session has no constraints file
        """
        outcome = self.resolve_constraints()
        path = self.store.archive_and_reset(outcome.to_dict())
        if path is not None:
            keep = int(get_section(self.config, "constraints")["archive_keep"])
            self.store.prune_archive(keep)
        return path

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def run_cleanup(self, force: bool = False) -> Optional[Dict[str, int]]:
        """Run periodic state cleanup (see run_session_cleanup)."""
        return run_session_cleanup(self.layout, self.config, force=force, clock=self.clock)
