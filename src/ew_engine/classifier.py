"""
Keyword Classifier (ew-keyword-1.0)

Classifies a request into systems and domains in up to three passes:

1. Pattern cache: a request seen often enough is answered directly.
2. Binary matching: which systems' keywords appear at all.
3. Weighted cross-scoring: shared vocabulary ranks the systems, and
   rebuilds the system set when pass 2 found nothing.

Session context then refines the result: recent history can lift
confidence a little, and the transition table suggests related areas.
Neither can produce a classification on its own.
"""

import logging
from typing import List

from ew_engine.classification_engine import (
    ClassificationEngine,
    ClassificationError,
    FeatureSpec,
    register_engine,
    set_default_engine,
)
from ew_engine.confidence import ConfidenceCalibrator
from ew_engine.keyword_matching import BinaryMatcher, CrossScore, CrossScorer
from ew_engine.models import ClassificationResult, ClassifierSource
from ew_engine.pattern_cache import compute_signature

logger = logging.getLogger(__name__)

# Single source of truth for this engine's version
ENGINE_VERSION = "ew-keyword-1.0"


@register_engine(ENGINE_VERSION)
class KeywordClassifier(ClassificationEngine):
    """
    Keyword classification engine.

    Feature Flags:
        - pattern_cache: Answer promoted signatures from the pattern cache
        - progressive_classification: Session prior boost, cross-score
          re-weighting and transition suggestions
    """

    def __init__(self, corpus, cache=None, tracker=None, calibration=None, features=None):
        super().__init__(corpus, cache=cache, tracker=tracker, calibration=calibration, features=features)
        self.matcher = BinaryMatcher(corpus)
        self.scorer = CrossScorer(corpus)
        self.calibrator = ConfidenceCalibrator(self.calibration)

        feature_str = ", ".join(f"{k}={v}" for k, v in self.features.items())
        logger.debug(f"KeywordClassifier initialized (version: {self.version}, features: {feature_str})")

    @property
    def version(self) -> str:
        return ENGINE_VERSION

    @property
    def description(self) -> str:
        return "Keyword matching with weighted cross-scoring and session context"

    @classmethod
    def get_available_features(cls) -> List[FeatureSpec]:
        return [
            FeatureSpec(
                name="pattern_cache",
                description="Serve repeated request signatures from the pattern cache",
                default=True,
                category="session",
            ),
            FeatureSpec(
                name="progressive_classification",
                description="Use recent session history and transitions to refine results",
                default=True,
                category="session",
            ),
        ]

    def classify(self, request: str) -> ClassificationResult:
        if not isinstance(request, str):
            raise ClassificationError(f"Request must be a string, got {type(request).__name__}")

        if self.cache is not None and self.is_enabled("pattern_cache"):
            cached = self.cache.lookup(compute_signature(request))
            if cached is not None:
                logger.info(f"Pattern cache hit: systems={list(cached.systems)}")
                return cached

        text = request.lower()
        binary = self.matcher.match(text)
        cross = self.scorer.score(text)

        tracker = self.tracker if self.is_enabled("progressive_classification") else None
        recent = tracker.read_recent() if tracker is not None else []

        systems = binary
        reweighted = False
        if not binary and cross.phase2_active:
            if tracker is not None and recent:
                adjusted = CrossScore.from_scores(
                    tracker.reweight_scores(cross.scores, recent),
                    cross.matched_groups,
                )
                reweighted = dict(adjusted.scores) != dict(cross.scores)
                cross = adjusted
            systems = cross.reconstruct_systems(self.calibration.reconstruction_gap)

        domains = self.matcher.detect_domains(text, systems)
        confidence = self.calibrator.compute_confidence(
            total_binary_matches=len(binary),
            has_subdomain=bool(domains),
            phase2_active=cross.phase2_active,
            gap=cross.gap,
            dominance=cross.dominance,
            final_system_count=len(systems),
        )

        boost = 0.0
        suggestions = ()
        if tracker is not None:
            boost = tracker.compute_prior_boost(systems, recent, len(binary))
            if boost > 0:
                confidence = self.calibrator.apply_boost(confidence, boost, len(systems))
            if systems:
                suggestions = tuple(tracker.lookup_transitions(
                    systems[0], self.corpus.primary_domain(systems, domains)
                ))

        if boost > 0 or reweighted:
            source = ClassifierSource.KEYWORD_WEIGHTED_CONTEXT
        elif cross.phase2_active:
            source = ClassifierSource.KEYWORD_WEIGHTED
        else:
            source = ClassifierSource.KEYWORD_FAST_PATH

        result = ClassificationResult(
            systems=systems,
            domains=domains,
            confidence=confidence,
            classifier_source=source,
            prior_boost=boost,
            suggested_expansions=suggestions,
        )
        logger.info(
            f"Classified: systems={list(result.systems)} domains={list(result.domains)} "
            f"confidence={result.confidence} source={result.classifier_source.value}"
        )
        return result


set_default_engine(ENGINE_VERSION)
