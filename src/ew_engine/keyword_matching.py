"""
Keyword Matching - binary system matcher and weighted cross-scorer.

Pass 1 (BinaryMatcher) answers "which systems are mentioned at all".
Pass 2 (CrossScorer) spreads the weight of shared vocabulary such as
"caching" or "latency" across the systems it usually belongs to, so that
an ambiguous request can still be ranked.

Both passes are pure functions of the request text and the corpus.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from ew_engine.corpus_loader import KeywordCorpus

logger = logging.getLogger(__name__)


class BinaryMatcher:
    """Word-boundary keyword matching of systems and domains."""

    def __init__(self, corpus: KeywordCorpus):
        self.corpus = corpus

    def match(self, text: str) -> Tuple[str, ...]:
        """
        Return the ids of every system whose keywords appear in text.

        Systems are returned in corpus order.
        """
        text = text.lower()
        return tuple(s.id for s in self.corpus.systems if s.matches(text))

    def detect_domains(self, text: str, systems: Tuple[str, ...]) -> Tuple[str, ...]:
        """Return the matching domains of the given systems, system by system."""
        text = text.lower()
        domains = []
        for system_id in systems:
            system = self.corpus.get_system(system_id)
            if system is None:
                continue
            domains.extend(d.id for d in system.domains if d.matches(text))
        return tuple(domains)


@dataclass(frozen=True)
class CrossScore:
    """
    Per-system weighted scores from one cross-scoring pass.

    Attributes:
        scores: system id -> accumulated weight (every corpus system present)
        matched_groups: ids of the cross groups found in the text
        gap: top score minus runner-up score
        dominance: top / (top + runner-up), or 0 when both are 0
    """

    scores: Mapping[str, float]
    matched_groups: Tuple[str, ...] = ()
    gap: float = 0.0
    dominance: float = 0.0
    ranking: Tuple[str, ...] = field(default=())

    @property
    def phase2_active(self) -> bool:
        return bool(self.matched_groups)

    @property
    def top_system(self) -> Optional[str]:
        if not self.ranking or self.scores[self.ranking[0]] <= 0:
            return None
        return self.ranking[0]

    @classmethod
    def from_scores(
        cls,
        scores: Mapping[str, float],
        matched_groups: Tuple[str, ...] = (),
    ) -> "CrossScore":
        """Build a CrossScore and derive gap/dominance from raw scores."""
        scores = {s: round(float(v), 6) for s, v in scores.items()}
        # Stable sort keeps corpus order among equal scores
        ranking = tuple(sorted(scores, key=lambda s: -scores[s]))
        top = scores[ranking[0]] if ranking else 0.0
        second = scores[ranking[1]] if len(ranking) > 1 else 0.0

        gap = round(top - second, 6)
        dominance = round(top / (top + second), 6) if (top + second) > 0 else 0.0
        return cls(
            scores=MappingProxyType(scores),
            matched_groups=tuple(matched_groups),
            gap=gap,
            dominance=dominance,
            ranking=ranking,
        )

    def reconstruct_systems(self, gap_threshold: float) -> Tuple[str, ...]:
        """
        Rebuild a system set from scores when pass 1 found nothing.

        A decisive leader (gap >= gap_threshold) stands alone; otherwise every
        system with a positive score is kept, in corpus order.
        """
        if self.top_system is None:
            return ()
        if self.gap >= gap_threshold:
            return (self.top_system,)
        return tuple(s for s, score in self.scores.items() if score > 0)


class CrossScorer:
    """Scores systems by the cross-keyword groups a request mentions."""

    def __init__(self, corpus: KeywordCorpus):
        self.corpus = corpus

    def score(self, text: str) -> CrossScore:
        text = text.lower()
        scores: Dict[str, float] = {s: 0.0 for s in self.corpus.system_ids}
        matched = []

        for group in self.corpus.cross_groups:
            if not group.pattern.search(text):
                continue
            matched.append(group.id)
            for system_id, weight in group.weights.items():
                scores[system_id] = scores.get(system_id, 0.0) + weight

        if matched:
            logger.debug(f"Cross groups matched: {matched}")
        return CrossScore.from_scores(scores, tuple(matched))
