"""Tests for the keyword classification engine."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from ew_engine.classification_engine import ClassificationError, create_classifier
from ew_engine.corpus_loader import get_default_corpus
from ew_engine.models import ClassificationPattern, ClassifierSource

INDEX_REQUEST = "design a composite index for range queries"
TRADEOFF_REQUEST = "replication and concurrency and caching tradeoffs"
EVENT_REQUEST = "should we adopt event sourcing"

REQUEST_WORDS = [
    "index", "composite", "replication", "concurrency", "caching", "latency",
    "kubernetes", "deployment", "jwt", "login", "rest", "api", "event", "sourcing",
    "dynamodb", "throughput", "sql", "oauth", "and", "the", "tradeoffs",
]

# Stateless engine shared by property tests (no cache, no session context)
STATELESS_ENGINE = create_classifier(get_default_corpus())


@pytest.fixture
def engine(corpus):
    """Engine without cache or session context."""
    return create_classifier(corpus)


class TestStatelessClassification:
    """Classification from the request text alone."""

    def test_single_system_fast_path(self, engine):
        result = engine.classify(INDEX_REQUEST)

        assert result.systems == ("DB",)
        assert result.domains == ("index-query",)
        assert result.pattern == ClassificationPattern.SINGLE
        assert result.confidence == 0.85
        assert result.classifier_source is ClassifierSource.KEYWORD_FAST_PATH
        assert result.needs_verification is False

    def test_single_system_without_domain(self, engine):
        result = engine.classify("kubernetes deployment")

        assert result.systems == ("IF",)
        assert result.domains == ()
        assert result.confidence == 0.70

    def test_multi_system_weighted(self, engine):
        result = engine.classify(TRADEOFF_REQUEST)

        assert result.systems == ("DB", "BE")
        assert result.domains == ("distributed",)
        assert result.pattern == ClassificationPattern.MULTI
        assert result.confidence == 0.69
        assert result.classifier_source is ClassifierSource.KEYWORD_WEIGHTED

    def test_multi_system_fast_path(self, engine):
        result = engine.classify("jwt login for the rest api")

        assert result.systems == ("BE", "SE")
        assert result.confidence == 0.60
        assert result.classifier_source is ClassifierSource.KEYWORD_FAST_PATH

    def test_cross_pattern(self, engine):
        result = engine.classify("oauth tokens for the kubernetes api and the sql database")

        assert result.pattern == ClassificationPattern.CROSS
        assert result.confidence == 0.60

    def test_reconstruction_from_cross_scores(self, engine):
        """No system keyword, but a decisive cross group picks the system."""
        result = engine.classify(EVENT_REQUEST)

        assert result.systems == ("BE",)
        assert result.confidence == 0.78
        assert result.classifier_source is ClassifierSource.KEYWORD_WEIGHTED

    def test_reconstruction_keeps_close_systems(self, engine):
        result = engine.classify("what about latency")

        assert result.systems == ("DB", "BE", "IF")
        assert result.confidence == 0.60
        assert result.classifier_source is ClassifierSource.KEYWORD_WEIGHTED

    @pytest.mark.parametrize("request_text", ["", "   ", "what should we have for lunch"])
    def test_no_match(self, engine, request_text):
        result = engine.classify(request_text)

        assert result.systems == ()
        assert result.domains == ()
        assert result.confidence == 0.0
        assert result.pattern == ClassificationPattern.NONE
        assert result.suggested_expansions == ()
        assert result.is_classified is False

    def test_non_string_raises(self, engine):
        with pytest.raises(ClassificationError, match="must be a string"):
            engine.classify(None)

    def test_deterministic(self, engine):
        assert engine.classify(TRADEOFF_REQUEST) == engine.classify(TRADEOFF_REQUEST)

    def test_live_confidence_below_one(self, engine):
        for text in (INDEX_REQUEST, TRADEOFF_REQUEST, EVENT_REQUEST, "dynamodb hot partition"):
            assert engine.classify(text).confidence < 1.0

    @given(
        st.one_of(
            st.text(),
            st.lists(st.sampled_from(REQUEST_WORDS), max_size=8).map(" ".join),
        )
    )
    def test_any_request_stays_in_bounds(self, request_text):
        """Live scoring stays in [0, 1) and the pattern follows the system count."""
        result = STATELESS_ENGINE.classify(request_text)

        assert 0.0 <= result.confidence < 1.0
        assert result.pattern == ClassificationPattern.from_count(len(result.systems))
        assert len(set(result.systems)) == len(result.systems)


class TestSessionContextRefinement:
    """Classification refined by recent session history."""

    def test_prior_boost_on_repeat(self, make_session):
        session = make_session()
        session.classify(INDEX_REQUEST)

        result = session.engine.classify(INDEX_REQUEST)

        assert result.prior_boost == 0.05
        assert result.confidence == 0.9
        assert result.classifier_source is ClassifierSource.KEYWORD_WEIGHTED_CONTEXT

    def test_no_boost_outside_window(self, make_session, clock):
        session = make_session()
        session.classify(INDEX_REQUEST)
        clock.advance(minutes=31)

        result = session.engine.classify(INDEX_REQUEST)

        assert result.prior_boost == 0.0
        assert result.confidence == 0.85

    def test_boost_never_creates_classification(self, make_session):
        session = make_session()
        session.classify(INDEX_REQUEST)

        result = session.engine.classify("what should we have for lunch")

        assert result.systems == ()
        assert result.confidence == 0.0

    def test_multi_boost_stays_below_single_band(self, make_session):
        session = make_session()
        session.classify(TRADEOFF_REQUEST)

        result = session.engine.classify(TRADEOFF_REQUEST)

        assert result.confidence == 0.69
        assert result.prior_boost > 0

    def test_reweighting_marks_context_source(self, make_session):
        """Recent IF history tilts an ambiguous cross-score request."""
        session = make_session()
        session.classify("kubernetes deployment")

        result = session.engine.classify("what about latency")

        assert result.systems == ("DB", "BE", "IF")
        assert result.prior_boost == 0.0
        assert result.confidence == 0.606
        assert result.classifier_source is ClassifierSource.KEYWORD_WEIGHTED_CONTEXT

    def test_transition_suggestions(self, make_session):
        session = make_session()
        session.classify(INDEX_REQUEST)
        session.classify("jwt login")

        result = session.engine.classify("jwt login")

        assert [(s.system, s.domain) for s in result.suggested_expansions] == [("DB", "index-query")]
        assert result.suggested_expansions[0].transition_confidence == 1.0
        assert result.systems == ("SE",)

    def test_progressive_disabled(self, make_session):
        session = make_session(progressive_classification=False)
        session.classify(INDEX_REQUEST)
        session.classify("jwt login")

        result = session.engine.classify("jwt login")

        assert result.prior_boost == 0.0
        assert result.confidence == 0.85
        assert result.suggested_expansions == ()
        assert result.classifier_source is ClassifierSource.KEYWORD_FAST_PATH
