"""Tests for pattern_cache module."""

from datetime import timedelta

import pytest

from ew_engine.models import ClassificationResult, ClassifierSource, SessionHistoryEntry
from ew_engine.pattern_cache import PatternCache, PatternCacheEntry, compute_signature
from ew_engine.session_context import SessionHistory

DB_RESULT = ClassificationResult(
    systems=("DB",),
    domains=("index-query",),
    confidence=0.85,
    classifier_source=ClassifierSource.KEYWORD_FAST_PATH,
)


@pytest.fixture
def history(tmp_path):
    return SessionHistory(tmp_path / "history.jsonl")


@pytest.fixture
def cache(tmp_path, clock):
    return PatternCache(tmp_path / "pattern-cache.json", promotion_threshold=3, clock=clock)


def record(history, signature, clock, times=1, result=DB_RESULT):
    for _ in range(times):
        history.append(SessionHistoryEntry(
            signature=signature,
            query=signature,
            result=result,
            timestamp=clock(),
        ))


class TestComputeSignature:
    """Tests for request signatures."""

    def test_order_and_case_independent(self):
        assert compute_signature("Index design for DynamoDB?") == compute_signature(
            "dynamodb design for index"
        )

    def test_duplicates_and_punctuation_removed(self):
        assert compute_signature("cache, cache; CACHE!") == "cache"

    def test_sorted_words(self):
        assert compute_signature("b a c") == "a b c"

    def test_underscores_split(self):
        assert compute_signature("snake_case words") == "case snake words"

    def test_empty(self):
        assert compute_signature("  ?! ") == ""


class TestPromotion:
    """Tests for promote and lookup."""

    def test_below_threshold_not_promoted(self, cache, history, clock):
        record(history, "design index", clock, times=2)

        assert cache.promote("design index", DB_RESULT, history) is False
        assert cache.lookup("design index") is None

    def test_promoted_at_threshold(self, cache, history, clock):
        record(history, "design index", clock, times=3)

        assert cache.promote("design index", DB_RESULT, history) is True

        hit = cache.lookup("design index")
        assert hit.systems == ("DB",)
        assert hit.domains == ("index-query",)
        assert hit.confidence == 1.0
        assert hit.classifier_source is ClassifierSource.PATTERN_CACHE

    def test_entry_persisted(self, cache, history, clock):
        record(history, "design index", clock, times=3)
        cache.promote("design index", DB_RESULT, history)

        entry = cache.get_entry("design index")

        assert entry.hit_count == 3
        assert entry.last_used == clock()
        # Stored result stays the live result; only lookups report 1.0
        assert entry.result.confidence == 0.85

    def test_empty_result_never_promoted(self, cache, history, clock):
        empty = ClassificationResult()
        record(history, "lunch", clock, times=5, result=empty)

        assert cache.promote("lunch", empty, history) is False
        assert cache.entries() == []

    def test_empty_signature_never_promoted(self, cache, history):
        assert cache.promote("", DB_RESULT, history) is False

    def test_repromotion_keeps_result(self, cache, history, clock):
        record(history, "design index", clock, times=5)
        cache.promote("design index", DB_RESULT, history)
        cache.promote("design index", DB_RESULT, history)

        assert cache.get_entry("design index").result == DB_RESULT
        assert len(cache.entries()) == 1

    def test_repromotion_with_new_result_replaces(self, cache, history, clock):
        record(history, "design index", clock, times=3)
        cache.promote("design index", DB_RESULT, history)
        replacement = ClassificationResult(
            systems=("DB", "BE"),
            confidence=0.6,
            classifier_source=ClassifierSource.KEYWORD_WEIGHTED,
        )

        cache.promote("design index", replacement, history)

        assert cache.lookup("design index").systems == ("DB", "BE")

    def test_lookup_respects_threshold(self, tmp_path, history, clock):
        """An entry below the cache's threshold never hits."""
        record(history, "design index", clock, times=3)
        PatternCache(tmp_path / "pattern-cache.json", promotion_threshold=3, clock=clock).promote(
            "design index", DB_RESULT, history
        )
        stricter = PatternCache(tmp_path / "pattern-cache.json", promotion_threshold=5, clock=clock)

        assert stricter.lookup("design index") is None


class TestMaintenance:
    """Tests for touch, evict and clear."""

    def test_touch_refreshes_last_used(self, cache, history, clock):
        record(history, "design index", clock, times=3)
        cache.promote("design index", DB_RESULT, history)

        later = clock.advance(days=2)
        cache.touch("design index")

        assert cache.get_entry("design index").last_used == later

    def test_touch_unknown_signature(self, cache):
        cache.touch("unknown")
        assert not cache.path.exists()

    def test_evict_stale_entries(self, cache, history, clock):
        record(history, "old query", clock, times=3)
        cache.promote("old query", DB_RESULT, history)
        clock.advance(days=100)
        record(history, "new query", clock, times=3)
        cache.promote("new query", DB_RESULT, history)

        assert cache.evict(90) == 1
        assert [e.signature for e in cache.entries()] == ["new query"]

    def test_evict_nothing(self, cache):
        assert cache.evict(90) == 0

    def test_clear(self, cache, history, clock):
        record(history, "design index", clock, times=3)
        cache.promote("design index", DB_RESULT, history)

        assert cache.clear() == 1
        assert cache.entries() == []

    def test_corrupt_file_treated_as_empty(self, cache):
        cache.path.write_text("{broken")
        assert cache.lookup("anything") is None
        assert cache.entries() == []


class TestPatternCacheEntry:
    """Tests for entry persistence."""

    def test_naive_last_used_is_utc(self, clock):
        entry = PatternCacheEntry.from_dict({
            "signature": "a",
            "result": DB_RESULT.to_dict(),
            "hit_count": 3,
            "last_used": "2026-01-15T12:00:00",
        })
        assert entry.last_used == clock()

    def test_to_dict(self, clock):
        entry = PatternCacheEntry("a", DB_RESULT, 3, clock() - timedelta(hours=1))
        data = entry.to_dict()
        assert data["hit_count"] == 3
        assert data["result"]["systems"] == ["DB"]
