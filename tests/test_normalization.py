"""Tests for score normalization."""

import math

import pytest

from service_search.app.hybrid.models import StrategyKind
from service_search.app.ranking.normalization import BatchStats, ScoreNormalizer, clamp


@pytest.fixture
def normalizer():
    return ScoreNormalizer()


def test_clamp():
    assert clamp(1.7) == 1.0
    assert clamp(-0.2) == 0.0
    assert clamp(0.42) == 0.42
    assert clamp(math.nan) == 0.0
    assert clamp(math.inf) == 0.0


def test_batch_stats_ignores_non_finite():
    stats = BatchStats.from_scores([0.1, math.nan, 0.4, math.inf])
    assert stats.max_score == 0.4
    assert stats.count == 2

    assert BatchStats.from_scores([]).max_score == 0.0


def test_keyword_scores_divided_by_batch_max(normalizer):
    hits = [("a", 0.2, {}), ("b", 0.1, {}), ("c", 0.05, {})]
    normalized = normalizer.normalize_batch(StrategyKind.KEYWORD, hits)

    assert normalized["a"] == 1.0
    assert normalized["b"] == pytest.approx(0.5)
    assert normalized["c"] == pytest.approx(0.25)


def test_keyword_zero_batch_max_yields_zero(normalizer):
    hits = [("a", 0.0, {}), ("b", 0.0, {})]
    normalized = normalizer.normalize_batch(StrategyKind.KEYWORD, hits)
    assert normalized == {"a": 0.0, "b": 0.0}


def test_keyword_without_stats_uses_own_score(normalizer):
    assert normalizer.normalize(StrategyKind.KEYWORD, 3.5) == 1.0
    assert normalizer.normalize(StrategyKind.KEYWORD, 0.0) == 0.0


def test_fuzzy_similarity_passed_through_and_clamped(normalizer):
    assert normalizer.normalize(StrategyKind.FUZZY, 0.8) == 0.8
    assert normalizer.normalize(StrategyKind.FUZZY, 1.3) == 1.0
    assert normalizer.normalize(StrategyKind.FUZZY, -0.1) == 0.0


@pytest.mark.parametrize("distance,expected", [
    (0.0, 1.0),
    (0.25, 0.75),
    (0.5, 0.5),
    (1.0, 0.0),
    (1.5, 0.0),
    (2.0, 0.0),
])
def test_semantic_distance_inverted(normalizer, distance, expected):
    assert normalizer.normalize(StrategyKind.SEMANTIC, distance) == pytest.approx(expected)


@pytest.mark.parametrize("kind", list(StrategyKind))
def test_non_finite_scores_become_zero(normalizer, kind):
    assert normalizer.normalize(kind, math.nan) == 0.0
    assert normalizer.normalize(kind, math.inf) == 0.0


def test_normalized_scores_stay_in_unit_interval(normalizer):
    hits = [("a", 12.0, {}), ("b", -3.0, {}), ("c", math.nan, {}), ("d", 4.0, {})]
    for kind in StrategyKind:
        for score in normalizer.normalize_batch(kind, hits).values():
            assert 0.0 <= score <= 1.0


def test_duplicate_id_keeps_best_score(normalizer):
    hits = [("a", 0.4, {}), ("a", 0.9, {}), ("b", 0.5, {})]
    normalized = normalizer.normalize_batch(StrategyKind.FUZZY, hits)
    assert normalized == {"a": 0.9, "b": 0.5}

    semantic = normalizer.normalize_batch(StrategyKind.SEMANTIC, [("a", 0.6, {}), ("a", 0.2, {})])
    assert semantic["a"] == pytest.approx(0.8)
