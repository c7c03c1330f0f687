"""Tests for goal complexity scoring."""

import pytest

from src.forest.complexity import (
    ComplexityAnalyzer,
    ComplexityLevel,
    depth_for_score,
    level_for_score,
)


@pytest.fixture
def analyzer():
    return ComplexityAnalyzer()


def test_empty_goal_is_minimal(analyzer):
    analysis = analyzer.analyze("   ")
    assert analysis.score == 1
    assert analysis.recommended_depth == 2
    assert analysis.level is ComplexityLevel.SIMPLE


def test_bread_making_scores_mastery_only(analyzer):
    analysis = analyzer.analyze("Learn advanced bread making")
    assert analysis.score == 5
    assert analysis.level is ComplexityLevel.MODERATE
    assert "Mastery target" in analysis.factors


def test_professional_technical_goal_is_clamped(analyzer):
    analysis = analyzer.analyze(
        "Become a professional machine learning engineer, expert level, quickly",
        focus_areas=["vision", "nlp", "mlops"],
    )
    assert analysis.score == 10
    assert analysis.level is ComplexityLevel.EXPERT
    assert analysis.recommended_depth == 5


def test_terms_match_on_word_boundaries(analyzer):
    # "ai" inside "paint" must not count as a technical domain
    analysis = analyzer.analyze("Learn to paint landscapes")
    assert analysis.score == 3


def test_context_contributes_to_score(analyzer):
    plain = analyzer.analyze("Learn guitar")
    with_context = analyzer.analyze("Learn guitar", context="I have a deadline next month")
    assert with_context.score == plain.score + 1


def test_focus_area_bonus_is_capped(analyzer):
    one = analyzer.analyze("Learn guitar", focus_areas=["chords"])
    many = analyzer.analyze("Learn guitar", focus_areas=["a", "b", "c", "d", "e", "f"])
    assert one.score == 4
    assert many.score == 5


@pytest.mark.parametrize(
    "score,level,depth",
    [
        (1, ComplexityLevel.SIMPLE, 2),
        (4, ComplexityLevel.MODERATE, 3),
        (7, ComplexityLevel.COMPLEX, 4),
        (9, ComplexityLevel.EXPERT, 5),
    ],
)
def test_level_and_depth_bands(score, level, depth):
    assert level_for_score(score) is level
    assert depth_for_score(score) == depth


def test_to_dict_carries_summary(analyzer):
    data = analyzer.analyze("Learn advanced bread making").to_dict()
    assert data["score"] == 5
    assert data["level"] == "moderate"
    assert data["analysis"].startswith("Goal complexity: 5/10")
