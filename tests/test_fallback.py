"""Tests for the deterministic fallback chain."""

import pytest

from src.forest.complexity import ComplexityAnalyzer
from src.forest.exceptions import GenerationFailedError
from src.forest.fallback import (
    DomainHintFallback,
    FallbackChain,
    GenericFallback,
    fallback_duration,
    tasks_per_branch,
)
from src.forest.models import StrategicBranch
from src.forest.schemas import (
    CONTEXT_ADAPTIVE_PRIMITIVES,
    DOMAIN_RELEVANCE,
    GOAL_CONTEXT,
    MICRO_PARTICLES,
    NANO_ACTIONS,
    TASK_DECOMPOSITION,
    schema_errors,
)


class BrokenGenerator:
    name = "broken"

    def strategic_branches(self, goal):
        raise RuntimeError("template store missing")


class TooFewGenerator:
    name = "too_few"

    def strategic_branches(self, goal):
        return GenericFallback().strategic_branches(goal)[:2]


@pytest.fixture
def chain():
    return FallbackChain()


class TestStrategicBranches:
    def test_bread_goal_gets_baking_branches(self, chain):
        branches, name = chain.strategic_branches("Learn advanced bread making")
        assert name == "domain_hint"
        assert [b.name for b in branches] == [
            "Ingredient Fundamentals",
            "Dough Technique",
            "Baking Practice",
            "Artisan Mastery",
        ]
        assert [b.priority for b in branches] == [1, 2, 3, 4]

    def test_unmatched_goal_gets_generic_phases(self, chain):
        branches, name = chain.strategic_branches("Learn to juggle")
        assert name == "generic"
        assert [b.name for b in branches] == ["Foundation", "Practice", "Application", "Mastery"]
        assert branches[0].description == "Build fundamental understanding of Learn to juggle"

    def test_domain_match_uses_word_boundaries(self):
        # "ai" in "daily" is not the AI domain
        assert DomainHintFallback().match("Keep a daily journal") is None

    def test_broken_and_short_generators_are_skipped(self):
        chain = FallbackChain([BrokenGenerator(), TooFewGenerator(), GenericFallback()])
        branches, name = chain.strategic_branches("Learn to juggle")
        assert name == "generic"
        assert len(branches) == 4

    def test_all_generators_failing_raises_composite(self):
        chain = FallbackChain([BrokenGenerator(), TooFewGenerator()])
        primary = RuntimeError("provider down")
        with pytest.raises(GenerationFailedError) as exc_info:
            chain.strategic_branches("Learn to juggle", primary)
        assert exc_info.value.primary_error is primary


class TestFallbackTasks:
    def test_bread_scenario_task_count(self, chain):
        analysis = ComplexityAnalyzer().analyze("Learn advanced bread making")
        branches, _ = chain.strategic_branches("Learn advanced bread making")
        tasks = chain.tasks(branches, analysis)

        per_branch = tasks_per_branch(analysis.score)
        assert per_branch == 2
        for branch in branches:
            assert len([t for t in tasks if t.branch == branch.name]) == per_branch

    def test_task_shape(self, chain):
        analysis = ComplexityAnalyzer().analyze("Learn advanced bread making")
        branches, _ = chain.strategic_branches("Learn advanced bread making")
        first, second = chain.tasks(branches, analysis)[:2]

        assert first.id == "ingredient_fundamentals_1"
        assert first.title == "Ingredient Fundamentals Task 1"
        assert first.prerequisites == []
        assert second.prerequisites == ["ingredient_fundamentals_1"]
        assert (first.difficulty, second.difficulty) == (3, 4)
        assert (first.priority, second.priority) == (100, 110)
        assert first.fallback_generated and not first.schema_driven

    def test_colliding_branch_names_get_distinct_ids(self, chain):
        analysis = ComplexityAnalyzer().analyze("Learn advanced bread making")
        branches = [
            StrategicBranch(name="Practice", description="a", priority=1),
            StrategicBranch(name="practice", description="b", priority=2),
        ]
        tasks = chain.tasks(branches, analysis)

        ids = [t.id for t in tasks]
        assert ids == ["practice_1", "practice_2", "practice_3", "practice_4"]
        second_branch = [t for t in tasks if t.branch == "practice"]
        assert second_branch[0].prerequisites == []
        assert second_branch[1].prerequisites == ["practice_3"]

    @pytest.mark.parametrize("score,expected", [(1, 2), (5, 2), (6, 3), (10, 5)])
    def test_tasks_per_branch(self, score, expected):
        assert tasks_per_branch(score) == expected

    def test_duration_scales_and_clamps(self):
        assert fallback_duration(3, 0) == "25 minutes"
        assert fallback_duration(4, 0) == "30 minutes"
        assert fallback_duration(3, 2) == "40 minutes"
        assert fallback_duration(10, 3) == "60 minutes"
        assert fallback_duration(1, 0) == "15 minutes"
        assert fallback_duration(3, 0, "reading") == "20 minutes"


class TestLevelContent:
    @pytest.mark.parametrize(
        "level_key",
        [TASK_DECOMPOSITION, MICRO_PARTICLES, NANO_ACTIONS, CONTEXT_ADAPTIVE_PRIMITIVES],
    )
    def test_deeper_levels_satisfy_their_schema(self, chain, level_key):
        content = chain.level_content(level_key, {"name": "Dough Technique"}, score=5)
        assert content.pop("fallback_generated") is True
        assert schema_errors(level_key, content) == []

    def test_domain_relevance_uses_keyword_overlap(self, chain):
        content = chain.level_content(
            DOMAIN_RELEVANCE, {"topic": "bread hydration", "goal": "Learn bread making"}
        )
        assessment = content["relevance_assessment"]
        assert assessment["relevance_score"] == 0.5
        assert assessment["relevance_category"] == "core"

    def test_goal_context_level_needs_analysis(self, chain):
        with pytest.raises(ValueError):
            chain.level_content(GOAL_CONTEXT, {})

    def test_goal_context_fallback(self, chain):
        analysis = ComplexityAnalyzer().analyze("Learn advanced bread making")
        context = chain.goal_context("Learn advanced bread making", analysis)
        assert context["goal_analysis"]["domain_type"] == "baking"
        assert context["fallback_generated"] is True
        context.pop("fallback_generated")
        assert schema_errors(GOAL_CONTEXT, context) == []
