"""Tests for next-task selection."""

import pytest

from src.forest.models import parse_time_to_minutes
from src.forest.task_formatter import TaskFormatter
from src.forest.task_selector import (
    SelectionConstraints,
    SelectionMethod,
    TaskSelector,
    eligible_tasks,
)


def task(task_id, difficulty=3, duration="20 minutes", priority=100, prerequisites=(), **extra):
    return {
        "id": task_id,
        "title": extra.pop("title", task_id.replace("_", " ").title()),
        "description": extra.pop("description", ""),
        "difficulty": difficulty,
        "duration": duration,
        "branch": extra.pop("branch", "Foundation"),
        "priority": priority,
        "prerequisites": list(prerequisites),
        "completed": extra.pop("completed", False),
        **extra,
    }


def tree_of(*tasks):
    return {"goal": "Learn things", "strategic_branches": [], "frontier_nodes": list(tasks)}


@pytest.fixture
def selector():
    return TaskSelector(energy_tolerance=2, time_slack=1.2, vector_threshold=0.1)


class TestParseTime:
    @pytest.mark.parametrize(
        "value,minutes",
        [
            ("45 minutes", 45),
            ("1 hour", 60),
            ("1.5 hours", 90),
            ("1h 30m", 90),
            ("20", 20),
            (25, 25),
            ("", 30),
            (None, 30),
            ("soon", 30),
        ],
    )
    def test_parse(self, value, minutes):
        assert parse_time_to_minutes(value) == minutes


class TestEligibility:
    def test_blocked_and_completed_tasks_are_excluded(self):
        tree = tree_of(
            task("a", completed=True),
            task("b", prerequisites=["a"]),
            task("c", prerequisites=["b"]),
            task("d", prerequisites=["missing"]),
        )
        assert [t["id"] for t in eligible_tasks(tree)] == ["b"]


class TestHeuristicSelection:
    @pytest.mark.asyncio
    async def test_nothing_fits_returns_none(self, selector):
        tree = tree_of(task("hard_1", 5, "120 minutes"), task("hard_2", 5, "120 minutes"))
        constraints = SelectionConstraints(energy_level=1, time_available="10 minutes")
        assert await selector.select_next(tree, constraints) is None

    @pytest.mark.asyncio
    async def test_all_completed_returns_none(self, selector):
        tree = tree_of(task("a", completed=True))
        assert await selector.select_next(tree, SelectionConstraints()) is None

    @pytest.mark.asyncio
    async def test_difficulty_closest_to_energy_wins(self, selector):
        tree = tree_of(task("b", difficulty=4), task("a", difficulty=2))
        result = await selector.select_next(
            tree, SelectionConstraints(energy_level=2, time_available="30 minutes")
        )
        assert result.task["id"] == "a"
        assert result.selection_method is SelectionMethod.HEURISTIC
        assert result.alternatives == ["b"]

    @pytest.mark.asyncio
    async def test_duration_fit_breaks_difficulty_ties(self, selector):
        tree = tree_of(task("short", duration="5 minutes"), task("snug", duration="25 minutes"))
        result = await selector.select_next(
            tree, SelectionConstraints(energy_level=3, time_available="30 minutes")
        )
        assert result.task["id"] == "snug"

    @pytest.mark.asyncio
    async def test_slight_overrun_is_allowed(self, selector):
        tree = tree_of(task("over", duration="35 minutes"))
        result = await selector.select_next(
            tree, SelectionConstraints(energy_level=3, time_available="30 minutes")
        )
        assert result.task["id"] == "over"

    @pytest.mark.asyncio
    async def test_priority_then_position_break_remaining_ties(self, selector):
        tree = tree_of(task("later", priority=200), task("first", priority=100), task("twin"))
        result = await selector.select_next(tree, SelectionConstraints())
        assert result.task["id"] == "first"

    @pytest.mark.asyncio
    async def test_prerequisites_are_respected(self, selector):
        tree = tree_of(
            task("basics", difficulty=5, duration="60 minutes"),
            task("easy_follow_up", difficulty=1, prerequisites=["basics"]),
        )
        result = await selector.select_next(
            tree, SelectionConstraints(energy_level=1, time_available="30 minutes")
        )
        assert result is None


class TestVectorSelection:
    @pytest.mark.asyncio
    async def test_recent_context_prefers_semantic_match(self, data_manager):
        tree = tree_of(
            task("dough_1", title="Knead dough by hand", description="Practice kneading dough"),
            task("starter_1", title="Feed sourdough starter", description="Feed your starter"),
        )
        await data_manager.save_tree("p1", "general", tree)
        selector = TaskSelector(data_manager, vector_threshold=0.1)

        result = await selector.select_next(
            tree,
            SelectionConstraints(recent_context="my sourdough starter smells sour"),
            project_id="p1",
            path_name="general",
        )

        assert result.task["id"] == "starter_1"
        assert result.selection_method is SelectionMethod.VECTOR
        assert result.context_similarity > 0.1

    @pytest.mark.asyncio
    async def test_vector_match_must_be_eligible(self, data_manager):
        tree = tree_of(
            task("starter_1", title="Feed sourdough starter", completed=True),
            task("dough_1", title="Knead dough by hand"),
        )
        await data_manager.save_tree("p1", "general", tree)
        selector = TaskSelector(data_manager, vector_threshold=0.5)

        result = await selector.select_next(
            tree,
            SelectionConstraints(recent_context="sourdough starter"),
            project_id="p1",
            path_name="general",
        )

        assert result.task["id"] == "dough_1"
        assert result.selection_method is SelectionMethod.HEURISTIC

    @pytest.mark.asyncio
    async def test_vector_failure_falls_back_to_heuristic(self, data_manager):
        tree = tree_of(task("a"))
        await data_manager.save_tree("p1", "general", tree)

        async def broken(*args, **kwargs):
            raise RuntimeError("index corrupt")

        data_manager.find_similar_tasks = broken
        result = await TaskSelector(data_manager).select_next(
            tree, SelectionConstraints(recent_context="anything"), "p1", "general"
        )
        assert result.task["id"] == "a"
        assert result.selection_method is SelectionMethod.HEURISTIC


class TestConstraints:
    def test_energy_is_clamped_and_defaults_apply(self):
        constraints = SelectionConstraints.from_args(energy_level=9)
        assert constraints.energy_level == 5
        assert constraints.minutes == 30
        assert SelectionConstraints.from_args().energy_level == 3


class TestTaskFormatter:
    @pytest.mark.asyncio
    async def test_formats_selection(self, selector):
        tree = tree_of(task("a", difficulty=2, title="Mix a poolish"))
        result = await selector.select_next(tree, SelectionConstraints(energy_level=2))
        formatted = TaskFormatter().format_task(result, 2, "30 minutes")

        assert "**Mix a poolish**" in formatted["text"]
        assert "Energy Level: 2/5 (Low)" in formatted["text"]
        assert formatted["task_info"]["task_id"] == "a"
        assert formatted["task_info"]["selection_method"] == "heuristic"

    def test_no_task_message(self):
        formatted = TaskFormatter().format_task(None)
        assert formatted["task_info"] is None
        assert "No Task Available" in formatted["text"]

    def test_batch_difficulty_range(self):
        batch = TaskFormatter().format_batch([task("a", difficulty=2), task("b", difficulty=4)])
        assert batch["batch_info"] == {"task_count": 2, "difficulty_range": "2 to 4"}
