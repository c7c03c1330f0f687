"""
Next-task selection.

Eligible tasks are incomplete tasks whose prerequisites are all complete.
Among those that fit the user's energy and time, the selector prefers a
semantic match against the recent context (vector store) and otherwise
ranks by difficulty fit, duration fit and priority.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .config_loader import config
from .data_manager import HTADataManager
from .logger import logger
from .models import parse_time_to_minutes

MIN_ENERGY = 1
MAX_ENERGY = 5
DEFAULT_DIFFICULTY = 3


class SelectionMethod(str, Enum):
    VECTOR = "vector"
    HEURISTIC = "heuristic"


@dataclass
class SelectionConstraints:
    energy_level: int = 3
    time_available: str | int = "30 minutes"
    recent_context: str = ""

    @classmethod
    def from_args(
        cls,
        energy_level: int | None = None,
        time_available: str | int | None = None,
        recent_context: str | None = None,
    ) -> "SelectionConstraints":
        energy = energy_level if energy_level is not None else config.get("selection.default_energy", 3)
        return cls(
            energy_level=max(MIN_ENERGY, min(MAX_ENERGY, int(energy))),
            time_available=time_available or config.get("selection.default_time", "30 minutes"),
            recent_context=recent_context or "",
        )

    @property
    def minutes(self) -> int:
        return parse_time_to_minutes(self.time_available)


@dataclass
class SelectionResult:
    task: dict[str, Any]
    selection_method: SelectionMethod
    reasoning: str
    context_similarity: float | None = None
    candidates_considered: int = 0
    alternatives: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task,
            "selection_method": self.selection_method.value,
            "reasoning": self.reasoning,
            "context_similarity": self.context_similarity,
            "candidates_considered": self.candidates_considered,
            "alternatives": self.alternatives,
        }


def task_difficulty(task: dict[str, Any]) -> int:
    try:
        return int(task.get("difficulty", DEFAULT_DIFFICULTY))
    except (TypeError, ValueError):
        return DEFAULT_DIFFICULTY


def eligible_tasks(tree: dict[str, Any]) -> list[dict[str, Any]]:
    """Incomplete tasks whose prerequisites all exist and are complete."""
    nodes = tree.get("frontier_nodes", [])
    completed = {n["id"] for n in nodes if n.get("completed")}
    return [
        n
        for n in nodes
        if not n.get("completed") and all(p in completed for p in n.get("prerequisites", []))
    ]


class TaskSelector:
    def __init__(
        self,
        data_manager: HTADataManager | None = None,
        energy_tolerance: int | None = None,
        time_slack: float | None = None,
        vector_threshold: float | None = None,
    ):
        self.data_manager = data_manager
        self.energy_tolerance = (
            energy_tolerance
            if energy_tolerance is not None
            else int(config.get("selection.energy_tolerance", 2))
        )
        self.time_slack = (
            time_slack if time_slack is not None else float(config.get("selection.time_slack", 1.2))
        )
        self.vector_threshold = (
            vector_threshold
            if vector_threshold is not None
            else float(config.get("selection.vector_threshold", 0.1))
        )

    @property
    def vector_capable(self) -> bool:
        return self.data_manager is not None and self.data_manager.vectors_available

    def fits(self, task: dict[str, Any], constraints: SelectionConstraints) -> bool:
        energy_match = (
            abs(task_difficulty(task) - constraints.energy_level) <= self.energy_tolerance
        )
        duration = parse_time_to_minutes(task.get("duration"))
        time_match = duration <= constraints.minutes * self.time_slack
        return energy_match and time_match

    def heuristic_key(self, task: dict[str, Any], constraints: SelectionConstraints, position: int):
        difficulty_gap = abs(task_difficulty(task) - constraints.energy_level)
        duration = parse_time_to_minutes(task.get("duration"))
        spare = constraints.minutes - duration
        # overruns cost double
        duration_gap = spare if spare >= 0 else -spare * 2
        return (difficulty_gap, duration_gap, task.get("priority", 0), position)

    def viable_tasks(
        self, tree: dict[str, Any], constraints: SelectionConstraints
    ) -> list[dict[str, Any]]:
        return [t for t in eligible_tasks(tree) if self.fits(t, constraints)]

    def rank_heuristic(
        self, viable: list[dict[str, Any]], constraints: SelectionConstraints
    ) -> list[dict[str, Any]]:
        ranked = sorted(
            enumerate(viable), key=lambda item: self.heuristic_key(item[1], constraints, item[0])
        )
        return [task for _, task in ranked]

    def select_heuristic(
        self, viable: list[dict[str, Any]], constraints: SelectionConstraints
    ) -> SelectionResult | None:
        if not viable:
            return None
        ranked = self.rank_heuristic(viable, constraints)
        task = ranked[0]
        return SelectionResult(
            task=task,
            selection_method=SelectionMethod.HEURISTIC,
            reasoning=(
                f"Difficulty {task_difficulty(task)} suits energy {constraints.energy_level}/5 "
                f"and {task.get('duration')} fits {constraints.minutes} minutes available"
            ),
            candidates_considered=len(viable),
            alternatives=[t["id"] for t in ranked[1:4]],
        )

    async def select_by_vector(
        self,
        viable: list[dict[str, Any]],
        constraints: SelectionConstraints,
        project_id: str,
        path_name: str,
    ) -> SelectionResult | None:
        by_id = {t["id"]: t for t in viable}
        matches = await self.data_manager.find_similar_tasks(
            project_id,
            path_name,
            constraints.recent_context,
            top_k=max(10, len(by_id) * 2),
            threshold=self.vector_threshold,
        )
        for match in matches:
            task = by_id.get(match.id)
            if task is None:
                continue
            return SelectionResult(
                task=task,
                selection_method=SelectionMethod.VECTOR,
                reasoning=f"Closest match to your recent context (similarity {match.score:.3f})",
                context_similarity=match.score,
                candidates_considered=len(viable),
            )
        return None

    async def select_next(
        self,
        tree: dict[str, Any],
        constraints: SelectionConstraints,
        project_id: str | None = None,
        path_name: str | None = None,
    ) -> SelectionResult | None:
        """Pick one task, or None when nothing is eligible (the tree needs evolution)."""
        viable = self.viable_tasks(tree, constraints)
        if not viable:
            logger.info(
                f"[SELECTOR] No eligible task for energy={constraints.energy_level}, "
                f"time={constraints.time_available}"
            )
            return None

        if self.vector_capable and constraints.recent_context.strip() and project_id:
            try:
                result = await self.select_by_vector(
                    viable, constraints, project_id, path_name or "general"
                )
            except Exception as e:
                logger.warning(f"[SELECTOR] Vector selection failed, using heuristic: {e}")
                result = None
            if result is not None:
                logger.info(f"[SELECTOR] Selected {result.task['id']} via vector similarity")
                return result

        result = self.select_heuristic(viable, constraints)
        logger.info(f"[SELECTOR] Selected {result.task['id']} via heuristic ranking")
        return result
