"""Plain-text rendering of selected tasks for the tool layer."""

from typing import Any

from .models import slugify
from .task_selector import SelectionMethod, SelectionResult

ENERGY_LABELS = {1: "Very Low", 2: "Low", 3: "Moderate", 4: "High", 5: "Very High"}
NO_TASK_TEXT = (
    "**No Task Available**\n\n"
    "No suitable task found for your current energy and time. "
    "Adjust your parameters or evolve the tree to generate new tasks."
)


def energy_label(level: int) -> str:
    return ENERGY_LABELS.get(level, "Moderate")


class TaskFormatter:
    def format_task(
        self,
        selection: SelectionResult | None,
        energy_level: int = 3,
        time_available: str = "30 minutes",
    ) -> dict[str, Any]:
        if selection is None:
            return {"text": NO_TASK_TEXT, "task_info": None}

        task = selection.task
        title = task.get("title") or "Next Learning Task"
        lines = [
            "**Your Next Task**",
            "",
            f"**{title}**",
            "",
            task.get("description") or "Complete this task to advance your goal.",
            "",
            f"**Why this task now?** {selection.reasoning}",
            "",
            "**Details:**",
            f"- Energy Level: {energy_level}/5 ({energy_label(energy_level)})",
            f"- Time Available: {time_available}",
        ]
        if task.get("difficulty") is not None:
            lines.append(f"- Difficulty: {task['difficulty']}/5")
        if task.get("duration"):
            lines.append(f"- Estimated Duration: {task['duration']}")
        if task.get("branch"):
            lines.append(f"- Branch: {task['branch']}")

        if selection.selection_method is SelectionMethod.VECTOR:
            lines.append(
                f"\nSelected by context similarity ({selection.context_similarity or 0:.3f})"
            )
        else:
            lines.append("\nSelected by difficulty, time and priority fit")

        return {
            "text": "\n".join(lines),
            "task_info": {
                "task_id": task.get("id") or slugify(title),
                "title": title,
                "difficulty": task.get("difficulty"),
                "estimated_time": task.get("duration"),
                "energy_match": energy_level,
                "selection_method": selection.selection_method.value,
            },
        }

    def format_batch(self, tasks: list[dict[str, Any]]) -> dict[str, Any]:
        if not tasks:
            return {"text": NO_TASK_TEXT, "batch_info": {"task_count": 0}}

        lines = [f"**Your Task Sequence ({len(tasks)} tasks)**", ""]
        for index, task in enumerate(tasks, start=1):
            lines.append(f"**{index}. {task.get('title') or f'Task {index}'}**")
            lines.append(task.get("description") or "Complete this task")
            if task.get("difficulty") is not None:
                lines.append(f"   Difficulty: {task['difficulty']}/5")
            lines.append("")
        lines.append("Complete tasks in order for the smoothest progression.")

        difficulties = sorted({t["difficulty"] for t in tasks if t.get("difficulty") is not None})
        if not difficulties:
            difficulty_range = "mixed"
        elif len(difficulties) == 1:
            difficulty_range = str(difficulties[0])
        else:
            difficulty_range = f"{difficulties[0]} to {difficulties[-1]}"

        return {
            "text": "\n".join(lines),
            "batch_info": {"task_count": len(tasks), "difficulty_range": difficulty_range},
        }
