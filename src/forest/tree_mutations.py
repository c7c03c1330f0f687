"""
Tree-writing functions.

Everything that changes a stored HTA tree lives here and takes the tree as
its first argument. HTACore runs these through the MutationGuard, whose
field-permission table is extracted from this module's source.
"""

from typing import Any

from .models import Task, find_task, iso_now, refresh_hierarchy_metadata, slugify

FOLLOW_UP_DURATION = "20 minutes"


def _next_index(tree: dict[str, Any], prefix: str) -> int:
    existing = {n.get("id") for n in tree.get("frontier_nodes", [])}
    index = 1
    while f"{prefix}_{index}" in existing:
        index += 1
    return index


def _branch_priority(tree: dict[str, Any], branch_name: str) -> int:
    for branch in tree.get("strategic_branches", []):
        if branch.get("name") == branch_name:
            return int(branch.get("priority", 1))
    return len(tree.get("strategic_branches", [])) + 1


def _last_task_id(tree: dict[str, Any], branch_name: str) -> str | None:
    ids = [n["id"] for n in tree.get("frontier_nodes", []) if n.get("branch") == branch_name]
    return ids[-1] if ids else None


def append_decomposition_tasks(
    tree: dict[str, Any],
    branch_name: str,
    items: list[dict[str, Any]],
    schema_driven: bool = True,
) -> list[str]:
    """Add taskDecomposition items to a branch as a prerequisite chain."""
    prefix = slugify(branch_name)
    base_priority = _branch_priority(tree, branch_name) * 100
    offset = len([n for n in tree["frontier_nodes"] if n.get("branch") == branch_name])
    previous = _last_task_id(tree, branch_name)
    added = []
    for item in items:
        index = _next_index(tree, prefix)
        task = Task(
            id=f"{prefix}_{index}",
            title=str(item["title"]),
            description=str(item.get("description", "")),
            difficulty=int(item.get("difficulty_level", 3)),
            duration=str(item.get("estimated_duration", "30 minutes")),
            branch=branch_name,
            priority=base_priority + (offset + len(added)) * 10,
            prerequisites=[previous] if previous else [],
            generated=True,
            schema_driven=schema_driven,
            fallback_generated=not schema_driven,
        )
        tree["frontier_nodes"].append(task.to_dict())
        previous = task.id
        added.append(task.id)
    refresh_hierarchy_metadata(tree)
    return added


def append_evolution_tasks(
    tree: dict[str, Any], recommendations: list[dict[str, Any]], default_branch: str
) -> list[str]:
    """Turn treeEvolution recommendations that add work into new tasks."""
    branch_names = {b.get("name") for b in tree.get("strategic_branches", [])}
    added = []
    for rec in recommendations:
        if "add" not in str(rec.get("change_type", "")).lower():
            continue
        target = rec.get("target_element")
        branch = target if target in branch_names else default_branch
        prefix = f"{slugify(branch)}_evolved"
        prerequisite = _last_task_id(tree, branch)
        task = Task(
            id=f"{prefix}_{_next_index(tree, prefix)}",
            title=str(rec.get("modification_description") or f"Extend {branch}")[:120],
            description=str(rec.get("justification") or rec.get("modification_description", "")),
            difficulty=3,
            duration="30 minutes",
            branch=branch,
            priority=_branch_priority(tree, branch) * 100 + 90,
            prerequisites=[prerequisite] if prerequisite else [],
            generated=True,
            schema_driven=True,
        )
        tree["frontier_nodes"].append(task.to_dict())
        added.append(task.id)
    refresh_hierarchy_metadata(tree)
    return added


def append_follow_up_task(
    tree: dict[str, Any], completed_task: dict[str, Any], outcome: dict[str, Any]
) -> str:
    """Deterministic evolution: one follow-up task on the completed task's branch."""
    branch = completed_task.get("branch") or "General"
    prefix = f"{slugify(branch)}_followup"
    question = outcome.get("next_questions")
    if isinstance(question, list):
        question = question[0] if question else None

    if question:
        title = f"Explore: {question}"[:120]
        description = f"Follow up on a question raised by {completed_task.get('title')}"
    else:
        title = f"Build on {completed_task.get('title')}"[:120]
        description = f"Apply what you learned: {outcome.get('learned') or 'recent progress'}"

    difficulty = int(completed_task.get("difficulty", 3))
    if outcome.get("breakthrough"):
        difficulty += 1
    task = Task(
        id=f"{prefix}_{_next_index(tree, prefix)}",
        title=title,
        description=description,
        difficulty=max(1, min(5, difficulty)),
        duration=FOLLOW_UP_DURATION,
        branch=branch,
        priority=int(completed_task.get("priority", 0)) + 5,
        prerequisites=[completed_task["id"]],
        generated=True,
        fallback_generated=True,
    )
    tree["frontier_nodes"].append(task.to_dict())
    refresh_hierarchy_metadata(tree)
    return task.id


def mark_task_complete(tree: dict[str, Any], task_id: str) -> dict[str, Any] | None:
    task = find_task(tree, task_id)
    if task is None:
        return None
    task["completed"] = True
    refresh_hierarchy_metadata(tree)
    return task


def append_learning_entry(
    tree: dict[str, Any], task: dict[str, Any], outcome: dict[str, Any]
) -> dict[str, Any]:
    history = tree.setdefault("learning_history", [])
    entry = {
        "sequence": len(history) + 1,
        "task_id": task["id"],
        "task_title": task.get("title", ""),
        "branch": task.get("branch", ""),
        "learned": outcome.get("learned", ""),
        "next_questions": outcome.get("next_questions", ""),
        "breakthrough": bool(outcome.get("breakthrough", False)),
        "breakthrough_insight": outcome.get("breakthrough_insight", ""),
        "difficulty_rating": outcome.get("difficulty_rating"),
        "energy_after": outcome.get("energy_level"),
        "completed_at": iso_now(),
    }
    history.append(entry)
    return entry


def store_decomposition(
    tree: dict[str, Any], level_key: str, target_key: str, content: dict[str, Any]
):
    """Keep deeper-level content so it is not regenerated on every request."""
    tree.setdefault("decompositions", {})[f"{level_key}:{target_key}"] = {
        "content": content,
        "created": iso_now(),
    }
