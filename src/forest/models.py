"""
HTA data model

Strategic branches and tasks are dataclasses; the tree itself is kept as
the JSON document that is persisted, so what the guard snapshots and what
the document store writes are the same object.
"""

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

DEFAULT_DURATION_MINUTES = 30


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def slugify(name: str) -> str:
    return re.sub(r"\s+", "_", name.strip().lower())


def next_task_id(prefix: str, used: set[str]) -> str:
    """First free ``{prefix}_{n}`` (n from 1); the id is added to ``used``."""
    index = 1
    while f"{prefix}_{index}" in used:
        index += 1
    task_id = f"{prefix}_{index}"
    used.add(task_id)
    return task_id


def parse_time_to_minutes(value: Any, default: int = DEFAULT_DURATION_MINUTES) -> int:
    """Parse '45 minutes', '1 hour', '1.5 hours', '20' or a number into minutes."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else default
    if not isinstance(value, str) or not value.strip():
        return default

    text = value.lower()
    hours = re.search(r"(\d+(?:\.\d+)?)\s*(?:h|hr|hrs|hour|hours)\b", text)
    minutes = re.search(r"(\d+)\s*(?:m|min|mins|minute|minutes)\b", text)
    if hours or minutes:
        total = 0.0
        if hours:
            total += float(hours.group(1)) * 60
        if minutes:
            total += int(minutes.group(1))
        return int(round(total))

    number = re.search(r"(\d+)", text)
    if number:
        return int(number.group(1))
    return default


@dataclass
class StrategicBranch:
    """Top-level phase of a plan, ordered by priority ascending."""

    name: str
    description: str
    priority: int
    domain_focus: str = ""
    rationale: str = ""
    expected_outcomes: list[str] = field(default_factory=list)
    schema_driven: bool = False
    fallback_generated: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any], **flags: bool) -> "StrategicBranch":
        return cls(
            name=str(data["name"]),
            description=str(data.get("description", "")),
            priority=int(data.get("priority", 1)),
            domain_focus=str(data.get("domain_focus", "")),
            rationale=str(data.get("rationale", "")),
            expected_outcomes=list(data.get("expected_outcomes", [])),
            schema_driven=flags.get("schema_driven", data.get("schema_driven", False)),
            fallback_generated=flags.get(
                "fallback_generated", data.get("fallback_generated", False)
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Task:
    """Executable leaf (frontier node) of the tree."""

    id: str
    title: str
    description: str
    difficulty: int
    duration: str
    branch: str
    priority: int
    prerequisites: list[str] = field(default_factory=list)
    completed: bool = False
    generated: bool = True
    schema_driven: bool = False
    fallback_generated: bool = False

    @property
    def duration_minutes(self) -> int:
        return parse_time_to_minutes(self.duration)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            difficulty=int(data.get("difficulty", 3)),
            duration=str(data.get("duration", f"{DEFAULT_DURATION_MINUTES} minutes")),
            branch=str(data.get("branch", "")),
            priority=int(data.get("priority", 0)),
            prerequisites=list(data.get("prerequisites", [])),
            completed=bool(data.get("completed", False)),
            generated=bool(data.get("generated", True)),
            schema_driven=bool(data.get("schema_driven", False)),
            fallback_generated=bool(data.get("fallback_generated", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def new_tree(
    goal: str,
    complexity: dict[str, Any],
    goal_context: dict[str, Any],
    branches: list[StrategicBranch],
    tasks: list[Task],
    generation_method: str,
) -> dict[str, Any]:
    """Assemble a fresh HTA tree document."""
    now = iso_now()
    tree = {
        "goal": goal,
        "goal_context": goal_context,
        "complexity": complexity,
        "strategic_branches": [b.to_dict() for b in sorted(branches, key=lambda b: b.priority)],
        "frontier_nodes": [t.to_dict() for t in tasks],
        "hierarchy_metadata": {},
        "learning_history": [],
        "generation_method": generation_method,
        "created": now,
        "last_updated": now,
    }
    refresh_hierarchy_metadata(tree)
    return tree


def refresh_hierarchy_metadata(tree: dict[str, Any]) -> dict[str, Any]:
    nodes = tree.get("frontier_nodes", [])
    tree["hierarchy_metadata"] = {
        "total_tasks": len(nodes),
        "total_branches": len(tree.get("strategic_branches", [])),
        "completed_tasks": sum(1 for n in nodes if n.get("completed")),
    }
    return tree["hierarchy_metadata"]


def find_task(tree: dict[str, Any], task_id: str) -> dict[str, Any] | None:
    for node in tree.get("frontier_nodes", []):
        if node.get("id") == task_id:
            return node
    return None
