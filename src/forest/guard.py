"""
HTA mutation guard.

Functions that write the tree take it as their first argument. The guard
snapshots the tree, runs the function, and diffs tasks by id. Every task
that was not there before must be a valid, JSON-clean payload and may only
carry fields its function is allowed to write. On any violation, or if the
function raises, the tree is restored in place from the snapshot.

The checks themselves are pure functions over the diff so they can be used
without the snapshot machinery.
"""

import copy
import functools
import inspect
import json
from typing import Any, Callable

from .blueprint import ALWAYS_WRITABLE, Blueprint
from .exceptions import MutationRejectedError
from .logger import logger

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5


def collect_tasks(tree: Any) -> dict[str, dict[str, Any]]:
    """Tasks in ``frontier_nodes`` and under ``strategic_branches[].tasks``, keyed by id.

    Tasks without an id are keyed by position so they still show up in the diff.
    """
    if not isinstance(tree, dict):
        return {}

    containers = [("frontier_nodes", tree.get("frontier_nodes"))]
    for index, branch in enumerate(tree.get("strategic_branches") or []):
        if isinstance(branch, dict):
            containers.append((f"strategic_branches[{index}].tasks", branch.get("tasks")))

    found: dict[str, dict[str, Any]] = {}
    for location, items in containers:
        if not isinstance(items, list):
            continue
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                continue
            task_id = item.get("id")
            key = task_id if isinstance(task_id, str) and task_id else f"<{location}[{index}]>"
            found.setdefault(key, item)
    return found


def new_tasks(before: dict[str, Any], after: dict[str, Any]) -> list[dict[str, Any]]:
    previous = collect_tasks(before)
    return [task for key, task in collect_tasks(after).items() if key not in previous]


def validate_task_payload(task: Any) -> list[str]:
    if not isinstance(task, dict):
        return ["task is not an object"]

    errors = []
    if not isinstance(task.get("id"), str) or not task.get("id"):
        errors.append("id missing or not a string")
    if not isinstance(task.get("title"), str) or not task.get("title"):
        errors.append("title missing or not a string")

    if "difficulty" in task:
        difficulty = task["difficulty"]
        if (
            isinstance(difficulty, bool)
            or not isinstance(difficulty, int)
            or not MIN_DIFFICULTY <= difficulty <= MAX_DIFFICULTY
        ):
            errors.append(f"difficulty must be an integer from {MIN_DIFFICULTY} to {MAX_DIFFICULTY}")

    try:
        json.dumps(task)
    except ValueError:
        errors.append("task contains a circular reference")
    except TypeError as e:
        errors.append(f"task is not JSON-serializable ({e})")
    return errors


def validate_diff(
    function_name: str, added: list[dict[str, Any]], blueprint: Blueprint
) -> list[str]:
    """Violations for the tasks a function introduced, as human-readable strings."""
    violations = []
    writable = blueprint.writable_fields(function_name)
    for task in added:
        errors = validate_task_payload(task)
        if errors:
            violations.append(f"Invalid task structure: {', '.join(errors)}")
            continue
        if writable is None:
            continue
        unexpected = sorted(set(task) - writable - ALWAYS_WRITABLE)
        if unexpected:
            violations.append(
                f"Function {function_name} attempted to write unexpected fields: "
                f"{', '.join(unexpected)}"
            )
    return violations


def restore(tree: dict[str, Any], snapshot: dict[str, Any]):
    """Put ``snapshot`` back into ``tree`` without replacing the tree object."""
    tree.clear()
    tree.update(snapshot)


class MutationGuard:
    def __init__(self, blueprint: Blueprint | None = None):
        self.blueprint = blueprint or Blueprint()
        self.rejections = 0

    def check(self, function_name: str, before: dict[str, Any], after: dict[str, Any]):
        violations = validate_diff(function_name, new_tasks(before, after), self.blueprint)
        if violations:
            self.rejections += 1
            message = "HTA guard: " + "; ".join(violations)
            logger.error(f"[GUARD] {message}")
            raise MutationRejectedError(message, function_name, violations)

    def guard(self, fn: Callable, name: str | None = None) -> Callable:
        """Wrap ``fn(tree, ...)`` so its writes to ``tree`` are validated or undone."""
        function_name = name or fn.__name__

        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(tree, *args, **kwargs):
                if not isinstance(tree, dict):
                    return await fn(tree, *args, **kwargs)
                snapshot = copy.deepcopy(tree)
                try:
                    result = await fn(tree, *args, **kwargs)
                    self.check(function_name, snapshot, tree)
                except BaseException:
                    restore(tree, snapshot)
                    raise
                return result

            return async_wrapper

        @functools.wraps(fn)
        def wrapper(tree, *args, **kwargs):
            if not isinstance(tree, dict):
                return fn(tree, *args, **kwargs)
            snapshot = copy.deepcopy(tree)
            try:
                result = fn(tree, *args, **kwargs)
                self.check(function_name, snapshot, tree)
            except BaseException:
                restore(tree, snapshot)
                raise
            return result

        return wrapper
