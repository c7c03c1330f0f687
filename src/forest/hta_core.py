"""
HTA Core

Caller-facing operations over goal trees: build a tree for a goal, pick
the next task, record a completion (and evolve the tree from it), and
decompose deeper levels on demand. Provider-backed generation degrades to
the deterministic fallback chain; only a failure of both is surfaced.

Every write to a stored tree goes through a guarded function from
``tree_mutations`` while holding that tree's lock.
"""

import asyncio
import re
from typing import Any

from . import tree_mutations
from .blueprint import Blueprint
from .circuit_breaker import CircuitBreaker
from .complexity import ComplexityAnalysis, ComplexityAnalyzer
from .data_manager import HTADataManager
from .exceptions import (
    BranchNotFoundError,
    ForestError,
    GenerationFailedError,
    MutationRejectedError,
    ProviderUnavailableError,
    TaskNotFoundError,
    TreeNotFoundError,
    UnknownLevelError,
)
from .fallback import FallbackChain
from .guard import MutationGuard
from .logger import logger
from .models import (
    StrategicBranch,
    Task,
    find_task,
    new_tree,
    next_task_id,
    refresh_hierarchy_metadata,
    slugify,
)
from .schema_generator import SchemaDrivenGenerator
from .schemas import (
    CONTEXT_ADAPTIVE_PRIMITIVES,
    DOMAIN_RELEVANCE,
    LEVEL_SCHEMAS,
    MICRO_PARTICLES,
    NANO_ACTIONS,
    TASK_DECOMPOSITION,
)
from .task_formatter import TaskFormatter
from .task_selector import SelectionConstraints, SelectionResult, TaskSelector, eligible_tasks

DEFAULT_PATH = "general"

EVOLUTION_KEYWORDS = {
    "breakthrough": ("breakthrough", "major insight", "significant progress"),
    "life_change": ("life change", "new job", "career change"),
    "opportunity": ("opportunity", "chance", "opening"),
}


def analyze_evolution_context(text: str | None) -> dict[str, bool]:
    lowered = (text or "").lower()
    return {
        signal: any(re.search(rf"\b{re.escape(k)}\b", lowered) for k in keywords)
        for signal, keywords in EVOLUTION_KEYWORDS.items()
    }


def should_evolve(outcome: dict[str, Any]) -> bool:
    if outcome.get("learned") or outcome.get("next_questions") or outcome.get("breakthrough"):
        return True
    text = " ".join(str(outcome.get(k, "")) for k in ("context", "breakthrough_insight"))
    return any(analyze_evolution_context(text).values())


def default_blueprint() -> Blueprint:
    return Blueprint.from_modules(
        tree_mutations, constructors={"Task": Task, "StrategicBranch": StrategicBranch}
    )


class HTACore:
    def __init__(
        self,
        data_manager: HTADataManager | None = None,
        generator: SchemaDrivenGenerator | None = None,
        selector: TaskSelector | None = None,
        guard: MutationGuard | None = None,
        breaker: CircuitBreaker | None = None,
        fallback: FallbackChain | None = None,
        analyzer: ComplexityAnalyzer | None = None,
    ):
        self.data_manager = data_manager or HTADataManager()
        self.breaker = breaker or (generator.breaker if generator else CircuitBreaker())
        self.generator = generator or SchemaDrivenGenerator(None, breaker=self.breaker)
        self.selector = selector or TaskSelector(self.data_manager)
        self.guard = guard or MutationGuard(default_blueprint())
        self.fallback = fallback or FallbackChain()
        self.analyzer = analyzer or ComplexityAnalyzer()
        self.formatter = TaskFormatter()
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

        self._append_decomposition_tasks = self.guard.guard(
            tree_mutations.append_decomposition_tasks
        )
        self._append_evolution_tasks = self.guard.guard(tree_mutations.append_evolution_tasks)
        self._append_follow_up_task = self.guard.guard(tree_mutations.append_follow_up_task)
        self._mark_task_complete = self.guard.guard(tree_mutations.mark_task_complete)
        self._append_learning_entry = self.guard.guard(tree_mutations.append_learning_entry)
        self._store_decomposition = self.guard.guard(tree_mutations.store_decomposition)

    def lock_for(self, project_id: str, path_name: str) -> asyncio.Lock:
        key = (project_id, path_name)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def _require_tree(self, project_id: str, path_name: str) -> dict[str, Any]:
        tree = await self.data_manager.load_tree(project_id, path_name)
        if tree is None:
            raise TreeNotFoundError(project_id, path_name)
        return tree

    # ------------------------------------------------------------------
    # Tree building
    # ------------------------------------------------------------------

    async def _goal_context(
        self, goal: str, analysis: ComplexityAnalysis, user_context: dict[str, Any]
    ) -> dict[str, Any]:
        if self.generator.available:
            try:
                return await self.generator.generate_goal_context(goal, user_context)
            except Exception as e:
                logger.warning(f"[HTA] Goal context generation failed, using fallback: {e}")
        return self.fallback.goal_context(goal, analysis)

    async def _strategic_branches(
        self, goal: str, goal_context: dict[str, Any]
    ) -> tuple[list[StrategicBranch], str]:
        primary_error: BaseException | None = None
        if self.generator.available:
            try:
                content = await self.generator.generate_strategic_branches(goal, goal_context)
                branches = [
                    StrategicBranch.from_dict(b, schema_driven=True)
                    for b in content["strategic_branches"]
                ]
                return branches, "schema_driven"
            except Exception as e:
                primary_error = e
                logger.warning(f"[HTA] Strategic branch generation failed, using fallback: {e}")
        branches, generator_name = self.fallback.strategic_branches(goal, primary_error)
        for branch in branches:
            branch.fallback_generated = True
        return branches, f"fallback_{generator_name}"

    def _schema_tasks(
        self, branch: StrategicBranch, items: list[dict[str, Any]], used: set[str]
    ) -> list[Task]:
        slug = slugify(branch.name)
        tasks = []
        previous: str | None = None
        for i, item in enumerate(items):
            task = Task(
                id=next_task_id(slug, used),
                title=str(item["title"]),
                description=str(item.get("description", "")),
                difficulty=int(item.get("difficulty_level", 3)),
                duration=str(item.get("estimated_duration", "30 minutes")),
                branch=branch.name,
                priority=branch.priority * 100 + i * 10,
                prerequisites=[previous] if previous else [],
                generated=True,
                schema_driven=True,
            )
            tasks.append(task)
            previous = task.id
        return tasks

    async def _initial_tasks(
        self,
        branches: list[StrategicBranch],
        analysis: ComplexityAnalysis,
        goal_context: dict[str, Any],
        user_context: dict[str, Any],
        learning_style: str | None,
    ) -> list[Task]:
        fallback_tasks = self.fallback.tasks(branches, analysis, learning_style)
        tasks: list[Task] = []
        used: set[str] = set()
        for branch in sorted(branches, key=lambda b: b.priority):
            branch_tasks: list[Task] = []
            if self.generator.available and self.breaker.can_execute():
                try:
                    content = await self.generator.generate_task_decomposition(
                        branch.name, branch.description, goal_context, user_context
                    )
                    branch_tasks = self._schema_tasks(branch, content["tasks"], used)
                except Exception as e:
                    logger.warning(f"[HTA] Task generation for '{branch.name}' fell back: {e}")
            if not branch_tasks:
                branch_tasks = [
                    t for t in fallback_tasks if t.branch == branch.name and t.id not in used
                ]
                used.update(t.id for t in branch_tasks)
            tasks.extend(branch_tasks)
        return tasks

    async def build_tree(
        self,
        project_id: str,
        path_name: str = DEFAULT_PATH,
        goal: str = "",
        context: str | None = None,
        focus_areas: list[str] | None = None,
        force_regenerate: bool = False,
        learning_style: str | None = None,
    ) -> dict[str, Any]:
        """Return the stored tree for the path, or build and persist a new one."""
        async with self.lock_for(project_id, path_name):
            if not force_regenerate:
                existing = await self.data_manager.load_tree(project_id, path_name)
                if existing and existing.get("frontier_nodes"):
                    logger.info(f"[HTA] Using existing tree for {project_id}/{path_name}")
                    return existing

            analysis = self.analyzer.analyze(goal, context, focus_areas)
            logger.info(f"[HTA] Building tree for '{goal}': {analysis.summary}")
            user_context = {
                "context": context or "",
                "focus_areas": focus_areas or [],
                "learning_style": learning_style or "",
            }

            goal_context = await self._goal_context(goal, analysis, user_context)
            branches, method = await self._strategic_branches(goal, goal_context)
            tasks = await self._initial_tasks(
                branches, analysis, goal_context, user_context, learning_style
            )
            if not tasks:
                raise GenerationFailedError(
                    TASK_DECOMPOSITION,
                    ForestError("No tasks generated"),
                    ForestError("Fallback produced no tasks"),
                )

            tree = new_tree(goal, analysis.to_dict(), goal_context, branches, tasks, method)
            await self.data_manager.save_tree(project_id, path_name, tree)
            logger.info(
                f"[HTA] Built tree for {project_id}/{path_name}: {len(branches)} branches, "
                f"{len(tasks)} tasks ({method})"
            )
            return tree

    # ------------------------------------------------------------------
    # Task selection
    # ------------------------------------------------------------------

    async def get_next_task(
        self,
        project_id: str,
        path_name: str = DEFAULT_PATH,
        energy_level: int | None = None,
        time_available: str | int | None = None,
        recent_context: str | None = None,
    ) -> SelectionResult | None:
        tree = await self._require_tree(project_id, path_name)
        constraints = SelectionConstraints.from_args(energy_level, time_available, recent_context)
        return await self.selector.select_next(tree, constraints, project_id, path_name)

    async def present_next_task(
        self,
        project_id: str,
        path_name: str = DEFAULT_PATH,
        energy_level: int | None = None,
        time_available: str | int | None = None,
        recent_context: str | None = None,
    ) -> dict[str, Any]:
        """Next task rendered as text plus a ``task_info`` dict."""
        constraints = SelectionConstraints.from_args(energy_level, time_available, recent_context)
        selection = await self.get_next_task(
            project_id,
            path_name,
            constraints.energy_level,
            constraints.time_available,
            constraints.recent_context,
        )
        return self.formatter.format_task(
            selection, constraints.energy_level, str(constraints.time_available)
        )

    async def present_task_batch(
        self,
        project_id: str,
        path_name: str = DEFAULT_PATH,
        energy_level: int | None = None,
        time_available: str | int | None = None,
        count: int = 3,
    ) -> dict[str, Any]:
        """The ``count`` best-fitting available tasks rendered as one sequence."""
        tree = await self._require_tree(project_id, path_name)
        constraints = SelectionConstraints.from_args(energy_level, time_available, None)
        viable = self.selector.viable_tasks(tree, constraints)
        ranked = self.selector.rank_heuristic(viable, constraints)
        return self.formatter.format_batch(ranked[: max(0, count)])

    # ------------------------------------------------------------------
    # Completion and evolution
    # ------------------------------------------------------------------

    async def _evolve(
        self, tree: dict[str, Any], task: dict[str, Any], outcome: dict[str, Any]
    ) -> list[str]:
        if self.generator.available:
            try:
                interaction = {"type": "task_completion", "task": task, "outcome": outcome}
                snapshot = {
                    "goal": tree.get("goal"),
                    "strategic_branches": [b.get("name") for b in tree["strategic_branches"]],
                    "hierarchy_metadata": tree.get("hierarchy_metadata"),
                }
                evolution = await self.generator.learn_from_interaction(
                    interaction, tree.get("goal_context", {}), snapshot
                )
                if evolution:
                    added = self._append_evolution_tasks(
                        tree,
                        evolution.get("evolution_recommendations", []),
                        task.get("branch") or "General",
                    )
                    if added:
                        return added
            except MutationRejectedError:
                raise
            except Exception as e:
                logger.warning(f"[HTA] Tree evolution fell back to a follow-up task: {e}")
        return [self._append_follow_up_task(tree, task, outcome)]

    async def complete_task(
        self,
        project_id: str,
        path_name: str,
        task_id: str,
        outcome: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        outcome = outcome or {}
        async with self.lock_for(project_id, path_name):
            tree = await self._require_tree(project_id, path_name)
            existing = find_task(tree, task_id)
            if existing is None:
                raise TaskNotFoundError(task_id)
            if existing.get("completed"):
                logger.info(f"[HTA] {task_id} in {project_id}/{path_name} is already completed")
                return {
                    "task": existing,
                    "evolved": False,
                    "new_tasks": [],
                    "already_completed": True,
                    "signals": analyze_evolution_context(None),
                    "progress": dict(tree.get("hierarchy_metadata", {})),
                }

            task = self._mark_task_complete(tree, task_id)

            entry = self._append_learning_entry(tree, task, outcome)
            signals = analyze_evolution_context(
                " ".join(str(outcome.get(k, "")) for k in ("learned", "context"))
            )
            new_task_ids: list[str] = []
            if should_evolve(outcome):
                new_task_ids = await self._evolve(tree, task, outcome)

            refresh_hierarchy_metadata(tree)
            await self.data_manager.save_tree(project_id, path_name, tree)
            await self.data_manager.record_learning_event(project_id, path_name, entry)

            logger.info(
                f"[HTA] Completed {task_id} in {project_id}/{path_name}; "
                f"{len(new_task_ids)} new task(s)"
            )
            return {
                "task": task,
                "evolved": bool(new_task_ids),
                "new_tasks": new_task_ids,
                "already_completed": False,
                "signals": signals,
                "progress": dict(tree["hierarchy_metadata"]),
            }

    # ------------------------------------------------------------------
    # Deeper levels
    # ------------------------------------------------------------------

    async def _generate_level(
        self, level_key: str, target: dict[str, Any], tree: dict[str, Any]
    ) -> dict[str, Any]:
        goal_context = tree.get("goal_context", {})
        history = tree.get("learning_history", [])
        user_context = target.get("user_context") or {}
        name = str(target.get("name") or target.get("title") or "")
        description = str(target.get("description", ""))

        if level_key == TASK_DECOMPOSITION:
            return await self.generator.generate_task_decomposition(
                name, description, goal_context, user_context, history
            )
        if level_key == MICRO_PARTICLES:
            return await self.generator.generate_micro_particles(
                name, description, goal_context, user_context, history
            )
        if level_key == NANO_ACTIONS:
            return await self.generator.generate_nano_actions(
                name, description, goal_context, user_context, history
            )
        if level_key == CONTEXT_ADAPTIVE_PRIMITIVES:
            return await self.generator.generate_context_adaptive_primitives(
                name, description, goal_context, user_context, history
            )
        if level_key == DOMAIN_RELEVANCE:
            return await self.generator.assess_domain_relevance(
                str(target.get("topic", name)),
                tree.get("goal", ""),
                goal_context.get("domain_boundaries"),
            )
        return await self.generator.generate_level_content(
            level_key, {"goal": tree.get("goal"), "goalContext": goal_context, **target}
        )

    def _resolve_target(self, tree: dict[str, Any], target: dict[str, Any]) -> dict[str, Any]:
        """Expand ``task_id`` or ``branch`` references into name and description."""
        resolved = dict(target)
        if target.get("task_id"):
            task = find_task(tree, target["task_id"])
            if task is None:
                raise TaskNotFoundError(target["task_id"])
            resolved.setdefault("title", task.get("title"))
            resolved.setdefault("description", task.get("description", ""))
        if target.get("branch"):
            branches = tree.get("strategic_branches", [])
            match = next((b for b in branches if b.get("name") == target["branch"]), None)
            if match is None:
                raise BranchNotFoundError(target["branch"], [b.get("name") for b in branches])
            resolved.setdefault("name", match["name"])
            resolved.setdefault("description", match.get("description", ""))
        resolved.setdefault("goal", tree.get("goal", ""))
        return resolved

    async def decompose(
        self,
        project_id: str,
        path_name: str,
        level_key: str,
        target: dict[str, Any],
    ) -> dict[str, Any]:
        """Generate one deeper level for a branch, task or action.

        A ``taskDecomposition`` of a branch also appends the new tasks to the tree.
        """
        if level_key not in LEVEL_SCHEMAS:
            raise UnknownLevelError(level_key, sorted(LEVEL_SCHEMAS))

        async with self.lock_for(project_id, path_name):
            tree = await self._require_tree(project_id, path_name)
            resolved = self._resolve_target(tree, target)
            score = int(tree.get("complexity", {}).get("score", 5))

            method = "schema_driven"
            try:
                if not self.generator.available:
                    raise ProviderUnavailableError()
                content = await self._generate_level(level_key, resolved, tree)
            except Exception as primary:
                logger.warning(f"[HTA] {level_key} generation fell back: {primary}")
                method = "fallback"
                try:
                    content = self.fallback.level_content(level_key, resolved, score)
                except Exception as secondary:
                    raise GenerationFailedError(level_key, primary, secondary) from secondary

            added: list[str] = []
            if level_key == TASK_DECOMPOSITION and target.get("branch"):
                added = self._append_decomposition_tasks(
                    tree, target["branch"], content["tasks"], method == "schema_driven"
                )
            target_key = str(
                target.get("task_id") or target.get("branch") or resolved.get("name")
                or resolved.get("title") or "goal"
            )
            self._store_decomposition(tree, level_key, target_key, content)
            await self.data_manager.save_tree(project_id, path_name, tree)

            return {
                "level": level_key,
                "method": method,
                "content": content,
                "tasks_added": added,
            }

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_status(self, project_id: str, path_name: str = DEFAULT_PATH) -> dict[str, Any]:
        tree = await self._require_tree(project_id, path_name)
        nodes = tree.get("frontier_nodes", [])
        completed = sum(1 for n in nodes if n.get("completed"))
        branches = []
        for branch in tree.get("strategic_branches", []):
            branch_nodes = [n for n in nodes if n.get("branch") == branch["name"]]
            done = sum(1 for n in branch_nodes if n.get("completed"))
            branches.append(
                {
                    "name": branch["name"],
                    "total": len(branch_nodes),
                    "completed": done,
                    "percent": round(100 * done / len(branch_nodes)) if branch_nodes else 0,
                }
            )
        available = eligible_tasks(tree)
        return {
            "goal": tree.get("goal"),
            "total_tasks": len(nodes),
            "completed_tasks": completed,
            "percent": round(100 * completed / len(nodes)) if nodes else 0,
            "branches": branches,
            "available_tasks": len(available),
            "generation_method": tree.get("generation_method"),
            "breaker": self.breaker.get_status(),
            "vectors": await self.data_manager.vector_stats(),
        }
