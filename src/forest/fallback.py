"""
Deterministic fallback generators.

Used when the intelligence provider is unavailable, times out, or returns
content that fails schema validation. The chain tries domain-hint branches
first and ends with generic phase templates, so it always yields a usable
tree. Every fallback artifact is flagged ``fallback_generated``.
"""

import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from .complexity import ComplexityAnalysis
from .exceptions import ForestError, GenerationFailedError, SchemaValidationError
from .logger import logger
from .models import StrategicBranch, Task, next_task_id, slugify
from .schemas import (
    CONTEXT_ADAPTIVE_PRIMITIVES,
    CONTEXT_MINING,
    DOMAIN_RELEVANCE,
    GOAL_CONTEXT,
    MICRO_PARTICLES,
    NANO_ACTIONS,
    PAIN_POINT_VALIDATION,
    STRATEGIC_BRANCHES,
    TASK_DECOMPOSITION,
    TREE_EVOLUTION,
    schema_errors,
)

MIN_TASKS_PER_BRANCH = 2
MIN_BRANCHES = 3
BASE_TASK_DURATION = 25
MIN_TASK_DURATION = 10
MAX_TASK_DURATION = 60


@dataclass(frozen=True)
class DomainHint:
    key: str
    patterns: tuple[str, ...]
    branches: tuple[tuple[str, str], ...]  # (name, description template with {goal})

    def matches(self, goal: str) -> bool:
        text = goal.lower()
        return any(re.search(rf"\b{p}\b", text) for p in self.patterns)


DOMAIN_HINTS: tuple[DomainHint, ...] = (
    DomainHint(
        key="ai_ml",
        patterns=(
            "ai",
            "ml",
            "machine learning",
            "artificial intelligence",
            "neural",
            "deep learning",
        ),
        branches=(
            ("Mathematical Foundations", "Master the mathematical concepts underlying {goal}"),
            ("Algorithmic Understanding", "Understand key algorithms and techniques for {goal}"),
            ("Practical Implementation", "Build and train models for {goal}"),
            ("Advanced Applications", "Apply {goal} to real-world problems"),
        ),
    ),
    DomainHint(
        key="security",
        patterns=("security", "cybersecurity", "hacking", "penetration", "pentest"),
        branches=(
            ("Security Fundamentals", "Learn core security principles for {goal}"),
            ("Threat Analysis", "Understand threats and vulnerabilities in {goal}"),
            ("Defense Strategies", "Implement security measures for {goal}"),
            ("Advanced Techniques", "Master advanced security techniques for {goal}"),
        ),
    ),
    DomainHint(
        key="programming",
        patterns=("programming", "coding", "python", "javascript", "software", "developer"),
        branches=(
            ("Language Mastery", "Master the programming language for {goal}"),
            ("Problem-Solving Patterns", "Learn common patterns and best practices for {goal}"),
            ("Project Development", "Build complete projects using {goal}"),
            ("Advanced Optimization", "Optimize and scale {goal} applications"),
        ),
    ),
    DomainHint(
        key="photography",
        patterns=("photography", "photo", "photos", "camera"),
        branches=(
            ("Camera Fundamentals", "Learn how your camera controls exposure and focus for {goal}"),
            ("Composition Techniques", "Develop an eye for framing and light for {goal}"),
            ("Post-Processing Mastery", "Edit and finish images to a high standard for {goal}"),
        ),
    ),
    DomainHint(
        key="baking",
        patterns=("bread", "baking", "sourdough", "pastry", "bake"),
        branches=(
            ("Ingredient Fundamentals", "Understand flour, water, salt and leaven for {goal}"),
            ("Dough Technique", "Practice mixing, kneading and shaping for {goal}"),
            ("Baking Practice", "Bake regularly and read the results for {goal}"),
            ("Artisan Mastery", "Refine advanced methods and recipes for {goal}"),
        ),
    ),
)

GENERIC_PHASES: tuple[tuple[str, str], ...] = (
    ("Foundation", "Build fundamental understanding of {goal}"),
    ("Practice", "Develop practical skills for {goal}"),
    ("Application", "Apply knowledge to real projects for {goal}"),
    ("Mastery", "Achieve advanced proficiency in {goal}"),
)


class FallbackGenerator(Protocol):
    """A deterministic branch generator; returns None when not applicable."""

    name: str

    def strategic_branches(self, goal: str) -> list[StrategicBranch] | None: ...


def _branches_from_templates(
    goal: str, templates: tuple[tuple[str, str], ...], domain_focus: str
) -> list[StrategicBranch]:
    return [
        StrategicBranch(
            name=name,
            description=description.format(goal=goal),
            priority=index + 1,
            domain_focus=domain_focus,
            rationale=f"Phase {index + 1} of a progressive plan for {goal}",
            expected_outcomes=[f"Progress in {name}"],
            schema_driven=False,
            fallback_generated=True,
        )
        for index, (name, description) in enumerate(templates)
    ]


class DomainHintFallback:
    """Domain-flavoured branches for goals that match a known category."""

    name = "domain_hint"

    def __init__(self, hints: tuple[DomainHint, ...] = DOMAIN_HINTS):
        self.hints = hints

    def match(self, goal: str) -> DomainHint | None:
        for hint in self.hints:
            if hint.matches(goal):
                return hint
        return None

    def strategic_branches(self, goal: str) -> list[StrategicBranch] | None:
        hint = self.match(goal)
        if hint is None:
            return None
        return _branches_from_templates(goal, hint.branches, domain_focus=hint.key)


class GenericFallback:
    """Canonical Foundation/Practice/Application/Mastery phases."""

    name = "generic"

    def strategic_branches(self, goal: str) -> list[StrategicBranch] | None:
        return _branches_from_templates(goal, GENERIC_PHASES, domain_focus="general")


def tasks_per_branch(score: int) -> int:
    return max(MIN_TASKS_PER_BRANCH, math.floor(score / 2))


def fallback_duration(score: int, branch_index: int, learning_style: str | None = None) -> str:
    """Minutes grow with complexity and with how late the branch comes."""
    complexity_multiplier = 1 + (score - 3) * 0.2
    progression_multiplier = 1 + branch_index * 0.3
    style_multiplier = {"hands-on": 1.2, "reading": 0.8}.get(learning_style or "", 1.0)
    minutes = round(
        BASE_TASK_DURATION * complexity_multiplier * progression_multiplier * style_multiplier
    )
    return f"{max(MIN_TASK_DURATION, min(MAX_TASK_DURATION, minutes))} minutes"


def fallback_tasks(
    branches: list[StrategicBranch],
    analysis: ComplexityAnalysis,
    learning_style: str | None = None,
) -> list[Task]:
    tasks: list[Task] = []
    used: set[str] = set()
    count = tasks_per_branch(analysis.score)
    for branch_index, branch in enumerate(sorted(branches, key=lambda b: b.priority)):
        slug = slugify(branch.name)
        previous: str | None = None
        for i in range(count):
            task = Task(
                id=next_task_id(slug, used),
                title=f"{branch.name} Task {i + 1}",
                description=f"Work on {branch.description}",
                difficulty=min(5, max(1, analysis.score - 2 + i)),
                duration=fallback_duration(analysis.score, branch_index, learning_style),
                branch=branch.name,
                priority=branch.priority * 100 + i * 10,
                prerequisites=[previous] if previous else [],
                generated=True,
                schema_driven=False,
                fallback_generated=True,
            )
            tasks.append(task)
            previous = task.id
    return tasks


def fallback_goal_context(goal: str, analysis: ComplexityAnalysis, domain: str) -> dict[str, Any]:
    return {
        "goal_analysis": {
            "primary_goal": goal,
            "goal_complexity": analysis.score,
            "domain_type": domain,
            "domain_characteristics": [],
            "success_criteria": [f"Demonstrate working proficiency in {goal}"],
            "timeline_assessment": f"{analysis.level.value} goal, depth {analysis.recommended_depth}",
            "complexity_factors": list(analysis.factors),
        },
        "user_context": {
            "background_knowledge": [],
            "available_resources": [],
            "constraints": [],
            "motivation_drivers": [],
            "risk_factors": [],
        },
        "domain_boundaries": {
            "core_domain_elements": [goal],
            "relevant_adjacent_domains": [],
            "exploration_worthy_topics": [],
            "irrelevant_domains": [],
        },
        "learning_approach": {
            "recommended_strategy": "Progress phase by phase, practicing as early as possible",
            "key_principles": ["Small steps", "Regular practice"],
            "potential_pain_points": [],
            "success_enablers": [],
        },
        "fallback_generated": True,
    }


# ----------------------------------------------------------------------
# Deeper-level templates
# ----------------------------------------------------------------------


def _target_name(target: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = target.get(key)
        if value:
            return str(value)
    return "this step"


def _branches_content(target: dict[str, Any], score: int) -> dict[str, Any]:
    goal = _target_name(target, "goal", "name", "title")
    chain = FallbackChain()
    branches, _ = chain.strategic_branches(goal)
    return {
        "strategic_branches": [
            {
                "name": b.name,
                "description": b.description,
                "priority": b.priority,
                "rationale": b.rationale,
                "domain_focus": b.domain_focus,
                "expected_outcomes": b.expected_outcomes,
            }
            for b in branches
        ],
        "progression_logic": "Phases build on each other in priority order",
    }


def _task_decomposition(target: dict[str, Any], score: int) -> dict[str, Any]:
    name = _target_name(target, "name", "title", "branch")
    steps = (
        ("Study the core concepts of", "Read and take notes on the essentials of"),
        ("Practice", "Work through guided exercises for"),
        ("Apply", "Complete a small self-directed project using"),
    )
    base = max(1, min(3, score // 3))
    return {
        "tasks": [
            {
                "title": f"{verb} {name}",
                "description": f"{description} {name}",
                "estimated_duration": f"{20 + i * 10} minutes",
                "difficulty_level": min(5, base + i),
                "prerequisites": [],
                "success_criteria": [f"Can explain progress in {name}"],
            }
            for i, (verb, description) in enumerate(steps)
        ],
        "decomposition_rationale": f"Learn, practice, then apply {name}",
    }


def _micro_particles(target: dict[str, Any], score: int) -> dict[str, Any]:
    name = _target_name(target, "title", "name")
    phases = (
        ("Prepare", "Gather what you need for", 5),
        ("Do", "Complete the core action of", 15),
        ("Review", "Check the result of", 5),
    )
    return {
        "micro_particles": [
            {
                "title": f"{label}: {name}",
                "description": f"{text} {name}",
                "action": f"{text} {name}",
                "validation": f"{label} step for {name} is done",
                "duration_minutes": minutes,
                "difficulty": min(5, max(1, score // 3)),
            }
            for label, text, minutes in phases
        ],
        "granularity_rationale": "Each particle is small enough to finish in one sitting",
    }


def _nano_actions(target: dict[str, Any], score: int) -> dict[str, Any]:
    name = _target_name(target, "title", "action_title", "name")
    actions = (
        ("Open resources", ["Open the material for " + name], 60),
        ("Execute first step", ["Perform the first concrete step of " + name], 180),
        ("Record result", ["Write one sentence about what happened"], 60),
    )
    return {
        "nano_actions": [
            {
                "action_title": title,
                "specific_steps": steps,
                "duration_seconds": seconds,
                "validation_method": f"{title} completed",
            }
            for title, steps, seconds in actions
        ],
        "execution_notes": f"Run the actions for {name} in order",
    }


def _primitives(target: dict[str, Any], score: int) -> dict[str, Any]:
    name = _target_name(target, "action_title", "title", "name")
    return {
        "base_primitive": {
            "action_name": name,
            "default_approach": f"Do {name} as planned",
            "duration_range": "1-5 minutes",
        },
        "context_adaptations": [
            {
                "context_condition": "low energy",
                "adapted_approach": f"Do only the first half of {name}",
                "modification_rationale": "Keeps momentum without overload",
            },
            {
                "context_condition": "limited time",
                "adapted_approach": f"Timebox {name} to two minutes",
                "modification_rationale": "Partial progress beats skipping",
            },
            {
                "context_condition": "high energy",
                "adapted_approach": f"Repeat {name} with a variation",
                "modification_rationale": "Uses spare capacity for depth",
            },
        ],
        "fallback_options": ["Skip and return later"],
    }


def _context_mining(target: dict[str, Any], score: int) -> dict[str, Any]:
    return {
        "context_insights": {
            "capability_indicators": [],
            "constraint_discoveries": [],
            "preference_patterns": [],
            "struggle_signals": [],
            "motivation_shifts": [],
        },
        "recommended_adaptations": {},
        "tree_evolution_suggestions": [],
    }


def _domain_relevance(target: dict[str, Any], score: int) -> dict[str, Any]:
    topic_words = set(re.findall(r"\w+", str(target.get("topic", "")).lower()))
    goal_words = set(re.findall(r"\w+", str(target.get("goal", "")).lower()))
    overlap = len(topic_words & goal_words) / len(topic_words) if topic_words else 0.0
    category = "core" if overlap >= 0.5 else "adjacent" if overlap > 0 else "unrelated"
    return {
        "relevance_assessment": {
            "relevance_score": round(overlap, 2),
            "relevance_category": category,
            "connection_explanation": "Keyword overlap between topic and goal",
            "exploration_value": "high" if overlap >= 0.5 else "low",
        },
        "guidance": {
            "response_type": "explore" if overlap > 0 else "redirect",
            "exploration_approach": "Time-box the exploration",
            "time_recommendation": "15 minutes",
            "connection_back_to_goal": "Relate findings to the current branch",
        },
    }


def _pain_points(target: dict[str, Any], score: int) -> dict[str, Any]:
    return {"pain_point_analysis": [], "refinement_suggestions": []}


def _tree_evolution(target: dict[str, Any], score: int) -> dict[str, Any]:
    return {
        "evolution_recommendations": [],
        "goal_focus_validation": "No structural change without provider insight",
    }


LEVEL_TEMPLATES: dict[str, Callable[[dict[str, Any], int], dict[str, Any]]] = {
    STRATEGIC_BRANCHES: _branches_content,
    TASK_DECOMPOSITION: _task_decomposition,
    MICRO_PARTICLES: _micro_particles,
    NANO_ACTIONS: _nano_actions,
    CONTEXT_ADAPTIVE_PRIMITIVES: _primitives,
    CONTEXT_MINING: _context_mining,
    DOMAIN_RELEVANCE: _domain_relevance,
    PAIN_POINT_VALIDATION: _pain_points,
    TREE_EVOLUTION: _tree_evolution,
}


class FallbackChain:
    """Ordered deterministic generators: domain hints, then generic phases."""

    def __init__(self, generators: list[FallbackGenerator] | None = None):
        self.generators: list[FallbackGenerator] = generators or [
            DomainHintFallback(),
            GenericFallback(),
        ]

    def strategic_branches(
        self, goal: str, primary_error: BaseException | None = None
    ) -> tuple[list[StrategicBranch], str]:
        """Return (branches, generator name); raise GenerationFailedError if all fail."""
        last_error: BaseException | None = None
        for generator in self.generators:
            try:
                branches = generator.strategic_branches(goal)
            except Exception as e:
                logger.error(f"[FALLBACK] {generator.name} raised: {e}")
                last_error = e
                continue
            if branches and len(branches) >= MIN_BRANCHES:
                logger.info(
                    f"[FALLBACK] {generator.name} produced {len(branches)} branches for '{goal}'"
                )
                return branches, generator.name

        raise GenerationFailedError(
            STRATEGIC_BRANCHES,
            primary_error or ForestError("Primary generator not attempted"),
            last_error or ForestError("No fallback generator produced enough branches"),
        )

    def domain_for(self, goal: str) -> str:
        for generator in self.generators:
            if isinstance(generator, DomainHintFallback):
                hint = generator.match(goal)
                if hint:
                    return hint.key
        return "general"

    def goal_context(self, goal: str, analysis: ComplexityAnalysis) -> dict[str, Any]:
        return fallback_goal_context(goal, analysis, self.domain_for(goal))

    def tasks(
        self,
        branches: list[StrategicBranch],
        analysis: ComplexityAnalysis,
        learning_style: str | None = None,
    ) -> list[Task]:
        return fallback_tasks(branches, analysis, learning_style)

    def level_content(
        self, level_key: str, target: dict[str, Any], score: int = 5
    ) -> dict[str, Any]:
        """Deterministic, schema-valid content for any level except goalContext."""
        if level_key == GOAL_CONTEXT:
            raise ValueError("goalContext fallback needs an analysis; use goal_context()")
        template = LEVEL_TEMPLATES.get(level_key)
        if template is None:
            raise ValueError(f"No fallback template for level {level_key}")

        content = template(target, score)
        violations = schema_errors(level_key, content)
        if violations:
            raise SchemaValidationError(level_key, violations)
        content["fallback_generated"] = True
        return content
