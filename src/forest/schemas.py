"""
Level schemas for schema-driven HTA generation.

One JSON Schema (draft 7) per decomposition level plus the auxiliary
context-learning levels. Validation is done with jsonschema; every
violation is reported, not only the first.
"""

from typing import Any

from jsonschema import Draft7Validator

from .models import slugify

GOAL_CONTEXT = "goalContext"
STRATEGIC_BRANCHES = "strategicBranches"
TASK_DECOMPOSITION = "taskDecomposition"
MICRO_PARTICLES = "microParticles"
NANO_ACTIONS = "nanoActions"
CONTEXT_ADAPTIVE_PRIMITIVES = "contextAdaptivePrimitives"
CONTEXT_MINING = "contextMining"
DOMAIN_RELEVANCE = "domainRelevance"
PAIN_POINT_VALIDATION = "painPointValidation"
TREE_EVOLUTION = "treeEvolution"

# Levels 1-6, in decomposition order
DECOMPOSITION_LEVELS = (
    GOAL_CONTEXT,
    STRATEGIC_BRANCHES,
    TASK_DECOMPOSITION,
    MICRO_PARTICLES,
    NANO_ACTIONS,
    CONTEXT_ADAPTIVE_PRIMITIVES,
)


def _strings() -> dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}}


def _object(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _array(items: dict[str, Any], min_items: int | None = None, max_items: int | None = None):
    schema: dict[str, Any] = {"type": "array", "items": items}
    if min_items is not None:
        schema["minItems"] = min_items
    if max_items is not None:
        schema["maxItems"] = max_items
    return schema


GOAL_CONTEXT_SCHEMA = _object(
    {
        "goal_analysis": _object(
            {
                "primary_goal": {"type": "string"},
                "goal_complexity": {"type": "integer", "minimum": 1, "maximum": 10},
                "domain_type": {"type": "string"},
                "domain_characteristics": _strings(),
                "success_criteria": _strings(),
                "timeline_assessment": {"type": "string"},
                "complexity_factors": _strings(),
            }
        ),
        "user_context": _object(
            {
                "background_knowledge": _strings(),
                "available_resources": _strings(),
                "constraints": _strings(),
                "motivation_drivers": _strings(),
                "risk_factors": _strings(),
            }
        ),
        "domain_boundaries": _object(
            {
                "core_domain_elements": _strings(),
                "relevant_adjacent_domains": _strings(),
                "exploration_worthy_topics": _strings(),
                "irrelevant_domains": _strings(),
            }
        ),
        "learning_approach": _object(
            {
                "recommended_strategy": {"type": "string"},
                "key_principles": _strings(),
                "potential_pain_points": _strings(),
                "success_enablers": _strings(),
            }
        ),
    },
    required=["goal_analysis", "user_context", "domain_boundaries", "learning_approach"],
)

STRATEGIC_BRANCHES_SCHEMA = _object(
    {
        "strategic_branches": _array(
            _object(
                {
                    "name": {"type": "string", "minLength": 1},
                    "description": {"type": "string"},
                    "priority": {"type": "integer", "minimum": 1},
                    "rationale": {"type": "string"},
                    "domain_focus": {"type": "string"},
                    "expected_outcomes": _strings(),
                    "context_adaptations": _strings(),
                    "pain_point_mitigations": _strings(),
                    "exploration_opportunities": _strings(),
                },
                required=["name", "description", "priority", "rationale", "domain_focus"],
            ),
            min_items=3,
            max_items=7,
        ),
        "progression_logic": {"type": "string"},
        "alternative_paths": _strings(),
    },
    required=["strategic_branches", "progression_logic"],
)

TASK_DECOMPOSITION_SCHEMA = _object(
    {
        "tasks": _array(
            _object(
                {
                    "title": {"type": "string", "minLength": 1},
                    "description": {"type": "string"},
                    "estimated_duration": {"type": "string"},
                    "difficulty_level": {"type": "integer", "minimum": 1, "maximum": 5},
                    "prerequisites": _strings(),
                    "success_criteria": _strings(),
                    "context_considerations": _strings(),
                    "potential_obstacles": _strings(),
                    "alternative_approaches": _strings(),
                },
                required=["title", "description", "estimated_duration", "difficulty_level"],
            ),
            min_items=3,
            max_items=10,
        ),
        "decomposition_rationale": {"type": "string"},
    },
    required=["tasks", "decomposition_rationale"],
)

MICRO_PARTICLES_SCHEMA = _object(
    {
        "micro_particles": _array(
            _object(
                {
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "action": {"type": "string"},
                    "validation": {"type": "string"},
                    "duration_minutes": {"type": "integer", "minimum": 2, "maximum": 25},
                    "difficulty": {"type": "integer", "minimum": 1, "maximum": 5},
                    "resources_needed": _strings(),
                    "success_indicators": _strings(),
                    "common_mistakes": _strings(),
                    "context_adaptations": _strings(),
                },
                required=[
                    "title",
                    "description",
                    "action",
                    "validation",
                    "duration_minutes",
                    "difficulty",
                ],
            ),
            min_items=3,
            max_items=12,
        ),
        "granularity_rationale": {"type": "string"},
    },
    required=["micro_particles", "granularity_rationale"],
)

NANO_ACTIONS_SCHEMA = _object(
    {
        "nano_actions": _array(
            _object(
                {
                    "action_title": {"type": "string"},
                    "specific_steps": _strings(),
                    "duration_seconds": {"type": "integer", "minimum": 10, "maximum": 300},
                    "tools_required": _strings(),
                    "validation_method": {"type": "string"},
                    "failure_recovery": _strings(),
                    "context_switches": _strings(),
                },
                required=["action_title", "specific_steps", "duration_seconds", "validation_method"],
            ),
            min_items=3,
            max_items=8,
        ),
        "execution_notes": {"type": "string"},
    },
    required=["nano_actions", "execution_notes"],
)

CONTEXT_ADAPTIVE_PRIMITIVES_SCHEMA = _object(
    {
        "base_primitive": _object(
            {
                "action_name": {"type": "string"},
                "default_approach": {"type": "string"},
                "duration_range": {"type": "string"},
            }
        ),
        "context_adaptations": _array(
            _object(
                {
                    "context_condition": {"type": "string"},
                    "adapted_approach": {"type": "string"},
                    "modification_rationale": {"type": "string"},
                    "success_indicators": _strings(),
                },
                required=["context_condition", "adapted_approach", "modification_rationale"],
            ),
            min_items=1,
        ),
        "fallback_options": _strings(),
    },
    required=["base_primitive", "context_adaptations"],
)

CONTEXT_MINING_SCHEMA = _object(
    {
        "context_insights": _object(
            {
                "capability_indicators": _strings(),
                "constraint_discoveries": _strings(),
                "preference_patterns": _strings(),
                "struggle_signals": _strings(),
                "motivation_shifts": _strings(),
            }
        ),
        "recommended_adaptations": _object(
            {
                "difficulty_adjustments": {"type": "string"},
                "approach_modifications": {"type": "string"},
                "resource_adaptations": {"type": "string"},
                "timeline_revisions": {"type": "string"},
            }
        ),
        "tree_evolution_suggestions": _strings(),
    },
    required=["context_insights", "recommended_adaptations"],
)

DOMAIN_RELEVANCE_SCHEMA = _object(
    {
        "relevance_assessment": _object(
            {
                "relevance_score": {"type": "number", "minimum": 0, "maximum": 1},
                "relevance_category": {"type": "string"},
                "connection_explanation": {"type": "string"},
                "exploration_value": {"type": "string"},
            }
        ),
        "guidance": _object(
            {
                "response_type": {"type": "string"},
                "exploration_approach": {"type": "string"},
                "time_recommendation": {"type": "string"},
                "connection_back_to_goal": {"type": "string"},
            }
        ),
    },
    required=["relevance_assessment", "guidance"],
)

PAIN_POINT_VALIDATION_SCHEMA = _object(
    {
        "pain_point_analysis": _array(
            _object(
                {
                    "potential_issue": {"type": "string"},
                    "likelihood": {"type": "string"},
                    "impact_severity": {"type": "string"},
                    "affected_user_types": _strings(),
                }
            )
        ),
        "refinement_suggestions": _array(
            _object(
                {
                    "issue_addressed": {"type": "string"},
                    "suggested_modification": {"type": "string"},
                    "improvement_rationale": {"type": "string"},
                }
            )
        ),
        "alternative_approaches": _strings(),
    },
    required=["pain_point_analysis", "refinement_suggestions"],
)

TREE_EVOLUTION_SCHEMA = _object(
    {
        "evolution_recommendations": _array(
            _object(
                {
                    "change_type": {"type": "string"},
                    "target_element": {"type": "string"},
                    "modification_description": {"type": "string"},
                    "justification": {"type": "string"},
                    "goal_alignment_check": {"type": "string"},
                }
            )
        ),
        "goal_focus_validation": {"type": "string"},
        "risk_assessment": {"type": "string"},
    },
    required=["evolution_recommendations", "goal_focus_validation"],
)

LEVEL_SCHEMAS: dict[str, dict[str, Any]] = {
    GOAL_CONTEXT: GOAL_CONTEXT_SCHEMA,
    STRATEGIC_BRANCHES: STRATEGIC_BRANCHES_SCHEMA,
    TASK_DECOMPOSITION: TASK_DECOMPOSITION_SCHEMA,
    MICRO_PARTICLES: MICRO_PARTICLES_SCHEMA,
    NANO_ACTIONS: NANO_ACTIONS_SCHEMA,
    CONTEXT_ADAPTIVE_PRIMITIVES: CONTEXT_ADAPTIVE_PRIMITIVES_SCHEMA,
    CONTEXT_MINING: CONTEXT_MINING_SCHEMA,
    DOMAIN_RELEVANCE: DOMAIN_RELEVANCE_SCHEMA,
    PAIN_POINT_VALIDATION: PAIN_POINT_VALIDATION_SCHEMA,
    TREE_EVOLUTION: TREE_EVOLUTION_SCHEMA,
}

_VALIDATORS = {key: Draft7Validator(schema) for key, schema in LEVEL_SCHEMAS.items()}


def schema_errors(level_key: str, instance: Any) -> list[str]:
    """Return every violation of the level schema as 'path: message' strings."""
    validator = _VALIDATORS[level_key]
    errors = sorted(
        validator.iter_errors(instance), key=lambda e: [str(p) for p in e.absolute_path]
    )
    messages = []
    for error in errors:
        location = "/".join(str(p) for p in error.absolute_path) or "<root>"
        messages.append(f"{location}: {error.message}")
    if level_key == STRATEGIC_BRANCHES and not messages:
        messages.extend(duplicate_branch_errors(instance))
    return messages


def duplicate_branch_errors(instance: dict[str, Any]) -> list[str]:
    """Branch names must stay distinct once slugified; task ids are derived from them."""
    seen: dict[str, int] = {}
    messages = []
    for index, branch in enumerate(instance.get("strategic_branches", [])):
        slug = slugify(str(branch.get("name", "")))
        if slug in seen:
            messages.append(
                f"strategic_branches/{index}/name: duplicates branch {seen[slug]} "
                f"({branch.get('name')!r})"
            )
        else:
            seen[slug] = index
    return messages
