"""
Schema-Driven HTA Generator

Produces content for any decomposition level by sending the input data and
the level schema to the intelligence provider through the circuit breaker,
then validating the reply against the schema. Levels 1-2 are generated at
tree creation; deeper levels on demand.
"""

import json
from typing import Any

from .circuit_breaker import CircuitBreaker
from .config_loader import config
from .exceptions import ProviderUnavailableError, SchemaValidationError, UnknownLevelError
from .intelligence import IntelligenceProvider, parse_json_response
from .logger import logger
from .schemas import (
    CONTEXT_ADAPTIVE_PRIMITIVES,
    CONTEXT_MINING,
    DOMAIN_RELEVANCE,
    GOAL_CONTEXT,
    LEVEL_SCHEMAS,
    MICRO_PARTICLES,
    NANO_ACTIONS,
    PAIN_POINT_VALIDATION,
    STRATEGIC_BRANCHES,
    TASK_DECOMPOSITION,
    TREE_EVOLUTION,
    schema_errors,
)

# Refine context only once more than this many learning events exist
LEARNING_HISTORY_THRESHOLD = 2

SYSTEM_MESSAGES = {
    GOAL_CONTEXT: "Analyze this goal to understand domain, context, constraints, and success criteria.",
    STRATEGIC_BRANCHES: (
        "Generate contextually appropriate strategic learning phases for this specific goal "
        "and user context."
    ),
    TASK_DECOMPOSITION: (
        "Break this strategic branch into practical, achievable tasks considering the user's "
        "real-world constraints."
    ),
    MICRO_PARTICLES: (
        "Create micro-tasks that are so small they cannot fail, with clear validation criteria."
    ),
    NANO_ACTIONS: (
        "Break this micro-task into granular execution steps accounting for tool switching "
        "and context changes."
    ),
    CONTEXT_ADAPTIVE_PRIMITIVES: (
        "Create fundamental actions that adapt to different user constraints and situations."
    ),
    CONTEXT_MINING: (
        "Analyze this interaction to extract insights about capabilities, constraints, and "
        "context evolution needs."
    ),
    DOMAIN_RELEVANCE: (
        "Assess how relevant this topic is to the learning domain and provide exploration "
        "guidance."
    ),
    PAIN_POINT_VALIDATION: (
        "Identify likely pain points in this plan and suggest concrete refinements."
    ),
    TREE_EVOLUTION: (
        "Evolve the learning tree structure based on new context insights while maintaining "
        "goal focus."
    ),
}


def build_prompt(input_data: dict[str, Any], schema: dict[str, Any]) -> str:
    return (
        "Analyze the provided data and generate a response following the exact JSON schema "
        "structure.\n\n"
        f"**Input Data:**\n{json.dumps(input_data, indent=2, default=str)}\n\n"
        f"**Required Response Schema:**\n{json.dumps(schema, indent=2)}\n\n"
        "Respond with a single JSON object that satisfies the schema. Do not add commentary."
    )


class SchemaDrivenGenerator:
    """Level-by-level HTA content generation backed by an intelligence provider."""

    def __init__(
        self,
        provider: IntelligenceProvider | None,
        breaker: CircuitBreaker | None = None,
    ):
        self.provider = provider
        self.breaker = breaker or CircuitBreaker()
        self.schemas = LEVEL_SCHEMAS

    @property
    def available(self) -> bool:
        return self.provider is not None

    def level_settings(self, level_key: str) -> dict[str, Any]:
        return config.get_level_config(level_key)

    def validate(self, level_key: str, response: Any) -> dict[str, Any]:
        """Parse and validate a raw provider reply; raise SchemaValidationError."""
        try:
            data = parse_json_response(response)
        except ValueError as e:
            raise SchemaValidationError(level_key, [str(e)]) from e

        violations = schema_errors(level_key, data)
        if violations:
            raise SchemaValidationError(level_key, violations)
        return data

    async def generate_level_content(
        self, level_key: str, input_data: dict[str, Any], system_message: str | None = None
    ) -> dict[str, Any]:
        if level_key not in self.schemas:
            raise UnknownLevelError(level_key, sorted(self.schemas))
        if self.provider is None:
            raise ProviderUnavailableError()

        settings = self.level_settings(level_key)
        prompt = build_prompt(input_data, self.schemas[level_key])
        system = system_message or SYSTEM_MESSAGES.get(level_key)
        provider = self.provider

        async def _call():
            response = await provider.request(
                prompt,
                max_tokens=settings["max_tokens"],
                temperature=settings["temperature"],
                system=system,
            )
            # inside the breaker so a malformed reply counts as a failure, never a success
            return self.validate(level_key, response)

        logger.info(
            f"[SCHEMA] Generating {level_key} (max_tokens={settings['max_tokens']}, "
            f"temperature={settings['temperature']})"
        )
        try:
            return await self.breaker.execute(_call)
        except SchemaValidationError as e:
            logger.warning(f"[SCHEMA] {e.message}")
            raise

    # ------------------------------------------------------------------
    # Level helpers
    # ------------------------------------------------------------------

    async def generate_goal_context(
        self, goal: str, initial_context: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self.generate_level_content(
            GOAL_CONTEXT, {"goal": goal, "initialContext": initial_context or {}}
        )

    async def generate_strategic_branches(
        self, goal: str, goal_context: dict[str, Any]
    ) -> dict[str, Any]:
        return await self.generate_level_content(
            STRATEGIC_BRANCHES, {"goal": goal, "goalContext": goal_context}
        )

    async def generate_task_decomposition(
        self,
        branch_name: str,
        branch_description: str,
        goal_context: dict[str, Any],
        user_context: dict[str, Any] | None = None,
        learning_history: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        refined = await self.refine_context(user_context or {}, learning_history or [])
        return await self.generate_level_content(
            TASK_DECOMPOSITION,
            {
                "branchName": branch_name,
                "branchDescription": branch_description,
                "goalContext": goal_context,
                "userContext": refined,
            },
        )

    async def generate_micro_particles(
        self,
        task_title: str,
        task_description: str,
        goal_context: dict[str, Any],
        user_context: dict[str, Any] | None = None,
        learning_history: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        refined = await self.refine_context(user_context or {}, learning_history or [])
        return await self.generate_level_content(
            MICRO_PARTICLES,
            {
                "taskTitle": task_title,
                "taskDescription": task_description,
                "goalContext": goal_context,
                "userContext": refined,
            },
        )

    async def generate_nano_actions(
        self,
        micro_title: str,
        micro_description: str,
        goal_context: dict[str, Any],
        user_context: dict[str, Any] | None = None,
        learning_history: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        refined = await self.refine_context(user_context or {}, learning_history or [])
        return await self.generate_level_content(
            NANO_ACTIONS,
            {
                "microTitle": micro_title,
                "microDescription": micro_description,
                "goalContext": goal_context,
                "userContext": refined,
            },
        )

    async def generate_context_adaptive_primitives(
        self,
        nano_title: str,
        nano_description: str,
        goal_context: dict[str, Any],
        user_context: dict[str, Any] | None = None,
        learning_history: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        refined = await self.refine_context(user_context or {}, learning_history or [])
        return await self.generate_level_content(
            CONTEXT_ADAPTIVE_PRIMITIVES,
            {
                "nanoTitle": nano_title,
                "nanoDescription": nano_description,
                "goalContext": goal_context,
                "userContext": refined,
            },
        )

    # ------------------------------------------------------------------
    # Context learning
    # ------------------------------------------------------------------

    async def refine_context(
        self, user_context: dict[str, Any], learning_history: list[dict[str, Any]]
    ) -> dict[str, Any]:
        """Fold accumulated learning into the context passed to deeper levels.

        With little history, or when the provider cannot help, the context is
        returned unchanged: refinement is an enrichment, not a requirement.
        """
        if len(learning_history) <= LEARNING_HISTORY_THRESHOLD or not self.available:
            return user_context

        recent = learning_history[-10:]
        try:
            insights = await self.generate_level_content(
                CONTEXT_MINING,
                {"currentContext": user_context, "learningHistory": recent},
                "Refine user context based on accumulated learning history and interaction "
                "patterns.",
            )
        except Exception as e:
            logger.warning(f"[SCHEMA] Context refinement skipped: {e}")
            return {**user_context, "recent_learning": recent}

        return {**user_context, "recent_learning": recent, "refined_insights": insights}

    async def learn_from_interaction(
        self, interaction: dict[str, Any], current_context: dict[str, Any], tree_snapshot: dict
    ) -> dict[str, Any] | None:
        """Mine an interaction for insights; evolve the tree when suggested.

        Returns the treeEvolution content, or None when no evolution is due.
        """
        insights = await self.generate_level_content(
            CONTEXT_MINING, {"interaction": interaction, "currentContext": current_context}
        )
        if not insights.get("tree_evolution_suggestions"):
            return None

        return await self.generate_level_content(
            TREE_EVOLUTION,
            {
                "contextInsights": insights,
                "currentTree": tree_snapshot,
                "userContext": current_context,
            },
        )

    async def assess_domain_relevance(
        self, topic: str, goal: str, domain_boundaries: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self.generate_level_content(
            DOMAIN_RELEVANCE,
            {
                "userTopic": topic,
                "currentGoal": goal,
                "domainBoundaries": domain_boundaries or {},
            },
        )
