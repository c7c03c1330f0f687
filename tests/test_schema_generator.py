"""Tests for schema-driven level generation."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.forest.circuit_breaker import CircuitBreaker
from src.forest.exceptions import (
    CircuitOpenError,
    ProviderUnavailableError,
    SchemaValidationError,
    UnknownLevelError,
)
from src.forest.intelligence import LangChainIntelligenceProvider, parse_json_response
from src.forest.schema_generator import SchemaDrivenGenerator, build_prompt
from src.forest.schemas import LEVEL_SCHEMAS, STRATEGIC_BRANCHES, TASK_DECOMPOSITION, schema_errors


def make_generator(provider, clock=None):
    breaker = CircuitBreaker(name="test", failure_threshold=3, cooldown_ms=60_000, clock=clock)
    return SchemaDrivenGenerator(provider, breaker=breaker)


class TestParsing:
    def test_dict_passes_through(self):
        assert parse_json_response({"a": 1}) == {"a": 1}

    def test_json_is_extracted_from_prose(self):
        reply = 'Sure, here you go:\n{"tasks": [], "decomposition_rationale": "x"}\nThanks'
        assert parse_json_response(reply)["decomposition_rationale"] == "x"

    def test_reply_without_object_is_rejected(self):
        with pytest.raises(ValueError):
            parse_json_response("no json here")

    def test_prompt_embeds_input_and_schema(self):
        prompt = build_prompt({"goal": "bake"}, LEVEL_SCHEMAS[TASK_DECOMPOSITION])
        assert '"goal": "bake"' in prompt
        assert json.dumps(LEVEL_SCHEMAS[TASK_DECOMPOSITION], indent=2) in prompt


class TestSchemas:
    def test_branch_count_bounds(self, replies):
        two = replies.branches(names=("A", "B"))
        assert schema_errors(STRATEGIC_BRANCHES, two)
        assert schema_errors(STRATEGIC_BRANCHES, replies.branches()) == []

    def test_task_difficulty_bounds(self, replies):
        bad = replies.tasks(difficulties=(1, 3, 6))
        errors = schema_errors(TASK_DECOMPOSITION, bad)
        assert len(errors) == 1
        assert errors[0].startswith("tasks/2/difficulty_level")


class TestSchemaDrivenGenerator:
    @pytest.mark.asyncio
    async def test_unknown_level(self, scripted_provider):
        generator = make_generator(scripted_provider())
        with pytest.raises(UnknownLevelError):
            await generator.generate_level_content("gigaParticles", {})

    @pytest.mark.asyncio
    async def test_no_provider(self):
        generator = make_generator(None)
        assert generator.available is False
        with pytest.raises(ProviderUnavailableError):
            await generator.generate_strategic_branches("goal", {})

    @pytest.mark.asyncio
    async def test_valid_reply_uses_level_budget(self, scripted_provider, replies):
        provider = scripted_provider([replies.tasks()])
        generator = make_generator(provider)

        content = await generator.generate_task_decomposition("Shaping", "shape dough", {})

        assert len(content["tasks"]) == 3
        call = provider.calls[0]
        assert call["max_tokens"] == 2500
        assert call["temperature"] == 0.25
        assert call["system"]

    @pytest.mark.asyncio
    async def test_invalid_reply_raises_and_counts_as_failure(self, scripted_provider, clock):
        provider = scripted_provider([{"strategic_branches": []}])
        generator = make_generator(provider, clock)

        with pytest.raises(SchemaValidationError) as exc_info:
            await generator.generate_strategic_branches("goal", {})

        assert exc_info.value.level_key == STRATEGIC_BRANCHES
        assert generator.breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_repeated_failures_open_breaker(self, scripted_provider, clock):
        provider = scripted_provider([RuntimeError("boom")] * 3)
        generator = make_generator(provider, clock)
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await generator.generate_goal_context("goal")

        with pytest.raises(CircuitOpenError):
            await generator.generate_goal_context("goal")
        assert len(provider.calls) == 3

    @pytest.mark.asyncio
    async def test_consecutive_malformed_replies_open_breaker(self, scripted_provider, clock):
        provider = scripted_provider(["not json at all"] * 6)
        generator = make_generator(provider, clock)
        for expected_failures in (1, 2, 3):
            with pytest.raises(SchemaValidationError):
                await generator.generate_goal_context("goal")
            assert generator.breaker.failure_count == expected_failures

        assert generator.breaker.can_execute() is False
        with pytest.raises(CircuitOpenError):
            await generator.generate_goal_context("goal")
        assert len(provider.calls) == 3

    @pytest.mark.asyncio
    async def test_duplicate_branch_names_are_rejected(self, scripted_provider, replies, clock):
        provider = scripted_provider([replies.branches(("Practice", "practice", "Scoring"))])
        generator = make_generator(provider, clock)

        with pytest.raises(SchemaValidationError) as exc_info:
            await generator.generate_strategic_branches("goal", {})

        assert any("duplicates branch 0" in v for v in exc_info.value.violations)
        assert generator.breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_context_refined_only_with_enough_history(self, scripted_provider, replies):
        mining = {
            "context_insights": {"struggle_signals": ["timing"]},
            "recommended_adaptations": {},
        }
        provider = scripted_provider([replies.tasks(), mining, replies.tasks()])
        generator = make_generator(provider)

        await generator.generate_task_decomposition("A", "a", {}, {"x": 1}, [{"n": 1}, {"n": 2}])
        assert len(provider.calls) == 1

        history = [{"n": i} for i in range(4)]
        await generator.generate_task_decomposition("A", "a", {}, {"x": 1}, history)
        assert len(provider.calls) == 3
        assert "refined_insights" in provider.calls[2]["prompt"]

    @pytest.mark.asyncio
    async def test_learn_from_interaction_without_suggestions(self, scripted_provider):
        mining = {"context_insights": {}, "recommended_adaptations": {}}
        generator = make_generator(scripted_provider([mining]))
        assert await generator.learn_from_interaction({"type": "x"}, {}, {}) is None

    @pytest.mark.asyncio
    async def test_learn_from_interaction_evolves(self, scripted_provider):
        mining = {
            "context_insights": {},
            "recommended_adaptations": {},
            "tree_evolution_suggestions": ["add proofing practice"],
        }
        evolution = {
            "evolution_recommendations": [{"change_type": "add_task"}],
            "goal_focus_validation": "still on goal",
        }
        generator = make_generator(scripted_provider([mining, evolution]))
        result = await generator.learn_from_interaction({"type": "x"}, {}, {})
        assert result["evolution_recommendations"][0]["change_type"] == "add_task"


class TestLangChainProvider:
    @pytest.mark.asyncio
    async def test_binds_budget_and_parses_reply(self):
        response = MagicMock()
        response.content = 'Result: {"answer": 42}'
        bound = MagicMock()
        bound.ainvoke = AsyncMock(return_value=response)
        llm = MagicMock()
        llm.bind.return_value = bound

        provider = LangChainIntelligenceProvider(llm)
        result = await provider.request("prompt", max_tokens=100, temperature=0.1, system="sys")

        assert result == {"answer": 42}
        llm.bind.assert_called_once_with(max_tokens=100, temperature=0.1)
        messages = bound.ainvoke.call_args.args[0]
        assert [m.content for m in messages] == ["sys", "prompt"]
