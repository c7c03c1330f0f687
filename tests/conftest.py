import os
import tempfile
from types import SimpleNamespace

# Keep config, logs and data out of the real home directory
os.environ.setdefault("FOREST_CONFIG_ROOT", tempfile.mkdtemp(prefix="forest-tests-"))
os.environ.setdefault("FOREST_VECTOR_PROVIDER", "memory")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from src.forest.data_manager import HTADataManager  # noqa: E402
from src.forest.document_store import DocumentStore  # noqa: E402
from src.forest.embeddings import HashingEmbedder  # noqa: E402
from src.forest.vector.memory_provider import InMemoryVectorProvider  # noqa: E402


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def data_manager(tmp_path):
    manager = HTADataManager(
        document_store=DocumentStore(tmp_path / "data"),
        vector_provider=InMemoryVectorProvider(),
        embedder=HashingEmbedder(dimension=128),
        retry_attempts=2,
    )
    await manager.initialize()
    yield manager
    await manager.close()


class ScriptedProvider:
    """IntelligenceProvider that replays canned replies; exceptions are raised."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []

    async def request(self, prompt, *, max_tokens, temperature, system=None):
        self.calls.append(
            {"prompt": prompt, "max_tokens": max_tokens, "temperature": temperature, "system": system}
        )
        if not self.replies:
            raise RuntimeError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


def goal_context_reply(goal="Learn sourdough"):
    return {
        "goal_analysis": {"primary_goal": goal, "goal_complexity": 5, "domain_type": "baking"},
        "user_context": {"constraints": ["weekends only"]},
        "domain_boundaries": {"core_domain_elements": ["bread"]},
        "learning_approach": {"recommended_strategy": "bake weekly"},
    }


def branches_reply(names=("Starter Care", "Shaping", "Scoring")):
    return {
        "strategic_branches": [
            {
                "name": name,
                "description": f"Work on {name.lower()}",
                "priority": i + 1,
                "rationale": "builds on the previous phase",
                "domain_focus": "baking",
            }
            for i, name in enumerate(names)
        ],
        "progression_logic": "in order",
    }


def tasks_reply(prefix="Step", difficulties=(2, 3, 4)):
    return {
        "tasks": [
            {
                "title": f"{prefix} {i + 1}",
                "description": f"Do {prefix.lower()} {i + 1}",
                "estimated_duration": "20 minutes",
                "difficulty_level": difficulty,
            }
            for i, difficulty in enumerate(difficulties)
        ],
        "decomposition_rationale": "small steps",
    }


@pytest.fixture
def scripted_provider():
    return ScriptedProvider


@pytest.fixture
def replies():
    return SimpleNamespace(
        goal_context=goal_context_reply, branches=branches_reply, tasks=tasks_reply
    )
