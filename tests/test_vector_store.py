"""Tests for vector providers and shared ranking."""

import pytest
import pytest_asyncio

from src.forest.embeddings import HashingEmbedder, cosine_similarity
from src.forest.vector.base import StoredVector, rank
from src.forest.vector.chroma_provider import collection_name
from src.forest.vector.factory import create_vector_provider
from src.forest.vector.memory_provider import InMemoryVectorProvider
from src.forest.vector.sqlite_provider import SQLiteVectorProvider


@pytest_asyncio.fixture(params=["sqlite", "memory"])
async def provider(request, tmp_path):
    if request.param == "sqlite":
        store = SQLiteVectorProvider(f"sqlite+aiosqlite:///{tmp_path}/vectors.db")
    else:
        store = InMemoryVectorProvider()
    await store.initialize()
    yield store
    await store.close()


def meta(namespace="p1", **extra):
    return {"namespace": namespace, "project_id": namespace, **extra}


class TestRanking:
    def test_threshold_and_order(self):
        rows = [
            StoredVector("a", [1.0, 0.0], {}, "p", 1),
            StoredVector("b", [0.0, 1.0], {}, "p", 2),
            StoredVector("c", [1.0, 1.0], {}, "p", 3),
        ]
        matches = rank([1.0, 0.0], rows, top_k=10, threshold=0.5)
        assert [m.id for m in matches] == ["a", "c"]
        assert matches[0].score == pytest.approx(1.0)

    def test_ties_keep_insertion_order(self):
        rows = [
            StoredVector("late", [1.0, 0.0], {}, "p", 9),
            StoredVector("early", [2.0, 0.0], {}, "p", 1),
        ]
        assert [m.id for m in rank([1.0, 0.0], rows)] == ["early", "late"]

    def test_dimension_mismatch_is_ignored(self):
        rows = [StoredVector("a", [1.0, 0.0, 0.0], {}, "p", 1)]
        assert rank([1.0, 0.0], rows) == []


class TestHashingEmbedder:
    def test_deterministic_and_normalized(self):
        embedder = HashingEmbedder(dimension=64)
        a = embedder.embed("shape the dough")
        assert a == embedder.embed("shape the dough")
        assert sum(x * x for x in a) == pytest.approx(1.0)

    def test_shared_vocabulary_is_closer(self):
        embedder = HashingEmbedder(dimension=256)
        query = embedder.embed("sourdough starter feeding")
        related = embedder.embed("feeding your sourdough starter daily")
        unrelated = embedder.embed("tax return paperwork")
        assert cosine_similarity(query, related) > cosine_similarity(query, unrelated)

    def test_empty_text_is_zero_vector(self):
        assert cosine_similarity(HashingEmbedder(8).embed(""), [1.0] * 8) == 0.0


class TestProviders:
    @pytest.mark.asyncio
    async def test_upsert_and_query(self, provider):
        await provider.upsert("t1", [1.0, 0.0], meta(type="frontier_node"))
        await provider.upsert("t2", [0.0, 1.0], meta(type="frontier_node"))

        matches = await provider.query([1.0, 0.1], namespace="p1", top_k=1)
        assert [m.id for m in matches] == ["t1"]
        assert matches[0].metadata["type"] == "frontier_node"

    @pytest.mark.asyncio
    async def test_upsert_replaces(self, provider):
        await provider.upsert("t1", [1.0, 0.0], meta(title="old"))
        await provider.upsert("t1", [0.0, 1.0], meta(title="new"))

        matches = await provider.query([0.0, 1.0], namespace="p1")
        assert len(matches) == 1
        assert matches[0].metadata["title"] == "new"

    @pytest.mark.asyncio
    async def test_namespaces_are_isolated(self, provider):
        await provider.upsert("t1", [1.0, 0.0], meta("p1"))
        await provider.upsert("t1", [1.0, 0.0], meta("p2"))

        assert len(await provider.query([1.0, 0.0], namespace="p1")) == 1
        assert await provider.delete_namespace("p2") == 1
        assert await provider.query([1.0, 0.0], namespace="p2") == []
        assert (await provider.stats())["namespaces"] == {"p1": 1}

    @pytest.mark.asyncio
    async def test_query_requires_namespace(self, provider):
        with pytest.raises(ValueError):
            await provider.query([1.0, 0.0], namespace="")

    @pytest.mark.asyncio
    async def test_upsert_requires_namespace(self, provider):
        with pytest.raises(ValueError):
            await provider.upsert("t1", [1.0, 0.0], {"type": "goal"})

    @pytest.mark.asyncio
    async def test_where_filter(self, provider):
        await provider.upsert("g", [1.0, 0.0], meta(type="goal"))
        await provider.upsert("t", [1.0, 0.0], meta(type="frontier_node"))

        matches = await provider.query([1.0, 0.0], namespace="p1", where={"type": "goal"})
        assert [m.id for m in matches] == ["g"]

    @pytest.mark.asyncio
    async def test_delete(self, provider):
        await provider.upsert("t1", [1.0, 0.0], meta())
        assert await provider.delete("t1", namespace="p1") is True
        assert await provider.delete("t1", namespace="p1") is False


@pytest.mark.asyncio
async def test_sqlite_survives_reopen(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path}/vectors.db"
    first = SQLiteVectorProvider(url)
    await first.initialize()
    await first.upsert("t1", [1.0, 0.0], meta())
    await first.close()

    second = SQLiteVectorProvider(url)
    await second.initialize()
    matches = await second.query([1.0, 0.0], namespace="p1")
    await second.close()
    assert [m.id for m in matches] == ["t1"]


def test_factory_builds_memory_provider():
    provider = create_vector_provider("memory")
    assert isinstance(provider, InMemoryVectorProvider)
    assert provider.durable is False


def test_factory_unknown_name_uses_sqlite():
    assert isinstance(create_vector_provider("nonsense"), SQLiteVectorProvider)


def test_chroma_collection_names_are_stable_and_safe():
    name = collection_name("My Project / 1")
    assert name == collection_name("My Project / 1")
    assert name.startswith("forest-")
    assert " " not in name and "/" not in name
