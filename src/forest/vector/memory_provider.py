"""In-process vector provider. Not durable; intended for tests."""

from itertools import count
from typing import Any

from .base import (
    DEFAULT_THRESHOLD,
    DEFAULT_TOP_K,
    StoredVector,
    VectorMatch,
    matches_where,
    namespace_of,
    rank,
    require_namespace,
)


class InMemoryVectorProvider:
    durable = False

    def __init__(self):
        self._rows: dict[tuple[str, str], StoredVector] = {}
        self._seq = count(1)
        self.available = False

    async def initialize(self) -> None:
        self.available = True

    async def upsert(self, id: str, embedding: list[float], metadata: dict[str, Any]) -> None:
        namespace = namespace_of(metadata)
        existing = self._rows.get((namespace, id))
        seq = existing.seq if existing else next(self._seq)
        self._rows[(namespace, id)] = StoredVector(
            id=id, vector=list(embedding), metadata=dict(metadata), namespace=namespace, seq=seq
        )

    async def query(
        self,
        embedding: list[float],
        *,
        namespace: str,
        top_k: int = DEFAULT_TOP_K,
        threshold: float = DEFAULT_THRESHOLD,
        where: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        namespace = require_namespace(namespace)
        rows = [
            row
            for (ns, _), row in self._rows.items()
            if ns == namespace and matches_where(row.metadata, where)
        ]
        return rank(embedding, rows, top_k=top_k, threshold=threshold)

    async def delete(self, id: str, namespace: str | None = None) -> bool:
        keys = [k for k in self._rows if k[1] == id and (namespace is None or k[0] == namespace)]
        for key in keys:
            del self._rows[key]
        return bool(keys)

    async def delete_namespace(self, namespace: str) -> int:
        keys = [k for k in self._rows if k[0] == namespace]
        for key in keys:
            del self._rows[key]
        return len(keys)

    async def stats(self) -> dict[str, Any]:
        namespaces: dict[str, int] = {}
        for ns, _ in self._rows:
            namespaces[ns] = namespaces.get(ns, 0) + 1
        return {
            "provider": "memory",
            "total_vectors": len(self._rows),
            "namespaces": namespaces,
        }

    async def close(self) -> None:
        self.available = False
