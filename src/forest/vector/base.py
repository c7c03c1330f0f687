"""
Vector store capability and shared ranking.

Every provider implements ``VectorCapable`` fully; callers check the
``available`` flag instead of probing for methods. Namespaces partition the
store per project and every query must name one.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import numpy as np

DEFAULT_TOP_K = 10
DEFAULT_THRESHOLD = 0.1


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)
    namespace: str = ""


@dataclass
class StoredVector:
    """Row as read back from a provider, before ranking."""

    id: str
    vector: list[float]
    metadata: dict[str, Any]
    namespace: str
    seq: int


@runtime_checkable
class VectorCapable(Protocol):
    available: bool
    durable: bool

    async def initialize(self) -> None: ...

    async def upsert(self, id: str, embedding: list[float], metadata: dict[str, Any]) -> None: ...

    async def query(
        self,
        embedding: list[float],
        *,
        namespace: str,
        top_k: int = DEFAULT_TOP_K,
        threshold: float = DEFAULT_THRESHOLD,
        where: dict[str, Any] | None = None,
    ) -> list[VectorMatch]: ...

    async def delete(self, id: str, namespace: str | None = None) -> bool: ...

    async def delete_namespace(self, namespace: str) -> int: ...

    async def stats(self) -> dict[str, Any]: ...

    async def close(self) -> None: ...


def require_namespace(namespace: str | None) -> str:
    if not namespace:
        raise ValueError("Vector queries must be scoped to a namespace")
    return namespace


def namespace_of(metadata: dict[str, Any]) -> str:
    namespace = metadata.get("namespace")
    if not namespace:
        raise ValueError("Vector metadata must carry a 'namespace'")
    return str(namespace)


def matches_where(metadata: dict[str, Any], where: dict[str, Any] | None) -> bool:
    if not where:
        return True
    return all(metadata.get(key) == value for key, value in where.items())


def rank(
    query: list[float],
    rows: Iterable[StoredVector],
    top_k: int = DEFAULT_TOP_K,
    threshold: float = DEFAULT_THRESHOLD,
) -> list[VectorMatch]:
    """Cosine-rank rows; drop those below threshold; ties keep insertion order."""
    rows = [r for r in rows if len(r.vector) == len(query)]
    if not rows:
        return []

    q = np.asarray(query, dtype=np.float64)
    matrix = np.asarray([r.vector for r in rows], dtype=np.float64)
    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * q_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, matrix @ q / denom, 0.0)

    scored = [
        (float(score), row) for score, row in zip(scores.tolist(), rows) if score >= threshold
    ]
    scored.sort(key=lambda item: (-item[0], item[1].seq))
    return [
        VectorMatch(id=row.id, score=score, metadata=row.metadata, namespace=row.namespace)
        for score, row in scored[:top_k]
    ]
