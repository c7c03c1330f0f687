"""
ChromaDB vector provider.

One persistent collection per namespace using cosine space. ChromaDB only
accepts scalar metadata, so the full metadata dict is kept as JSON next to
the flattened copy used for ``where`` filtering.
"""

import asyncio
import hashlib
import json
import os
import time
from typing import Any

try:
    import chromadb

    CHROMADB_AVAILABLE = True
except ImportError:
    CHROMADB_AVAILABLE = False

from ..config_loader import config
from ..exceptions import VectorStoreError
from ..logger import logger
from .base import (
    DEFAULT_THRESHOLD,
    DEFAULT_TOP_K,
    StoredVector,
    VectorMatch,
    namespace_of,
    rank,
    require_namespace,
)

COLLECTION_PREFIX = "forest-"
FULL_METADATA_KEY = "_forest_json"
SEQ_KEY = "_forest_seq"


def sanitize_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Sanitize metadata for ChromaDB (scalars only)."""
    sanitized = {}
    for k, v in metadata.items():
        if isinstance(v, list):
            sanitized[k] = ", ".join(map(str, v))
        elif isinstance(v, dict):
            sanitized[k] = json.dumps(v, sort_keys=True, default=str)
        elif v is None:
            sanitized[k] = ""
        else:
            sanitized[k] = v
    return sanitized


def collection_name(namespace: str) -> str:
    digest = hashlib.sha1(namespace.encode("utf-8")).hexdigest()[:24]
    return f"{COLLECTION_PREFIX}{digest}"


def _where_clause(where: dict[str, Any] | None) -> dict[str, Any] | None:
    if not where:
        return None
    clauses = [{k: v} for k, v in sanitize_metadata(where).items()]
    return clauses[0] if len(clauses) == 1 else {"$and": clauses}


class ChromaVectorProvider:
    """Persistent ChromaDB-backed provider; calls run off the event loop."""

    durable = True

    def __init__(self, path: str | None = None):
        self.path = path or os.path.expandvars(
            config.get("vector.chroma_path", "${FOREST_CONFIG_ROOT}/vectors/chroma")
        )
        self.client = None
        self.available = False

    async def initialize(self) -> None:
        if self.available:
            return
        if not CHROMADB_AVAILABLE:
            logger.warning("[VECTOR] ChromaDB not installed. Chroma provider disabled.")
            return
        try:
            os.makedirs(self.path, exist_ok=True)
            self.client = await asyncio.to_thread(chromadb.PersistentClient, path=self.path)
            self.available = True
            logger.info(f"[VECTOR] ChromaDB initialized at {self.path}")
        except Exception as e:
            logger.error(f"[VECTOR] Failed to initialize ChromaDB: {e}")
            raise VectorStoreError(f"ChromaDB failed to initialize: {e}") from e

    def _require_client(self):
        if not self.available or self.client is None:
            raise VectorStoreError("Chroma vector provider not initialized")
        return self.client

    def _collection(self, namespace: str):
        return self._require_client().get_or_create_collection(
            name=collection_name(namespace),
            metadata={"hnsw:space": "cosine", "namespace": namespace},
        )

    def _existing_collection(self, namespace: str):
        client = self._require_client()
        name = collection_name(namespace)
        for entry in client.list_collections():
            entry_name = entry if isinstance(entry, str) else entry.name
            if entry_name == name:
                return client.get_collection(name=name)
        return None

    def _upsert_sync(self, id: str, embedding: list[float], metadata: dict[str, Any]):
        namespace = namespace_of(metadata)
        collection = self._collection(namespace)
        existing = collection.get(ids=[id], include=["metadatas"])
        if existing and existing.get("ids"):
            seq = int((existing["metadatas"][0] or {}).get(SEQ_KEY, 0))
        else:
            # Wall-clock nanoseconds keep insertion order across restarts
            seq = time.time_ns()

        stored = sanitize_metadata(metadata)
        stored[FULL_METADATA_KEY] = json.dumps(metadata, default=str)
        stored[SEQ_KEY] = seq
        collection.upsert(ids=[id], embeddings=[list(embedding)], metadatas=[stored])

    async def upsert(self, id: str, embedding: list[float], metadata: dict[str, Any]) -> None:
        await asyncio.to_thread(self._upsert_sync, id, embedding, metadata)

    def _query_sync(self, embedding, namespace, top_k, threshold, where) -> list[VectorMatch]:
        collection = self._existing_collection(namespace)
        if collection is None:
            return []
        total = collection.count()
        if total == 0:
            return []
        results = collection.get(
            where=_where_clause(where), include=["embeddings", "metadatas"]
        )
        rows = []
        for i, vid in enumerate(results.get("ids") or []):
            stored = results["metadatas"][i] or {}
            rows.append(
                StoredVector(
                    id=vid,
                    vector=[float(x) for x in results["embeddings"][i]],
                    metadata=json.loads(stored.get(FULL_METADATA_KEY, "{}")),
                    namespace=namespace,
                    seq=int(stored.get(SEQ_KEY, 0)),
                )
            )
        return rank(embedding, rows, top_k=top_k, threshold=threshold)

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
        return await asyncio.to_thread(
            self._query_sync, embedding, namespace, top_k, threshold, where
        )

    def _delete_sync(self, id: str, namespace: str | None) -> bool:
        client = self._require_client()
        if namespace:
            targets = [self._existing_collection(namespace)]
        else:
            targets = [
                client.get_collection(name=e if isinstance(e, str) else e.name)
                for e in client.list_collections()
            ]
        deleted = False
        for collection in targets:
            if collection is None:
                continue
            if collection.get(ids=[id]).get("ids"):
                collection.delete(ids=[id])
                deleted = True
        return deleted

    async def delete(self, id: str, namespace: str | None = None) -> bool:
        return await asyncio.to_thread(self._delete_sync, id, namespace)

    def _delete_namespace_sync(self, namespace: str) -> int:
        collection = self._existing_collection(namespace)
        if collection is None:
            return 0
        removed = collection.count()
        self._require_client().delete_collection(name=collection_name(namespace))
        return removed

    async def delete_namespace(self, namespace: str) -> int:
        namespace = require_namespace(namespace)
        removed = await asyncio.to_thread(self._delete_namespace_sync, namespace)
        logger.info(f"[VECTOR] Deleted namespace {namespace} ({removed} vectors)")
        return removed

    def _stats_sync(self) -> dict[str, Any]:
        client = self._require_client()
        namespaces: dict[str, int] = {}
        for entry in client.list_collections():
            name = entry if isinstance(entry, str) else entry.name
            if not name.startswith(COLLECTION_PREFIX):
                continue
            collection = client.get_collection(name=name)
            namespace = (collection.metadata or {}).get("namespace", name)
            namespaces[namespace] = collection.count()
        return {
            "provider": "chroma",
            "total_vectors": sum(namespaces.values()),
            "namespaces": namespaces,
        }

    async def stats(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._stats_sync)

    async def close(self) -> None:
        self.client = None
        self.available = False
