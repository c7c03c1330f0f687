"""
HTA Data Manager

The JSON document store is the source of truth; the vector store is an
accelerator for semantic lookups. Saves write the document first and then
mirror the goal, branches and tasks into the project's vector namespace.
Mirror failures are logged and never fail the save.
"""

from typing import Any

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config_loader import config
from .document_store import DocumentStore
from .embeddings import Embedder, HashingEmbedder
from .logger import logger
from .models import iso_now
from .vector.base import VectorCapable, VectorMatch
from .vector.factory import create_vector_provider

GOAL_TYPE = "goal"
BRANCH_TYPE = "strategic_branch"
TASK_TYPE = "frontier_node"
LEARNING_EVENT_TYPE = "learning_event"


def goal_vector_id(project_id: str) -> str:
    return f"{project_id}:goal"


def branch_vector_id(project_id: str, branch_name: str) -> str:
    return f"{project_id}:{branch_name}"


class HTADataManager:
    def __init__(
        self,
        document_store: DocumentStore | None = None,
        vector_provider: VectorCapable | None = None,
        embedder: Embedder | None = None,
        retry_attempts: int | None = None,
    ):
        self.documents = document_store or DocumentStore()
        self.vectors = vector_provider if vector_provider is not None else create_vector_provider()
        self.embedder = embedder or HashingEmbedder()
        self.retry_attempts = retry_attempts or int(config.get("data.mirror_retry_attempts", 3))

    async def initialize(self):
        """Bring up the vector provider; the manager works without it."""
        try:
            await self.vectors.initialize()
        except Exception as e:
            logger.warning(f"[HTA-DATA] Vector store unavailable, continuing without it: {e}")

    @property
    def vectors_available(self) -> bool:
        return bool(self.vectors.available)

    # ------------------------------------------------------------------
    # Document operations
    # ------------------------------------------------------------------

    async def load_tree(self, project_id: str, path_name: str) -> dict[str, Any] | None:
        tree = await self.documents.load(project_id, path_name)
        if tree is None:
            logger.info(f"[HTA-DATA] No tree for {project_id}/{path_name}")
        return tree

    async def save_tree(self, project_id: str, path_name: str, tree: dict[str, Any]):
        tree["last_updated"] = iso_now()
        tree.setdefault("created", tree["last_updated"])
        await self.documents.save(project_id, path_name, tree)
        logger.info(
            f"[HTA-DATA] Saved tree {project_id}/{path_name} "
            f"({len(tree.get('frontier_nodes', []))} tasks)"
        )
        await self.mirror_tree(project_id, path_name, tree)

    async def delete_tree(self, project_id: str, path_name: str) -> bool:
        removed = await self.documents.delete(project_id, path_name)
        if self.vectors_available:
            try:
                tree_ids = await self._path_vector_ids(project_id, path_name)
                for vector_id in tree_ids:
                    await self.vectors.delete(vector_id, namespace=project_id)
            except Exception as e:
                logger.warning(f"[HTA-DATA] Vector cleanup failed for {project_id}/{path_name}: {e}")
        return removed

    async def list_paths(self, project_id: str) -> list[str]:
        return await self.documents.list_paths(project_id)

    async def _path_vector_ids(self, project_id: str, path_name: str) -> list[str]:
        # threshold -1 admits every row, so this enumerates the path's vectors
        query_vector = self.embedder.embed(path_name)
        matches = await self.vectors.query(
            query_vector,
            namespace=project_id,
            top_k=100000,
            threshold=-1.0,
            where={"path_name": path_name},
        )
        return [m.id for m in matches]

    # ------------------------------------------------------------------
    # Vector mirror
    # ------------------------------------------------------------------

    async def _upsert(self, vector_id: str, text: str, metadata: dict[str, Any]):
        embedding = self.embedder.embed(text)
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=0.05, max=0.5),
            retry=retry_if_exception_type(Exception),
            reraise=True,
        ):
            with attempt:
                await self.vectors.upsert(vector_id, embedding, metadata)

    async def mirror_tree(self, project_id: str, path_name: str, tree: dict[str, Any]) -> int:
        """Best-effort copy of goal, branches and tasks into the vector store.

        Returns the number of records written.
        """
        if not self.vectors_available:
            logger.info("[HTA-DATA] Vector store not available, skipping vector mirror")
            return 0

        base = {"namespace": project_id, "project_id": project_id, "path_name": path_name}
        records: list[tuple[str, str, dict[str, Any]]] = [
            (
                goal_vector_id(project_id),
                str(tree.get("goal", "")),
                {**base, "type": GOAL_TYPE},
            )
        ]
        for branch in tree.get("strategic_branches", []):
            records.append(
                (
                    branch_vector_id(project_id, branch["name"]),
                    f"{branch['name']}: {branch.get('description', '')}",
                    {
                        **base,
                        "type": BRANCH_TYPE,
                        "branch_name": branch["name"],
                        "priority": branch.get("priority"),
                    },
                )
            )
        for task in tree.get("frontier_nodes", []):
            records.append(
                (
                    task["id"],
                    f"{task.get('title', '')}: {task.get('description', '')}",
                    {
                        **base,
                        "type": TASK_TYPE,
                        "task_id": task["id"],
                        "branch": task.get("branch"),
                        "difficulty": task.get("difficulty"),
                        "duration": task.get("duration"),
                        "completed": bool(task.get("completed", False)),
                    },
                )
            )

        written = 0
        for vector_id, text, metadata in records:
            try:
                await self._upsert(vector_id, text, metadata)
                written += 1
            except Exception as e:
                logger.warning(f"[HTA-DATA] Vector mirror failed for {vector_id}: {e}")

        if written < len(records):
            logger.warning(
                f"[HTA-DATA] Mirrored {written}/{len(records)} records for {project_id}/{path_name}"
            )
        else:
            logger.info(f"[HTA-DATA] Mirrored {written} records for {project_id}/{path_name}")
        return written

    async def record_learning_event(
        self, project_id: str, path_name: str, event: dict[str, Any]
    ) -> bool:
        if not self.vectors_available:
            return False
        sequence = event.get("sequence", 0)
        text = " ".join(
            str(event.get(key, ""))
            for key in ("task_title", "learned", "next_questions", "breakthrough_insight")
        )
        metadata = {
            "namespace": project_id,
            "project_id": project_id,
            "path_name": path_name,
            "type": LEARNING_EVENT_TYPE,
            "task_id": event.get("task_id"),
            "breakthrough": bool(event.get("breakthrough", False)),
        }
        try:
            await self._upsert(f"{project_id}:event:{path_name}:{sequence}", text, metadata)
            return True
        except Exception as e:
            logger.warning(f"[HTA-DATA] Learning event not vectorized: {e}")
            return False

    # ------------------------------------------------------------------
    # Semantic lookups
    # ------------------------------------------------------------------

    async def find_similar_tasks(
        self,
        project_id: str,
        path_name: str,
        text: str,
        top_k: int = 5,
        threshold: float | None = None,
    ) -> list[VectorMatch]:
        if not self.vectors_available or not text.strip():
            return []
        threshold = (
            threshold if threshold is not None else config.get("vector.default_threshold", 0.1)
        )
        return await self.vectors.query(
            self.embedder.embed(text),
            namespace=project_id,
            top_k=top_k,
            threshold=threshold,
            where={"type": TASK_TYPE, "path_name": path_name},
        )

    async def vector_stats(self) -> dict[str, Any]:
        if not self.vectors_available:
            return {"available": False}
        return {"available": True, **(await self.vectors.stats())}

    async def close(self):
        await self.vectors.close()
