"""SQLite vector provider (SQLAlchemy async + aiosqlite)."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, delete, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..config_loader import config
from ..exceptions import VectorStoreError
from ..logger import logger
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


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class VectorRow(Base):
    __tablename__ = "vectors"

    namespace: Mapped[str] = mapped_column(String(255), primary_key=True)
    id: Mapped[str] = mapped_column(String(512), primary_key=True)
    vector: Mapped[list] = mapped_column(JSON, nullable=False)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class SQLiteVectorProvider:
    """Durable vector store: every write is committed before returning."""

    durable = True

    def __init__(self, url: str | None = None):
        self.url = url or config.get(
            "vector.sqlite_url", "sqlite+aiosqlite:///${FOREST_CONFIG_ROOT}/vectors.db"
        )
        self._engine: AsyncEngine | None = None
        self._session_maker: async_sessionmaker | None = None
        self.available = False

    def _ensure_parent_dir(self):
        marker = ":///"
        if marker in self.url:
            db_path = self.url.split(marker, 1)[1]
            if db_path and db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self) -> None:
        if self.available:
            return
        try:
            self._ensure_parent_dir()
            self._engine = create_async_engine(self.url, echo=False)
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._session_maker = async_sessionmaker(self._engine, expire_on_commit=False)
            self.available = True
            logger.info(f"[VECTOR] SQLite provider ready at {self.url}")
        except Exception as e:
            logger.error(f"[VECTOR] Failed to initialize SQLite provider: {e}")
            self.available = False
            raise VectorStoreError(f"SQLite vector provider failed to initialize: {e}") from e

    def _sessions(self) -> async_sessionmaker:
        if not self.available or self._session_maker is None:
            raise VectorStoreError("SQLite vector provider not initialized")
        return self._session_maker

    async def upsert(self, id: str, embedding: list[float], metadata: dict[str, Any]) -> None:
        namespace = namespace_of(metadata)
        async with self._sessions()() as session:
            row = await session.get(VectorRow, (namespace, id))
            if row is None:
                next_seq = await session.scalar(select(func.coalesce(func.max(VectorRow.seq), 0)))
                session.add(
                    VectorRow(
                        namespace=namespace,
                        id=id,
                        vector=list(embedding),
                        metadata_=dict(metadata),
                        seq=int(next_seq or 0) + 1,
                    )
                )
            else:
                row.vector = list(embedding)
                row.metadata_ = dict(metadata)
                row.updated_at = _utcnow()
            await session.commit()

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
        async with self._sessions()() as session:
            result = await session.execute(
                select(VectorRow).where(VectorRow.namespace == namespace).order_by(VectorRow.seq)
            )
            rows = [
                StoredVector(
                    id=r.id,
                    vector=r.vector,
                    metadata=r.metadata_ or {},
                    namespace=r.namespace,
                    seq=r.seq,
                )
                for r in result.scalars()
                if matches_where(r.metadata_ or {}, where)
            ]
        return rank(embedding, rows, top_k=top_k, threshold=threshold)

    async def delete(self, id: str, namespace: str | None = None) -> bool:
        stmt = delete(VectorRow).where(VectorRow.id == id)
        if namespace:
            stmt = stmt.where(VectorRow.namespace == namespace)
        async with self._sessions()() as session:
            result = await session.execute(stmt)
            await session.commit()
            return (result.rowcount or 0) > 0

    async def delete_namespace(self, namespace: str) -> int:
        namespace = require_namespace(namespace)
        async with self._sessions()() as session:
            result = await session.execute(delete(VectorRow).where(VectorRow.namespace == namespace))
            await session.commit()
            removed = result.rowcount or 0
        logger.info(f"[VECTOR] Deleted namespace {namespace} ({removed} vectors)")
        return removed

    async def stats(self) -> dict[str, Any]:
        async with self._sessions()() as session:
            result = await session.execute(
                select(VectorRow.namespace, func.count()).group_by(VectorRow.namespace)
            )
            namespaces = {ns: count for ns, count in result.all()}
        return {
            "provider": "sqlite",
            "total_vectors": sum(namespaces.values()),
            "namespaces": namespaces,
        }

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_maker = None
        self.available = False
