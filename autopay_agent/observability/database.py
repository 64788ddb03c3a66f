"""
Autopay Agent - Metric Sample Store

SQLite-backed store for the samples the ObservabilityAdapter emits. Owns the
async engine and offers the reads the adapter exposes: filtered history,
per-metric aggregates and retention pruning.
"""

import asyncio
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .db_models import Base, MetricRecord


def _as_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, UTC)


class MetricSampleStore:
    """
    Async store of metric samples keyed by name, kind and time.

    The schema is created on first use. Every method opens its own session,
    so the store is safe to share between concurrently running jobs.
    """

    def __init__(self, db_path: str):
        """
        Args:
            db_path: SQLite file path; parent directories are created on first use
        """
        self.db_path = Path(db_path).resolve()
        self._engine = create_async_engine(
            f"sqlite+aiosqlite:///{self.db_path}",
            connect_args={"check_same_thread": False},
        )
        self._sessions = async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()

    async def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        async with self._schema_lock:
            if self._schema_ready:
                return
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._schema_ready = True

    async def add(self, name: str, kind: str, value: float, tags: dict[str, str], timestamp: float) -> None:
        """Append one sample."""
        await self._ensure_schema()
        async with self._sessions() as session:
            session.add(MetricRecord.from_sample(name=name, kind=kind, value=value, tags=tags, timestamp=timestamp))
            await session.commit()

    async def query(
        self,
        name: str | None = None,
        kind: str | None = None,
        since: float | None = None,
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        """
        Samples matching every given filter, newest first.

        Args:
            name: Metric name
            kind: Sample kind ("counter", "gauge" or "histogram")
            since: Epoch seconds; older samples are excluded
            limit: Maximum number of samples
        """
        await self._ensure_schema()
        stmt = select(MetricRecord)
        if name:
            stmt = stmt.where(MetricRecord.name == name)
        if kind:
            stmt = stmt.where(MetricRecord.kind == kind)
        if since is not None:
            stmt = stmt.where(MetricRecord.timestamp >= _as_datetime(since))
        stmt = stmt.order_by(MetricRecord.timestamp.desc(), MetricRecord.id.desc()).limit(limit)

        async with self._sessions() as session:
            result = await session.execute(stmt)
            return [record.to_dict() for record in result.scalars().all()]

    async def aggregate(self, name: str, since: float | None = None) -> dict[str, Any]:
        """Count, sum, min, max and mean of one metric's samples."""
        await self._ensure_schema()
        stmt = select(
            func.count(MetricRecord.id),
            func.sum(MetricRecord.value),
            func.min(MetricRecord.value),
            func.max(MetricRecord.value),
            func.avg(MetricRecord.value),
        ).where(MetricRecord.name == name)
        if since is not None:
            stmt = stmt.where(MetricRecord.timestamp >= _as_datetime(since))

        async with self._sessions() as session:
            count, total, low, high, mean = (await session.execute(stmt)).one()

        return {
            "name": name,
            "count": count,
            "sum": total or 0.0,
            "min": low,
            "max": high,
            "mean": mean,
        }

    async def purge(self, before: float | None = None) -> int:
        """
        Delete samples older than ``before`` (epoch seconds), or all of them.

        Returns:
            Number of deleted samples
        """
        await self._ensure_schema()
        stmt = delete(MetricRecord)
        if before is not None:
            stmt = stmt.where(MetricRecord.timestamp < _as_datetime(before))

        async with self._sessions() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    async def close(self) -> None:
        await self._engine.dispose()
        self._schema_ready = False
