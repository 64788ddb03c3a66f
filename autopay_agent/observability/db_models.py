"""
Autopay Agent - Metrics Database Models

SQLAlchemy models for persistent metric samples (SQLite backend).
"""

import json
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Float, Index, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all database models."""

    pass


class MetricRecord(Base):
    """
    One persisted metric sample.

    Indexed by name + timestamp for time-series reads; tags kept as a JSON string.
    """

    __tablename__ = "metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="counter")
    value: Mapped[float] = mapped_column(Float, nullable=False)
    tags: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    timestamp: Mapped[datetime] = mapped_column(nullable=False, index=True, default=lambda: datetime.now(UTC))

    __table_args__ = (Index("idx_metric_name_timestamp", "name", "timestamp"),)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "value": self.value,
            "tags": json.loads(self.tags) if self.tags else {},
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_sample(
        cls,
        name: str,
        kind: str,
        value: float,
        tags: dict[str, str],
        timestamp: float,
    ) -> "MetricRecord":
        """Create a MetricRecord from an in-process metric sample."""
        return cls(
            name=name,
            kind=kind,
            value=value,
            tags=json.dumps(tags),
            timestamp=datetime.fromtimestamp(timestamp, UTC),
        )
