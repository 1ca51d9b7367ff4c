from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shortener.app.db.base import Base

# The analytics table holds exactly one row.
ANALYTICS_ROW_ID = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Url(Base):
    __tablename__ = "url"
    __table_args__ = (
        Index("idx_url_resource", "resource"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    alias: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    url: Mapped[str] = mapped_column(Text)
    resource: Mapped[str] = mapped_column(String(255))  # host, used for leaderboards
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return f"<Url(alias={self.alias!r}, resource={self.resource!r})>"


class Analytics(Base):
    """Latest statistics snapshot written by the analytics job."""

    __tablename__ = "analytics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=ANALYTICS_ROW_ID)
    total_url_count: Mapped[int] = mapped_column(Integer, default=0)
    url_per_min: Mapped[int] = mapped_column(Integer, default=0)
    day_peak: Mapped[int] = mapped_column(Integer, default=0)
    leaders: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
