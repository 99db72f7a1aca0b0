"""
SQLAlchemy model for the SQL storage backend: one row per cache record, partitioned by kind.
"""
from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class CacheEntry(Base):
    __tablename__ = "cache_entries"
    __table_args__ = (UniqueConstraint("kind", "cache_key", name="uq_cache_entries_kind_key"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False, index=True)  # CredentialKind value
    cache_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)  # serialized record (possibly encrypted)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)
