"""SQLAlchemy ORM models for persisted client storage.

Client storage is a flat key-value store (auth token, user profile,
notification cache), kept in SQLite so it survives process restarts.
Uses SQLAlchemy 2.0 declarative style.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class StorageItem(Base):
    """One key-value entry of persisted client storage.

    Attributes:
        key: Storage key (e.g. "userToken", "all_notifications")
        value: Serialized value, usually JSON text
        updated_at: Last write timestamp
    """

    __tablename__ = "client_storage"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<StorageItem(key={self.key!r}, size={len(self.value)})>"
