"""Persisted key-value storage for realtime clients.

Provides async access to a SQLite database holding the client's stored
auth token, user profile and notification cache. Uses SQLAlchemy 2.0
async mode with aiosqlite.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

import structlog
from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storefront_realtime.adapters.persistence.models import Base, StorageItem

logger = structlog.get_logger(__name__)

# Well-known storage keys
TOKEN_KEY = "userToken"
PROFILE_KEY = "userProfile"
NOTIFICATIONS_KEY = "all_notifications"


class StorageError(Exception):
    """Raised when persisted storage cannot be read or written."""


@runtime_checkable
class StoragePort(Protocol):
    """Interface the connection manager and cache need from client storage."""

    async def get_item(self, key: str) -> str | None:
        """Return the stored string for ``key``, or None."""
        ...

    async def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    async def remove_item(self, key: str) -> None:
        """Delete ``key`` if present."""
        ...


class ClientStorage:
    """SQLite-backed implementation of StoragePort.

    Example:
        >>> storage = ClientStorage(db_path="client.db")
        >>> await storage.initialize()
        >>> await storage.set_item("userToken", "eyJ...")
    """

    def __init__(self, db_path: str = "realtime_client.db") -> None:
        """Initialize the storage.

        Args:
            db_path: Path to SQLite database file.
                     Use ":memory:" for in-memory database (tests).
        """
        self._db_path = db_path
        if db_path == ":memory:":
            # In-memory requires shared cache for multi-connection access
            url = "sqlite+aiosqlite:///:memory:?cache=shared"
        else:
            url = f"sqlite+aiosqlite:///{db_path}"

        self._engine = create_async_engine(url, echo=False, pool_pre_ping=True)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.debug("Client storage created", db_path=db_path)

    async def initialize(self) -> None:
        """Create the storage table if it doesn't exist. Idempotent."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Client storage initialized", db_path=self._db_path)

    async def close(self) -> None:
        """Close database connections."""
        await self._engine.dispose()
        logger.debug("Client storage closed")

    async def get_item(self, key: str) -> str | None:
        """Return the stored value for ``key``.

        Raises:
            StorageError: If the database cannot be read
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(StorageItem.value).where(StorageItem.key == key))
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Cannot read {key!r}: {e}") from e

    async def set_item(self, key: str, value: str) -> None:
        """Upsert ``value`` under ``key``.

        Raises:
            StorageError: If the database cannot be written
        """
        now = datetime.now(timezone.utc)
        stmt = sqlite_insert(StorageItem).values(key=key, value=value, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"value": value, "updated_at": now},
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Cannot write {key!r}: {e}") from e

    async def remove_item(self, key: str) -> None:
        """Delete ``key``.

        Raises:
            StorageError: If the database cannot be written
        """
        try:
            async with self._session_factory() as session:
                await session.execute(delete(StorageItem).where(StorageItem.key == key))
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Cannot remove {key!r}: {e}") from e

    async def get_json(self, key: str) -> Any:
        """Return the JSON-decoded value for ``key``, or None when absent.

        Raises:
            StorageError: If the value cannot be read or is not valid JSON
        """
        raw = await self.get_item(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"Stored value for {key!r} is not JSON: {e}") from e

    async def set_json(self, key: str, value: Any) -> None:
        """JSON-encode ``value`` and store it under ``key``."""
        await self.set_item(key, json.dumps(value))

    async def keys(self) -> list[str]:
        """List stored keys."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(StorageItem.key).order_by(StorageItem.key))
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageError(f"Cannot list keys: {e}") from e
