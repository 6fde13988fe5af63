"""Database configuration and connection management."""

from collections.abc import AsyncGenerator
from typing import Any

from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import Settings


def to_async_url(database_url: str) -> str:
    """Convert a sync database URL to its async driver form."""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


def _set_sqlite_pragma(dbapi_conn: Any, connection_record: Any) -> None:
    """Enable foreign key enforcement on SQLite connections."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the async engine and session factory for one storage backend."""

    def __init__(self, database_url: str, *, echo: bool = False, **engine_kwargs: Any):
        """Create the engine for ``database_url``; no connection is opened yet."""
        url = to_async_url(database_url)
        self.is_sqlite = url.startswith("sqlite")

        if not self.is_sqlite:
            engine_kwargs.setdefault("pool_pre_ping", True)

        self.engine: AsyncEngine = create_async_engine(url, echo=echo, **engine_kwargs)

        if self.is_sqlite:
            event.listen(self.engine.sync_engine, "connect", _set_sqlite_pragma)

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Build a database with the pool configuration used by the API."""
        kwargs: dict[str, Any] = {}
        if not to_async_url(settings.database_url).startswith("sqlite"):
            kwargs.update(
                pool_size=10,
                max_overflow=20,
                pool_recycle=3600,
                connect_args={
                    "server_settings": {
                        "application_name": settings.app_name,
                    },
                },
            )
        return cls(settings.database_url, echo=settings.debug, **kwargs)

    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session, rolling back on error."""
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def check_connection(self) -> bool:
        """Check if database connection is healthy."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception:
            return False

    async def dispose(self) -> None:
        """Close all pooled connections."""
        await self.engine.dispose()


def get_database(request: Request) -> Database:
    """Return the database attached to the running application."""
    return request.app.state.database


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async for session in get_database(request).session():
        yield session
