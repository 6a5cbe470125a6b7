"""
Database connection and session management

The engine is owned by a Database handle that the application creates at
startup and disposes at shutdown; nothing here connects at import time.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import Settings


class Database:
    """Async engine plus session factory"""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._sessionmaker = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        engine = create_async_engine(
            settings.database_url,
            echo=False,
            pool_pre_ping=True,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow
        )
        return cls(engine)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Scoped session: commit on success, roll back on error, always close"""
        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def run_script(self, sql: str) -> int:
        """Execute a DDL script in one transaction; returns the number of statements run"""
        statements = split_statements(sql)
        async with self.engine.begin() as conn:
            for stmt in statements:
                await conn.execute(text(stmt))
        return len(statements)

    async def dispose(self) -> None:
        await self.engine.dispose()


def split_statements(sql: str) -> list[str]:
    """Split a SQL script on semicolons, dropping ``--`` comment lines and empty statements"""
    lines = [line for line in sql.splitlines() if not line.strip().startswith("--")]
    return [s.strip() for s in "\n".join(lines).split(";") if s.strip()]
