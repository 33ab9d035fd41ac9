"""
Async PostgreSQL engine and unit-of-work sessions for the document and run stores.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from flow_engine.config import get_settings
from flow_engine.config.settings import PostgresSettings

logger = logging.getLogger(__name__)


class Database:
    """Owns the pooled engine that backs PostgresDocumentStore and PostgresRunStore."""

    def __init__(self, settings: Optional[PostgresSettings] = None):
        self.settings = settings or get_settings().postgres
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        self._engine = create_async_engine(
            self.settings.url,
            pool_size=self.settings.pool_size,
            max_overflow=self.settings.max_overflow,
            pool_timeout=self.settings.pool_timeout,
            pool_pre_ping=True,
        )
        # Rows are mapped to pydantic models after commit, so keep them loaded
        self._sessions = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info(
            f"Workflow store engine ready: {self.settings.host}:{self.settings.port}"
            f"/{self.settings.database} (pool {self.settings.pool_size})"
        )

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("Workflow store engine disposed")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Workflow store is not connected; await init() before use")
        return self._engine

    async def health_check(self) -> bool:
        """Round-trip a trivial query; False when unconnected or unreachable."""
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Workflow store unreachable: {e}")
            return False
        return True

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        One unit of work against the workflow tables.

        Commits when the block exits cleanly and rolls back if it raises,
        so a run snapshot or document save is never half-written:

            async with database.session() as session:
                await WorkflowRepository(session).replace_run(run)
        """
        if self._sessions is None:
            raise RuntimeError("Workflow store is not connected; await init() before use")

        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
