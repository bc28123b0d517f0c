from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from loguru import logger
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from storybook_agents.storage.base import Base, import_all_models

_db_service: "DatabaseService | None" = None

SQLITE_PRAGMAS = (
    "PRAGMA foreign_keys=ON;",
    "PRAGMA journal_mode=WAL;",
    "PRAGMA busy_timeout=5000;",
)


def build_sqlite_url(db_path: Path) -> str:
    return f"sqlite+aiosqlite:///{db_path.resolve().as_posix()}"


class DatabaseService:
    def __init__(self, db_url: str):
        self.db_url = db_url
        self.engine: AsyncEngine = create_async_engine(db_url, future=True)
        self._sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)

        # Batch progress, draft saves and story writes share one file.
        @event.listens_for(self.engine.sync_engine, "connect")
        def _configure_sqlite(dbapi_connection, _connection_record) -> None:
            cursor = dbapi_connection.cursor()
            for pragma in SQLITE_PRAGMAS:
                cursor.execute(pragma)
            cursor.close()

    async def init_models(self) -> None:
        import_all_models()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def with_session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._sessionmaker() as session:
            yield session

    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """Commit on success, roll back and re-raise on error."""
        async with self.with_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                logger.exception("Database session failed; rolling back")
                await session.rollback()
                raise

    async def dispose(self) -> None:
        await self.engine.dispose()


async def init_db_service(db_path: Path) -> DatabaseService:
    global _db_service
    if _db_service is None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        service = DatabaseService(build_sqlite_url(db_path))
        await service.init_models()
        _db_service = service
        logger.debug("Database ready at {}", db_path)
    return _db_service


def get_db_service() -> DatabaseService:
    if _db_service is None:
        raise RuntimeError("Database service not initialized. Call init_db_service() first.")
    return _db_service


async def shutdown_db_service() -> None:
    global _db_service
    if _db_service is None:
        return
    await _db_service.dispose()
    _db_service = None


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    async with get_db_service().session_scope() as session:
        yield session
