import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.configs import configs

logger = logging.getLogger(__name__)


def _engine_kwargs() -> dict[str, Any]:
    kwargs: dict[str, Any] = {"echo": configs.Database.Echo}
    if configs.Database.Engine == "postgres":
        kwargs["pool_size"] = configs.Database.Postgres.PoolSize
        kwargs["pool_pre_ping"] = True
    return kwargs


async_engine: AsyncEngine = create_async_engine(configs.Database.url, **_engine_kwargs())


@asynccontextmanager
async def get_task_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Session for Celery tasks.

    Each task runs on its own event loop and pooled asyncpg connections are
    bound to the loop that opened them, so tasks get a throwaway engine.
    """
    engine = create_async_engine(configs.Database.url, poolclass=NullPool, echo=configs.Database.Echo)
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
    finally:
        await engine.dispose()


async def create_db_and_tables() -> None:
    # Register table models on SQLModel.metadata
    from app.models import notification_preference, push_subscription  # noqa: F401

    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables ensured (%s)", configs.Database.Engine)
