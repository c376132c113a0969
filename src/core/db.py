import asyncio
import logging
from typing import AsyncGenerator, Awaitable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from src.common.exceptions import StoreUnavailable
from src.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    future=True,
    pool_pre_ping=True,
)


AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


Base = declarative_base()


async def init_db() -> None:
    # Register all tables on the metadata before create_all
    import src.models.persistance.auth  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


async def bounded(awaitable: Awaitable[T]) -> T:
    """
    Await a store call under the configured timeout.

    Timeouts and driver errors surface as StoreUnavailable so the caller
    gets a 503 instead of a hang or a stack trace.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=settings.DB_TIMEOUT_SECONDS)
    except TimeoutError as exc:
        logger.error("Store call exceeded %.1fs", settings.DB_TIMEOUT_SECONDS)
        raise StoreUnavailable("store timeout") from exc
    except SQLAlchemyError as exc:
        logger.exception("Store call failed")
        raise StoreUnavailable("store error") from exc
