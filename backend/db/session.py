"""
Replenishment Engine Database Session Management

Async SQLAlchemy engine, session factory and the transaction scope every
mutating operation runs in.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import get_settings
from core.errors import StorageUnavailable

settings = get_settings()
logger = structlog.get_logger()

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass


@asynccontextmanager
async def transaction(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Commit on success, roll back on any error.

    Connection-level failures surface as StorageUnavailable; everything
    else propagates unchanged after the rollback.
    """
    try:
        yield db
        await db.commit()
    except (OperationalError, InterfaceError) as exc:
        logger.error("storage.unavailable", error=str(exc))
        try:
            await db.rollback()
        except (OperationalError, InterfaceError) as rollback_exc:
            logger.error("storage.rollback_failed", error=str(rollback_exc))
        raise StorageUnavailable() from exc
    except BaseException:
        await db.rollback()
        raise
