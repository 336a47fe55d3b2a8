"""
Database Connection
===================
Async PostgreSQL connection using SQLAlchemy
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from matchflow.config import settings
from matchflow.db.models import Base

logger = logging.getLogger(__name__)


def build_engine(url: str = None, echo: bool = None):
    return create_async_engine(
        url or settings.DATABASE_URL,
        echo=settings.DB_ECHO if echo is None else echo,
        future=True,
    )


def build_session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = build_engine()
async_session_factory = build_session_factory(engine)


async def init_db(target_engine=None):
    """Create all tables (for development only - use migrations in production)"""
    target_engine = target_engine or engine
    async with target_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
