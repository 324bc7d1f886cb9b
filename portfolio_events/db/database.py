"""
Database Connection
===================
Async PostgreSQL connection using SQLAlchemy
"""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from portfolio_events.config import get_settings


logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False, **kwargs) -> AsyncEngine:
    return create_async_engine(database_url, echo=echo, future=True, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


_settings = get_settings()

# Create engine
engine = build_engine(_settings.database_url, echo=_settings.database_echo)

# Session factory
async_session_factory = build_session_factory(engine)


async def init_db(bind: AsyncEngine | None = None):
    """Create all tables (for development only - use Alembic in production)"""
    from portfolio_events.db.models import Base

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
