"""
Database Session Management - Async SQLAlchemy engine and session factory.

The engine is created lazily and can be disposed and rebuilt by the store
when a connection failure is detected.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from creditgate.config import Settings, settings

# Global engine instance
_engine: AsyncEngine | None = None

# Session factory
_session_factory: async_sessionmaker[AsyncSession] | None = None


def resolve_database_url(config: Settings) -> str:
    """
    Build the async database URL.

    DATABASE_NAME, when set, replaces the database named in DATABASE_URL, and
    plain postgres URLs are switched to the asyncpg driver.
    """
    url = make_url(config.database_url)
    if url.drivername in ("postgres", "postgresql"):
        url = url.set(drivername="postgresql+asyncpg")
    if config.database_name:
        url = url.set(database=config.database_name)
    return url.render_as_string(hide_password=False)


def get_engine(config: Settings = settings) -> AsyncEngine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            resolve_database_url(config),
            pool_size=config.database_pool_size,
            max_overflow=config.database_max_overflow,
            pool_timeout=config.database_pool_timeout,
            pool_recycle=config.database_pool_recycle,
            pool_pre_ping=True,
            echo=config.log_level == "DEBUG",
        )
    return _engine


def get_session_factory(config: Settings = settings) -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        engine = get_engine(config)
        _session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def close_engines() -> None:
    """Close the database engine (graceful shutdown and reconnection)."""
    global _engine, _session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
    _session_factory = None
