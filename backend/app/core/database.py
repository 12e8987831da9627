from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, QueuePool
from fastapi import Request
from typing import AsyncGenerator, Optional

from app.core.config import settings, Settings
from app.core.logging_config import logger

# Create base class for models (can be defined before engine)
Base = declarative_base()


def get_database_url(url: Optional[str] = None) -> str:
    """Get properly formatted database URL"""
    db_url = url or settings.DATABASE_URL
    if db_url.startswith("postgresql://"):
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif db_url.startswith("sqlite://") and not db_url.startswith("sqlite+"):
        db_url = db_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return db_url


def build_engine(config: Settings = settings, url: Optional[str] = None) -> AsyncEngine:
    """
    Create the async engine.

    Connection pooling strategy:
    - SQLite: NullPool (required for thread safety)
    - PostgreSQL Development: NullPool (simpler debugging)
    - PostgreSQL Production: QueuePool with connection limits
    """
    db_url = get_database_url(url or config.DATABASE_URL)

    if "sqlite" in db_url:
        return create_async_engine(
            db_url,
            echo=config.DB_ECHO,
            connect_args={"check_same_thread": False},
            poolclass=NullPool,
        )

    if config.DEBUG or config.ENVIRONMENT == "development":
        return create_async_engine(
            db_url,
            echo=config.DB_ECHO,
            poolclass=NullPool,
        )

    return create_async_engine(
        db_url,
        echo=config.DB_ECHO,
        poolclass=QueuePool,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_timeout=config.DB_POOL_TIMEOUT,
        pool_recycle=config.DB_POOL_RECYCLE,
        pool_pre_ping=True,  # Verify connections before use
    )


class Database:
    """Engine plus session factory, owned by the application lifespan"""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )

    @classmethod
    def from_settings(cls, config: Settings = settings, url: Optional[str] = None) -> "Database":
        return cls(build_engine(config, url))

    def session(self) -> AsyncSession:
        """Create a new async session"""
        return self.session_factory()

    async def create_all(self) -> None:
        """Create tables that do not exist yet"""
        # Import models so they register on Base.metadata
        from app import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("[Database] Schema ready")

    async def dispose(self) -> None:
        """Close database connections"""
        await self.engine.dispose()
        logger.info("[Database] Connections closed")


# Dependency to get DB session
async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session - only commits if there are pending changes"""
    database: Database = request.app.state.db
    async with database.session() as session:
        try:
            yield session
            # Only commit if there are pending changes (new, dirty, or deleted objects)
            if session.new or session.dirty or session.deleted:
                await session.commit()
        except Exception:
            await session.rollback()
            raise
