"""
Database initialization and connection management
One DatabaseManager is constructed per application and handed to components
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import Settings
from .models import Base

logger = structlog.get_logger("meetflow.database")


class DatabaseManager:
    """Database connection and session management"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = None
        self.session_factory = None

    @property
    def is_sqlite(self) -> bool:
        return self.settings.database_url.startswith("sqlite")

    async def init_database(self):
        """Initialize database connection and create tables"""
        if self.is_sqlite:
            self.engine = create_async_engine(
                self.settings.database_url,
                echo=self.settings.debug,
                connect_args={"check_same_thread": False, "timeout": 30},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_async_engine(
                self.settings.database_url,
                echo=self.settings.debug,
                pool_pre_ping=True,
                pool_recycle=3600,  # Recycle connections every hour
            )

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database initialized", url=self.engine.url.render_as_string(hide_password=True))

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """Get database session as async context manager"""
        if not self.session_factory:
            await self.init_database()

        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def ping(self) -> bool:
        """Check database connectivity"""
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Database ping failed", error=str(e))
            return False

    async def close(self):
        """Close database connections"""
        if self.engine:
            await self.engine.dispose()
