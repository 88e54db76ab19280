import asyncio
from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text

from jobqueue.core.config import settings
from jobqueue.core.setup_logger import db_logger
from jobqueue.core.logger import info, warning


def _engine_options(url: str) -> dict:
    options = {
        "pool_pre_ping": True,
        "echo": settings.DEBUG,  # Show SQL queries in debug mode
    }
    if not url.startswith("sqlite"):
        options.update(pool_size=5, max_overflow=10)
    return options


async def connect_with_retry(url: str, retries: int = 5, delay: float = 3) -> AsyncEngine:
    """Create async engine, retrying until the database accepts connections."""
    for attempt in range(retries):
        engine = create_async_engine(url, **_engine_options(url))
        try:
            async with engine.begin() as connection:
                await connection.execute(text("SELECT 1"))
            return engine
        except Exception as e:
            await engine.dispose()
            if attempt == retries - 1:
                raise
            warning(db_logger, f"Database connection attempt {attempt + 1} failed, retrying in {delay} seconds...",
                    context={"error": str(e)})
            await asyncio.sleep(delay)


engine: Optional[AsyncEngine] = None
SessionLocal: Optional[async_sessionmaker] = None
Base = declarative_base()


async def init_database(url: Optional[str] = None):
    """Initialize database connection. Safe to call more than once."""
    global engine, SessionLocal

    if engine is None:
        engine = await connect_with_retry(
            url or settings.DATABASE_URL,
            retries=settings.DB_CONNECT_RETRIES,
            delay=settings.DB_CONNECT_DELAY,
        )
        SessionLocal = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
        info(db_logger, "Async database connection initialized")


async def create_tables():
    """Create the schema on the initialized engine."""
    # Registers the models on Base.metadata
    from jobqueue import models  # noqa: F401

    await init_database()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_database():
    """Close database connections."""
    global engine, SessionLocal
    if engine:
        await engine.dispose()
        info(db_logger, "Database connections closed")
    engine = None
    SessionLocal = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for async database sessions."""
    if SessionLocal is None:
        await init_database()
    async with SessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
