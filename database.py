"""
Database connection and session management.
"""
import asyncio
import logging

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config import (
    DATABASE_URL,
    DB_CONNECT_ATTEMPTS,
    DB_CONNECT_DELAY,
    DB_POOL_SIZE,
    DB_POOL_TIMEOUT,
)
from errors import BackendUnavailable
from models import Base

logger = logging.getLogger(__name__)


def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable WAL mode and other SQLite optimizations."""
    cursor = dbapi_conn.cursor()
    # Enable WAL mode for better concurrency
    cursor.execute("PRAGMA journal_mode=WAL")
    # Enable foreign keys
    cursor.execute("PRAGMA foreign_keys=ON")
    # Set synchronous mode to NORMAL (good balance between safety and performance)
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()
    logger.debug("SQLite WAL mode enabled and optimizations applied")


def create_engine_for(database_url: str) -> AsyncEngine:
    """
    Create an async engine with pool settings suited to the backend.

    SQLite gets a single connection (a shared static one for in-memory
    databases); server databases get a bounded pool where callers wait for a
    free connection once it is saturated.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        kwargs = {
            "connect_args": {
                "check_same_thread": False,  # SQLite-specific: allow multi-threaded access
                "timeout": 30.0,
            },
        }
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_size"] = 1  # Use single connection for SQLite to avoid isolation issues
            kwargs["max_overflow"] = 0
        new_engine = create_async_engine(url, echo=False, **kwargs)
        event.listen(new_engine.sync_engine, "connect", set_sqlite_pragma)
        return new_engine

    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=DB_POOL_SIZE,
        max_overflow=0,
        pool_timeout=DB_POOL_TIMEOUT,
    )


def create_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_engine_for(DATABASE_URL)
async_session_maker = create_session_maker(engine)


async def wait_for_database(
    bind: AsyncEngine = None,
    attempts: int = DB_CONNECT_ATTEMPTS,
    delay: float = DB_CONNECT_DELAY,
):
    """
    Block until the relational database answers a trivial query.

    Raises BackendUnavailable after the last failed attempt.
    """
    bind = bind or engine
    for attempt in range(1, attempts + 1):
        try:
            async with bind.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info(f"Database reachable (attempt {attempt}/{attempts})")
            return
        except Exception as e:
            if attempt == attempts:
                logger.error(f"Database still unreachable after {attempts} attempts: {str(e)}")
                raise BackendUnavailable("Database not reachable") from e
            logger.warning(f"Database not reachable yet (attempt {attempt}/{attempts}): {str(e)}")
            await asyncio.sleep(delay)


async def init_db(bind: AsyncEngine = None):
    """
    Initialize database tables.
    Creates all tables defined in models if they don't exist, so it is safe
    to run on every startup.
    """
    bind = bind or engine
    logger.info("Initializing database tables...")
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ Database tables initialized successfully (created if not existed)")


async def close_db(bind: AsyncEngine = None):
    """Close database connections."""
    bind = bind or engine
    await bind.dispose()
    logger.info("Database connection closed")
