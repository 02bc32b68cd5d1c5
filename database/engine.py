"""
Database Persistence Layer - Core Engine.

============================================================
DURABLE STORE FOR THE INDICATOR MONITOR
============================================================

Async SQLAlchemy engine, session factory and transaction
boundaries for the SQL-backed stores.

Requirements:
- SQLAlchemy 2.x asyncio extension
- aiosqlite (default) or asyncpg driver
- Explicit transaction management
- Hard failures on persistence errors (PersistenceError)

============================================================
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from dotenv import load_dotenv

from core.exceptions import PersistenceError, wrap_exception

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./indicator_monitor.db"

# =============================================================
# DECLARATIVE BASE
# =============================================================

Base = declarative_base()

# =============================================================
# DATABASE ENGINE
# =============================================================


def get_database_url() -> str:
    """Get database URL from environment."""
    load_dotenv()
    url = os.getenv("DATABASE_URL")

    if not url:
        logger.warning(f"DATABASE_URL not set, using default: {DEFAULT_DATABASE_URL}")
        return DEFAULT_DATABASE_URL

    if url.startswith("postgresql://"):
        # Sync URL given; switch to the async driver
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def create_database_engine(url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    """
    Create the async SQLAlchemy engine.

    Args:
        url: Database URL (defaults to DATABASE_URL)
        echo: Log SQL statements
    """
    database_url = url or get_database_url()
    logger.info(f"Creating database engine for: {database_url.split('@')[-1]}")

    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)

    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory; objects stay usable after commit."""
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


# =============================================================
# SESSION MANAGEMENT
# =============================================================


@asynccontextmanager
async def transaction_scope(session_factory: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    """
    Context manager for explicit transaction boundaries.

    Commits only if no exception occurs.
    Rolls back on ANY exception.
    SQLAlchemy errors surface as PersistenceError.

    Usage:
        async with transaction_scope(factory) as session:
            session.add(row)
            # Commits automatically at end
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database transaction failed, rolling back: {e}")
            await session.rollback()
            raise wrap_exception(e, PersistenceError, f"Transaction failed: {e}") from e
        except Exception:
            await session.rollback()
            raise


# =============================================================
# DATABASE INITIALIZATION
# =============================================================


async def verify_database_connection(engine: AsyncEngine) -> bool:
    """
    Verify database connection is working.

    Raises:
        PersistenceError if connection fails
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {e}")
        raise PersistenceError(f"Cannot connect to database: {e}", operation="connect", cause=e) from e

    logger.info("Database connection verified successfully")
    return True


async def create_all_tables(engine: AsyncEngine) -> None:
    """Create all tables defined in ORM models."""
    from . import models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database tables: {e}")
        raise PersistenceError(f"Table creation failed: {e}", operation="create_tables", cause=e) from e

    logger.info(f"Database tables ready: {', '.join(sorted(Base.metadata.tables))}")


async def initialize_database(engine: AsyncEngine) -> None:
    """
    Full database initialization sequence.

    1. Verify connection
    2. Create tables if not exist
    3. Abort on any failure
    """
    logger.info("=" * 60)
    logger.info("INITIALIZING DATABASE PERSISTENCE LAYER")
    logger.info("=" * 60)

    await verify_database_connection(engine)
    await create_all_tables(engine)

    logger.info("DATABASE INITIALIZATION COMPLETE")


__all__ = [
    "Base",
    "DEFAULT_DATABASE_URL",
    "get_database_url",
    "create_database_engine",
    "create_session_factory",
    "transaction_scope",
    "verify_database_connection",
    "create_all_tables",
    "initialize_database",
]
