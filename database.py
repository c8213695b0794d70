"""Plantwatch — Database Connection Manager.

Async database connection management using SQLAlchemy 2.0 (Async).
PostgreSQL runs on asyncpg with a pooled engine; SQLite (local runs and the
test suite) runs on aiosqlite with a single shared connection.

Usage:
    from database import get_db, init_database, shutdown_database

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_database()
        yield
        await shutdown_database()

    @router.get("/machines")
    async def list_machines(db: AsyncSession = Depends(get_db)):
        result = await db.execute(select(Machine))
        return result.scalars().all()
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, StaticPool

from config import get_settings
from logger import get_logger

# =============================================================================
# Module State
# =============================================================================

_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

logger = get_logger(__name__)

SLOW_QUERY_THRESHOLD_MS = 500


# =============================================================================
# Engine Factory
# =============================================================================

def _create_engine() -> AsyncEngine:
    """Create the async database engine for the configured backend.

    Returns:
        Configured AsyncEngine.
    """
    settings = get_settings()
    db_settings = settings.database

    logger.info("Creating database engine", dsn=db_settings.dsn_safe)

    if db_settings.is_sqlite:
        # One shared connection so in-memory databases survive across sessions
        engine = create_async_engine(
            db_settings.async_dsn,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=db_settings.echo,
        )
    else:
        engine = create_async_engine(
            db_settings.async_dsn,
            poolclass=AsyncAdaptedQueuePool,
            pool_size=db_settings.pool_size,
            max_overflow=db_settings.max_overflow,
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True,
            connect_args={
                "server_settings": {"application_name": "plantwatch"},
                "command_timeout": 60,
            },
            echo=db_settings.echo,
            hide_parameters=True,
        )

    _register_engine_events(engine)
    return engine


def _create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def _register_engine_events(engine: AsyncEngine) -> None:
    """Register connection monitoring and slow query logging."""
    query_start_key = "_query_start_time"

    @event.listens_for(engine.sync_engine, "invalidate")
    def on_invalidate(
        dbapi_connection: Any,
        connection_record: Any,
        exception: BaseException | None,
    ) -> None:
        logger.warning(
            "Connection invalidated",
            error=str(exception) if exception else None,
        )

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def before_cursor_execute(
        conn: Any,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        conn.info[query_start_key] = time.perf_counter()

    @event.listens_for(engine.sync_engine, "after_cursor_execute")
    def after_cursor_execute(
        conn: Any,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        start_time = conn.info.pop(query_start_key, None)
        if start_time is None:
            return

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        if elapsed_ms > SLOW_QUERY_THRESHOLD_MS:
            truncated_statement = statement[:500] + "..." if len(statement) > 500 else statement
            logger.warning(
                "slow_query",
                query=truncated_statement,
                latency_ms=round(elapsed_ms, 2),
                threshold_ms=SLOW_QUERY_THRESHOLD_MS,
            )


# =============================================================================
# Lifecycle Management
# =============================================================================

async def init_database(create_tables: bool | None = None) -> None:
    """Initialize the database engine and session maker.

    Validates connectivity with ``SELECT 1``. When ``create_tables`` is true
    (or ``DB_CREATE_TABLES`` is set) the ORM metadata is created directly,
    which is how SQLite deployments and tests bootstrap their schema;
    PostgreSQL deployments run the Alembic migrations instead.

    Args:
        create_tables: Override for ``DB_CREATE_TABLES``.

    Raises:
        RuntimeError: If database connection fails.
    """
    global _engine, _session_maker

    if _engine is not None:
        logger.warning("Database already initialized, skipping")
        return

    settings = get_settings()
    if create_tables is None:
        create_tables = settings.database.create_tables

    try:
        _engine = _create_engine()
        _session_maker = _create_session_maker(_engine)

        async with _engine.begin() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.fetchone()

            if create_tables:
                from db.base import Base
                import db.models  # noqa: F401  (registers mappers)

                await conn.run_sync(Base.metadata.create_all)

        logger.info("Database initialized successfully", create_tables=create_tables)

    except Exception as exc:
        logger.error(
            "Database initialization failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        if _engine is not None:
            await _engine.dispose()
            _engine = None
        _session_maker = None
        raise RuntimeError(f"Failed to initialize database: {exc}") from exc


async def shutdown_database() -> None:
    """Shutdown the database engine and dispose all connections."""
    global _engine, _session_maker

    if _engine is None:
        logger.warning("Database not initialized, nothing to shutdown")
        return

    logger.info("Shutting down database connections")

    try:
        await _engine.dispose()
        logger.info("Database connections disposed successfully")
    except Exception as exc:
        logger.error(
            "Error disposing database connections",
            error_type=type(exc).__name__,
            error=str(exc),
        )
    finally:
        _engine = None
        _session_maker = None


def _require_session_maker() -> async_sessionmaker[AsyncSession]:
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _session_maker


# =============================================================================
# FastAPI Dependency
# =============================================================================

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database session injection.

    The session is committed if the request handler returns normally and
    rolled back otherwise.

    Yields:
        AsyncSession: Database session for the request.

    Raises:
        RuntimeError: If database is not initialized.
        DBAPIError: If database operation fails.
    """
    session = _require_session_maker()()

    try:
        yield session
        await session.commit()
    except (OperationalError, InterfaceError) as exc:
        await session.rollback()
        logger.error(
            "Database connection error",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise
    except DBAPIError as exc:
        await session.rollback()
        logger.error(
            "Database operation failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Context manager version of get_db for background tasks and scripts.

    Example:
        async with get_db_context() as db:
            machines = (await db.execute(select(Machine))).scalars().all()
    """
    session = _require_session_maker()()

    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


# =============================================================================
# Health Check
# =============================================================================

async def check_database_health() -> dict[str, Any]:
    """Check database connectivity for the health endpoint."""
    if _engine is None:
        return {"status": "unhealthy", "error": "Database not initialized"}

    try:
        async with _engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.fetchone()

        return {"status": "healthy", "pool": _engine.pool.status()}

    except Exception as exc:
        logger.error(
            "Database health check failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return {"status": "unhealthy", "error": type(exc).__name__}
