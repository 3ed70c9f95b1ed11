"""
OEE Monitor - Database Layer

This module handles database connections and table definitions for the
SQL-backed record store. It uses SQLAlchemy with async support. When no
DATABASE_URL is configured the service runs on the in-memory record store
and this module stays idle.
"""

from typing import Optional

from sqlalchemy import (
    Boolean, Column, DateTime, Float, Index, MetaData, String, Table, Text, text
)
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
import structlog

from oee_monitor.config import settings

logger = structlog.get_logger()

metadata = MetaData()

production_intervals = Table(
    "production_intervals",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("machine_id", String(100), nullable=False),
    Column("start_time", DateTime(timezone=True), nullable=False),
    Column("end_time", DateTime(timezone=True)),
    Column("good_production", Float, nullable=False, default=0),
    Column("film_waste", Float, nullable=False, default=0),
    Column("organic_waste", Float, nullable=False, default=0),
    Column("planned_time", Float, nullable=False, default=0),
    Column("downtime_minutes", Float, nullable=False, default=0),
    Column("target_rate_per_minute", Float),
    Column("material_code", String(50)),
    Column("shift", String(20)),
    Column("downtime_reason", String(200)),
    Column("operator_id", String(100)),
    Column("batch_number", String(100)),
    Column("notes", Text),
    Column("quality_check", Boolean, nullable=False, default=True),
    Column("availability", Float, nullable=False, default=0),
    Column("performance", Float, nullable=False, default=0),
    Column("quality", Float, nullable=False, default=0),
    Column("oee", Float, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("ix_production_intervals_machine_start", "machine_id", "start_time"),
    Index("ix_production_intervals_shift_start", "shift", "start_time"),
)

oee_history = Table(
    "oee_history",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("machine_id", String(100), nullable=False),
    Column("production_interval_id", String(36), nullable=False, index=True),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("oee", Float, nullable=False),
    Column("availability", Float, nullable=False),
    Column("performance", Float, nullable=False),
    Column("quality", Float, nullable=False),
    Column("good_production", Float, nullable=False),
    Column("total_waste", Float, nullable=False),
    Column("downtime_minutes", Float, nullable=False),
    Column("planned_time", Float, nullable=False),
    Column("shift", String(20)),
    Column("operator_id", String(100)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_oee_history_machine_timestamp", "machine_id", "timestamp"),
    Index("ix_oee_history_timestamp", "timestamp"),
)


# Database engine
async_engine: Optional[AsyncEngine] = None


def create_engine_for_url(database_url: str) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    engine_kwargs = {"echo": settings.DATABASE_ECHO, "future": True}
    if not database_url.startswith("sqlite"):
        engine_kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        engine_kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
    return create_async_engine(database_url, **engine_kwargs)


async def init_db(database_url: Optional[str] = None) -> Optional[AsyncEngine]:
    """Initialize the database connection and create tables."""
    global async_engine

    database_url = database_url or settings.DATABASE_URL
    if not database_url:
        logger.info("No DATABASE_URL configured; using in-memory record store")
        return None

    try:
        async_engine = create_engine_for_url(database_url)

        await verify_database_connection()
        await ensure_schema(async_engine)

        logger.info("Database initialized successfully")
        return async_engine

    except Exception as e:
        logger.error("Failed to initialize database", error=str(e))
        raise


async def ensure_schema(engine: AsyncEngine) -> None:
    """Create the record store tables if they are missing."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    global async_engine

    try:
        if async_engine:
            await async_engine.dispose()
            logger.info("Async database engine disposed")

        async_engine = None

    except Exception as e:
        logger.error("Error closing database connections", error=str(e))


async def verify_database_connection() -> None:
    """Test database connectivity."""
    try:
        async with async_engine.begin() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.fetchone()
        logger.info("Database connection test successful")
    except Exception as e:
        logger.error("Database connection test failed", error=str(e))
        raise


async def check_database_health() -> dict:
    """Check database health and return status information."""
    if async_engine is None:
        return {"status": "healthy", "backend": "memory"}

    try:
        await verify_database_connection()
        return {
            "status": "healthy",
            "backend": async_engine.dialect.name,
        }

    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return {
            "status": "unhealthy",
            "error": str(e)
        }
