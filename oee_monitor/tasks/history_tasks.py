"""
OEE Monitor - History Tasks

Celery tasks for OEE history maintenance. History is only pruned from the
SQL record store; a worker without DATABASE_URL has nothing to prune.
"""

import asyncio
from typing import Any, Dict, Optional
import structlog

from oee_monitor.celery import celery_app
from oee_monitor.config import settings
from oee_monitor.database import close_db, init_db
from oee_monitor.services.history_aggregator import history_aggregator
from oee_monitor.services.record_store import SqlRecordStore

logger = structlog.get_logger()


async def _prune_history(retention_days: int, database_url: Optional[str]) -> Dict[str, Any]:
    engine = await init_db(database_url)
    if engine is None:
        logger.warning("OEE history pruning skipped: no database configured")
        return {"status": "skipped", "deleted": 0, "retention_days": retention_days}

    try:
        deleted = await history_aggregator.prune(SqlRecordStore(engine), retention_days)
    finally:
        await close_db()

    return {"status": "completed", "deleted": deleted, "retention_days": retention_days}


@celery_app.task(bind=True, name="oee_monitor.tasks.history_tasks.prune_oee_history", max_retries=3)
def prune_oee_history(
    self,
    retention_days: Optional[int] = None,
    database_url: Optional[str] = None
) -> Dict[str, Any]:
    """
    Delete OEE history entries older than the retention horizon.

    Args:
        retention_days: Horizon in days (defaults to HISTORY_RETENTION_DAYS)
        database_url: Database to prune (defaults to DATABASE_URL)

    Returns:
        Dict with the task status and the number of deleted entries
    """
    retention_days = retention_days if retention_days is not None else settings.HISTORY_RETENTION_DAYS
    logger.info("Starting OEE history pruning", task_id=self.request.id, retention_days=retention_days)

    try:
        result = asyncio.run(_prune_history(retention_days, database_url))
    except Exception as exc:
        logger.error("OEE history pruning failed", task_id=self.request.id, error=str(exc))
        raise self.retry(exc=exc, countdown=300)

    logger.info("OEE history pruning finished", task_id=self.request.id, **result)
    return result
