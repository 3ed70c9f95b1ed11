"""
OEE Monitor - API Dependencies

This module builds the service graph at startup and hands it to route
handlers through FastAPI dependencies.
"""

from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine
import structlog

from oee_monitor.services.material_rates import load_material_rates
from oee_monitor.services.notification_service import create_notification_service
from oee_monitor.services.production_service import ProductionService
from oee_monitor.services.record_store import InMemoryRecordStore, RecordStore, SqlRecordStore
from oee_monitor.services.shift_resolver import ShiftResolver
from oee_monitor.services.threshold_store import ThresholdStore, create_threshold_store

logger = structlog.get_logger()


def create_record_store(engine: Optional[AsyncEngine] = None) -> RecordStore:
    if engine is None:
        return InMemoryRecordStore()
    return SqlRecordStore(engine)


def create_production_service(
    engine: Optional[AsyncEngine] = None,
    threshold_store: Optional[ThresholdStore] = None
) -> ProductionService:
    """Wire the production service from settings."""
    store = create_record_store(engine)
    service = ProductionService(
        store=store,
        threshold_store=threshold_store or create_threshold_store(),
        material_rates=load_material_rates(),
        notification_service=create_notification_service(),
        shift_resolver=ShiftResolver()
    )
    logger.info(
        "Production service created",
        record_store=type(store).__name__,
        threshold_store=type(service.threshold_store).__name__,
        alert_sinks=[sink.name for sink in service.notification_service.sinks]
    )
    return service


def get_production_service(request: Request) -> ProductionService:
    return request.app.state.production_service


def get_threshold_store(request: Request) -> ThresholdStore:
    return request.app.state.production_service.threshold_store


def get_shift_resolver(request: Request) -> ShiftResolver:
    return request.app.state.production_service.shift_resolver
