"""
OEE Monitor - Alert API Routes

This module provides API endpoints for the alert thresholds and for
on-demand alert evaluation of a machine over a time window.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
import structlog

from oee_monitor.api.dependencies import get_production_service, get_threshold_store
from oee_monitor.auth.permissions import Permission, UserContext, get_current_user
from oee_monitor.models.production import AlertEvent, AlertThresholds
from oee_monitor.services.production_service import ProductionService
from oee_monitor.services.threshold_store import ThresholdStore

logger = structlog.get_logger()

router = APIRouter()


@router.get("/thresholds", response_model=AlertThresholds, status_code=status.HTTP_200_OK)
async def get_alert_thresholds(
    current_user: UserContext = Depends(get_current_user),
    threshold_store: ThresholdStore = Depends(get_threshold_store)
) -> AlertThresholds:
    """Get the current alert thresholds."""
    if not current_user.has_permission(Permission.ALERTS_READ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to view alert settings"
        )

    return await threshold_store.get_thresholds()


@router.put("/thresholds", response_model=AlertThresholds, status_code=status.HTTP_200_OK)
async def update_alert_thresholds(
    thresholds: AlertThresholds,
    current_user: UserContext = Depends(get_current_user),
    threshold_store: ThresholdStore = Depends(get_threshold_store)
) -> AlertThresholds:
    """Replace the alert thresholds."""
    if not current_user.has_permission(Permission.SYSTEM_CONFIG):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to change alert settings"
        )

    updated = await threshold_store.set_thresholds(thresholds)

    logger.info("Alert thresholds updated via API", user_id=current_user.user_id)
    return updated


@router.post("/evaluate/{machine_id}", response_model=List[AlertEvent], status_code=status.HTTP_200_OK)
async def evaluate_machine_alerts(
    machine_id: str,
    start_date: Optional[datetime] = Query(None, description="Window start (defaults to 24 hours before the end)"),
    end_date: Optional[datetime] = Query(None, description="Window end (defaults to now)"),
    dispatch: bool = Query(True, description="Send raised alerts to the notification sinks"),
    current_user: UserContext = Depends(get_current_user),
    service: ProductionService = Depends(get_production_service)
) -> List[AlertEvent]:
    """Evaluate alert thresholds against a machine's OEE history window."""
    if not current_user.has_permission(Permission.ALERTS_EVALUATE):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to evaluate alerts"
        )

    alerts = await service.evaluate_machine(machine_id, start=start_date, end=end_date, dispatch=dispatch)

    logger.info(
        "Machine alerts evaluated via API",
        machine_id=machine_id,
        alerts=len(alerts),
        user_id=current_user.user_id
    )
    return alerts
