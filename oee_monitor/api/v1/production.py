"""
OEE Monitor - Production Interval API Routes

This module provides API endpoints for entering, correcting, listing and
deleting production intervals. Every write recomputes the interval's OEE
and appends a history entry.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
import structlog

from oee_monitor.api.dependencies import get_production_service
from oee_monitor.auth.permissions import Permission, UserContext, get_current_user
from oee_monitor.models.production import (
    ProductionIntervalCreate, ProductionIntervalResponse, ProductionIntervalUpdate,
    ProductionResult, ShiftName
)
from oee_monitor.services.production_service import ProductionService

logger = structlog.get_logger()

router = APIRouter()


@router.post("/intervals", response_model=ProductionResult, status_code=status.HTTP_201_CREATED)
async def create_production_interval(
    interval_data: ProductionIntervalCreate,
    current_user: UserContext = Depends(get_current_user),
    service: ProductionService = Depends(get_production_service)
) -> ProductionResult:
    """Record a production interval and compute its OEE."""
    if not current_user.has_permission(Permission.PRODUCTION_WRITE):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to record production"
        )

    result = await service.create_interval(interval_data, actor=current_user.user_id)

    logger.info(
        "Production interval created via API",
        interval_id=result.interval.id,
        machine_id=result.interval.machine_id,
        user_id=current_user.user_id
    )
    return result


@router.post("/intervals/upsert", response_model=ProductionResult, status_code=status.HTTP_200_OK)
async def upsert_production_interval(
    interval_data: ProductionIntervalCreate,
    current_user: UserContext = Depends(get_current_user),
    service: ProductionService = Depends(get_production_service)
) -> ProductionResult:
    """Create or update the machine's interval for the day of ``start_time``."""
    if not current_user.has_permission(Permission.PRODUCTION_WRITE):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to record production"
        )

    result = await service.upsert_interval(interval_data, actor=current_user.user_id)

    logger.info(
        "Production interval upserted via API",
        interval_id=result.interval.id,
        machine_id=result.interval.machine_id,
        action=result.action,
        user_id=current_user.user_id
    )
    return result


@router.get("/intervals", response_model=List[ProductionIntervalResponse], status_code=status.HTTP_200_OK)
async def list_production_intervals(
    machine_id: Optional[str] = Query(None, description="Filter by machine"),
    start_date: Optional[datetime] = Query(None, description="Earliest interval start"),
    end_date: Optional[datetime] = Query(None, description="Latest interval start"),
    shift: Optional[ShiftName] = Query(None, description="Filter by shift"),
    limit: int = Query(100, ge=1, le=1000, description="Number of records to return"),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    current_user: UserContext = Depends(get_current_user),
    service: ProductionService = Depends(get_production_service)
) -> List[ProductionIntervalResponse]:
    """List production intervals, newest first."""
    if not current_user.has_permission(Permission.PRODUCTION_READ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to view production"
        )

    return await service.list_intervals(
        machine_id=machine_id,
        start=start_date,
        end=end_date,
        shift=shift,
        limit=limit,
        offset=skip
    )


@router.get("/intervals/{interval_id}", response_model=ProductionIntervalResponse, status_code=status.HTTP_200_OK)
async def get_production_interval(
    interval_id: str,
    current_user: UserContext = Depends(get_current_user),
    service: ProductionService = Depends(get_production_service)
) -> ProductionIntervalResponse:
    """Get one production interval."""
    if not current_user.has_permission(Permission.PRODUCTION_READ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to view production"
        )

    return await service.get_interval(interval_id)


@router.put("/intervals/{interval_id}", response_model=ProductionResult, status_code=status.HTTP_200_OK)
async def update_production_interval(
    interval_id: str,
    update_data: ProductionIntervalUpdate,
    current_user: UserContext = Depends(get_current_user),
    service: ProductionService = Depends(get_production_service)
) -> ProductionResult:
    """Correct a production interval and recompute its OEE."""
    if not current_user.has_permission(Permission.PRODUCTION_WRITE):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to update production"
        )

    result = await service.update_interval(interval_id, update_data, actor=current_user.user_id)

    logger.info(
        "Production interval updated via API",
        interval_id=interval_id,
        user_id=current_user.user_id
    )
    return result


@router.delete("/intervals/{interval_id}", status_code=status.HTTP_200_OK)
async def delete_production_interval(
    interval_id: str,
    current_user: UserContext = Depends(get_current_user),
    service: ProductionService = Depends(get_production_service)
) -> dict:
    """Delete a production interval together with its OEE history."""
    if not current_user.has_permission(Permission.PRODUCTION_DELETE):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to delete production"
        )

    removed_history = await service.delete_interval(interval_id)

    logger.info(
        "Production interval deleted via API",
        interval_id=interval_id,
        user_id=current_user.user_id
    )
    return {
        "message": "Production interval deleted successfully",
        "id": interval_id,
        "history_entries_removed": removed_history
    }
