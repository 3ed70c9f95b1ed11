"""
OEE Monitor - OEE & History API Routes

This module provides API endpoints for on-demand OEE calculation, OEE
history, period rollups and shift lookups.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
import structlog

from oee_monitor.api.dependencies import get_production_service, get_shift_resolver
from oee_monitor.auth.permissions import Permission, UserContext, get_current_user
from oee_monitor.models.production import (
    HistoryStatistics, OEEComputation, PaginatedHistoryResponse, PeriodSummary,
    ProductionIntervalCreate, ShiftResponse, SummaryPeriod
)
from oee_monitor.services.production_service import ProductionService
from oee_monitor.services.shift_resolver import ShiftResolver, ShiftWindow

logger = structlog.get_logger()

router = APIRouter()


def _shift_response(window: ShiftWindow) -> ShiftResponse:
    return ShiftResponse(
        shift=window.name,
        code=window.code,
        start=window.format_start(),
        end=window.format_end()
    )


@router.post("/compute", response_model=OEEComputation, status_code=status.HTTP_200_OK)
async def compute_oee(
    interval_data: ProductionIntervalCreate,
    current_user: UserContext = Depends(get_current_user),
    service: ProductionService = Depends(get_production_service)
) -> OEEComputation:
    """Calculate OEE for an interval without saving it."""
    if not current_user.has_permission(Permission.OEE_CALCULATE):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to calculate OEE"
        )

    computation = service.preview(interval_data)

    logger.info(
        "OEE calculated via API",
        machine_id=computation.machine_id,
        oee=computation.metrics.oee,
        user_id=current_user.user_id
    )
    return computation


@router.get("/history", response_model=PaginatedHistoryResponse, status_code=status.HTTP_200_OK)
async def get_oee_history(
    machine_id: Optional[str] = Query(None, description="Filter by machine"),
    start_date: Optional[datetime] = Query(None, description="Start of the history window"),
    end_date: Optional[datetime] = Query(None, description="End of the history window"),
    limit: int = Query(100, ge=1, le=1000, description="Number of records to return"),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    current_user: UserContext = Depends(get_current_user),
    service: ProductionService = Depends(get_production_service)
) -> PaginatedHistoryResponse:
    """Get OEE history entries, newest first."""
    if not current_user.has_permission(Permission.OEE_READ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to view OEE data"
        )

    history = await service.get_history(
        machine_id=machine_id,
        start=start_date,
        end=end_date,
        limit=limit,
        offset=skip
    )

    logger.debug(
        "OEE history retrieved via API",
        machine_id=machine_id,
        count=len(history.history),
        user_id=current_user.user_id
    )
    return history


@router.get("/history/summary", response_model=List[PeriodSummary], status_code=status.HTTP_200_OK)
async def get_oee_history_summary(
    period: SummaryPeriod = Query(SummaryPeriod.DAY, description="Rollup period"),
    machine_id: Optional[str] = Query(None, description="Filter by machine"),
    start_date: Optional[datetime] = Query(None, description="Start of the history window"),
    end_date: Optional[datetime] = Query(None, description="End of the history window"),
    current_user: UserContext = Depends(get_current_user),
    service: ProductionService = Depends(get_production_service)
) -> List[PeriodSummary]:
    """Roll OEE history up by day, week or month."""
    if not current_user.has_permission(Permission.ANALYTICS_READ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to view analytics"
        )

    return await service.summarize_history(
        machine_id=machine_id,
        period=period,
        start=start_date,
        end=end_date
    )


@router.get("/history/statistics", response_model=HistoryStatistics, status_code=status.HTTP_200_OK)
async def get_oee_history_statistics(
    machine_id: Optional[str] = Query(None, description="Filter by machine"),
    start_date: Optional[datetime] = Query(None, description="Start of the history window"),
    end_date: Optional[datetime] = Query(None, description="End of the history window"),
    current_user: UserContext = Depends(get_current_user),
    service: ProductionService = Depends(get_production_service)
) -> HistoryStatistics:
    """Averages, totals and OEE range over a history window."""
    if not current_user.has_permission(Permission.ANALYTICS_READ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to view analytics"
        )

    return await service.history_statistics(machine_id=machine_id, start=start_date, end=end_date)


@router.get("/shift", response_model=ShiftResponse, status_code=status.HTTP_200_OK)
async def get_shift(
    timestamp: Optional[datetime] = Query(None, description="Timestamp to resolve (defaults to now)"),
    end_time: Optional[datetime] = Query(None, description="Interval end; resolves by overlap when given"),
    current_user: UserContext = Depends(get_current_user),
    resolver: ShiftResolver = Depends(get_shift_resolver)
) -> ShiftResponse:
    """Resolve the shift for a timestamp or an interval."""
    if not current_user.has_permission(Permission.OEE_READ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to view OEE data"
        )

    shift = resolver.resolve_shift(timestamp or datetime.now(resolver.timezone), end_time)
    return _shift_response(resolver.get_shift_info(shift))


@router.get("/shifts", response_model=List[ShiftResponse], status_code=status.HTTP_200_OK)
async def list_shifts(
    current_user: UserContext = Depends(get_current_user),
    resolver: ShiftResolver = Depends(get_shift_resolver)
) -> List[ShiftResponse]:
    """List the plant's shift windows."""
    if not current_user.has_permission(Permission.OEE_READ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to view OEE data"
        )

    return [_shift_response(window) for window in resolver.list_shifts()]
