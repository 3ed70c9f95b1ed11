"""
OEE Monitor - Production Models

This module defines Pydantic models for production intervals, OEE metrics,
history entries, period summaries, alert thresholds and alert events.
"""

from datetime import datetime, date, time
from typing import Any, Dict, List, Optional
from enum import Enum

from pydantic import BaseModel, Field, validator

from oee_monitor.utils.time_utils import to_utc


# Enums for names and types
class ShiftName(str, Enum):
    """Shift name enumeration."""
    MORNING = "Morning"
    AFTERNOON = "Afternoon"
    NIGHT = "Night"
    UNDEFINED = "Undefined"


class SummaryPeriod(str, Enum):
    """History rollup period enumeration."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class AlertKind(str, Enum):
    """Alert kind enumeration."""
    LOW_OEE = "low_oee"
    DOWNTIME = "downtime"
    PRODUCTION = "production"


class AlertSeverity(str, Enum):
    """Alert severity enumeration."""
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Base models
class BaseProductionModel(BaseModel):
    """Base model for production entities."""

    class Config:
        from_attributes = True
        use_enum_values = True
        json_encoders = {
            datetime: lambda v: v.isoformat(),
            date: lambda v: v.isoformat(),
            time: lambda v: v.isoformat()
        }


# Production Interval Models
class ProductionIntervalBase(BaseProductionModel):
    """
    Raw counters for one operating window of one machine.

    Counters are not range-checked here: the calculator rejects negative
    values with field-level reasons so that the same rules apply whether the
    interval arrives over HTTP or from an import script.
    """
    machine_id: str = Field(..., min_length=1, max_length=100, description="Machine identifier")
    start_time: datetime = Field(..., description="Interval start")
    end_time: Optional[datetime] = Field(None, description="Interval end (open interval when absent)")
    good_production: float = Field(0, description="Acceptable units produced")
    film_waste: float = Field(0, description="Film waste (units)")
    organic_waste: float = Field(0, description="Organic waste (mass)")
    planned_time: float = Field(0, description="Planned run time in minutes")
    downtime_minutes: float = Field(0, description="Stoppage minutes within planned time")
    target_rate_per_minute: Optional[float] = Field(None, description="Expected good units per minute")
    material_code: Optional[str] = Field(None, max_length=50, description="Installed material code")
    shift: Optional[ShiftName] = Field(None, description="Resolved shift name")
    downtime_reason: Optional[str] = Field(None, max_length=200, description="Downtime reason")
    operator_id: Optional[str] = Field(None, max_length=100, description="Operator who entered the record")
    batch_number: Optional[str] = Field(None, max_length=100, description="Batch number")
    notes: Optional[str] = Field(None, max_length=1000, description="Free text notes")
    quality_check: bool = Field(True, description="Whether the quality check passed")


class ProductionIntervalCreate(ProductionIntervalBase):
    """Model for creating a production interval."""

    @validator("end_time")
    def validate_end_time(cls, v, values):
        """Validate that end time is not before start time."""
        if v is not None and values.get("start_time") is not None and to_utc(v) < to_utc(values["start_time"]):
            raise ValueError("end_time must not be before start_time")
        return v


class ProductionIntervalUpdate(BaseProductionModel):
    """Model for updating a production interval."""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    good_production: Optional[float] = None
    film_waste: Optional[float] = None
    organic_waste: Optional[float] = None
    planned_time: Optional[float] = None
    downtime_minutes: Optional[float] = None
    target_rate_per_minute: Optional[float] = None
    material_code: Optional[str] = Field(None, max_length=50)
    downtime_reason: Optional[str] = Field(None, max_length=200)
    operator_id: Optional[str] = Field(None, max_length=100)
    batch_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=1000)
    quality_check: Optional[bool] = None


class ProductionIntervalResponse(ProductionIntervalBase):
    """Model for a stored production interval with its derived metrics."""
    id: str
    availability: float = 0.0
    performance: float = 0.0
    quality: float = 0.0
    oee: float = 0.0
    created_at: datetime
    updated_at: datetime


# OEE Models
class OEEMetrics(BaseProductionModel):
    """OEE percentages, each clamped to [0, 100]."""
    availability: float = Field(..., ge=0, le=100)
    performance: float = Field(..., ge=0, le=100)
    quality: float = Field(..., ge=0, le=100)
    oee: float = Field(..., ge=0, le=100)


class HistoryEntry(BaseProductionModel):
    """Append-only snapshot of OEE metrics for one production interval."""
    id: str
    machine_id: str
    production_interval_id: str
    timestamp: datetime
    oee: float
    availability: float
    performance: float
    quality: float
    good_production: float
    total_waste: float
    downtime_minutes: float
    planned_time: float
    shift: Optional[ShiftName] = None
    operator_id: Optional[str] = None
    created_at: datetime


class PeriodSummary(BaseProductionModel):
    """Averages and totals for one day, week or month of history."""
    period: str
    avg_oee: float
    avg_availability: float
    avg_performance: float
    avg_quality: float
    total_production: float
    total_waste: float
    total_downtime: float
    entries_count: int


class HistoryStatistics(BaseProductionModel):
    """Averages, totals and OEE range over a whole set of history entries."""
    avg_oee: float = 0.0
    avg_availability: float = 0.0
    avg_performance: float = 0.0
    avg_quality: float = 0.0
    min_oee: float = 0.0
    max_oee: float = 0.0
    total_production: float = 0.0
    total_waste: float = 0.0
    total_downtime: float = 0.0
    total_planned_time: float = 0.0
    entries_count: int = 0


# Alert Models
class AlertThresholds(BaseProductionModel):
    """Deployment-wide alert cutoffs."""
    oee_min: float = Field(65.0, ge=0, le=100, description="Minimum acceptable OEE (%)")
    downtime_max: float = Field(30.0, ge=0, description="Maximum acceptable downtime (minutes)")
    production_min: float = Field(85.0, ge=0, description="Minimum acceptable production (% of target)")
    oee_critical: float = Field(50.0, ge=0, le=100, description="OEE at or below which alerts are critical")
    downtime_critical: float = Field(60.0, ge=0, description="Downtime at or above which alerts are critical")
    production_critical: float = Field(50.0, ge=0, description="Production at or below which alerts are critical")
    severity_banding: bool = Field(True, description="Escalate severity with the size of the breach")

    @validator("oee_critical")
    def validate_oee_critical(cls, v, values):
        """The critical OEE level must not sit above the OEE minimum."""
        minimum = values.get("oee_min")
        if minimum is not None and v > minimum:
            raise ValueError("oee_critical must not be greater than oee_min")
        return v

    @validator("downtime_critical")
    def validate_downtime_critical(cls, v, values):
        maximum = values.get("downtime_max")
        if maximum is not None and v < maximum:
            raise ValueError("downtime_critical must not be less than downtime_max")
        return v

    @validator("production_critical")
    def validate_production_critical(cls, v, values):
        minimum = values.get("production_min")
        if minimum is not None and v > minimum:
            raise ValueError("production_critical must not be greater than production_min")
        return v


class AlertEvent(BaseProductionModel):
    """Threshold breach handed to notification and UI consumers."""
    machine_id: str
    kind: AlertKind
    severity: AlertSeverity
    message: str
    value: float
    threshold: float
    triggering_metrics: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class ProductionResult(BaseProductionModel):
    """Outcome of a production entry: the saved interval plus derived side effects."""
    interval: ProductionIntervalResponse
    action: str = "created"
    history_entry: Optional[HistoryEntry] = None
    alerts: List[AlertEvent] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class PaginatedHistoryResponse(BaseProductionModel):
    """Page of history entries with the unpaginated total."""
    history: List[HistoryEntry]
    total: int


class ShiftResponse(BaseProductionModel):
    """Shift resolved for a timestamp or interval."""
    shift: ShiftName
    code: str
    start: str
    end: str


class OEEComputation(BaseProductionModel):
    """Metrics computed for an interval that was not persisted."""
    machine_id: str
    shift: Optional[ShiftName] = None
    target_rate_per_minute: float
    target_production: float = Field(..., description="Rate x planned time x derating factor")
    production_attainment: Optional[float] = Field(None, description="Good units as % of target production")
    metrics: OEEMetrics
    warnings: List[str] = Field(default_factory=list)
