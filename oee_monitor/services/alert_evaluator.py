"""
OEE Monitor - Alert Evaluator

This module compares OEE, downtime and production attainment against the
deployment's alert thresholds and returns every breached condition as an
AlertEvent. Evaluation is pure: thresholds and metrics are never mutated and
no deduplication across calls takes place.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, List, Optional
import structlog

from oee_monitor.config import settings
from oee_monitor.models.production import (
    AlertEvent, AlertKind, AlertSeverity, AlertThresholds, OEEMetrics
)
from oee_monitor.utils.time_utils import utcnow

logger = structlog.get_logger()


@dataclass(frozen=True)
class EvaluationMetrics:
    """Snapshot of the values an evaluation looks at."""
    oee: float
    downtime_minutes: float
    production: Optional[float]
    timestamp: datetime
    availability: Optional[float] = None
    performance: Optional[float] = None
    quality: Optional[float] = None

    @classmethod
    def from_interval(
        cls,
        interval: Any,
        metrics: OEEMetrics,
        production: Optional[float] = None,
        timestamp: Optional[datetime] = None
    ) -> "EvaluationMetrics":
        """Snapshot of one computed interval; ``production`` is its attainment in percent."""
        return cls(
            oee=metrics.oee,
            downtime_minutes=float(interval.downtime_minutes or 0),
            production=production,
            timestamp=timestamp or utcnow(),
            availability=metrics.availability,
            performance=metrics.performance,
            quality=metrics.quality
        )

    @classmethod
    def from_summary(
        cls,
        summary: Any,
        production: Optional[float] = None,
        timestamp: Optional[datetime] = None
    ) -> "EvaluationMetrics":
        """Snapshot of a period rollup; downtime is the window's cumulative total."""
        return cls(
            oee=summary.avg_oee,
            downtime_minutes=summary.total_downtime,
            production=production,
            timestamp=timestamp or utcnow(),
            availability=summary.avg_availability,
            performance=summary.avg_performance,
            quality=summary.avg_quality
        )

    def as_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return {key: value for key, value in data.items() if value is not None}


def default_thresholds(app_settings=None) -> AlertThresholds:
    """Thresholds built from the ALERT_* settings."""
    app_settings = app_settings or settings
    return AlertThresholds(
        oee_min=app_settings.ALERT_OEE_MIN,
        downtime_max=app_settings.ALERT_DOWNTIME_MAX,
        production_min=app_settings.ALERT_PRODUCTION_MIN,
        oee_critical=app_settings.ALERT_OEE_CRITICAL,
        downtime_critical=app_settings.ALERT_DOWNTIME_CRITICAL,
        production_critical=app_settings.ALERT_PRODUCTION_CRITICAL,
        severity_banding=app_settings.ALERT_SEVERITY_BANDING
    )


class AlertEvaluator:
    """Threshold evaluation for OEE alerts."""

    def __init__(self, templates: Optional[dict] = None):
        self.templates = templates or {
            AlertKind.LOW_OEE.value: settings.ALERT_TEMPLATE_LOW_OEE,
            AlertKind.DOWNTIME.value: settings.ALERT_TEMPLATE_DOWNTIME,
            AlertKind.PRODUCTION.value: settings.ALERT_TEMPLATE_PRODUCTION,
        }

    @staticmethod
    def _severity_below(value: float, minimum: float, critical: float, banding: bool) -> AlertSeverity:
        """Severity for a value that fell under ``minimum``."""
        if not banding:
            return AlertSeverity.HIGH
        if value <= critical:
            return AlertSeverity.CRITICAL
        if minimum - value > (minimum - critical) / 2:
            return AlertSeverity.HIGH
        return AlertSeverity.MEDIUM

    @staticmethod
    def _severity_above(value: float, maximum: float, critical: float, banding: bool) -> AlertSeverity:
        """Severity for a value that rose over ``maximum``."""
        if not banding:
            return AlertSeverity.HIGH
        if value >= critical:
            return AlertSeverity.CRITICAL
        if value - maximum > (critical - maximum) / 2:
            return AlertSeverity.HIGH
        return AlertSeverity.MEDIUM

    def _message(self, kind: AlertKind, machine_id: str, value: float, threshold: float) -> str:
        template = self.templates.get(kind.value)
        try:
            return template.format(machine_id=machine_id, value=value, threshold=threshold)
        except (AttributeError, KeyError, IndexError, ValueError) as e:
            logger.warning("Alert message template could not be rendered", kind=kind.value, error=str(e))
            return f"{kind.value} alert for machine {machine_id}: {value} (threshold {threshold})"

    def _event(
        self,
        machine_id: str,
        kind: AlertKind,
        severity: AlertSeverity,
        value: float,
        threshold: float,
        metrics: EvaluationMetrics
    ) -> AlertEvent:
        return AlertEvent(
            machine_id=machine_id,
            kind=kind,
            severity=severity,
            message=self._message(kind, machine_id, value, threshold),
            value=value,
            threshold=threshold,
            triggering_metrics=metrics.as_dict(),
            timestamp=metrics.timestamp
        )

    def evaluate(
        self,
        machine_id: str,
        metrics: EvaluationMetrics,
        thresholds: Optional[AlertThresholds] = None
    ) -> List[AlertEvent]:
        """Return one event per breached threshold, in low_oee, downtime, production order."""
        thresholds = thresholds or default_thresholds()
        events: List[AlertEvent] = []

        if metrics.oee < thresholds.oee_min:
            events.append(self._event(
                machine_id,
                AlertKind.LOW_OEE,
                self._severity_below(
                    metrics.oee, thresholds.oee_min, thresholds.oee_critical, thresholds.severity_banding
                ),
                metrics.oee,
                thresholds.oee_min,
                metrics
            ))

        if metrics.downtime_minutes > thresholds.downtime_max:
            events.append(self._event(
                machine_id,
                AlertKind.DOWNTIME,
                self._severity_above(
                    metrics.downtime_minutes,
                    thresholds.downtime_max,
                    thresholds.downtime_critical,
                    thresholds.severity_banding
                ),
                metrics.downtime_minutes,
                thresholds.downtime_max,
                metrics
            ))

        if metrics.production is not None and metrics.production < thresholds.production_min:
            events.append(self._event(
                machine_id,
                AlertKind.PRODUCTION,
                self._severity_below(
                    metrics.production,
                    thresholds.production_min,
                    thresholds.production_critical,
                    thresholds.severity_banding
                ),
                metrics.production,
                thresholds.production_min,
                metrics
            ))

        if events:
            logger.info(
                "OEE alerts raised",
                machine_id=machine_id,
                kinds=[event.kind for event in events],
                severities=[event.severity for event in events]
            )

        return events


alert_evaluator = AlertEvaluator()
