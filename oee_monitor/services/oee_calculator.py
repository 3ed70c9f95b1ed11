"""
OEE Monitor - OEE Calculator Service

This module turns one production interval's raw counters into OEE
percentages. OEE is calculated as Availability × Performance × Quality.

- Availability = (Planned Time - Downtime) / Planned Time × 100
- Performance = Good Units / Expected Units over the actual runtime × 100,
  where Expected Units = Target Rate × Planned Time × Derating Factor
- Quality = Good Units / (Good Units + Film Waste + Organic Waste) × 100

The calculator is pure: it never touches storage. The production service
calls it explicitly before persisting an interval.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional
import structlog

from oee_monitor.config import settings
from oee_monitor.models.production import OEEMetrics
from oee_monitor.utils.exceptions import ValidationError

logger = structlog.get_logger()

COUNTER_FIELDS = (
    "good_production",
    "film_waste",
    "organic_waste",
    "planned_time",
    "downtime_minutes",
)


@dataclass(frozen=True)
class CalculatorConfig:
    """Calculation constants, injected so deployments can override them."""
    default_target_rate: float = 65.0
    derating_factor: float = 0.85
    organic_waste_unit_factor: float = 1.0

    @classmethod
    def from_settings(cls, app_settings=None) -> "CalculatorConfig":
        app_settings = app_settings or settings
        return cls(
            default_target_rate=app_settings.DEFAULT_TARGET_RATE_PER_MINUTE,
            derating_factor=app_settings.PERFORMANCE_DERATING_FACTOR,
            organic_waste_unit_factor=app_settings.ORGANIC_WASTE_UNIT_FACTOR,
        )


ZERO_METRICS = OEEMetrics(availability=0.0, performance=0.0, quality=0.0, oee=0.0)


class OEECalculator:
    """OEE calculation service."""

    def __init__(self, config: Optional[CalculatorConfig] = None):
        self.config = config or CalculatorConfig.from_settings()

    @staticmethod
    def _clamp(value: float, lower: float = 0.0, upper: float = 100.0) -> float:
        return max(lower, min(upper, value))

    @staticmethod
    def validate(interval: Any) -> None:
        """Reject negative or non-numeric counters, reporting every offending field."""
        errors: Dict[str, str] = {}
        for field in COUNTER_FIELDS:
            value = getattr(interval, field, 0)
            if value is None:
                continue
            if not isinstance(value, (int, float)) or math.isnan(value) or math.isinf(value):
                errors[field] = "must be a finite number"
            elif value < 0:
                errors[field] = "must not be negative"

        rate = getattr(interval, "target_rate_per_minute", None)
        if rate is not None:
            if not isinstance(rate, (int, float)) or math.isnan(rate) or math.isinf(rate):
                errors["target_rate_per_minute"] = "must be a finite number"
            elif rate < 0:
                errors["target_rate_per_minute"] = "must not be negative"

        if errors:
            logger.warning(
                "Production interval rejected",
                machine_id=getattr(interval, "machine_id", None),
                fields=errors
            )
            raise ValidationError("Invalid production interval", fields=errors)

    def target_rate(self, interval: Any) -> float:
        rate = getattr(interval, "target_rate_per_minute", None)
        if rate is None:
            return self.config.default_target_rate
        return float(rate)

    def target_production(self, interval: Any) -> float:
        """Derated units expected over the whole planned time (the dashboard target)."""
        planned_time = float(getattr(interval, "planned_time", 0) or 0)
        return self.target_rate(interval) * planned_time * self.config.derating_factor

    def total_production(self, interval: Any) -> float:
        """
        Good units plus both waste streams.

        Organic waste is a mass; it is scaled by the configured unit factor,
        which defaults to 1.0 and so sums mass and counts directly.
        """
        return (
            float(interval.good_production or 0)
            + float(interval.film_waste or 0)
            + float(interval.organic_waste or 0) * self.config.organic_waste_unit_factor
        )

    def production_attainment(self, interval: Any) -> Optional[float]:
        """Good units as a percentage of the target production; None without a target."""
        self.validate(interval)
        target = self.target_production(interval)
        if target <= 0:
            return None
        return float(interval.good_production or 0) / target * 100.0

    def compute(self, interval: Any) -> OEEMetrics:
        """Calculate availability, performance, quality and OEE for one interval."""
        self.validate(interval)

        planned_time = float(interval.planned_time or 0)
        if planned_time <= 0:
            return ZERO_METRICS.model_copy()

        downtime = float(interval.downtime_minutes or 0)
        good_production = float(interval.good_production or 0)

        actual_runtime = planned_time - downtime
        if actual_runtime < 0:
            logger.warning(
                "Downtime exceeds planned time; runtime saturated at zero",
                machine_id=getattr(interval, "machine_id", None),
                planned_time=planned_time,
                downtime_minutes=downtime
            )
            actual_runtime = 0.0

        availability = self._clamp(actual_runtime / planned_time * 100.0)

        expected_production = self.target_production(interval)
        if expected_production > 0 and actual_runtime > 0:
            runtime_expectation = expected_production * actual_runtime / planned_time
            performance_raw = good_production / runtime_expectation * 100.0
        else:
            performance_raw = 0.0
        performance = self._clamp(min(performance_raw, 100.0))

        total_production = self.total_production(interval)
        if total_production > 0:
            quality = self._clamp(good_production / total_production * 100.0)
        else:
            quality = 100.0

        oee = self._clamp(availability * performance * quality / 10000.0)

        logger.debug(
            "OEE calculated",
            machine_id=getattr(interval, "machine_id", None),
            availability=availability,
            performance=performance,
            quality=quality,
            oee=oee
        )

        return OEEMetrics(
            availability=availability,
            performance=performance,
            quality=quality,
            oee=oee
        )


oee_calculator = OEECalculator()
