"""
OEE Monitor - Production Service

This module contains the application-service layer for production intervals.
Metric computation is an explicit step of each write, in this order: validate
the input, resolve the shift, look up the target rate, compute the metrics,
save the interval, record history, evaluate alerts and dispatch them.

Only the interval save is authoritative. History and alert evaluation
failures are logged and reported back as warnings; they never fail the write.
Alert delivery runs as a background task once the result is returned.
Delivery failures are logged and counted in the dispatch metrics.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4
import structlog

from oee_monitor.models.production import (
    AlertEvent, HistoryStatistics, OEEComputation, PaginatedHistoryResponse, PeriodSummary,
    ProductionIntervalCreate, ProductionIntervalResponse, ProductionIntervalUpdate,
    ProductionResult, ShiftName, SummaryPeriod
)
from oee_monitor.services import metrics as oee_metrics
from oee_monitor.services.alert_evaluator import (
    AlertEvaluator, EvaluationMetrics, default_thresholds
)
from oee_monitor.services.history_aggregator import HistoryAggregator
from oee_monitor.services.material_rates import MaterialRateLookup
from oee_monitor.services.notification_service import NotificationService
from oee_monitor.services.oee_calculator import OEECalculator
from oee_monitor.services.record_store import RecordStore
from oee_monitor.services.shift_resolver import ShiftResolver
from oee_monitor.services.threshold_store import InMemoryThresholdStore, ThresholdStore
from oee_monitor.utils.exceptions import (
    HistoryWriteError, NotFoundError, UndefinedShiftError, ValidationError
)
from oee_monitor.utils.time_utils import to_utc, utcnow

logger = structlog.get_logger()

# Upper bound on intervals read when computing a window's production attainment
MAX_WINDOW_INTERVALS = 5000

DEFAULT_EVALUATION_WINDOW = timedelta(hours=24)


class ProductionService:
    """Production interval management and the OEE pipeline around it."""

    def __init__(
        self,
        store: RecordStore,
        threshold_store: Optional[ThresholdStore] = None,
        material_rates: Optional[MaterialRateLookup] = None,
        notification_service: Optional[NotificationService] = None,
        calculator: Optional[OEECalculator] = None,
        shift_resolver: Optional[ShiftResolver] = None,
        history: Optional[HistoryAggregator] = None,
        evaluator: Optional[AlertEvaluator] = None
    ):
        self.store = store
        self.threshold_store = threshold_store or InMemoryThresholdStore()
        self.material_rates = material_rates or MaterialRateLookup()
        self.notification_service = notification_service or NotificationService()
        self.calculator = calculator or OEECalculator()
        self.shift_resolver = shift_resolver or ShiftResolver()
        self.history = history or HistoryAggregator()
        self.evaluator = evaluator or AlertEvaluator()
        self._dispatch_tasks: Set[asyncio.Task] = set()

    # Collaborator lookups with documented fallbacks

    def _lookup_rate(self, material_code: Optional[str]) -> float:
        try:
            return self.material_rates.rate_or_default(material_code)
        except Exception as e:
            logger.warning(
                "Material rate lookup failed, using default target rate",
                material_code=material_code,
                error=str(e)
            )
            return self.calculator.config.default_target_rate

    async def _get_thresholds(self):
        try:
            return await self.threshold_store.get_thresholds()
        except Exception as e:
            logger.warning("Threshold lookup failed, using default thresholds", error=str(e))
            return default_thresholds()

    def _resolve_shift(self, record: ProductionIntervalResponse, warnings: List[str]) -> str:
        try:
            return ShiftName(self.shift_resolver.resolve_shift(record.start_time, record.end_time)).value
        except UndefinedShiftError as e:
            logger.error("Shift could not be resolved", machine_id=record.machine_id, details=e.details)
            warnings.append(e.message)
            return ShiftName.UNDEFINED.value

    # Pipeline

    def _build_record(
        self,
        values: Dict[str, Any],
        existing: Optional[ProductionIntervalResponse] = None,
        actor: Optional[str] = None
    ) -> ProductionIntervalResponse:
        values = dict(values)
        values["start_time"] = to_utc(values.get("start_time"))
        values["end_time"] = to_utc(values.get("end_time"))
        if values["start_time"] is None:
            raise ValidationError("Invalid production interval", fields={"start_time": "is required"})
        if values["end_time"] is not None and values["end_time"] < values["start_time"]:
            raise ValidationError(
                "Invalid production interval",
                fields={"end_time": "must not be before start_time"}
            )
        if actor and not values.get("operator_id"):
            values["operator_id"] = actor

        now = utcnow()
        for derived in ("id", "availability", "performance", "quality", "oee", "created_at", "updated_at"):
            values.pop(derived, None)

        return ProductionIntervalResponse(
            **values,
            id=existing.id if existing else str(uuid4()),
            created_at=existing.created_at if existing else now,
            updated_at=now
        )

    async def _run_pipeline(
        self,
        values: Dict[str, Any],
        existing: Optional[ProductionIntervalResponse],
        action: str,
        actor: Optional[str]
    ) -> ProductionResult:
        warnings: List[str] = []

        record = self._build_record(values, existing, actor)
        self.calculator.validate(record)

        if not record.shift:
            record.shift = self._resolve_shift(record, warnings)
        if record.target_rate_per_minute is None:
            record.target_rate_per_minute = self._lookup_rate(record.material_code)

        metrics = self.calculator.compute(record)
        record.availability = metrics.availability
        record.performance = metrics.performance
        record.quality = metrics.quality
        record.oee = metrics.oee

        if existing:
            await self.store.update_interval(record)
        else:
            await self.store.save_interval(record)
        oee_metrics.record_calculation(record.machine_id, metrics.oee)

        logger.info(
            f"Production interval {action}",
            interval_id=record.id,
            machine_id=record.machine_id,
            shift=record.shift,
            oee=record.oee,
            actor=actor
        )

        history_entry = None
        try:
            history_entry = await self.history.record_history(self.store, record, metrics)
        except HistoryWriteError as e:
            oee_metrics.record_history_failure(record.machine_id)
            warnings.append(e.message)

        alerts: List[AlertEvent] = []
        try:
            thresholds = await self._get_thresholds()
            snapshot = EvaluationMetrics.from_interval(
                record,
                metrics,
                production=self.calculator.production_attainment(record)
            )
            alerts = self.evaluator.evaluate(record.machine_id, snapshot, thresholds)
        except Exception as e:
            logger.error("Alert evaluation failed", machine_id=record.machine_id, error=str(e))
            warnings.append("Alert evaluation failed")

        self._schedule_dispatch(record.machine_id, alerts)

        return ProductionResult(
            interval=record,
            action=action,
            history_entry=history_entry,
            alerts=alerts,
            warnings=warnings
        )

    # Alert delivery

    def _schedule_dispatch(self, machine_id: str, alerts: List[AlertEvent]) -> None:
        """Deliver ``alerts`` in a background task tracked until it finishes."""
        if not alerts:
            return
        oee_metrics.record_alerts(alerts)
        task = asyncio.create_task(self._deliver(machine_id, alerts))
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

    async def _deliver(self, machine_id: str, alerts: List[AlertEvent]) -> Dict[str, bool]:
        try:
            results = await self.notification_service.dispatch(alerts)
        except Exception as e:
            logger.error("Alert dispatch failed", machine_id=machine_id, error=str(e))
            return {}

        oee_metrics.record_dispatch_results(results)
        failed = sorted(sink for sink, delivered in results.items() if not delivered)
        if failed:
            logger.warning("Alert delivery failed", machine_id=machine_id, sinks=failed, alerts=len(alerts))
        return results

    @property
    def pending_dispatches(self) -> int:
        return len(self._dispatch_tasks)

    async def wait_for_dispatch(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight alert deliveries, giving up after ``timeout`` seconds."""
        if not self._dispatch_tasks:
            return
        pending = set(self._dispatch_tasks)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning("Alert dispatch still running", pending=len(still_running), timeout_seconds=timeout)

    @staticmethod
    def _merge(existing: ProductionIntervalResponse, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Overlay ``changes`` on ``existing``, clearing values derived from changed inputs."""
        merged = existing.model_dump()
        merged.update(changes)
        if "shift" not in changes and ({"start_time", "end_time"} & changes.keys()):
            merged["shift"] = None
        if "target_rate_per_minute" not in changes and "material_code" in changes:
            merged["target_rate_per_minute"] = None
        return merged

    # Production interval operations

    async def create_interval(
        self,
        data: ProductionIntervalCreate,
        actor: Optional[str] = None
    ) -> ProductionResult:
        """Create a production interval and run the full OEE pipeline."""
        return await self._run_pipeline(data.model_dump(), None, "created", actor)

    async def upsert_interval(
        self,
        data: ProductionIntervalCreate,
        actor: Optional[str] = None
    ) -> ProductionResult:
        """
        Create or update the machine's interval for the plant-local day of ``start_time``.

        The first interval found for that machine and day is updated and
        recomputed; otherwise a new one is created. Both paths append a
        history entry.
        """
        local_start = self.shift_resolver.to_local(data.start_time)
        day_start = local_start.replace(
            hour=0, minute=0, second=0, microsecond=0, tzinfo=self.shift_resolver.timezone
        )
        day_end = day_start + timedelta(days=1) - timedelta(microseconds=1)

        matches = await self.store.find_intervals(
            machine_id=data.machine_id,
            start=to_utc(day_start),
            end=to_utc(day_end),
            limit=1
        )
        if not matches:
            return await self._run_pipeline(data.model_dump(), None, "created", actor)

        existing = matches[0]
        changes = data.model_dump(exclude_unset=True)
        return await self._run_pipeline(self._merge(existing, changes), existing, "updated", actor)

    async def update_interval(
        self,
        interval_id: str,
        changes: ProductionIntervalUpdate,
        actor: Optional[str] = None
    ) -> ProductionResult:
        """Apply ``changes`` to an interval, recompute its metrics and append history."""
        existing = await self.get_interval(interval_id)
        values = self._merge(existing, changes.model_dump(exclude_unset=True))
        return await self._run_pipeline(values, existing, "updated", actor)

    async def delete_interval(self, interval_id: str) -> int:
        """Delete an interval and its history; returns the number of history entries removed."""
        await self.get_interval(interval_id)
        removed_history = await self.store.delete_history_for_interval(interval_id)
        await self.store.delete_interval(interval_id)
        logger.info(
            "Production interval deleted",
            interval_id=interval_id,
            history_entries_removed=removed_history
        )
        return removed_history

    async def get_interval(self, interval_id: str) -> ProductionIntervalResponse:
        record = await self.store.get_interval(interval_id)
        if record is None:
            raise NotFoundError("Production interval", interval_id)
        return record

    async def list_intervals(
        self,
        machine_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        shift: Optional[ShiftName] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[ProductionIntervalResponse]:
        return await self.store.find_intervals(
            machine_id=machine_id,
            start=to_utc(start),
            end=to_utc(end),
            shift=ShiftName(shift).value if shift else None,
            limit=limit,
            offset=offset
        )

    def preview(self, data: ProductionIntervalCreate) -> OEEComputation:
        """Compute metrics for an interval without persisting anything."""
        record = self._build_record(data.model_dump())
        self.calculator.validate(record)
        warnings: List[str] = []
        if not record.shift:
            record.shift = self._resolve_shift(record, warnings)
        if record.target_rate_per_minute is None:
            record.target_rate_per_minute = self._lookup_rate(record.material_code)

        metrics = self.calculator.compute(record)
        return OEEComputation(
            machine_id=record.machine_id,
            shift=record.shift,
            target_rate_per_minute=record.target_rate_per_minute,
            target_production=self.calculator.target_production(record),
            production_attainment=self.calculator.production_attainment(record),
            metrics=metrics,
            warnings=warnings
        )

    # History operations

    async def get_history(
        self,
        machine_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0
    ) -> PaginatedHistoryResponse:
        entries, total = await self.store.find_history(
            machine_id=machine_id,
            start=to_utc(start),
            end=to_utc(end),
            limit=limit,
            offset=offset
        )
        return PaginatedHistoryResponse(history=entries, total=total)

    async def _all_history(self, machine_id, start, end):
        entries, _ = await self.store.find_history(
            machine_id=machine_id,
            start=to_utc(start),
            end=to_utc(end),
            limit=None
        )
        return entries

    async def _rollup_history(self, machine_id, start, end):
        return self.history.latest_per_interval(await self._all_history(machine_id, start, end))

    async def summarize_history(
        self,
        machine_id: Optional[str] = None,
        period: SummaryPeriod = SummaryPeriod.DAY,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[PeriodSummary]:
        entries = await self._rollup_history(machine_id, start, end)
        return self.history.summarize(entries, period)

    async def history_statistics(
        self,
        machine_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> HistoryStatistics:
        entries = await self._rollup_history(machine_id, start, end)
        return self.history.calculate_statistics(entries)

    # Alerts

    async def window_attainment(
        self,
        machine_id: str,
        start: Optional[datetime],
        end: Optional[datetime]
    ) -> Optional[float]:
        """Good units over target production for the machine's intervals in the window."""
        intervals = await self.list_intervals(machine_id=machine_id, start=start, end=end, limit=MAX_WINDOW_INTERVALS)
        target = sum(self.calculator.target_production(interval) for interval in intervals)
        if target <= 0:
            return None
        return sum(interval.good_production for interval in intervals) / target * 100.0

    async def evaluate_machine(
        self,
        machine_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        dispatch: bool = True
    ) -> List[AlertEvent]:
        """Evaluate alerts against the rollup of a window (default: the last 24 hours)."""
        end = to_utc(end) or utcnow()
        start = to_utc(start) or end - DEFAULT_EVALUATION_WINDOW

        entries = await self._rollup_history(machine_id, start, end)
        if not entries:
            logger.info("No OEE history to evaluate", machine_id=machine_id, start=start.isoformat(), end=end.isoformat())
            return []

        stats = self.history.calculate_statistics(entries)
        snapshot = EvaluationMetrics.from_summary(
            stats,
            production=await self.window_attainment(machine_id, start, end)
        )
        alerts = self.evaluator.evaluate(machine_id, snapshot, await self._get_thresholds())

        if dispatch:
            self._schedule_dispatch(machine_id, alerts)

        return alerts
