"""
OEE Monitor - History Aggregator

This module appends OEE history snapshots and rolls them up by day, week
or month for trend charts. Period keys are taken from the UTC date of each
entry's timestamp so that the same entries always land in the same buckets:

- day:   ``YYYY-MM-DD``
- week:  ``YYYY-MM-DD`` of the Sunday that starts the week
- month: ``YYYY-MM``

History writes are best effort. A failed write raises ``HistoryWriteError``
for the caller to log; it must never roll back the production interval that
produced it.
"""

import asyncio
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import uuid4
import structlog

from oee_monitor.config import settings
from oee_monitor.models.production import (
    HistoryEntry, HistoryStatistics, OEEMetrics, PeriodSummary, SummaryPeriod
)
from oee_monitor.services.record_store import RecordStore
from oee_monitor.utils.exceptions import HistoryWriteError
from oee_monitor.utils.time_utils import assume_utc, utcnow

logger = structlog.get_logger()


class HistoryAggregator:
    """OEE history recording and time-windowed rollups."""

    def __init__(self, write_timeout_seconds: Optional[float] = None):
        self.write_timeout_seconds = (
            write_timeout_seconds if write_timeout_seconds is not None
            else settings.HISTORY_WRITE_TIMEOUT_SECONDS
        )

    @staticmethod
    def build_entry(interval, metrics: OEEMetrics, timestamp: Optional[datetime] = None) -> HistoryEntry:
        """Snapshot ``metrics`` for ``interval``; the timestamp defaults to the interval start."""
        return HistoryEntry(
            id=str(uuid4()),
            machine_id=interval.machine_id,
            production_interval_id=interval.id,
            timestamp=timestamp or interval.start_time,
            oee=metrics.oee,
            availability=metrics.availability,
            performance=metrics.performance,
            quality=metrics.quality,
            good_production=interval.good_production or 0,
            total_waste=(interval.film_waste or 0) + (interval.organic_waste or 0),
            downtime_minutes=interval.downtime_minutes or 0,
            planned_time=interval.planned_time or 0,
            shift=interval.shift,
            operator_id=interval.operator_id,
            created_at=utcnow()
        )

    async def record_history(
        self,
        store: RecordStore,
        interval,
        metrics: OEEMetrics,
        timestamp: Optional[datetime] = None
    ) -> HistoryEntry:
        """Append a history entry, bounded by the configured write timeout."""
        entry = self.build_entry(interval, metrics, timestamp)
        try:
            await asyncio.wait_for(store.save_history_entry(entry), timeout=self.write_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "OEE history write timed out",
                machine_id=entry.machine_id,
                production_interval_id=entry.production_interval_id,
                timeout_seconds=self.write_timeout_seconds
            )
            raise HistoryWriteError(entry.machine_id, "History write timed out")
        except Exception as e:
            logger.warning(
                "OEE history write failed",
                machine_id=entry.machine_id,
                production_interval_id=entry.production_interval_id,
                error=str(e)
            )
            raise HistoryWriteError(entry.machine_id, details={"original_error": str(e)})

        logger.info(
            "OEE history entry recorded",
            machine_id=entry.machine_id,
            production_interval_id=entry.production_interval_id,
            oee=entry.oee
        )
        return entry

    @staticmethod
    def latest_per_interval(entries: Iterable[HistoryEntry]) -> List[HistoryEntry]:
        """
        Keep only the newest snapshot of each production interval.

        Every update appends a fresh snapshot for the same interval, so rollups
        must count each interval once. Newest is decided by ``created_at``;
        entries without an interval id are kept as they are. Input order is
        preserved.
        """
        entries = list(entries)
        newest: Dict[str, int] = {}
        for index, entry in enumerate(entries):
            key = entry.production_interval_id or entry.id
            current = newest.get(key)
            if current is None or assume_utc(entry.created_at) >= assume_utc(entries[current].created_at):
                newest[key] = index
        kept = set(newest.values())
        return [entry for index, entry in enumerate(entries) if index in kept]

    @staticmethod
    def period_key(timestamp: datetime, period: SummaryPeriod) -> str:
        """Bucket key for ``timestamp``; naive timestamps are read as UTC."""
        day = assume_utc(timestamp).date()
        period = SummaryPeriod(period)
        if period == SummaryPeriod.WEEK:
            # date.weekday(): Monday == 0 ... Sunday == 6
            week_start = day - timedelta(days=(day.weekday() + 1) % 7)
            return week_start.isoformat()
        if period == SummaryPeriod.MONTH:
            return f"{day.year:04d}-{day.month:02d}"
        return day.isoformat()

    @staticmethod
    def calculate_statistics(entries: Sequence[HistoryEntry]) -> HistoryStatistics:
        """Averages, totals and OEE range over ``entries``; all zeros when empty."""
        if not entries:
            return HistoryStatistics()

        count = len(entries)
        return HistoryStatistics(
            avg_oee=sum(entry.oee for entry in entries) / count,
            avg_availability=sum(entry.availability for entry in entries) / count,
            avg_performance=sum(entry.performance for entry in entries) / count,
            avg_quality=sum(entry.quality for entry in entries) / count,
            min_oee=min(entry.oee for entry in entries),
            max_oee=max(entry.oee for entry in entries),
            total_production=sum(entry.good_production for entry in entries),
            total_waste=sum(entry.total_waste for entry in entries),
            total_downtime=sum(entry.downtime_minutes for entry in entries),
            total_planned_time=sum(entry.planned_time for entry in entries),
            entries_count=count
        )

    def summarize(self, entries: Iterable[HistoryEntry], period: SummaryPeriod = SummaryPeriod.DAY) -> List[PeriodSummary]:
        """Group ``entries`` by period and return one summary per group, oldest first."""
        grouped: Dict[str, List[HistoryEntry]] = OrderedDict()
        for entry in entries:
            grouped.setdefault(self.period_key(entry.timestamp, period), []).append(entry)

        summaries = []
        for key in sorted(grouped):
            stats = self.calculate_statistics(grouped[key])
            summaries.append(PeriodSummary(
                period=key,
                avg_oee=stats.avg_oee,
                avg_availability=stats.avg_availability,
                avg_performance=stats.avg_performance,
                avg_quality=stats.avg_quality,
                total_production=stats.total_production,
                total_waste=stats.total_waste,
                total_downtime=stats.total_downtime,
                entries_count=stats.entries_count
            ))
        return summaries

    async def prune(
        self,
        store: RecordStore,
        retention_days: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> int:
        """Delete entries older than the retention horizon and return how many went."""
        retention_days = retention_days if retention_days is not None else settings.HISTORY_RETENTION_DAYS
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        deleted = await store.delete_history_before(cutoff)
        logger.info("Old OEE history pruned", deleted=deleted, cutoff=cutoff.isoformat(), retention_days=retention_days)
        return deleted


history_aggregator = HistoryAggregator()
