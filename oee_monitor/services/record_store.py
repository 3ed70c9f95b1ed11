"""
OEE Monitor - Record Store

This module defines the persistence boundary consumed by the OEE engine and
two implementations: an in-memory store for tests and single-node demos, and
a SQLAlchemy store for production deployments.

Per-machine write ordering is the store's responsibility. The in-memory store
performs every mutation without yielding to the event loop; the SQL store
runs each mutation in its own transaction.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple
import structlog

from sqlalchemy import and_, delete, func, insert, select, true, update
from sqlalchemy.ext.asyncio import AsyncEngine

from oee_monitor.database import oee_history, production_intervals
from oee_monitor.models.production import HistoryEntry, ProductionIntervalResponse
from oee_monitor.utils.exceptions import DatabaseError, handle_database_exception
from oee_monitor.utils.time_utils import assume_utc

logger = structlog.get_logger()


class RecordStore(ABC):
    """Persistence interface for production intervals and OEE history."""

    @abstractmethod
    async def save_interval(self, record: ProductionIntervalResponse) -> str:
        """Insert a new interval and return its id."""

    @abstractmethod
    async def update_interval(self, record: ProductionIntervalResponse) -> None:
        """Replace a stored interval."""

    @abstractmethod
    async def get_interval(self, interval_id: str) -> Optional[ProductionIntervalResponse]:
        """Fetch one interval."""

    @abstractmethod
    async def find_intervals(
        self,
        machine_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        shift: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[ProductionIntervalResponse]:
        """Intervals newest first, filtered by machine, start-time range and shift."""

    @abstractmethod
    async def delete_interval(self, interval_id: str) -> bool:
        """Delete an interval; False when it did not exist."""

    @abstractmethod
    async def save_history_entry(self, entry: HistoryEntry) -> str:
        """Append a history entry and return its id."""

    @abstractmethod
    async def find_history(
        self,
        machine_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = 100,
        offset: int = 0
    ) -> Tuple[List[HistoryEntry], int]:
        """History newest first plus the unpaginated total."""

    @abstractmethod
    async def delete_history_for_interval(self, interval_id: str) -> int:
        """Delete the history entries of one interval."""

    @abstractmethod
    async def delete_history_before(self, cutoff: datetime) -> int:
        """Delete history entries with a timestamp older than ``cutoff``."""


def _in_range(value: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed store."""

    def __init__(self):
        self.intervals: Dict[str, ProductionIntervalResponse] = {}
        self.history: Dict[str, HistoryEntry] = {}

    async def save_interval(self, record: ProductionIntervalResponse) -> str:
        self.intervals[record.id] = record.model_copy(deep=True)
        return record.id

    async def update_interval(self, record: ProductionIntervalResponse) -> None:
        if record.id not in self.intervals:
            raise DatabaseError("Production interval does not exist", {"id": record.id})
        self.intervals[record.id] = record.model_copy(deep=True)

    async def get_interval(self, interval_id: str) -> Optional[ProductionIntervalResponse]:
        record = self.intervals.get(interval_id)
        return record.model_copy(deep=True) if record else None

    async def find_intervals(
        self,
        machine_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        shift: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[ProductionIntervalResponse]:
        matches = [
            record for record in self.intervals.values()
            if (machine_id is None or record.machine_id == machine_id)
            and (shift is None or record.shift == shift)
            and _in_range(record.start_time, start, end)
        ]
        matches.sort(key=lambda record: record.start_time, reverse=True)
        return [record.model_copy(deep=True) for record in matches[offset:offset + limit]]

    async def delete_interval(self, interval_id: str) -> bool:
        return self.intervals.pop(interval_id, None) is not None

    async def save_history_entry(self, entry: HistoryEntry) -> str:
        self.history[entry.id] = entry.model_copy(deep=True)
        return entry.id

    async def find_history(
        self,
        machine_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = 100,
        offset: int = 0
    ) -> Tuple[List[HistoryEntry], int]:
        matches = [
            entry for entry in self.history.values()
            if (machine_id is None or entry.machine_id == machine_id)
            and _in_range(entry.timestamp, start, end)
        ]
        matches.sort(key=lambda entry: entry.timestamp, reverse=True)
        page = matches[offset:] if limit is None else matches[offset:offset + limit]
        return [entry.model_copy(deep=True) for entry in page], len(matches)

    async def delete_history_for_interval(self, interval_id: str) -> int:
        doomed = [key for key, entry in self.history.items() if entry.production_interval_id == interval_id]
        for key in doomed:
            del self.history[key]
        return len(doomed)

    async def delete_history_before(self, cutoff: datetime) -> int:
        doomed = [key for key, entry in self.history.items() if entry.timestamp < cutoff]
        for key in doomed:
            del self.history[key]
        return len(doomed)


class SqlRecordStore(RecordStore):
    """SQLAlchemy Core store over the ``production_intervals`` and ``oee_history`` tables."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    @staticmethod
    def _interval_from_row(row) -> ProductionIntervalResponse:
        data = dict(row._mapping)
        for key in ("start_time", "end_time", "created_at", "updated_at"):
            data[key] = assume_utc(data.get(key))
        return ProductionIntervalResponse(**data)

    @staticmethod
    def _history_from_row(row) -> HistoryEntry:
        data = dict(row._mapping)
        for key in ("timestamp", "created_at"):
            data[key] = assume_utc(data.get(key))
        return HistoryEntry(**data)

    @staticmethod
    def _interval_values(record: ProductionIntervalResponse) -> dict:
        values = record.model_dump()
        return {column.name: values.get(column.name) for column in production_intervals.columns}

    async def _execute(self, statement, operation: str, handler=None):
        """Run one statement in its own transaction; ``handler`` reads the result before commit."""
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(statement)
                return handler(result) if handler else result.rowcount
        except Exception as e:
            logger.error("Record store operation failed", operation=operation, error=str(e))
            raise handle_database_exception(e)

    async def save_interval(self, record: ProductionIntervalResponse) -> str:
        await self._execute(
            insert(production_intervals).values(**self._interval_values(record)),
            "save_interval"
        )
        return record.id

    async def update_interval(self, record: ProductionIntervalResponse) -> None:
        values = self._interval_values(record)
        values.pop("id")
        rowcount = await self._execute(
            update(production_intervals).where(production_intervals.c.id == record.id).values(**values),
            "update_interval"
        )
        if rowcount == 0:
            raise DatabaseError("Production interval does not exist", {"id": record.id})

    async def get_interval(self, interval_id: str) -> Optional[ProductionIntervalResponse]:
        row = await self._execute(
            select(production_intervals).where(production_intervals.c.id == interval_id),
            "get_interval",
            lambda result: result.first()
        )
        return self._interval_from_row(row) if row else None

    async def find_intervals(
        self,
        machine_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        shift: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[ProductionIntervalResponse]:
        conditions = []
        if machine_id is not None:
            conditions.append(production_intervals.c.machine_id == machine_id)
        if shift is not None:
            conditions.append(production_intervals.c.shift == shift)
        if start is not None:
            conditions.append(production_intervals.c.start_time >= start)
        if end is not None:
            conditions.append(production_intervals.c.start_time <= end)

        query = (
            select(production_intervals)
            .where(and_(true(), *conditions))
            .order_by(production_intervals.c.start_time.desc())
            .limit(limit)
            .offset(offset)
        )
        rows = await self._execute(query, "find_intervals", lambda result: result.fetchall())
        return [self._interval_from_row(row) for row in rows]

    async def delete_interval(self, interval_id: str) -> bool:
        rowcount = await self._execute(
            delete(production_intervals).where(production_intervals.c.id == interval_id),
            "delete_interval"
        )
        return rowcount > 0

    async def save_history_entry(self, entry: HistoryEntry) -> str:
        values = entry.model_dump()
        await self._execute(
            insert(oee_history).values(**{column.name: values.get(column.name) for column in oee_history.columns}),
            "save_history_entry"
        )
        return entry.id

    async def find_history(
        self,
        machine_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = 100,
        offset: int = 0
    ) -> Tuple[List[HistoryEntry], int]:
        conditions = []
        if machine_id is not None:
            conditions.append(oee_history.c.machine_id == machine_id)
        if start is not None:
            conditions.append(oee_history.c.timestamp >= start)
        if end is not None:
            conditions.append(oee_history.c.timestamp <= end)
        where_clause = and_(true(), *conditions)

        query = select(oee_history).where(where_clause).order_by(oee_history.c.timestamp.desc()).offset(offset)
        if limit is not None:
            query = query.limit(limit)

        rows = await self._execute(query, "find_history", lambda result: result.fetchall())
        total = await self._execute(
            select(func.count()).select_from(oee_history).where(where_clause),
            "count_history",
            lambda result: result.scalar()
        )
        return [self._history_from_row(row) for row in rows], int(total or 0)

    async def delete_history_for_interval(self, interval_id: str) -> int:
        return await self._execute(
            delete(oee_history).where(oee_history.c.production_interval_id == interval_id),
            "delete_history_for_interval"
        )

    async def delete_history_before(self, cutoff: datetime) -> int:
        return await self._execute(
            delete(oee_history).where(oee_history.c.timestamp < cutoff),
            "delete_history_before"
        )
