import os

os.environ["ENVIRONMENT"] = "testing"
os.environ.pop("DATABASE_URL", None)

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from oee_monitor.models.production import HistoryEntry, ProductionIntervalCreate
from oee_monitor.services.material_rates import MaterialRateLookup
from oee_monitor.services.notification_service import AlertSink, NotificationService
from oee_monitor.services.production_service import ProductionService
from oee_monitor.services.record_store import InMemoryRecordStore
from oee_monitor.services.shift_resolver import ShiftResolver
from oee_monitor.services.threshold_store import InMemoryThresholdStore

UTC = timezone.utc

# 2025-03-10 09:00 UTC is 06:00 in Sao Paulo (Morning shift)
DEFAULT_START = datetime(2025, 3, 10, 9, 0, tzinfo=UTC)
DEFAULT_END = datetime(2025, 3, 10, 16, 0, tzinfo=UTC)


class RecordingSink(AlertSink):
    name = "recording"

    def __init__(self):
        self.published = []

    async def publish(self, events):
        self.published.extend(events)


@pytest.fixture
def make_interval():
    def _make(**overrides) -> ProductionIntervalCreate:
        data = {
            "machine_id": "M1",
            "start_time": DEFAULT_START,
            "end_time": DEFAULT_END,
            "good_production": 400,
            "film_waste": 20,
            "organic_waste": 10,
            "planned_time": 480,
            "downtime_minutes": 60,
            "target_rate_per_minute": 65,
        }
        data.update(overrides)
        return ProductionIntervalCreate(**data)

    return _make


@pytest.fixture
def make_entry():
    def _make(timestamp: datetime, **overrides) -> HistoryEntry:
        data = {
            "id": str(uuid4()),
            "machine_id": "M1",
            "production_interval_id": "interval-1",
            "timestamp": timestamp,
            "oee": 60.0,
            "availability": 80.0,
            "performance": 90.0,
            "quality": 95.0,
            "good_production": 100.0,
            "total_waste": 5.0,
            "downtime_minutes": 10.0,
            "planned_time": 60.0,
            "shift": "Morning",
            "created_at": timestamp,
        }
        data.update(overrides)
        return HistoryEntry(**data)

    return _make


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def threshold_store():
    return InMemoryThresholdStore()


@pytest.fixture
async def service(store, sink, threshold_store):
    production_service = ProductionService(
        store=store,
        threshold_store=threshold_store,
        material_rates=MaterialRateLookup({"MAT001": 72.0}, default_rate=65.0),
        notification_service=NotificationService([sink]),
        shift_resolver=ShiftResolver("America/Sao_Paulo")
    )
    yield production_service
    await production_service.wait_for_dispatch(timeout=5)
