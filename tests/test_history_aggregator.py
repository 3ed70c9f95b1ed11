import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from oee_monitor.models.production import OEEMetrics, ProductionIntervalResponse, SummaryPeriod
from oee_monitor.services.history_aggregator import HistoryAggregator
from oee_monitor.services.record_store import InMemoryRecordStore
from oee_monitor.utils.exceptions import HistoryWriteError

UTC = timezone.utc


@pytest.fixture
def aggregator():
    return HistoryAggregator(write_timeout_seconds=1.0)


@pytest.fixture
def saved_interval(make_interval):
    now = datetime(2025, 3, 10, 16, 0, tzinfo=UTC)
    return ProductionIntervalResponse(
        **make_interval(shift="Morning", operator_id="op-7").model_dump(),
        id="interval-1",
        created_at=now,
        updated_at=now
    )


METRICS = OEEMetrics(availability=87.5, performance=50.0, quality=90.0, oee=39.375)


def test_summarize_empty_history(aggregator):
    assert aggregator.summarize([], SummaryPeriod.DAY) == []
    assert aggregator.calculate_statistics([]).entries_count == 0
    assert aggregator.calculate_statistics([]).avg_oee == 0.0


def test_daily_summary_groups_and_averages(aggregator, make_entry):
    entries = [
        make_entry(datetime(2025, 3, 10, 8, 0, tzinfo=UTC), oee=50.0, good_production=100, downtime_minutes=5),
        make_entry(datetime(2025, 3, 10, 20, 0, tzinfo=UTC), oee=70.0, good_production=300, downtime_minutes=15),
        make_entry(datetime(2025, 3, 11, 8, 0, tzinfo=UTC), oee=40.0),
    ]

    summaries = aggregator.summarize(entries, SummaryPeriod.DAY)

    assert [summary.period for summary in summaries] == ["2025-03-10", "2025-03-11"]
    first = summaries[0]
    assert first.avg_oee == pytest.approx(60.0)
    assert first.total_production == 400
    assert first.total_downtime == 20
    assert first.entries_count == 2


def test_summaries_do_not_depend_on_input_order(aggregator, make_entry):
    entries = [
        make_entry(datetime(2025, 3, day, 12, 0, tzinfo=UTC), oee=float(day))
        for day in (3, 17, 9, 1)
    ]

    forward = aggregator.summarize(entries, SummaryPeriod.WEEK)
    backward = aggregator.summarize(list(reversed(entries)), SummaryPeriod.WEEK)

    assert forward == backward
    assert aggregator.summarize(entries, SummaryPeriod.WEEK) == forward


@pytest.mark.parametrize("timestamp, period, expected", [
    (datetime(2025, 3, 12, 10, 0, tzinfo=UTC), SummaryPeriod.WEEK, "2025-03-09"),
    (datetime(2025, 3, 9, 0, 0, tzinfo=UTC), SummaryPeriod.WEEK, "2025-03-09"),
    (datetime(2025, 3, 15, 23, 59, tzinfo=UTC), SummaryPeriod.WEEK, "2025-03-09"),
    (datetime(2025, 3, 31, 23, 0, tzinfo=UTC), SummaryPeriod.MONTH, "2025-03"),
    (datetime(2025, 3, 31, 23, 0, tzinfo=UTC), SummaryPeriod.DAY, "2025-03-31"),
])
def test_period_keys(timestamp, period, expected):
    assert HistoryAggregator.period_key(timestamp, period) == expected


def test_period_keys_follow_utc_date():
    # 23:30 on 10 March in Sao Paulo is already 11 March in UTC
    local_evening = datetime(2025, 3, 11, 2, 30, tzinfo=UTC)

    assert HistoryAggregator.period_key(local_evening, SummaryPeriod.DAY) == "2025-03-11"


def test_statistics_cover_range_and_totals(aggregator, make_entry):
    entries = [
        make_entry(datetime(2025, 3, 10, 8, 0, tzinfo=UTC), oee=30.0, total_waste=2, planned_time=60),
        make_entry(datetime(2025, 3, 10, 9, 0, tzinfo=UTC), oee=90.0, total_waste=8, planned_time=120),
    ]

    stats = aggregator.calculate_statistics(entries)

    assert stats.min_oee == 30.0
    assert stats.max_oee == 90.0
    assert stats.avg_oee == pytest.approx(60.0)
    assert stats.total_waste == 10
    assert stats.total_planned_time == 180
    assert stats.entries_count == 2


def test_latest_per_interval_keeps_newest_snapshot(aggregator, make_entry):
    start = datetime(2025, 3, 10, 9, 0, tzinfo=UTC)
    first = make_entry(start, downtime_minutes=20.0, created_at=start)
    corrected = make_entry(start, downtime_minutes=25.0, created_at=start + timedelta(minutes=5))
    other = make_entry(start, production_interval_id="interval-2", created_at=start)

    latest = aggregator.latest_per_interval([corrected, other, first])

    assert latest == [corrected, other]
    assert aggregator.calculate_statistics(latest).total_downtime == 35.0


async def test_record_history_appends_snapshot(aggregator, saved_interval):
    store = InMemoryRecordStore()

    entry = await aggregator.record_history(store, saved_interval, METRICS)

    assert entry.production_interval_id == "interval-1"
    assert entry.timestamp == saved_interval.start_time
    assert entry.total_waste == 30
    assert entry.shift == "Morning"
    assert entry.operator_id == "op-7"
    entries, total = await store.find_history(machine_id="M1")
    assert total == 1
    assert entries[0].oee == pytest.approx(39.375)


class FailingStore(InMemoryRecordStore):
    async def save_history_entry(self, entry):
        raise RuntimeError("disk full")


class SlowStore(InMemoryRecordStore):
    async def save_history_entry(self, entry):
        await asyncio.sleep(1)
        return entry.id


async def test_record_history_failure_is_reported(aggregator, saved_interval):
    with pytest.raises(HistoryWriteError) as exc_info:
        await aggregator.record_history(FailingStore(), saved_interval, METRICS)

    assert exc_info.value.details["original_error"] == "disk full"
    assert exc_info.value.details["machine_id"] == "M1"


async def test_record_history_times_out(saved_interval):
    aggregator = HistoryAggregator(write_timeout_seconds=0.01)

    with pytest.raises(HistoryWriteError) as exc_info:
        await aggregator.record_history(SlowStore(), saved_interval, METRICS)

    assert "timed out" in exc_info.value.message


async def test_prune_removes_entries_past_retention(aggregator, make_entry):
    store = InMemoryRecordStore()
    now = datetime(2025, 6, 1, tzinfo=UTC)
    await store.save_history_entry(make_entry(now - timedelta(days=120)))
    await store.save_history_entry(make_entry(now - timedelta(days=10)))

    deleted = await aggregator.prune(store, retention_days=90, now=now)

    assert deleted == 1
    _, total = await store.find_history()
    assert total == 1
