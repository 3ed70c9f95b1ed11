from datetime import datetime, timezone

import pytest

from oee_monitor.models.production import ShiftName
from oee_monitor.services.shift_resolver import ShiftResolver, ShiftWindow
from oee_monitor.utils.exceptions import ConfigurationError, UndefinedShiftError


@pytest.fixture
def resolver():
    return ShiftResolver("America/Sao_Paulo")


def local(hour, minute=0, day=10):
    return datetime(2025, 3, day, hour, minute)


def test_every_minute_of_the_day_has_exactly_one_shift(resolver):
    named = {ShiftName.MORNING, ShiftName.AFTERNOON, ShiftName.NIGHT}
    for minute in range(24 * 60):
        matches = [window for window in resolver.shifts if window.contains(minute)]
        assert len(matches) == 1
        assert resolver.shift_for_minute(minute).name in named


@pytest.mark.parametrize("minute, expected", [
    (339, ShiftName.NIGHT),
    (340, ShiftName.MORNING),
    (829, ShiftName.MORNING),
    (830, ShiftName.AFTERNOON),
    (1327, ShiftName.AFTERNOON),
    (1328, ShiftName.NIGHT),
    (0, ShiftName.NIGHT),
])
def test_shift_boundaries(resolver, minute, expected):
    assert resolver.shift_for_minute(minute).name == expected


def test_night_shift_wraps_midnight(resolver):
    assert resolver.resolve_shift(local(23, 59)) == ShiftName.NIGHT
    assert resolver.resolve_shift(local(0, 1, day=11)) == ShiftName.NIGHT


def test_aware_timestamps_use_plant_timezone(resolver):
    # 09:00 UTC is 06:00 in Sao Paulo
    assert resolver.resolve_shift(datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)) == ShiftName.MORNING
    # 03:00 UTC is 00:00 in Sao Paulo
    assert resolver.resolve_shift(datetime(2025, 3, 10, 3, 0, tzinfo=timezone.utc)) == ShiftName.NIGHT


def test_interval_inside_one_shift(resolver):
    assert resolver.resolve_shift(local(6), local(13, 50)) == ShiftName.MORNING


def test_interval_goes_to_largest_overlap(resolver):
    assert resolver.resolve_shift(local(12), local(15)) == ShiftName.MORNING
    assert resolver.resolve_shift(local(13), local(16)) == ShiftName.AFTERNOON


def test_overnight_interval_overlap(resolver):
    overlaps = resolver.overlap_minutes(local(21), local(6, day=11))

    assert overlaps[ShiftName.AFTERNOON] == pytest.approx(68)
    assert overlaps[ShiftName.NIGHT] == pytest.approx(452)
    assert overlaps[ShiftName.MORNING] == pytest.approx(20)
    assert resolver.resolve_shift(local(21), local(6, day=11)) == ShiftName.NIGHT


def test_interval_after_midnight_counts_previous_night(resolver):
    overlaps = resolver.overlap_minutes(local(2, day=11), local(7, day=11))

    assert overlaps[ShiftName.NIGHT] == pytest.approx(220)
    assert overlaps[ShiftName.MORNING] == pytest.approx(80)
    assert resolver.resolve_shift(local(2, day=11), local(7, day=11)) == ShiftName.NIGHT


def test_overlap_tie_goes_to_start_shift(resolver):
    assert resolver.resolve_shift(local(13), local(14, 40)) == ShiftName.MORNING


def test_open_or_inverted_interval_uses_start(resolver):
    assert resolver.resolve_interval(local(14), None) == ShiftName.AFTERNOON
    assert resolver.resolve_interval(local(14), local(10)) == ShiftName.AFTERNOON


def test_shift_info_and_codes(resolver):
    night = resolver.get_shift_info(ShiftName.NIGHT)
    assert night.code == "C"
    assert night.format_start() == "22:08"
    assert night.format_end() == "05:40"
    assert night.wraps_midnight
    assert resolver.shift_for_code("b").name == ShiftName.AFTERNOON


def test_table_gap_raises_undefined_shift():
    resolver = ShiftResolver("UTC", shifts=[ShiftWindow(ShiftName.MORNING, "A", 0, 60)])

    with pytest.raises(UndefinedShiftError):
        resolver.shift_for_minute(120)


def test_unknown_timezone_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        ShiftResolver("Mars/Olympus_Mons")
