from datetime import datetime, timedelta, timezone
from itertools import product
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from backend.core.errors import ValidationError
from backend.scheduling.time_rules import (
    BusinessHours,
    calculate_end_time,
    check_overlap,
    has_time_overlap,
    is_in_past,
    is_on_slot_boundary,
    is_valid_date_format,
    is_valid_time_format,
    is_within_business_hours,
    minutes_to_time,
    normalize_time,
    resolve_timezone,
    slot_grid,
    time_to_minutes,
    timezone_label,
    to_utc_instant,
)


def _entry(start_time: str, end_time: str, status: str = 'active') -> SimpleNamespace:
    return SimpleNamespace(start_time=start_time, end_time=end_time, status=status)


@pytest.mark.parametrize('value', ['09:00', '9:00', '23:59', '00:00', '0:00', '1:05', '12:30'])
def test_is_valid_time_format_accepts_short_and_padded_hours(value: str) -> None:
    assert is_valid_time_format(value) is True


@pytest.mark.parametrize(
    'value',
    ['25:00', '12:60', 'abc', '12', '12:5', '', '123:00', ' 09:00', '07:00\n', '\uff10\uff17:\uff10\uff10'],
)
def test_is_valid_time_format_rejects_malformed_values(value: str) -> None:
    assert is_valid_time_format(value) is False


def test_is_valid_date_format_requires_a_real_calendar_date() -> None:
    assert is_valid_date_format('2025-09-25') is True
    assert is_valid_date_format('2025-02-30') is False
    assert is_valid_date_format('25-09-2025') is False
    assert is_valid_date_format('2025-9-25') is False
    assert is_valid_date_format('2025-09-25\n') is False


@pytest.mark.parametrize(
    ('start_time', 'duration', 'expected'),
    [
        ('07:00', None, True),
        ('12:00', None, True),
        ('18:30', None, True),
        ('06:59', None, False),
        ('19:00', None, False),
        ('20:00', None, False),
        ('18:00', 60, True),
        ('18:01', 60, False),
        ('18:45', 15, True),
        ('18:46', 15, False),
        ('invalid', None, False),
        ('25:00', None, False),
    ],
)
def test_is_within_business_hours(start_time: str, duration: int | None, expected: bool) -> None:
    assert is_within_business_hours(start_time, duration) is expected


def test_is_within_business_hours_honours_custom_hours() -> None:
    hours = BusinessHours(start='09:00', end='17:00', slot_duration_minutes=60)

    assert is_within_business_hours('16:00', hours=hours) is True
    assert is_within_business_hours('16:30', hours=hours) is False
    assert is_within_business_hours('08:00', hours=hours) is False


def test_is_on_slot_boundary_uses_business_start_as_origin() -> None:
    assert is_on_slot_boundary('07:30') is True
    assert is_on_slot_boundary('07:15') is False
    assert is_on_slot_boundary('9:00') is True


@pytest.mark.parametrize(
    ('start_time', 'duration', 'expected'),
    [
        ('09:00', None, '09:30'),
        ('14:30', None, '15:00'),
        ('09:45', None, '10:15'),
        ('9:05', None, '09:35'),
        ('09:00', 60, '10:00'),
        ('12:01', 59, '13:00'),
        ('23:45', None, '00:15'),
        ('23:30', 60, '00:30'),
    ],
)
def test_calculate_end_time_wraps_past_midnight(start_time: str, duration: int | None, expected: str) -> None:
    assert calculate_end_time(start_time, duration) == expected


def test_time_minute_conversions_are_inverse() -> None:
    assert time_to_minutes('00:00') == 0
    assert time_to_minutes('9:15') == 555
    assert time_to_minutes('23:59') == 1439
    assert minutes_to_time(65) == '01:05'
    assert minutes_to_time(1439) == '23:59'

    for minute in range(0, 1440, 7):
        assert time_to_minutes(minutes_to_time(minute)) == minute


@pytest.mark.parametrize('minute', [-1, 1440, 2000])
def test_minutes_to_time_rejects_out_of_range(minute: int) -> None:
    with pytest.raises(ValueError):
        minutes_to_time(minute)


def test_normalize_time_pads_single_digit_hours() -> None:
    assert normalize_time('7:30') == '07:30'


def test_has_time_overlap_treats_touching_ranges_as_free() -> None:
    assert has_time_overlap(540, 570, 570, 600) is False
    assert has_time_overlap(570, 600, 540, 570) is False
    assert has_time_overlap(540, 570, 555, 585) is True
    assert has_time_overlap(540, 600, 550, 560) is True


def test_has_time_overlap_is_symmetric() -> None:
    points = [0, 15, 30, 45, 60]
    ranges = [(start, end) for start, end in product(points, points) if start < end]

    for (a_start, a_end), (b_start, b_end) in product(ranges, ranges):
        assert has_time_overlap(a_start, a_end, b_start, b_end) == has_time_overlap(b_start, b_end, a_start, a_end)


def test_check_overlap_ignores_cancelled_entries() -> None:
    existing = [_entry('09:00', '09:30', status='cancelled')]

    assert check_overlap('09:00', 30, existing) is False
    assert check_overlap('09:15', 30, [_entry('09:00', '09:30')]) is True


def test_check_overlap_with_no_existing_entries() -> None:
    assert check_overlap('09:00', 30, None) is False
    assert check_overlap('09:00', 30, []) is False


def test_slot_grid_covers_business_day() -> None:
    grid = slot_grid()

    assert len(grid) == 24
    assert grid[0] == '07:00'
    assert grid[-1] == '18:30'
    assert BusinessHours().total_slots == 24


def test_resolve_timezone_accepts_minute_offsets_in_browser_convention() -> None:
    tz = resolve_timezone(-420)

    assert tz.utcoffset(None) == timedelta(hours=7)
    assert timezone_label(tz) == 'UTC+07:00'
    assert resolve_timezone(0) is timezone.utc


def test_resolve_timezone_accepts_names_and_offset_labels() -> None:
    assert resolve_timezone('Asia/Bangkok') == ZoneInfo('Asia/Bangkok')
    assert resolve_timezone('UTC+05:30').utcoffset(None) == timedelta(hours=5, minutes=30)
    assert resolve_timezone('-03:00').utcoffset(None) == timedelta(hours=-3)
    assert timezone_label(resolve_timezone('Europe/Paris')) == 'Europe/Paris'


@pytest.mark.parametrize('reference', ['Nowhere/City', '', True, None, 900, 'UTC+15:00'])
def test_resolve_timezone_rejects_unknown_references(reference) -> None:
    with pytest.raises(ValidationError):
        resolve_timezone(reference)


def test_to_utc_instant_is_identical_for_name_and_offset() -> None:
    expected = datetime(2025, 9, 25, 0, 0, tzinfo=timezone.utc)

    assert to_utc_instant('2025-09-25', '07:00', 'Asia/Bangkok') == expected
    assert to_utc_instant('2025-09-25', '07:00', -420) == expected
    assert to_utc_instant('2025-09-25', '7:00', 'UTC+07:00') == expected


def test_to_utc_instant_applies_daylight_saving() -> None:
    assert to_utc_instant('2025-07-01', '09:00', 'America/New_York') == datetime(
        2025, 7, 1, 13, 0, tzinfo=timezone.utc
    )
    assert to_utc_instant('2025-12-01', '09:00', 'America/New_York') == datetime(
        2025, 12, 1, 14, 0, tzinfo=timezone.utc
    )


def test_to_utc_instant_rejects_malformed_input() -> None:
    with pytest.raises(ValidationError):
        to_utc_instant('2025/09/25', '07:00', 'UTC')
    with pytest.raises(ValidationError):
        to_utc_instant('2025-09-25', '7am', 'UTC')


def test_is_in_past_same_day_morning_after_local_midnight() -> None:
    # 00:30 local in UTC+7 is still the previous day in UTC.
    now = datetime(2025, 9, 24, 17, 30, tzinfo=timezone.utc)

    assert is_in_past('2025-09-25', '07:00', 'Asia/Bangkok', now) is False


def test_is_in_past_rejects_elapsed_slot_same_day() -> None:
    # 15:00 local in UTC+7.
    now = datetime(2025, 9, 25, 8, 0, tzinfo=timezone.utc)

    assert is_in_past('2025-09-25', '07:00', -420, now) is True


def test_is_in_past_counts_the_exact_instant_as_past() -> None:
    now = datetime(2025, 9, 25, 0, 0, tzinfo=timezone.utc)

    assert is_in_past('2025-09-25', '07:00', 'UTC+07:00', now) is True
