"""Time arithmetic and business-hour rules for the booking calendar.

Everything in here is pure: callers pass "now" in explicitly. Clock times are
``HH:MM`` strings, calendar dates are ``YYYY-MM-DD`` strings, and absolute
instants are timezone-aware ``datetime`` objects in UTC produced by
``to_utc_instant``. Any past/future decision must go through that function.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, Protocol, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from backend.core import config
from backend.core.errors import ValidationError

MINUTES_PER_DAY = 24 * 60
MAX_OFFSET_MINUTES = 14 * 60

_TIME_PATTERN = re.compile(r'\A([0-9]{1,2}):([0-9]{2})\Z')
_DATE_PATTERN = re.compile(r'\A[0-9]{4}-[0-9]{2}-[0-9]{2}\Z')
_OFFSET_LABEL_PATTERN = re.compile(r'\A(?:UTC|GMT)?([+-])([0-9]{1,2})(?::?([0-9]{2}))?\Z', re.IGNORECASE)

TimezoneReference = Union[str, int, tzinfo]


class TimedEntry(Protocol):
    status: str
    start_time: str
    end_time: str


@dataclass(frozen=True)
class BusinessHours:
    start: str = '07:00'
    end: str = '19:00'
    slot_duration_minutes: int = 30

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end)

    @property
    def total_slots(self) -> int:
        return (self.end_minutes - self.start_minutes) // self.slot_duration_minutes

    @property
    def last_start(self) -> str:
        return minutes_to_time(self.end_minutes - self.slot_duration_minutes)

    def as_dict(self) -> dict:
        return {
            'start': normalize_time(self.start),
            'end': normalize_time(self.end),
            'slot_duration_minutes': self.slot_duration_minutes,
        }


DEFAULT_BUSINESS_HOURS = BusinessHours(
    start=config.BUSINESS_HOURS_START.strip(),
    end=config.BUSINESS_HOURS_END.strip(),
    slot_duration_minutes=config.SLOT_DURATION_MINUTES,
)


def is_valid_time_format(value: str) -> bool:
    if not isinstance(value, str):
        return False

    match = _TIME_PATTERN.match(value)
    if not match:
        return False

    hour, minute = int(match.group(1)), int(match.group(2))
    return 0 <= hour <= 23 and 0 <= minute <= 59


def is_valid_date_format(value: str) -> bool:
    if not isinstance(value, str) or not _DATE_PATTERN.match(value):
        return False

    try:
        date.fromisoformat(value)
    except ValueError:
        return False

    return True


def parse_date(value: str) -> date:
    if not is_valid_date_format(value):
        raise ValidationError('Date must be in YYYY-MM-DD format')
    return date.fromisoformat(value)


def time_to_minutes(value: str) -> int:
    if not is_valid_time_format(value):
        raise ValueError(f'Invalid time {value!r}; expected H:MM or HH:MM.')
    hours, minutes = value.split(':')
    return int(hours) * 60 + int(minutes)


def minutes_to_time(minutes: int) -> str:
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f'Minute of day must be within 0..{MINUTES_PER_DAY - 1}, got {minutes}.')
    hours, remainder = divmod(minutes, 60)
    return f'{hours:02d}:{remainder:02d}'


def normalize_time(value: str) -> str:
    return minutes_to_time(time_to_minutes(value))


def calculate_end_time(start_time: str, duration: int | None = None) -> str:
    """Add ``duration`` minutes to a clock time, wrapping past midnight.

    Bookings never cross midnight because business hours forbid it, so the
    wrap only keeps this function total (``23:45`` + 30 gives ``00:15``).
    """
    if duration is None:
        duration = DEFAULT_BUSINESS_HOURS.slot_duration_minutes
    return minutes_to_time((time_to_minutes(start_time) + duration) % MINUTES_PER_DAY)


def is_within_business_hours(
    start_time: str,
    duration: int | None = None,
    hours: BusinessHours = DEFAULT_BUSINESS_HOURS,
) -> bool:
    if not is_valid_time_format(start_time):
        return False

    if duration is None:
        duration = hours.slot_duration_minutes

    start = time_to_minutes(start_time)
    return hours.start_minutes <= start and start + duration <= hours.end_minutes


def is_on_slot_boundary(start_time: str, hours: BusinessHours = DEFAULT_BUSINESS_HOURS) -> bool:
    if not is_valid_time_format(start_time):
        return False
    return (time_to_minutes(start_time) - hours.start_minutes) % hours.slot_duration_minutes == 0


def has_time_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    # Half-open ranges: 09:00-09:30 and 09:30-10:00 touch but do not overlap.
    return start_a < end_b and end_a > start_b


def _entry_range(entry: TimedEntry) -> tuple[int, int]:
    start = time_to_minutes(entry.start_time)
    end = time_to_minutes(entry.end_time)
    if end <= start:
        end += MINUTES_PER_DAY
    return start, end


def check_overlap(
    candidate_start: str,
    duration: int,
    existing: Iterable[TimedEntry] | None,
) -> bool:
    """True when the candidate range collides with any *active* entry."""
    if not existing:
        return False

    start = time_to_minutes(candidate_start)
    end = start + duration

    for entry in existing:
        if entry.status != 'active':
            continue
        entry_start, entry_end = _entry_range(entry)
        if has_time_overlap(start, end, entry_start, entry_end):
            return True

    return False


def slot_grid(hours: BusinessHours = DEFAULT_BUSINESS_HOURS) -> list[str]:
    last_start = hours.end_minutes - hours.slot_duration_minutes
    return [
        minutes_to_time(minute)
        for minute in range(hours.start_minutes, last_start + 1, hours.slot_duration_minutes)
    ]


def resolve_timezone(reference: TimezoneReference | None) -> tzinfo:
    """Turn whatever the client sent into a single ``tzinfo``.

    Accepted references:

    * an IANA name such as ``Asia/Bangkok``;
    * a fixed offset label such as ``UTC+07:00`` or ``-05:30``;
    * an integer in the browser ``Date.getTimezoneOffset()`` convention, i.e.
      minutes to *add* to local time to reach UTC (UTC+7 is ``-420``).
    """
    if isinstance(reference, tzinfo):
        return reference

    if isinstance(reference, bool) or reference is None:
        raise ValidationError('A timezone name or offset is required')

    if isinstance(reference, int):
        if not -MAX_OFFSET_MINUTES <= reference <= MAX_OFFSET_MINUTES:
            raise ValidationError(
                f'Timezone offset must be between -{MAX_OFFSET_MINUTES} and {MAX_OFFSET_MINUTES} minutes'
            )
        if reference == 0:
            return timezone.utc
        return timezone(timedelta(minutes=-reference))

    if isinstance(reference, str):
        name = reference.strip()
        if not name:
            raise ValidationError('A timezone name or offset is required')

        if name.upper() in {'UTC', 'GMT', 'Z'}:
            return timezone.utc

        match = _OFFSET_LABEL_PATTERN.match(name)
        if match:
            sign = -1 if match.group(1) == '-' else 1
            hours, minutes = int(match.group(2)), int(match.group(3) or 0)
            total = hours * 60 + minutes
            if total > MAX_OFFSET_MINUTES or minutes > 59:
                raise ValidationError(f'Unknown timezone: {name}')
            if total == 0:
                return timezone.utc
            return timezone(sign * timedelta(minutes=total))

        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
            raise ValidationError(f'Unknown timezone: {name}') from exc

    raise ValidationError('A timezone name or offset is required')


def timezone_label(tz: tzinfo) -> str:
    key = getattr(tz, 'key', None)
    if key:
        return key

    offset = tz.utcoffset(None)
    if not offset:
        return 'UTC'

    total = int(offset.total_seconds() // 60)
    sign = '+' if total >= 0 else '-'
    hours, minutes = divmod(abs(total), 60)
    return f'UTC{sign}{hours:02d}:{minutes:02d}'


def to_utc_instant(slot_date: str, start_time: str, timezone_reference: TimezoneReference) -> datetime:
    if not is_valid_time_format(start_time):
        raise ValidationError('Time must be in HH:MM format')

    tz = resolve_timezone(timezone_reference)
    hours, minutes = divmod(time_to_minutes(start_time), 60)
    local = datetime.combine(parse_date(slot_date), time(hours, minutes), tzinfo=tz)
    return local.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    # Naive datetimes coming back from SQLite are stored as UTC.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def is_in_past(
    slot_date: str,
    start_time: str,
    timezone_reference: TimezoneReference,
    now: datetime | None = None,
) -> bool:
    current = as_utc(now) if now is not None else utc_now()
    return to_utc_instant(slot_date, start_time, timezone_reference) <= current
