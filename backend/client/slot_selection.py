"""Optimistic slot checks for the booking client.

These mirror a subset of the server rules so the customer gets instant
feedback while picking a time. They are advisory only: the server re-runs
every check, and a slot that previews as available can still be rejected.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from backend.core.errors import ValidationError
from backend.scheduling.records import AppointmentRecord, TimeSlot
from backend.scheduling.time_rules import (
    DEFAULT_BUSINESS_HOURS,
    BusinessHours,
    TimezoneReference,
    as_utc,
    has_time_overlap,
    is_in_past,
    is_on_slot_boundary,
    is_valid_date_format,
    is_valid_time_format,
    is_within_business_hours,
    resolve_timezone,
    time_to_minutes,
    utc_now,
)

AVAILABLE = 'available'
BOOKED = 'booked'
USER_BOOKING = 'user-booking'
PAST = 'past'
OUTSIDE_HOURS = 'outside-hours'
INVALID = 'invalid'


@dataclass(frozen=True)
class SlotPreview:
    status: str
    message: str | None = None

    @property
    def bookable(self) -> bool:
        return self.status == AVAILABLE


def local_today(timezone_reference: TimezoneReference, now: datetime | None = None) -> str:
    """The customer's calendar date, not the UTC one."""
    current = as_utc(now) if now is not None else utc_now()
    return current.astimezone(resolve_timezone(timezone_reference)).date().isoformat()


def preview_slot(
    slot_date: str,
    start_time: str,
    timezone_reference: TimezoneReference,
    existing: Iterable[AppointmentRecord] = (),
    now: datetime | None = None,
    hours: BusinessHours = DEFAULT_BUSINESS_HOURS,
    viewer_email: str | None = None,
) -> SlotPreview:
    if not is_valid_date_format(slot_date) or not is_valid_time_format(start_time):
        return SlotPreview(INVALID, 'Please choose a valid date and time')

    if not is_within_business_hours(start_time, hours.slot_duration_minutes, hours) or not is_on_slot_boundary(
        start_time, hours
    ):
        return SlotPreview(OUTSIDE_HOURS, f'Appointments are available between {hours.start} and {hours.end}')

    try:
        if is_in_past(slot_date, start_time, timezone_reference, now):
            return SlotPreview(PAST, 'Cannot book appointments in the past')
    except ValidationError as exc:
        return SlotPreview(INVALID, exc.message)

    start = time_to_minutes(start_time)
    end = start + hours.slot_duration_minutes
    viewer = viewer_email.strip().lower() if viewer_email else None

    for appointment in existing:
        if not appointment.is_active or appointment.date != slot_date:
            continue
        booked_start = time_to_minutes(appointment.start_time)
        if has_time_overlap(start, end, booked_start, booked_start + hours.slot_duration_minutes):
            if viewer and appointment.customer_email == viewer:
                return SlotPreview(USER_BOOKING, 'You already have this appointment')
            return SlotPreview(BOOKED, 'This time slot overlaps with an existing appointment')

    return SlotPreview(AVAILABLE)


def selectable_times(
    slot_date: str,
    slots: Iterable[TimeSlot],
    timezone_reference: TimezoneReference,
    now: datetime | None = None,
) -> list[str]:
    return [
        slot.time
        for slot in slots
        if slot.available and not is_in_past(slot_date, slot.time, timezone_reference, now)
    ]
