"""Booking, cancellation and calendar queries on top of an ``AppointmentStore``.

The service is the authoritative validator. Clients may pre-check a slot for
responsiveness, but every rule here is re-run on each request, and the store's
atomic reservation is the final gate against double booking.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Callable

from backend.core import config
from backend.core.errors import (
    AlreadyCancelledError,
    BusinessRuleError,
    CancellationWindowError,
    InternalError,
    NotFoundError,
    SlotOverlapError,
    SlotUnavailableError,
    ValidationError,
)
from backend.core.sanitize import display_name
from backend.scheduling.records import (
    AppointmentMetrics,
    AppointmentRecord,
    BookedAppointment,
    CancellationResult,
    DaySchedule,
    ReservationCandidate,
    TimeSlot,
)
from backend.scheduling.slot_locks import slot_key
from backend.scheduling.store import AppointmentStore
from backend.scheduling.time_rules import (
    DEFAULT_BUSINESS_HOURS,
    BusinessHours,
    TimezoneReference,
    calculate_end_time,
    check_overlap,
    has_time_overlap,
    is_on_slot_boundary,
    is_valid_time_format,
    is_within_business_hours,
    normalize_time,
    parse_date,
    resolve_timezone,
    slot_grid,
    time_to_minutes,
    timezone_label,
    to_utc_instant,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulingPolicy:
    business_hours: BusinessHours = DEFAULT_BUSINESS_HOURS
    cancellation_buffer_minutes: int = 30
    business_timezone: str = 'UTC'
    anonymize_booked_by: bool = True

    @classmethod
    def from_config(cls) -> 'SchedulingPolicy':
        return cls(
            business_hours=DEFAULT_BUSINESS_HOURS,
            cancellation_buffer_minutes=config.CANCELLATION_BUFFER_MINUTES,
            business_timezone=config.BUSINESS_TIMEZONE,
            anonymize_booked_by=config.ANONYMIZE_BOOKED_BY,
        )


@dataclass(frozen=True)
class BookingRequest:
    customer_name: str
    customer_email: str
    date: str
    start_time: str
    timezone: TimezoneReference
    notes: str | None = None


def confirmation_code(slot_date: str, start_time: str) -> str:
    return f"APT-{slot_date.replace('-', '')}-{start_time.replace(':', '')}"


class SchedulingService:
    def __init__(
        self,
        store: AppointmentStore,
        policy: SchedulingPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.policy = policy or SchedulingPolicy()
        self._clock = clock

    @property
    def business_hours(self) -> BusinessHours:
        return self.policy.business_hours

    def _business_tz(self) -> tzinfo:
        return resolve_timezone(self.policy.business_timezone)

    def _validate_slot(self, slot_date: str, start_time: str) -> str:
        parse_date(slot_date)

        if not is_valid_time_format(start_time):
            raise ValidationError('Time must be in HH:MM format')

        hours = self.business_hours
        if not is_within_business_hours(start_time, hours.slot_duration_minutes, hours):
            raise BusinessRuleError(
                f'Invalid time. Appointments must start between {normalize_time(hours.start)} '
                f'and {hours.last_start} (last appointment ends at {normalize_time(hours.end)})'
            )

        if not is_on_slot_boundary(start_time, hours):
            raise BusinessRuleError(
                f'Appointments must be booked in {hours.slot_duration_minutes}-minute intervals'
            )

        return normalize_time(start_time)

    def create_appointment(self, request: BookingRequest) -> BookedAppointment:
        start_time = self._validate_slot(request.date, request.start_time)

        tz = resolve_timezone(request.timezone)
        starts_at = to_utc_instant(request.date, start_time, tz)
        if starts_at <= self._clock():
            raise BusinessRuleError('Cannot book appointments in the past')

        duration = self.business_hours.slot_duration_minutes
        if check_overlap(start_time, duration, self.store.list_by_date(request.date)):
            raise SlotOverlapError()

        candidate = ReservationCandidate(
            customer_name=request.customer_name,
            customer_email=request.customer_email,
            date=request.date,
            start_time=start_time,
            starts_at=starts_at,
            timezone=timezone_label(tz),
            duration_minutes=duration,
            notes=request.notes,
        )
        record = self.store.reserve_if_available(candidate)
        if record is None:
            logger.warning('Lost reservation race for slot %s', slot_key(request.date, start_time))
            raise SlotUnavailableError()

        logger.info('Booked appointment %s for slot %s', record.id, slot_key(record.date, record.start_time))
        return BookedAppointment(
            **record.model_dump(),
            confirmation_code=confirmation_code(record.date, record.start_time),
        )

    def get_appointment(self, appointment_id: str) -> AppointmentRecord:
        appointment = self.store.get(appointment_id)
        if appointment is None:
            raise NotFoundError()
        return appointment

    def cancel_appointment(self, appointment_id: str, reason: str | None = None) -> CancellationResult:
        appointment = self.get_appointment(appointment_id)

        if not appointment.is_active:
            raise AlreadyCancelledError()

        buffer_minutes = self.policy.cancellation_buffer_minutes
        minutes_until_start = (appointment.starts_at - self._clock()).total_seconds() / 60
        if minutes_until_start < buffer_minutes:
            raise CancellationWindowError(
                f'Appointments can only be cancelled at least {buffer_minutes} minutes in advance'
            )

        if not self.store.cancel(appointment_id, reason):
            # A concurrent cancel or purge may have won since the read above.
            current = self.get_appointment(appointment_id)
            if not current.is_active:
                raise AlreadyCancelledError()
            logger.error('Store refused to cancel active appointment %s', appointment_id)
            raise InternalError('Failed to cancel appointment')

        logger.info('Cancelled appointment %s', appointment_id)
        return CancellationResult()

    def list_slots_for_date(self, slot_date: str, viewer_email: str | None = None) -> list[TimeSlot]:
        parse_date(slot_date)
        return self._build_slots(slot_date, self.store.list_by_date(slot_date), viewer_email)

    def _build_slots(
        self,
        slot_date: str,
        appointments: list[AppointmentRecord],
        viewer_email: str | None,
    ) -> list[TimeSlot]:
        duration = self.business_hours.slot_duration_minutes
        viewer = viewer_email.strip().lower() if viewer_email else None
        booked = [
            (time_to_minutes(appointment.start_time), appointment)
            for appointment in appointments
            if appointment.is_active
        ]

        slots: list[TimeSlot] = []
        for slot_time in slot_grid(self.business_hours):
            start = time_to_minutes(slot_time)
            occupant = next(
                (
                    appointment
                    for booked_start, appointment in booked
                    if has_time_overlap(start, start + duration, booked_start, booked_start + duration)
                ),
                None,
            )

            booked_by = None
            if occupant is not None:
                booked_by = occupant.customer_name
                if self.policy.anonymize_booked_by:
                    booked_by = display_name(booked_by)

            slots.append(
                TimeSlot(
                    slot_id=slot_key(slot_date, slot_time),
                    time=slot_time,
                    end_time=calculate_end_time(slot_time, duration),
                    available=occupant is None,
                    booked_by=booked_by,
                    appointment_id=occupant.id if occupant else None,
                    is_user_booking=bool(occupant and viewer and occupant.customer_email == viewer),
                )
            )

        return slots

    def get_appointments_by_date(self, slot_date: str, viewer_email: str | None = None) -> DaySchedule:
        parse_date(slot_date)
        appointments = self.store.list_by_date(slot_date)
        return DaySchedule(
            date=slot_date,
            appointments=appointments,
            slots=self._build_slots(slot_date, appointments, viewer_email),
            business_hours=self.business_hours.as_dict(),
        )

    def compute_metrics(self, slot_date: str | None = None) -> AppointmentMetrics:
        if slot_date is None:
            day = self._clock().astimezone(self._business_tz()).date()
        else:
            day = parse_date(slot_date)

        week_start = day - timedelta(days=day.weekday())
        week_end = week_start + timedelta(days=6)
        week = self.store.list_by_date_range(
            week_start.isoformat(),
            week_end.isoformat(),
            include_cancelled=True,
        )

        active = [appointment for appointment in week if appointment.is_active]
        cancelled = len(week) - len(active)
        booked_today = sum(1 for appointment in active if appointment.date == day.isoformat())
        total_slots = self.business_hours.total_slots

        denominator = cancelled + len(active)
        cancellation_rate = round(cancelled / denominator * 100, 1) if denominator else 0.0

        return AppointmentMetrics(
            date=day.isoformat(),
            today_appointments=booked_today,
            available_slots=max(0, total_slots - booked_today),
            total_slots=total_slots,
            weekly_appointments=len(active),
            weekly_cancellations=cancelled,
            cancellation_rate=cancellation_rate,
        )

    def purge_expired(self, days: int) -> int:
        removed = self.store.purge_older_than(days)
        if removed:
            logger.info('Purged %d appointments older than %d days', removed, days)
        return removed
