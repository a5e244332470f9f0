import logging
import time
from datetime import datetime, timezone
from typing import NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, EmailStr, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError

from backend.core.errors import InternalError, SchedulingError
from backend.core.sanitize import sanitize_text
from backend.scheduling.records import (
    AppointmentMetrics,
    AppointmentRecord,
    BookedAppointment,
    TimeSlot,
)
from backend.scheduling.service import BookingRequest, SchedulingService
from backend.scheduling.time_rules import TimezoneReference

router = APIRouter(tags=['appointments'])
logger = logging.getLogger(__name__)

MIN_CUSTOMER_NAME_LENGTH = 2
MAX_CUSTOMER_NAME_LENGTH = 100
MAX_APPOINTMENT_NOTES_LENGTH = 500
MAX_CANCELLATION_REASON_LENGTH = 200

_STARTED_AT = time.monotonic()


class CreateAppointmentRequest(BaseModel):
    customer_name: str
    customer_email: EmailStr
    date: str
    start_time: str
    notes: str | None = None
    timezone: str | None = None
    timezone_offset: int | None = None

    @field_validator('customer_name')
    @classmethod
    def validate_customer_name(cls, value: str) -> str:
        if len(value.strip()) < MIN_CUSTOMER_NAME_LENGTH:
            raise ValueError(f'Name must be at least {MIN_CUSTOMER_NAME_LENGTH} characters')
        if len(value) > MAX_CUSTOMER_NAME_LENGTH:
            raise ValueError(f'Name must be {MAX_CUSTOMER_NAME_LENGTH} characters or fewer')

        normalized = sanitize_text(value)
        if len(normalized) < MIN_CUSTOMER_NAME_LENGTH:
            raise ValueError(f'Name must be at least {MIN_CUSTOMER_NAME_LENGTH} characters after sanitization')
        return normalized

    @field_validator('customer_email')
    @classmethod
    def validate_customer_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator('date', 'start_time')
    @classmethod
    def strip_whitespace(cls, value: str) -> str:
        return value.strip()

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        if len(value) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be under {MAX_APPOINTMENT_NOTES_LENGTH} characters')

        normalized = sanitize_text(value)
        return normalized or None

    @model_validator(mode='after')
    def require_timezone_reference(self) -> 'CreateAppointmentRequest':
        if self.timezone is None and self.timezone_offset is None:
            raise ValueError('Either timezone or timezone_offset is required')
        return self

    @property
    def timezone_reference(self) -> TimezoneReference:
        if self.timezone is not None:
            return self.timezone
        return self.timezone_offset

    def to_booking_request(self) -> BookingRequest:
        return BookingRequest(
            customer_name=self.customer_name,
            customer_email=self.customer_email,
            date=self.date,
            start_time=self.start_time,
            timezone=self.timezone_reference,
            notes=self.notes,
        )


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = sanitize_text(value)
        if len(normalized) > MAX_CANCELLATION_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_CANCELLATION_REASON_LENGTH} characters or fewer.')
        return normalized or None


class CreateAppointmentResponse(BaseModel):
    success: bool = True
    appointment: BookedAppointment


class CancelAppointmentResponse(BaseModel):
    success: bool
    message: str


class AppointmentDetailResponse(BaseModel):
    success: bool = True
    appointment: AppointmentRecord


class DayAppointmentsResponse(BaseModel):
    success: bool = True
    date: str
    appointments: list[AppointmentRecord]
    slots: list[TimeSlot]
    business_hours: dict


class AvailableSlotsResponse(BaseModel):
    success: bool = True
    date: str
    slots: list[TimeSlot]
    total_slots: int
    available_slots: int


class MetricsResponse(BaseModel):
    success: bool = True
    metrics: AppointmentMetrics


class HealthResponse(BaseModel):
    success: bool
    message: str
    timestamp: datetime
    uptime_seconds: float


def get_scheduling_service(request: Request) -> SchedulingService:
    service = getattr(request.app.state, 'scheduling_service', None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Scheduling service is not ready.',
        )
    return service


def raise_scheduling_error(exc: SchedulingError) -> NoReturn:
    if isinstance(exc, InternalError):
        logger.exception('Scheduling operation failed after all checks passed')
    raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from exc


def raise_database_unavailable(exc: SQLAlchemyError) -> NoReturn:
    logger.exception('Appointment store query failed')
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail='Database unavailable. Verify DATABASE_URL and database credentials.',
    ) from exc


@router.get('/health', response_model=HealthResponse)
def health_check():
    return HealthResponse(
        success=True,
        message='Appointment service is healthy',
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=round(time.monotonic() - _STARTED_AT, 3),
    )


@router.get('/appointments', response_model=DayAppointmentsResponse)
def list_appointments(
    date: str = Query(...),
    customer_email: str | None = Query(default=None),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        schedule = service.get_appointments_by_date(date.strip(), viewer_email=customer_email)
    except SchedulingError as exc:
        raise_scheduling_error(exc)
    except SQLAlchemyError as exc:
        raise_database_unavailable(exc)

    return DayAppointmentsResponse(
        date=schedule.date,
        appointments=schedule.appointments,
        slots=schedule.slots,
        business_hours=schedule.business_hours,
    )


@router.get('/appointments/slots', response_model=AvailableSlotsResponse)
def list_available_slots(
    date: str = Query(...),
    customer_email: str | None = Query(default=None),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        slots = service.list_slots_for_date(date.strip(), viewer_email=customer_email)
    except SchedulingError as exc:
        raise_scheduling_error(exc)
    except SQLAlchemyError as exc:
        raise_database_unavailable(exc)

    return AvailableSlotsResponse(
        date=date.strip(),
        slots=slots,
        total_slots=len(slots),
        available_slots=sum(1 for slot in slots if slot.available),
    )


@router.get('/appointments/{appointment_id}', response_model=AppointmentDetailResponse)
def get_appointment(appointment_id: str, service: SchedulingService = Depends(get_scheduling_service)):
    try:
        appointment = service.get_appointment(appointment_id)
    except SchedulingError as exc:
        raise_scheduling_error(exc)
    except SQLAlchemyError as exc:
        raise_database_unavailable(exc)

    return AppointmentDetailResponse(appointment=appointment)


@router.post('/appointments', response_model=CreateAppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        appointment = service.create_appointment(data.to_booking_request())
    except SchedulingError as exc:
        raise_scheduling_error(exc)
    except SQLAlchemyError as exc:
        raise_database_unavailable(exc)

    return CreateAppointmentResponse(appointment=appointment)


@router.delete('/appointments/{appointment_id}', response_model=CancelAppointmentResponse)
def cancel_appointment(
    appointment_id: str,
    data: CancelAppointmentRequest | None = Body(default=None),
    service: SchedulingService = Depends(get_scheduling_service),
):
    reason = data.reason if data else None

    try:
        result = service.cancel_appointment(appointment_id, reason)
    except SchedulingError as exc:
        raise_scheduling_error(exc)
    except SQLAlchemyError as exc:
        raise_database_unavailable(exc)

    return CancelAppointmentResponse(success=result.success, message=result.message)


@router.get('/metrics', response_model=MetricsResponse)
def get_metrics(
    date: str | None = Query(default=None),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        metrics = service.compute_metrics(date.strip() if date else None)
    except SchedulingError as exc:
        raise_scheduling_error(exc)
    except SQLAlchemyError as exc:
        raise_database_unavailable(exc)

    return MetricsResponse(metrics=metrics)
