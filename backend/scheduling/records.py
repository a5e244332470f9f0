"""Value types passed between the store, the scheduling service and the routes."""

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel

from backend.models.appointment import AppointmentStatus


class AppointmentRecord(BaseModel):
    id: str
    customer_name: str
    customer_email: str
    date: str
    start_time: str
    end_time: str
    starts_at: datetime
    timezone: str = 'UTC'
    status: AppointmentStatus = AppointmentStatus.ACTIVE
    notes: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
        frozen = True

    @property
    def is_active(self) -> bool:
        return self.status == AppointmentStatus.ACTIVE


@dataclass(frozen=True)
class ReservationCandidate:
    """A fully validated booking request, ready for the atomic reserve."""
    customer_name: str
    customer_email: str
    date: str
    start_time: str
    starts_at: datetime
    timezone: str
    duration_minutes: int
    notes: str | None = None


class TimeSlot(BaseModel):
    slot_id: str
    time: str
    end_time: str
    available: bool
    booked_by: str | None = None
    appointment_id: str | None = None
    is_user_booking: bool = False


class BookedAppointment(AppointmentRecord):
    confirmation_code: str


class CancellationResult(BaseModel):
    success: bool = True
    message: str = 'Appointment cancelled successfully'


class DaySchedule(BaseModel):
    date: str
    appointments: list[AppointmentRecord]
    slots: list[TimeSlot]
    business_hours: dict


class AppointmentMetrics(BaseModel):
    date: str
    today_appointments: int
    available_slots: int
    total_slots: int
    weekly_appointments: int
    weekly_cancellations: int
    cancellation_rate: float
