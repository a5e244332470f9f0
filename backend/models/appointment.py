"""Appointment model definitions."""

import enum

from sqlalchemy import Column, DateTime, Index, String, Text, text

from backend.database import Base


class AppointmentStatus(str, enum.Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class Appointment(Base):
    """One booked (or formerly booked) calendar slot."""
    __tablename__ = "appointments"

    id = Column(String(32), primary_key=True)
    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String(320), nullable=False)
    date = Column(String(10), nullable=False, index=True)  # YYYY-MM-DD
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    timezone = Column(String(64), nullable=False, default="UTC")
    status = Column(String(16), nullable=False, default=AppointmentStatus.ACTIVE.value)
    notes = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index(
            "uq_appointments_active_slot",
            "date",
            "start_time",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )
