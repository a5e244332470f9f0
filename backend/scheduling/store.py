"""Appointment persistence contract and the in-process implementation."""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable

from backend.models.appointment import AppointmentStatus
from backend.scheduling.records import AppointmentRecord, ReservationCandidate
from backend.scheduling.slot_locks import SlotLockRegistry, slot_key
from backend.scheduling.time_rules import calculate_end_time, utc_now

logger = logging.getLogger(__name__)

DEFAULT_CANCELLATION_REASON = 'Customer cancellation'

Clock = Callable[[], datetime]


def new_appointment_id() -> str:
    return uuid.uuid4().hex


def build_record(candidate: ReservationCandidate, now: datetime) -> AppointmentRecord:
    return AppointmentRecord(
        id=new_appointment_id(),
        customer_name=candidate.customer_name,
        customer_email=candidate.customer_email,
        date=candidate.date,
        start_time=candidate.start_time,
        end_time=calculate_end_time(candidate.start_time, candidate.duration_minutes),
        starts_at=candidate.starts_at,
        timezone=candidate.timezone,
        status=AppointmentStatus.ACTIVE,
        notes=candidate.notes,
        created_at=now,
        updated_at=now,
    )


class AppointmentStore(ABC):
    """Keyed appointment collection with an atomic reserve primitive.

    ``reserve_if_available`` is the only operation that needs mutual
    exclusion: racing reservations for one ``(date, start_time)`` must see
    exactly one winner, while different slots proceed in parallel.
    """

    def __init__(self, clock: Clock = utc_now, slot_locks: SlotLockRegistry | None = None):
        self._clock = clock
        self._slot_locks = slot_locks or SlotLockRegistry()

    @abstractmethod
    def get(self, appointment_id: str) -> AppointmentRecord | None:
        ...

    @abstractmethod
    def list_by_date(self, slot_date: str) -> list[AppointmentRecord]:
        ...

    @abstractmethod
    def list_by_date_range(
        self,
        start_date: str,
        end_date: str,
        include_cancelled: bool = False,
    ) -> list[AppointmentRecord]:
        ...

    @abstractmethod
    def cancel(self, appointment_id: str, reason: str | None = None) -> bool:
        ...

    @abstractmethod
    def purge_older_than(self, days: int) -> int:
        ...

    @abstractmethod
    def _insert_if_slot_free(self, candidate: ReservationCandidate) -> AppointmentRecord | None:
        """Check the exact slot and insert; called with the slot lock held."""

    def reserve_if_available(self, candidate: ReservationCandidate) -> AppointmentRecord | None:
        key = slot_key(candidate.date, candidate.start_time)
        with self._slot_locks.hold(key) as acquired:
            if not acquired:
                return None
            return self._insert_if_slot_free(candidate)

    def _purge_cutoff(self, days: int) -> datetime:
        if days < 0:
            raise ValueError('Retention days cannot be negative.')
        return self._clock() - timedelta(days=days)


class InMemoryAppointmentStore(AppointmentStore):
    def __init__(self, clock: Clock = utc_now, slot_locks: SlotLockRegistry | None = None):
        super().__init__(clock=clock, slot_locks=slot_locks)
        self._records: dict[str, AppointmentRecord] = {}
        # Guards single-record read-modify-write (cancel) and deletes (purge).
        self._write_lock = Lock()

    def _snapshot(self) -> list[AppointmentRecord]:
        return list(self._records.values())

    def get(self, appointment_id: str) -> AppointmentRecord | None:
        return self._records.get(appointment_id)

    def list_by_date(self, slot_date: str) -> list[AppointmentRecord]:
        return sorted(
            (record for record in self._snapshot() if record.date == slot_date and record.is_active),
            key=lambda record: record.start_time,
        )

    def list_by_date_range(
        self,
        start_date: str,
        end_date: str,
        include_cancelled: bool = False,
    ) -> list[AppointmentRecord]:
        return sorted(
            (
                record
                for record in self._snapshot()
                if start_date <= record.date <= end_date and (include_cancelled or record.is_active)
            ),
            key=lambda record: (record.date, record.start_time),
        )

    def _insert_if_slot_free(self, candidate: ReservationCandidate) -> AppointmentRecord | None:
        occupied = any(
            record.is_active and record.date == candidate.date and record.start_time == candidate.start_time
            for record in self._snapshot()
        )
        if occupied:
            return None

        record = build_record(candidate, self._clock())
        self._records[record.id] = record
        return record

    def cancel(self, appointment_id: str, reason: str | None = None) -> bool:
        with self._write_lock:
            record = self._records.get(appointment_id)
            if record is None or not record.is_active:
                return False

            now = self._clock()
            self._records[appointment_id] = record.model_copy(
                update={
                    'status': AppointmentStatus.CANCELLED,
                    'cancelled_at': now,
                    'cancellation_reason': reason or DEFAULT_CANCELLATION_REASON,
                    'updated_at': now,
                }
            )
            return True

    def purge_older_than(self, days: int) -> int:
        cutoff = self._purge_cutoff(days)
        with self._write_lock:
            expired = [record.id for record in self._snapshot() if record.created_at < cutoff]
            for appointment_id in expired:
                del self._records[appointment_id]

        return len(expired)
