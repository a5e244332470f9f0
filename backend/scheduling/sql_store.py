import logging

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from backend.models.appointment import Appointment, AppointmentStatus
from backend.scheduling.records import AppointmentRecord, ReservationCandidate
from backend.scheduling.slot_locks import SlotLockRegistry
from backend.scheduling.store import (
    DEFAULT_CANCELLATION_REASON,
    AppointmentStore,
    Clock,
    build_record,
)
from backend.scheduling.time_rules import as_utc, utc_now

logger = logging.getLogger(__name__)


def to_record(row: Appointment) -> AppointmentRecord:
    record = AppointmentRecord.model_validate(row)
    # SQLite drops tzinfo on the way back; every stored timestamp is UTC.
    return record.model_copy(
        update={
            'starts_at': as_utc(record.starts_at),
            'created_at': as_utc(record.created_at),
            'updated_at': as_utc(record.updated_at),
            'cancelled_at': as_utc(record.cancelled_at) if record.cancelled_at else None,
        }
    )


class SqlAlchemyAppointmentStore(AppointmentStore):
    """Store backed by the ``appointments`` table.

    The in-process slot lock serialises reservations inside one worker; the
    partial unique index on ``(date, start_time) WHERE status = 'active'``
    makes the same guarantee hold across processes.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Clock = utc_now,
        slot_locks: SlotLockRegistry | None = None,
    ):
        super().__init__(clock=clock, slot_locks=slot_locks)
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    def get(self, appointment_id: str) -> AppointmentRecord | None:
        with self._session() as db:
            row = db.get(Appointment, appointment_id)
            return to_record(row) if row else None

    def list_by_date(self, slot_date: str) -> list[AppointmentRecord]:
        with self._session() as db:
            rows = db.scalars(
                select(Appointment)
                .where(
                    Appointment.date == slot_date,
                    Appointment.status == AppointmentStatus.ACTIVE.value,
                )
                .order_by(Appointment.start_time.asc())
            ).all()
            return [to_record(row) for row in rows]

    def list_by_date_range(
        self,
        start_date: str,
        end_date: str,
        include_cancelled: bool = False,
    ) -> list[AppointmentRecord]:
        query = select(Appointment).where(
            Appointment.date >= start_date,
            Appointment.date <= end_date,
        )
        if not include_cancelled:
            query = query.where(Appointment.status == AppointmentStatus.ACTIVE.value)

        with self._session() as db:
            rows = db.scalars(
                query.order_by(Appointment.date.asc(), Appointment.start_time.asc())
            ).all()
            return [to_record(row) for row in rows]

    def _insert_if_slot_free(self, candidate: ReservationCandidate) -> AppointmentRecord | None:
        with self._session() as db:
            occupied = db.scalar(
                select(Appointment.id).where(
                    Appointment.date == candidate.date,
                    Appointment.start_time == candidate.start_time,
                    Appointment.status == AppointmentStatus.ACTIVE.value,
                )
            )
            if occupied:
                return None

            record = build_record(candidate, self._clock())
            db.add(
                Appointment(
                    **record.model_dump(exclude={'status'}),
                    status=record.status.value,
                )
            )
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.warning(
                    'Slot %s %s was reserved by another process', candidate.date, candidate.start_time
                )
                return None

            return record

    def cancel(self, appointment_id: str, reason: str | None = None) -> bool:
        now = self._clock()
        with self._session() as db:
            result = db.execute(
                update(Appointment)
                .where(
                    Appointment.id == appointment_id,
                    Appointment.status == AppointmentStatus.ACTIVE.value,
                )
                .values(
                    status=AppointmentStatus.CANCELLED.value,
                    cancelled_at=now,
                    cancellation_reason=reason or DEFAULT_CANCELLATION_REASON,
                    updated_at=now,
                )
            )
            db.commit()
            return result.rowcount == 1

    def purge_older_than(self, days: int) -> int:
        cutoff = self._purge_cutoff(days)
        with self._session() as db:
            result = db.execute(delete(Appointment).where(Appointment.created_at < cutoff))
            db.commit()
            return result.rowcount
