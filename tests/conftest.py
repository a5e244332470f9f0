import os
from datetime import datetime, timezone

import pytest

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')
os.environ.setdefault('APPOINTMENT_STORE', 'memory')
os.environ.setdefault('RETENTION_ENABLED', 'false')

from backend.scheduling.service import BookingRequest, SchedulingPolicy, SchedulingService  # noqa: E402
from backend.scheduling.store import InMemoryAppointmentStore  # noqa: E402

# 00:30 on 2025-09-25 for a customer in UTC+7.
DEFAULT_NOW = datetime(2025, 9, 24, 17, 30, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = DEFAULT_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock) -> InMemoryAppointmentStore:
    return InMemoryAppointmentStore(clock=clock)


@pytest.fixture
def scheduling_service(memory_store: InMemoryAppointmentStore, clock: FakeClock) -> SchedulingService:
    return SchedulingService(memory_store, SchedulingPolicy(), clock=clock)


@pytest.fixture
def make_booking():
    def build(start_time: str = '09:00', date: str = '2025-09-25', **overrides) -> BookingRequest:
        fields = {
            'customer_name': 'Jane Doe',
            'customer_email': 'jane@example.com',
            'date': date,
            'start_time': start_time,
            'timezone': 'UTC+07:00',
        }
        fields.update(overrides)
        return BookingRequest(**fields)

    return build
