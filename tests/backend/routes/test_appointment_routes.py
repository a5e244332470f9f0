from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from backend.core.errors import SlotUnavailableError
from backend.main import app
from backend.routes.appointment_routes import (
    CancelAppointmentRequest,
    CreateAppointmentRequest,
    get_scheduling_service,
    raise_scheduling_error,
)


@pytest.fixture
def api_client(scheduling_service):
    app.dependency_overrides[get_scheduling_service] = lambda: scheduling_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _payload(**overrides) -> dict:
    payload = {
        'customer_name': 'Jane Doe',
        'customer_email': 'Jane@Example.com',
        'date': '2025-09-25',
        'start_time': '07:30',
        'timezone_offset': -420,
    }
    payload.update(overrides)
    return payload


def test_create_appointment_request_sanitizes_fields() -> None:
    request = CreateAppointmentRequest(
        customer_name='  <b>Jane</b> Doe ',
        customer_email=' JANE@EXAMPLE.COM ',
        date=' 2025-09-25 ',
        start_time='07:30 ',
        notes='<script>alert(1)</script>',
        timezone='Asia/Bangkok',
    )

    assert request.customer_name == 'Jane Doe'
    assert request.customer_email == 'jane@example.com'
    assert request.date == '2025-09-25'
    assert request.start_time == '07:30'
    assert request.notes is None
    assert request.timezone_reference == 'Asia/Bangkok'


def test_create_appointment_request_prefers_timezone_name_over_offset() -> None:
    request = CreateAppointmentRequest(**_payload(timezone='Asia/Bangkok'))

    booking = request.to_booking_request()

    assert booking.timezone == 'Asia/Bangkok'
    assert booking.customer_email == 'jane@example.com'


@pytest.mark.parametrize(
    'overrides',
    [
        {'customer_name': 'J'},
        {'customer_name': 'x' * 101},
        {'customer_email': 'not-an-email'},
        {'notes': 'n' * 501},
        {'timezone_offset': None},
    ],
)
def test_create_appointment_request_rejects_bad_input(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        CreateAppointmentRequest(**_payload(**overrides))


def test_cancel_appointment_request_limits_reason() -> None:
    assert CancelAppointmentRequest(reason='<i>Sick</i>').reason == 'Sick'
    assert CancelAppointmentRequest(reason='   ').reason is None

    with pytest.raises(ValidationError):
        CancelAppointmentRequest(reason='r' * 201)


def test_get_scheduling_service_requires_startup() -> None:
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))

    with pytest.raises(HTTPException) as exception_info:
        get_scheduling_service(request)

    assert exception_info.value.status_code == 503


def test_raise_scheduling_error_maps_code_and_status() -> None:
    with pytest.raises(HTTPException) as exception_info:
        raise_scheduling_error(SlotUnavailableError())

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == {
        'code': 'slot_unavailable',
        'message': 'This time slot is no longer available. Please select a different time.',
    }


def test_health_check(api_client: TestClient) -> None:
    response = api_client.get('/api/health')

    assert response.status_code == 200
    body = response.json()
    assert body['success'] is True
    assert body['message'] == 'Appointment service is healthy'
    assert body['uptime_seconds'] >= 0


def test_create_appointment_returns_confirmation(api_client: TestClient) -> None:
    response = api_client.post('/api/appointments', json=_payload(notes='First visit'))

    assert response.status_code == 201
    appointment = response.json()['appointment']
    assert appointment['confirmation_code'] == 'APT-20250925-0730'
    assert appointment['customer_email'] == 'jane@example.com'
    assert appointment['end_time'] == '08:00'
    assert appointment['status'] == 'active'
    assert appointment['timezone'] == 'UTC+07:00'
    assert appointment['notes'] == 'First visit'


def test_create_appointment_conflict_returns_409(api_client: TestClient) -> None:
    assert api_client.post('/api/appointments', json=_payload()).status_code == 201

    response = api_client.post('/api/appointments', json=_payload(customer_email='other@example.com'))

    assert response.status_code == 409
    assert response.json()['detail'] == {
        'code': 'slot_overlap',
        'message': 'This time slot overlaps with an existing appointment',
    }


def test_create_appointment_in_the_past_returns_400(api_client: TestClient, clock) -> None:
    clock.now = datetime(2025, 9, 25, 8, 0, tzinfo=timezone.utc)

    response = api_client.post('/api/appointments', json=_payload(start_time='07:00'))

    assert response.status_code == 400
    assert response.json()['detail'] == {
        'code': 'business_rule_violation',
        'message': 'Cannot book appointments in the past',
    }


def test_create_appointment_with_bad_date_returns_validation_error(api_client: TestClient) -> None:
    response = api_client.post('/api/appointments', json=_payload(date='25-09-2025'))

    assert response.status_code == 400
    assert response.json()['detail']['code'] == 'validation_error'


def test_create_appointment_without_timezone_is_unprocessable(api_client: TestClient) -> None:
    payload = _payload()
    del payload['timezone_offset']

    response = api_client.post('/api/appointments', json=payload)

    assert response.status_code == 422


def test_database_failure_returns_503(api_client: TestClient, memory_store, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(slot_date: str):
        raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    monkeypatch.setattr(memory_store, 'list_by_date', broken)

    response = api_client.get('/api/appointments/slots', params={'date': '2025-09-25'})

    assert response.status_code == 503


def test_list_available_slots_marks_bookings(api_client: TestClient) -> None:
    api_client.post('/api/appointments', json=_payload(start_time='09:00'))

    response = api_client.get(
        '/api/appointments/slots',
        params={'date': '2025-09-25', 'customer_email': 'jane@example.com'},
    )

    assert response.status_code == 200
    body = response.json()
    assert body['total_slots'] == 24
    assert body['available_slots'] == 23
    booked = next(slot for slot in body['slots'] if slot['time'] == '09:00')
    assert booked['available'] is False
    assert booked['booked_by'] == 'Jane D.'
    assert booked['is_user_booking'] is True


def test_list_appointments_for_date(api_client: TestClient) -> None:
    api_client.post('/api/appointments', json=_payload(start_time='10:00'))
    api_client.post('/api/appointments', json=_payload(start_time='08:00'))

    response = api_client.get('/api/appointments', params={'date': '2025-09-25'})

    assert response.status_code == 200
    body = response.json()
    assert [appointment['start_time'] for appointment in body['appointments']] == ['08:00', '10:00']
    assert body['business_hours'] == {'start': '07:00', 'end': '19:00', 'slot_duration_minutes': 30}


def test_list_appointments_rejects_bad_date(api_client: TestClient) -> None:
    response = api_client.get('/api/appointments', params={'date': 'tomorrow'})

    assert response.status_code == 400
    assert response.json()['detail'] == {
        'code': 'validation_error',
        'message': 'Date must be in YYYY-MM-DD format',
    }


def test_get_appointment_by_id(api_client: TestClient) -> None:
    created = api_client.post('/api/appointments', json=_payload()).json()['appointment']

    response = api_client.get(f"/api/appointments/{created['id']}")

    assert response.status_code == 200
    assert response.json()['appointment']['id'] == created['id']


def test_get_missing_appointment_returns_404(api_client: TestClient) -> None:
    response = api_client.get('/api/appointments/does-not-exist')

    assert response.status_code == 404
    assert response.json()['detail'] == {'code': 'not_found', 'message': 'Appointment not found'}


def test_cancel_appointment_then_again(api_client: TestClient) -> None:
    created = api_client.post('/api/appointments', json=_payload(start_time='12:00')).json()['appointment']

    first = api_client.request('DELETE', f"/api/appointments/{created['id']}", json={'reason': 'Schedule change'})
    second = api_client.request('DELETE', f"/api/appointments/{created['id']}")

    assert first.status_code == 200
    assert first.json() == {'success': True, 'message': 'Appointment cancelled successfully'}
    assert second.status_code == 400
    assert second.json()['detail']['code'] == 'already_cancelled'

    detail = api_client.get(f"/api/appointments/{created['id']}").json()['appointment']
    assert detail['status'] == 'cancelled'
    assert detail['cancellation_reason'] == 'Schedule change'


def test_cancel_inside_buffer_returns_400(api_client: TestClient, clock) -> None:
    created = api_client.post('/api/appointments', json=_payload(start_time='07:00')).json()['appointment']
    clock.now = datetime(2025, 9, 25, 0, 0, tzinfo=timezone.utc) - timedelta(minutes=10)

    response = api_client.request('DELETE', f"/api/appointments/{created['id']}")

    assert response.status_code == 400
    assert response.json()['detail'] == {
        'code': 'cancellation_window',
        'message': 'Appointments can only be cancelled at least 30 minutes in advance',
    }


def test_metrics_endpoint(api_client: TestClient) -> None:
    api_client.post('/api/appointments', json=_payload(start_time='09:00'))

    response = api_client.get('/api/metrics', params={'date': '2025-09-25'})

    assert response.status_code == 200
    metrics = response.json()['metrics']
    assert metrics['today_appointments'] == 1
    assert metrics['available_slots'] == 23
    assert metrics['weekly_appointments'] == 1
    assert metrics['cancellation_rate'] == 0.0
