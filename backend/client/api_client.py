import logging
from datetime import datetime, tzinfo
from typing import Callable

import httpx

from backend.client.slot_selection import SlotPreview, preview_slot
from backend.scheduling.records import AppointmentMetrics, BookedAppointment, DaySchedule
from backend.scheduling.time_rules import BusinessHours, TimezoneReference, timezone_label, utc_now

logger = logging.getLogger(__name__)

SLOT_UNAVAILABLE = 'slot_unavailable'


class BookingRejected(Exception):
    """The booking was refused, either by the local preview or by the server."""

    def __init__(self, code: str, message: str, status_code: int | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code

    @property
    def should_pick_another_time(self) -> bool:
        return self.code in {SLOT_UNAVAILABLE, 'slot_overlap', 'preview_booked', 'preview_past'}


def _rejection_from_response(response: httpx.Response) -> BookingRejected:
    try:
        body = response.json()
    except ValueError:
        body = None
    detail = body.get('detail') if isinstance(body, dict) else None

    if isinstance(detail, dict):
        return BookingRejected(detail.get('code', 'error'), detail.get('message', ''), response.status_code)
    if isinstance(detail, list):
        messages = '; '.join(
            str(item.get('msg', item)) if isinstance(item, dict) else str(item) for item in detail
        )
        return BookingRejected('invalid_request', messages, response.status_code)
    return BookingRejected('error', str(detail or response.text), response.status_code)


class BookingClient:
    """Customer-side booking flow against the appointment API.

    Keeps the last fetched day schedule to preview slots without a round trip,
    always defers to the server's answer, and refreshes the schedule after a
    lost reservation race so the caller can offer fresh times.
    """

    def __init__(
        self,
        http: httpx.Client,
        timezone_reference: TimezoneReference,
        clock: Callable[[], datetime] = utc_now,
        api_prefix: str = '/api',
    ):
        self._http = http
        self._timezone_reference = timezone_reference
        self._clock = clock
        self._prefix = api_prefix.rstrip('/')
        self._schedules: dict[str, DaySchedule] = {}

    def _url(self, path: str) -> str:
        return f'{self._prefix}{path}'

    def _timezone_fields(self) -> dict:
        reference = self._timezone_reference
        if isinstance(reference, int) and not isinstance(reference, bool):
            return {'timezone_offset': reference}
        if isinstance(reference, tzinfo):
            return {'timezone': timezone_label(reference)}
        return {'timezone': reference}

    def fetch_day(self, slot_date: str, customer_email: str | None = None) -> DaySchedule:
        params = {'date': slot_date}
        if customer_email:
            params['customer_email'] = customer_email

        response = self._http.get(self._url('/appointments'), params=params)
        if response.status_code != 200:
            raise _rejection_from_response(response)

        schedule = DaySchedule.model_validate(response.json())
        self._schedules[slot_date] = schedule
        return schedule

    def cached_day(self, slot_date: str) -> DaySchedule | None:
        return self._schedules.get(slot_date)

    def preview(self, slot_date: str, start_time: str, customer_email: str | None = None) -> SlotPreview:
        schedule = self._schedules.get(slot_date) or self.fetch_day(slot_date, customer_email)
        hours = BusinessHours(
            start=schedule.business_hours['start'],
            end=schedule.business_hours['end'],
            slot_duration_minutes=schedule.business_hours['slot_duration_minutes'],
        )
        return preview_slot(
            slot_date,
            start_time,
            self._timezone_reference,
            existing=schedule.appointments,
            now=self._clock(),
            hours=hours,
            viewer_email=customer_email,
        )

    def book(
        self,
        customer_name: str,
        customer_email: str,
        slot_date: str,
        start_time: str,
        notes: str | None = None,
    ) -> BookedAppointment:
        preview = self.preview(slot_date, start_time, customer_email)
        if not preview.bookable:
            raise BookingRejected(f'preview_{preview.status.replace("-", "_")}', preview.message or '')

        payload = {
            'customer_name': customer_name,
            'customer_email': customer_email,
            'date': slot_date,
            'start_time': start_time,
            'notes': notes,
            **self._timezone_fields(),
        }
        response = self._http.post(self._url('/appointments'), json=payload)

        if response.status_code == 201:
            self._schedules.pop(slot_date, None)
            return BookedAppointment.model_validate(response.json()['appointment'])

        rejection = _rejection_from_response(response)
        if rejection.code == SLOT_UNAVAILABLE:
            logger.info('Slot %s %s was taken concurrently; refreshing schedule', slot_date, start_time)
            self.fetch_day(slot_date, customer_email)
        raise rejection

    def cancel(self, appointment_id: str, reason: str | None = None) -> str:
        response = self._http.request(
            'DELETE',
            self._url(f'/appointments/{appointment_id}'),
            json={'reason': reason},
        )
        if response.status_code != 200:
            raise _rejection_from_response(response)

        self._schedules.clear()
        return response.json()['message']

    def metrics(self, slot_date: str | None = None) -> AppointmentMetrics:
        params = {'date': slot_date} if slot_date else None
        response = self._http.get(self._url('/metrics'), params=params)
        if response.status_code != 200:
            raise _rejection_from_response(response)
        return AppointmentMetrics.model_validate(response.json()['metrics'])
