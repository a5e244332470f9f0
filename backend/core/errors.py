"""Typed failures raised by the scheduling core.

Every failure carries the HTTP status the boundary should answer with, a
stable machine-readable ``code`` and a message that can be shown to a
customer as-is.
"""


class SchedulingError(Exception):
    status_code = 400
    code = 'scheduling_error'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {'code': self.code, 'message': self.message}


class ValidationError(SchedulingError):
    """Malformed date, time or timezone input."""
    code = 'validation_error'


class BusinessRuleError(SchedulingError):
    """Well-formed input that the booking rules reject (hours, boundaries, past)."""
    code = 'business_rule_violation'


class ConflictError(SchedulingError):
    status_code = 409
    code = 'conflict'


class SlotOverlapError(ConflictError):
    code = 'slot_overlap'

    def __init__(self, message: str = 'This time slot overlaps with an existing appointment'):
        super().__init__(message)


class SlotUnavailableError(ConflictError):
    """Another request reserved the slot between the overlap check and the reservation."""
    code = 'slot_unavailable'

    def __init__(self, message: str = 'This time slot is no longer available. Please select a different time.'):
        super().__init__(message)


class NotFoundError(SchedulingError):
    status_code = 404
    code = 'not_found'

    def __init__(self, message: str = 'Appointment not found'):
        super().__init__(message)


class AlreadyCancelledError(SchedulingError):
    code = 'already_cancelled'

    def __init__(self, message: str = 'Appointment is already cancelled'):
        super().__init__(message)


class CancellationWindowError(SchedulingError):
    code = 'cancellation_window'


class InternalError(SchedulingError):
    status_code = 500
    code = 'internal_error'
