"""
Booking error taxonomy.

Every failure a handler can report maps to one of these classes; main.py
turns them into JSON responses with the class's status code.
UpstreamDegraded wraps a failing calendar adapter and is caught where busy
time is looked up, so it never reaches a handler. Meeting-room and email
failures are logged and the operation continues without them.
"""

from typing import Optional


class BookingError(Exception):
    status_code = 400
    code = "booking_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class ValidationError(BookingError):
    status_code = 400
    code = "validation_error"


class NotFoundError(BookingError):
    status_code = 404
    code = "not_found"


class PermissionDeniedError(BookingError):
    status_code = 403
    code = "permission_denied"


class ConflictError(BookingError):
    """Slot taken, overlapping booking, or a lead-time rule violated."""

    status_code = 409
    code = "conflict"


class PaymentGatewayError(BookingError):
    status_code = 502
    code = "payment_gateway_error"


class PersistenceError(BookingError):
    status_code = 503
    code = "persistence_error"


class UpstreamDegraded(Exception):
    """An external calendar lookup failed; callers fall back to no busy data."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message
