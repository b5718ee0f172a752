"""
Domain errors for the booking core.

Every failure a caller can act on is a BookingError subclass with a stable
code, a human message and an HTTP status. main.py renders them as
{"success": false, "code": ..., "error": ...}; routers never build error
responses by hand.
"""
from __future__ import annotations

from typing import Any


class BookingError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500
    message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, **extra: Any):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_payload(self) -> dict:
        return {"success": False, "code": self.code, "error": self.message, **self.extra}


# ---------------------------------------------------------------------------
# Validation (raised before any I/O)
# ---------------------------------------------------------------------------

class ValidationError(BookingError):
    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Invalid request."


class InvalidDateError(ValidationError):
    code = "INVALID_DATE"
    message = "Valid date required (YYYY-MM-DD)."


class InvalidTimeError(ValidationError):
    code = "INVALID_TIME"
    message = "Valid time required (HH:MM on the half hour)."


class InvalidDurationError(ValidationError):
    code = "INVALID_DURATION"
    message = "Invalid session duration."


class SameDayBookingError(ValidationError):
    code = "SAME_DAY_BOOKING"
    message = "Same-day bookings are not available. Please book at least 1 day in advance."


class PastDateError(ValidationError):
    code = "PAST_DATE"
    message = "Cannot book sessions in the past."


class OutsideHorizonError(ValidationError):
    code = "OUTSIDE_HORIZON"
    message = "This date is too far ahead to book."


class TooLateToCancelError(ValidationError):
    code = "TOO_LATE_TO_CANCEL"
    message = "Cancellations must be made at least 1 day before your appointment."


# ---------------------------------------------------------------------------
# Identity / lookup
# ---------------------------------------------------------------------------

class NotAuthenticatedError(BookingError):
    code = "NOT_AUTHENTICATED"
    status_code = 401
    message = "Authentication required to book."


class ForbiddenError(BookingError):
    code = "FORBIDDEN"
    status_code = 403
    message = "Access denied."


class UserNotFoundError(BookingError):
    code = "USER_NOT_FOUND"
    status_code = 404
    message = "User not found. Please sign in again."


class BookingNotFoundError(BookingError):
    code = "BOOKING_NOT_FOUND"
    status_code = 404
    message = "Booking not found."


# ---------------------------------------------------------------------------
# Commit rejections
# ---------------------------------------------------------------------------

class SlotUnavailableError(BookingError):
    code = "SLOT_UNAVAILABLE"
    status_code = 409
    message = "Sorry, this time slot is no longer available. Please select another time."


class InsufficientCreditError(BookingError):
    code = "INSUFFICIENT_CREDIT"
    status_code = 400

    def __init__(self, duration: int | None = None, message: str | None = None):
        if message is None and duration is not None:
            message = f"No {duration}-minute sessions available. Please purchase a package."
        super().__init__(message or "No sessions available. Please purchase a package.")


class LedgerConflictError(BookingError):
    code = "BOOKING_CONFLICT"
    status_code = 409
    message = "Your account was updated by another request. Please try again."


class DuplicateBookingError(BookingError):
    """A confirmed booking for the same key/slot already exists.

    Not surfaced to callers: the commit protocol turns it into a
    duplicate success carrying the original booking.
    """
    code = "DUPLICATE_BOOKING"
    status_code = 200

    def __init__(self, booking):
        self.booking = booking
        super().__init__("Booking already exists.")


# ---------------------------------------------------------------------------
# External calendar
# ---------------------------------------------------------------------------

class CalendarUnavailableError(BookingError):
    code = "CALENDAR_UNAVAILABLE"
    status_code = 503
    message = "Calendar is temporarily unavailable. Please try again shortly."


class CalendarNotConfiguredError(BookingError):
    code = "CALENDAR_NOT_CONFIGURED"
    status_code = 503
    message = "Calendar integration not configured."


class CalendarWriteError(BookingError):
    code = "BOOKING_FAILED"
    status_code = 502
    message = "We could not create your booking. You have not been charged a session."
