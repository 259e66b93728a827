"""
Booking error taxonomy.

Each kind carries the HTTP status and a stable code that the frontend
switches on. The API layer renders them as {"detail": ..., "code": ...}.
Only TransientConflictError is safe to retry without user intervention.
"""

from typing import Optional


class BookingError(Exception):
    status_code: int = 400
    code: str = "BOOKING_ERROR"
    message: str = "Booking request failed"

    def __init__(self, message: Optional[str] = None, **context):
        self.message = message or self.message
        self.context = context
        super().__init__(self.message)

    @property
    def headers(self) -> Optional[dict]:
        return None


class TourNotFoundError(BookingError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Tour not found"


class TourNotBookableError(BookingError):
    status_code = 409
    code = "NOT_BOOKABLE"
    message = "Tour is not bookable"


class TourFullError(TourNotBookableError):
    """No spare capacity. A FULL tour is one kind of not-bookable tour."""

    status_code = 409
    code = "FULL"
    message = "Tour is already full"


class AlreadyBookedError(BookingError):
    status_code = 409
    code = "ALREADY_BOOKED"
    message = "You have already booked this tour"


class NotBookedError(BookingError):
    status_code = 409
    code = "NOT_BOOKED"
    message = "You are not booked on this tour"


class TransientConflictError(BookingError):
    status_code = 503
    code = "TRANSIENT_CONFLICT"
    message = "Booking failed due to high demand. Please try again."

    @property
    def headers(self) -> Optional[dict]:
        return {"Retry-After": "1"}


# Store-level signals. The booking service translates these; they never
# reach the HTTP layer directly.

class StaleTourError(Exception):
    """A version-guarded tour write matched no row."""

    def __init__(self, tour_id: int, expected_version: int):
        self.tour_id = tour_id
        self.expected_version = expected_version
        super().__init__(f"Tour {tour_id} changed since version {expected_version}")


class DuplicateBookingError(Exception):
    """The CONFIRMED (user, tour) unique index rejected an insert."""

    def __init__(self, user_id: int, tour_id: int):
        self.user_id = user_id
        self.tour_id = tour_id
        super().__init__(f"User {user_id} already holds a confirmed booking for tour {tour_id}")


class TourIntegrityError(ValueError):
    """A tour write would break the capacity or schedule rules."""
