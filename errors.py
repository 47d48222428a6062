"""
Error taxonomy for the booking service.

Every error carries a short machine readable ``code`` so HTTP clients can
tell a rejected request (retry possible) from a vanished booking or a
transient storage problem.
"""


class BookingError(Exception):
    code = "booking_error"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(BookingError):
    """Missing or malformed booking fields; raised before any store mutation."""
    code = "validation_error"
    status_code = 422


class InvalidTransition(BookingError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, event: str):
        super().__init__(f"Cannot {event} booking in status {current}")
        self.current = current
        self.event = event


class AlreadyAssigned(BookingError):
    code = "already_assigned"
    status_code = 409

    def __init__(self, booking_id: str, driver_id: str):
        super().__init__(f"Booking {booking_id} already accepted by driver {driver_id}")
        self.booking_id = booking_id
        self.driver_id = driver_id


class NotFound(BookingError):
    code = "not_found"
    status_code = 404


class Forbidden(BookingError):
    """Actor is not allowed to fire the requested event."""
    code = "forbidden"
    status_code = 403


class ConflictingActiveBooking(BookingError):
    code = "conflicting_active_booking"
    status_code = 409

    def __init__(self, user_id: str, booking_id: str):
        super().__init__(f"User {user_id} already has active booking {booking_id}")
        self.user_id = user_id
        self.booking_id = booking_id


class DuplicateRegistration(BookingError):
    code = "duplicate_registration"
    status_code = 409


class PersistenceFailure(BookingError):
    """Underlying read/write of a collection failed. Retry is up to the caller."""
    code = "persistence_failure"
    status_code = 503


class StaleWrite(Exception):
    """Compare-and-swap lost against a concurrent writer. Internal to the store."""
