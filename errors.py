"""Error taxonomy for admission control and the booking lifecycle.

Every error raised by the engine derives from BookingError so the HTTP layer
can map it to a typed response instead of a 500.
"""


class BookingError(Exception):
    """Base exception for all booking engine errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """Bad input shape: misaligned times, end <= start, missing remark."""


class DurationExceeded(BookingError):
    """Requested window is longer than the resource allows."""

    def __init__(self, requested_hours: int, allowed_hours: int):
        super().__init__(
            f"Requested {requested_hours}h exceeds the maximum of {allowed_hours}h for this resource"
        )
        self.requested_hours = requested_hours
        self.allowed_hours = allowed_hours


class ConflictError(BookingError):
    """The requested window overlaps a live booking."""

    def __init__(self, message: str = "Time slot already booked"):
        super().__init__(message)


class SlotRaceError(ConflictError):
    """A concurrent admission claimed one of our slots between read and write.

    Transient: admission re-reads the timeline once before giving up.
    """


class AuthorizationError(BookingError):
    """Actor is not allowed to act on this booking or resource scope."""


class InvalidTransition(BookingError):
    """Lifecycle move that the state machine does not allow."""

    def __init__(self, current: str, action: str):
        super().__init__(f"Cannot {action} a booking in status '{current}'")
        self.current = current
        self.action = action


class NotFoundError(BookingError):
    """Resource or booking does not exist (or is inactive)."""
