"""Errors raised by the appointment lifecycle manager.

Every error carries an :class:`ErrorKind` tag so callers can branch on the
kind without matching on exception classes.
"""

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    INVALID_TRANSITION = "invalid_transition"
    CANCELLATION_WINDOW_CLOSED = "cancellation_window_closed"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    SLOT_UNAVAILABLE = "slot_unavailable"


class LifecycleError(Exception):
    kind: ErrorKind

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(LifecycleError):
    kind = ErrorKind.NOT_FOUND


class ValidationError(LifecycleError):
    kind = ErrorKind.VALIDATION


class UnauthorizedError(LifecycleError):
    kind = ErrorKind.UNAUTHORIZED


class InvalidTransitionError(LifecycleError):
    kind = ErrorKind.INVALID_TRANSITION


class CancellationWindowClosedError(LifecycleError):
    kind = ErrorKind.CANCELLATION_WINDOW_CLOSED


class ConcurrentModificationError(LifecycleError):
    kind = ErrorKind.CONCURRENT_MODIFICATION

    def __init__(self, appointment_id: int, expected_version: int):
        self.appointment_id = appointment_id
        self.expected_version = expected_version
        super().__init__(
            f"Appointment {appointment_id} was modified concurrently (expected version {expected_version})."
        )


class SlotUnavailableError(LifecycleError):
    kind = ErrorKind.SLOT_UNAVAILABLE
