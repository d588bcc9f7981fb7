"""Errors raised by rental operations.

Every error is a rejected operation: it is raised before anything is
written, or the surrounding transaction is rolled back.  ``code`` is the
stable identifier returned to API and CLI callers.
"""


class RentalError(Exception):
    code = "rental_error"
    http_status = 400

    def __init__(self, message=None, **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class Conflict(RentalError):
    """Interval overlaps an existing booking, or the vehicle is busy."""
    code = "conflict"
    http_status = 409


class InvalidTransition(RentalError):
    code = "invalid_transition"
    http_status = 409


class NotFound(RentalError):
    code = "not_found"
    http_status = 404


class InvalidInterval(RentalError):
    code = "invalid_interval"


class InvalidMileage(RentalError):
    code = "invalid_mileage"


class InvalidToken(RentalError):
    """Portal token is unknown, expired or belongs to a cancelled booking."""
    code = "invalid_token"
    http_status = 404


class AlreadyCompleted(RentalError):
    """Portal token whose reservation already left ``pending-customer``."""
    code = "already_completed"
    http_status = 409


class InvalidInput(RentalError):
    code = "invalid_input"
