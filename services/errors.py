"""Failure taxonomy shared by the booking and billing services.

Every error carries an HTTP-agnostic message plus optional ``details``; the
``status_code`` attribute is only a hint for the web layer.
"""


class EngineError(Exception):
    status_code = 500

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        out = {"error": self.message}
        if self.details is not None:
            out["details"] = self.details
        return out


class ValidationError(EngineError):
    """Malformed input: bad date ordering, non-positive amount, unknown status."""
    status_code = 400


class MissingReferenceError(EngineError):
    """A foreign id (guest, staff user, room, booking) does not resolve."""
    status_code = 422


class ConflictError(EngineError):
    """Room/date overlap, or a second bill for the same booking."""
    status_code = 409

    def __init__(self, message: str, conflicts=None, details=None):
        super().__init__(message, details=details)
        self.conflicts = list(conflicts or [])


class OverpaymentError(EngineError):
    status_code = 409

    def __init__(self, message: str, requested=None, available=None):
        super().__init__(message, details={
            "requested": str(requested) if requested is not None else None,
            "outstanding": str(available) if available is not None else None,
        })
        self.requested = requested
        self.available = available


class NotFoundError(EngineError):
    status_code = 404


class StorageError(EngineError):
    """The persistence call failed. Not retried here."""
    status_code = 500
