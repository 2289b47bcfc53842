"""
Error taxonomy shared by the store, the services and the HTTP layer.

Each error carries the HTTP status it is surfaced with; ``main.py`` registers a
single handler that renders any of them as ``{"detail": message}``.
"""


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str = "Internal error"):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Malformed, oversized or missing-required input."""
    status_code = 400


class ConflictError(ValidationError):
    """A unique field already exists in the store."""
    status_code = 409


class NotFoundError(ServiceError):
    status_code = 404


class StoreUnavailableError(ServiceError):
    """The database could not be reached in time. Safe to retry."""
    status_code = 503
