"""
Pipeline error classes.

Only ``PersistenceError`` may abort a request after ingress; satellite
failures are absorbed into structured results by the services that call them.
Both classes are ``HTTPException`` subclasses so the application's global
handlers render them like any other HTTP error.
"""

from typing import Optional
from fastapi import HTTPException, status


class PreconditionError(HTTPException):
    """Missing or malformed input detected before any write happens."""
    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(status_code=status_code, detail=message)


class ApplicationNotFoundError(PreconditionError):
    def __init__(self, application_id: str):
        super().__init__(f"Application {application_id} not found", status.HTTP_404_NOT_FOUND)


class InvalidStatusTransition(PreconditionError):
    def __init__(self, current_state: str, attempted_state: str):
        super().__init__(
            f"Cannot transition application from {current_state} to {attempted_state}",
            status.HTTP_409_CONFLICT,
        )


class PersistenceError(HTTPException):
    """The system of record rejected a write; the request is aborted."""
    def __init__(self, message: str, cause: Optional[Exception] = None):
        detail = f"{message}: {cause}" if cause else message
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)
        self.cause = cause


class SatelliteError(Exception):
    """A call to a satellite system failed; callers fold it into a result, never re-raise."""
    def __init__(self, system: str, message: str):
        super().__init__(f"{system}: {message}")
        self.system = system
        self.message = message


class EmailDeliveryError(SatelliteError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__("email", message)
        self.status_code = status_code
