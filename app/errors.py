"""
Service-level errors.

Service functions raise these instead of HTTPException; main.py renders them
with the same {"error_code", "message"} envelope the routers use.
"""
from fastapi import status


class ServiceError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, error_code: str, message: str):
        super().__init__(message)
        self.error_code = error_code
        self.message = message

    def to_detail(self) -> dict:
        return {"error_code": self.error_code, "message": self.message}


class InvalidRequestError(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST


class ForbiddenError(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(ServiceError):
    status_code = status.HTTP_409_CONFLICT


class InvalidStateError(ConflictError):
    """A status transition that the current state does not allow."""
