"""
Domain Exceptions
Error taxonomy shared by services and mapped to HTTP responses in main
"""

from fastapi import status


class DevSimError(Exception):
    """Base class for every domain error"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DevSimError):
    """Malformed input, rejected before any state mutation"""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(DevSimError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(DevSimError):
    """Illegal state transition or ownership conflict"""

    status_code = status.HTTP_409_CONFLICT


class FormatError(DevSimError):
    """Uploaded file is not a usable CSV"""

    status_code = status.HTTP_400_BAD_REQUEST


class StoreFault(DevSimError):
    """Persistence unavailable"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
