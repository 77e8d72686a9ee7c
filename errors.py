"""
Error types raised by the services and mapped to HTTP responses by the routes.
"""

from fastapi import HTTPException


class CivicLensError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(CivicLensError):
    """Missing or invalid required input."""
    status_code = 400


class ConflictError(CivicLensError):
    """A unique field (user email) is already taken."""
    status_code = 400


class AuthError(CivicLensError):
    """Missing, invalid or expired credentials."""
    status_code = 401


class PersistenceError(CivicLensError):
    """Unexpected failure talking to the document store."""
    status_code = 500


def to_http_exception(err: CivicLensError) -> HTTPException:
    if isinstance(err, PersistenceError):
        # Internal details stay in the logs
        return HTTPException(status_code=err.status_code, detail="Server error")
    headers = {"WWW-Authenticate": "Bearer"} if err.status_code == 401 else None
    return HTTPException(status_code=err.status_code, detail=err.message, headers=headers)
