from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class AttendanceError(Exception):
    """Base class for attendance engine errors."""


class MalformedEventError(AttendanceError):
    """An event whose timestamp or type cannot be interpreted."""


class OrphanedEventError(AttendanceError):
    """A signout/break event with no open period to act on."""


class InvalidStateError(AttendanceError):
    """A requested state change that the current attendance state does not allow."""


class InvalidTimezoneError(AttendanceError):
    def __init__(self, name: str | None):
        super().__init__(f"Unknown timezone: {name!r}")
        self.name = name


class CappedDurationWarning(UserWarning):
    """A period exceeded the maximum plausible shift length and was capped."""


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
