"""Typed errors for callable endpoints.

Callable handlers raise these; the exception handler registered in
``main.py`` renders them as ``{"error": {"status": ..., "message": ...}}``
with the matching HTTP status. Background triggers catch and log instead.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class CallableError(Exception):
    """Base class for errors surfaced to a synchronous caller."""

    code = "INTERNAL"
    status_code = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"status": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}


class Unauthenticated(CallableError):
    code = "UNAUTHENTICATED"
    status_code = 401


class InvalidArgument(CallableError):
    code = "INVALID_ARGUMENT"
    status_code = 400


class NotFound(CallableError):
    code = "NOT_FOUND"
    status_code = 404


class ResourceExhausted(CallableError):
    code = "RESOURCE_EXHAUSTED"
    status_code = 429


class Internal(CallableError):
    code = "INTERNAL"
    status_code = 500


class Unavailable(CallableError):
    code = "UNAVAILABLE"
    status_code = 503


async def callable_error_handler(request: Request, exc: CallableError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
