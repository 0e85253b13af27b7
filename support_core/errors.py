from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

from fastapi import HTTPException, status
from pydantic import BaseModel, Field

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    DUPLICATE_SUPPRESSED = "duplicate_suppressed"
    TRANSIENT_IO = "transient_io"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    NOT_FOUND = "not_found"
    LIMIT_EXCEEDED = "limit_exceeded"
    UPSTREAM_ERROR = "upstream_error"


class SupportCoreError(Exception):
    """Base class for errors that propagate to the turn boundary."""

    kind: ErrorKind = ErrorKind.UPSTREAM_ERROR

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransientIOError(SupportCoreError):
    """A shared store (Redis, database) could not be reached."""

    kind = ErrorKind.TRANSIENT_IO


class LockStoreUnavailable(TransientIOError):
    """The lock store is unreachable; tool execution must be denied."""


class UpstreamTimeout(SupportCoreError):
    kind = ErrorKind.UPSTREAM_TIMEOUT


class UpstreamError(SupportCoreError):
    kind = ErrorKind.UPSTREAM_ERROR


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """
    Result type returned at seams where the caller has to branch on failure
    instead of catching an exception.
    """

    ok: bool
    value: T | None = None
    kind: ErrorKind | None = None
    message: str | None = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, value: T | None = None) -> "Outcome[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        value: T | None = None,
    ) -> "Outcome[T]":
        return cls(ok=False, value=value, kind=kind, message=message, details=details or {})

    @classmethod
    def from_error(cls, exc: SupportCoreError) -> "Outcome[T]":
        return cls.failure(exc.kind, exc.message, details=exc.details)


class ErrorResponse(BaseModel):
    """
    Standard error payload for the endpoint layer that wraps this package:
    {
        "error": "not_found",
        "message": "No active conversation for session",
        "code": 404,
        "details": {...}
    }
    """

    error: str = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable error message")
    code: int = Field(..., description="HTTP status code for this error")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Optional structured error details"
    )


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.UPSTREAM_TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorKind.TRANSIENT_IO: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.UPSTREAM_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    # Lock losers are not user-facing errors; report them as a conflict.
    ErrorKind.DUPLICATE_SUPPRESSED: status.HTTP_409_CONFLICT,
}


def http_error(
    status_code: int,
    *,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> HTTPException:
    """
    Helper to create an HTTPException with a standardised error body.
    """
    payload = ErrorResponse(
        error=error,
        message=message,
        code=status_code,
        details=details,
    )
    return HTTPException(status_code=status_code, detail=payload.model_dump())


def outcome_to_http_error(outcome: Outcome[Any]) -> HTTPException:
    if outcome.ok or outcome.kind is None:
        raise ValueError("cannot build an HTTP error from a successful outcome")
    return http_error(
        _STATUS_BY_KIND[outcome.kind],
        error=outcome.kind.value,
        message=outcome.message or outcome.kind.value,
        details=outcome.details or None,
    )


def not_found(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_404_NOT_FOUND, error="not_found", message=message, details=details
    )


def service_unavailable(
    message: str, *, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    return http_error(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        error="service_unavailable",
        message=message,
        details=details,
    )


__all__ = [
    "ErrorKind",
    "ErrorResponse",
    "LockStoreUnavailable",
    "Outcome",
    "SupportCoreError",
    "TransientIOError",
    "UpstreamError",
    "UpstreamTimeout",
    "http_error",
    "not_found",
    "outcome_to_http_error",
    "service_unavailable",
]
