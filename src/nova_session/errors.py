"""
nova_session.errors

Closed error taxonomy for the session core.

Responsibilities:
- Define the error kinds surfaced to the UI (`ErrorKind`).
- Provide the exception family raised by backend adapters and resilience helpers.
- Map any exception to the `SessionErrorInfo` carried on session snapshots.

Classification is structural: adapters pick the exception type from the transport
failure, HTTP status or PostgREST code at the boundary. Nothing downstream inspects
message text.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class ErrorKind(enum.StrEnum):
    network = "network"
    service_config = "service_config"
    circuit_open = "circuit_open"
    profile_not_found = "profile_not_found"
    unknown = "unknown"


class SessionError(Exception):
    kind: ErrorKind = ErrorKind.unknown
    retryable: bool = False
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(message or self.default_message)
        self.status_code = status_code

    @property
    def user_message(self) -> str:
        return self.default_message


class NetworkError(SessionError):
    """Transport/connectivity failure or a degraded (5xx/429) backend."""

    kind = ErrorKind.network
    retryable = True
    default_message = "Cannot reach the service. Please try again."


class ServiceConfigError(SessionError):
    """Bad credentials or a misconfigured backend; shown to the user verbatim."""

    kind = ErrorKind.service_config
    default_message = "The service rejected the request."

    @property
    def user_message(self) -> str:
        return str(self)


class CircuitOpenError(SessionError):
    kind = ErrorKind.circuit_open
    default_message = "Service temporarily unavailable. Please try again shortly."

    def __init__(self, retry_at: float, *, retry_in: float | None = None) -> None:
        super().__init__(self.default_message)
        self.retry_at = retry_at
        self.retry_in = retry_in

    @property
    def user_message(self) -> str:
        if self.retry_in is None:
            return self.default_message
        return f"Service temporarily unavailable. Please try again in {max(1, round(self.retry_in))}s."


class ProfileNotFoundError(SessionError):
    """Not a failure: the loader answers it by creating the profile."""

    kind = ErrorKind.profile_not_found
    default_message = "Profile not found."


class UnknownError(SessionError):
    kind = ErrorKind.unknown


@dataclass(frozen=True, slots=True)
class SessionErrorInfo:
    kind: ErrorKind
    message: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> SessionErrorInfo:
        if isinstance(exc, SessionError):
            return cls(kind=exc.kind, message=exc.user_message)
        return cls(kind=ErrorKind.unknown, message=UnknownError.default_message)


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, SessionError) and exc.retryable


# --- Module Notes -----------------------------------------------------------
# `ProfileNotFoundError` is raised only inside the data adapter; the public
# `get_profile` contract returns None so callers never see it as a failure.
