from __future__ import annotations

import wave
from enum import Enum
from typing import Optional

import httpx


class ErrorCategory(str, Enum):
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    SERVICE_UNAVAILABLE = "service_unavailable"
    RESOURCE = "resource"
    PERMISSION = "permission"
    FORMAT = "format"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"

    @property
    def counts_against_service(self) -> bool:
        # A malformed input says nothing about the health of the engine.
        return self is not ErrorCategory.FORMAT


class ServiceError(RuntimeError):
    """Failure raised by an engine adapter with its category already known."""

    def __init__(self, message: str, category: ErrorCategory, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.category = category
        self.status_code = status_code


# Checked in order; first hit wins.
_MESSAGE_HINTS: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (ErrorCategory.TIMEOUT, ("timed out", "timeout")),
    (ErrorCategory.CONNECTION, ("connection", "network", "econnrefused", "refused", "fetch failed")),
    (ErrorCategory.SERVICE_UNAVAILABLE, ("unavailable", "offline", "server error", "overloaded")),
    (ErrorCategory.RESOURCE, ("out of memory", "memory", "no space", "resource", "capacity", "cuda")),
    (ErrorCategory.PERMISSION, ("permission", "unauthorized", "forbidden", "access denied")),
    (ErrorCategory.CONFIGURATION, ("model not found", "not found", "config", "setting", "not supported")),
    (ErrorCategory.FORMAT, ("format", "invalid", "corrupt", "decode", "codec")),
)


def classify_error(exc: BaseException) -> ErrorCategory:
    """Map an exception from either engine onto a recovery category."""
    if isinstance(exc, ServiceError):
        return exc.category
    if isinstance(exc, httpx.TimeoutException):
        return ErrorCategory.TIMEOUT
    if isinstance(exc, (httpx.ConnectError, httpx.NetworkError, ConnectionError)):
        return ErrorCategory.CONNECTION
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code, exc.response.text)
    if isinstance(exc, TimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(exc, MemoryError):
        return ErrorCategory.RESOURCE
    if isinstance(exc, PermissionError):
        return ErrorCategory.PERMISSION
    if isinstance(exc, (wave.Error, UnicodeDecodeError)):
        return ErrorCategory.FORMAT

    message = str(exc).lower()
    for category, hints in _MESSAGE_HINTS:
        if any(h in message for h in hints):
            return category
    if isinstance(exc, ValueError):
        return ErrorCategory.FORMAT
    return ErrorCategory.UNKNOWN


def classify_status(status_code: int, body: str = "") -> ErrorCategory:
    text = (body or "").lower()
    if status_code == 404 or ("model" in text and "not found" in text):
        return ErrorCategory.CONFIGURATION
    if status_code in (401, 403):
        return ErrorCategory.PERMISSION
    if status_code == 408:
        return ErrorCategory.TIMEOUT
    if status_code == 507 or "out of memory" in text:
        return ErrorCategory.RESOURCE
    if status_code >= 500 or status_code == 429:
        return ErrorCategory.SERVICE_UNAVAILABLE
    return ErrorCategory.FORMAT
