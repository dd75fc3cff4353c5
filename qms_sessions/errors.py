"""Exceptions raised by the session service, each tagged with its HTTP status."""

from __future__ import annotations

from typing import Any


class SessionServiceError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500

    def __init__(self, message: str, *, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class BadRequestError(SessionServiceError):
    """Request failed validation; nothing was mutated."""

    status_code = 400


class PayloadTooLargeError(SessionServiceError):
    """Workspace payload exceeds the configured size limit."""

    status_code = 413


class StorageError(SessionServiceError):
    """Reading or writing the global document failed."""

    status_code = 500


class DocumentError(StorageError):
    """Stored document could not be decoded or has the wrong shape."""


class StaleWriteError(StorageError):
    """Document changed between read and write (optimistic version check)."""

    status_code = 409

    def __init__(self, expected: int | None, actual: int | None) -> None:
        super().__init__(
            "Workspace was modified concurrently",
            details=f"expected version {expected}, found {actual}",
        )
        self.expected = expected
        self.actual = actual

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["retryable"] = True
        return payload


__all__ = [
    "BadRequestError",
    "DocumentError",
    "PayloadTooLargeError",
    "SessionServiceError",
    "StaleWriteError",
    "StorageError",
]
