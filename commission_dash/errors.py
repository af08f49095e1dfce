"""Error taxonomy shared by the sync job, query service and API."""

from __future__ import annotations


class CommissionError(Exception):
    """Base class for errors surfaced to callers."""


class ValidationError(CommissionError):
    pass


class UpstreamError(CommissionError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageError(CommissionError):
    pass


class AuthorizationError(CommissionError):
    pass
