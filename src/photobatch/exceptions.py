"""Application level exceptions and helpers for repository layers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import exc as sa_exc

__all__ = [
    "AppError",
    "ValidationError",
    "NotFoundError",
    "JobStateError",
    "RepositoryError",
    "DatabaseOperationError",
    "ProviderError",
    "TransientTransportError",
    "RateLimitedError",
    "ProviderSemanticError",
    "ProviderUnavailableError",
    "ResourceError",
    "ensure_found",
    "handle_sqlalchemy_errors",
]


class AppError(Exception):
    """Base class for application specific errors."""


class ValidationError(AppError):
    """Raised when a submission or configuration is rejected up front."""


class NotFoundError(AppError):
    """Raised when a record could not be located."""


class JobStateError(AppError):
    """Raised when an operation is not allowed in the job's current state."""


class RepositoryError(AppError):
    """Base class for persistence layer failures."""


class DatabaseOperationError(RepositoryError):
    """Raised for unexpected database errors."""


class ProviderError(AppError):
    """Base class for failures talking to a remote provider."""

    def __init__(self, message: str, *, provider_id: str | None = None) -> None:
        super().__init__(message)
        self.provider_id = provider_id


class TransientTransportError(ProviderError):
    """Network failure, timeout or 429/5xx answer; worth retrying."""


class RateLimitedError(TransientTransportError):
    """Raised when the local request window for a provider is full."""


class ProviderSemanticError(ProviderError):
    """Provider answered but refused or returned an unusable payload."""


class ProviderUnavailableError(ProviderError):
    """Provider is unknown, disabled or has no credential."""


class ResourceError(AppError):
    """Raised when a staged image or output location cannot be used."""


def ensure_found(record: object | None, *, entity: str, identifier: str) -> object:
    """Ensure a record exists, otherwise raise :class:`NotFoundError`."""

    if record is None:
        raise NotFoundError(f"{entity} '{identifier}' not found")
    return record


@contextmanager
def handle_sqlalchemy_errors(*, entity: str | None = None) -> Iterator[None]:
    """Translate SQLAlchemy errors into repository errors."""

    try:
        yield
    except sa_exc.SQLAlchemyError as exc:
        message = "database operation failed"
        if entity:
            message = f"{entity}: {message}"
        raise DatabaseOperationError(message) from exc
