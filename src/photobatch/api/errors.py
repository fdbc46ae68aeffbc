"""Translate application errors into JSON responses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..exceptions import (
    AppError,
    JobStateError,
    NotFoundError,
    ProviderError,
    ProviderUnavailableError,
    ResourceError,
    ValidationError,
)


@dataclass(slots=True)
class ApiError(Exception):
    """Structured application-level error for HTTP handlers."""

    status_code: int
    code: str
    message: str
    headers: Mapping[str, str] | None = None

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content={"error": {"code": self.code, "message": self.message}},
            headers=dict(self.headers or {}),
        )


_STATUS_BY_ERROR: tuple[tuple[type[AppError], int, str], ...] = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (JobStateError, status.HTTP_409_CONFLICT, "invalid_state"),
    (ProviderUnavailableError, status.HTTP_409_CONFLICT, "provider_unavailable"),
    (ResourceError, status.HTTP_400_BAD_REQUEST, "resource_error"),
    (ProviderError, status.HTTP_502_BAD_GATEWAY, "provider_error"),
)


def to_api_error(exc: AppError) -> ApiError:
    for error_type, status_code, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return ApiError(status_code, code, str(exc))
    return ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", str(exc))


async def api_error_handler(_: Request, exc: ApiError) -> JSONResponse:
    return exc.to_response()


async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
    return to_api_error(exc).to_response()


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]


__all__ = ["ApiError", "register_error_handlers", "to_api_error"]
