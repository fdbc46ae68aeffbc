"""Provider configuration, request/response contract and the driver base."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

import httpx

from ..exceptions import ProviderSemanticError, TransientTransportError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class ProviderKind(StrEnum):
    DOUBAO = "doubao"
    GEMINI = "gemini"
    GENERIC = "generic"


class AuthType(StrEnum):
    BEARER = "bearer"
    APIKEY = "apikey"
    HEADER = "header"
    NONE = "none"


@dataclass(slots=True)
class ProviderConfig:
    """Connection and policy settings for one provider."""

    id: str
    name: str
    kind: ProviderKind
    endpoint: str
    api_key: str = ""
    model: str = ""
    auth_type: AuthType = AuthType.BEARER
    auth_header: str = "x-api-key"
    custom_headers: dict[str, str] = field(default_factory=dict)
    rate_limit: int = 3
    max_retries: int = 3
    retry_delay_seconds: float = 1.0
    timeout_seconds: float = 60.0
    enabled: bool = True
    is_custom: bool = False

    @property
    def is_available(self) -> bool:
        return self.enabled and bool(self.api_key)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = str(self.kind)
        data["auth_type"] = str(self.auth_type)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderConfig":
        payload = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        payload["kind"] = ProviderKind(payload.get("kind", ProviderKind.GENERIC))
        payload["auth_type"] = AuthType(payload.get("auth_type", AuthType.BEARER))
        return cls(**payload)


@dataclass(slots=True)
class TransformRequest:
    image_base64: str
    prompt: str
    negative_prompt: str | None = None
    strength: float = 0.8
    guidance_scale: float | None = None
    steps: int | None = None
    resolution: str = "1024x1024"
    quality: str = "balanced"


@dataclass(slots=True)
class TransformResponse:
    success: bool
    image_base64: str | None = None
    cost: float | None = None
    error: str | None = None
    processing_time_ms: int | None = None
    provider_id: str | None = None
    rate_limited: bool = False


def build_headers(config: ProviderConfig) -> dict[str, str]:
    """Compose request headers according to the provider's auth mode."""

    headers = {"Content-Type": "application/json"}
    if config.api_key:
        if config.auth_type in (AuthType.BEARER, AuthType.APIKEY):
            headers["Authorization"] = f"Bearer {config.api_key}"
        elif config.auth_type is AuthType.HEADER:
            headers[config.auth_header] = config.api_key
    headers.update(config.custom_headers)
    return headers


class ProviderDriver(ABC):
    """Base interface for provider drivers."""

    config: ProviderConfig

    @abstractmethod
    async def transform(self, request: TransformRequest) -> str:
        """Send one request and return the transformed image as base64.

        Raises :class:`TransientTransportError` for failures worth retrying and
        :class:`ProviderSemanticError` when the provider refused the request.
        """


class HttpProviderDriver(ProviderDriver):
    """Shared JSON-over-HTTP plumbing for concrete drivers."""

    config: ProviderConfig

    async def _post(
        self, url: str, *, headers: dict[str, str], json: dict[str, Any]
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                return await client.post(url, headers=headers, json=json)
        except httpx.TimeoutException as exc:
            raise TransientTransportError(
                f"{self.config.name} request timed out", provider_id=self.config.id
            ) from exc
        except httpx.HTTPError as exc:
            raise TransientTransportError(
                f"{self.config.name} HTTP error: {exc}", provider_id=self.config.id
            ) from exc

    async def _post_json(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        response = await self._post(url, headers=build_headers(self.config), json=body)
        if response.status_code >= 400:
            detail = extract_error(response)
            logger.warning(
                "provider.response.error",
                extra={
                    "provider_id": self.config.id,
                    "status_code": response.status_code,
                    "error_detail": detail,
                },
            )
            if self._should_retry(response):
                raise TransientTransportError(
                    f"{self.config.name} request failed (status={response.status_code}): {detail}",
                    provider_id=self.config.id,
                )
            raise ProviderSemanticError(
                f"{self.config.name} request failed (status={response.status_code}): {detail}",
                provider_id=self.config.id,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderSemanticError(
                f"{self.config.name} returned a non-JSON body", provider_id=self.config.id
            ) from exc
        if not isinstance(data, dict):
            raise ProviderSemanticError(
                f"{self.config.name} returned an unexpected body", provider_id=self.config.id
            )
        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderSemanticError(message or "provider error", provider_id=self.config.id)
        return data

    def _should_retry(self, response: httpx.Response) -> bool:
        return response.status_code in RETRYABLE_STATUS_CODES


def extract_error(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    if not isinstance(data, dict):
        return str(data)[:500]
    error = data.get("error")
    if isinstance(error, dict):
        message = (error.get("message") or "").strip()
        status = (error.get("status") or "").strip()
        return " ".join(part for part in (status, message) if part)
    if error:
        return str(error)
    return str(data)[:500]
