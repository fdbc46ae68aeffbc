"""Deterministic provider doubles for dispatcher, worker and API tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from photobatch.providers.providers_base import (
    ProviderConfig,
    ProviderDriver,
    ProviderKind,
    TransformRequest,
    TransformResponse,
)
from tests.mocks.images import jpeg_base64

Outcome = str | Exception


class ScriptedDriver(ProviderDriver):
    """Return queued outcomes in order; an exception outcome is raised."""

    def __init__(self, config: ProviderConfig, outcomes: list[Outcome] | None = None) -> None:
        self.config = config
        self.outcomes = outcomes
        self.calls: list[TransformRequest] = []

    async def transform(self, request: TransformRequest) -> str:
        self.calls.append(request)
        if self.outcomes is None:
            return jpeg_base64()
        if not self.outcomes:
            raise RuntimeError(f"no outcome queued for {self.config.id}")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class DriverBook:
    """Driver factory handing out one :class:`ScriptedDriver` per provider id.

    Providers without a script always succeed with a small JPEG.
    """

    def __init__(self, scripts: dict[str, list[Outcome]] | None = None) -> None:
        self.scripts = scripts or {}
        self.drivers: dict[str, ScriptedDriver] = {}

    def __call__(self, config: ProviderConfig) -> ScriptedDriver:
        driver = ScriptedDriver(config, self.scripts.get(config.id))
        self.drivers[config.id] = driver
        return driver

    def call_count(self, provider_id: str) -> int:
        driver = self.drivers.get(provider_id)
        return len(driver.calls) if driver else 0


@dataclass
class StaticDispatcher:
    """Stands in for ``ProviderDispatcher`` in worker tests."""

    responses: list[TransformResponse] = field(default_factory=list)
    requests: list[TransformRequest] = field(default_factory=list)
    default_cost: float = 0.01

    async def dispatch(self, request: TransformRequest) -> TransformResponse:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return TransformResponse(
            success=True,
            image_base64=jpeg_base64(),
            cost=self.default_cost,
            provider_id="doubao",
        )


def rate_limited_response() -> TransformResponse:
    return TransformResponse(success=False, error="Rate limit exceeded for doubao", rate_limited=True)


def failed_response(message: str = "provider refused") -> TransformResponse:
    return TransformResponse(success=False, error=message, provider_id="doubao")


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def provider_config(provider_id: str, **overrides: Any) -> ProviderConfig:
    values: dict[str, Any] = {
        "id": provider_id,
        "name": provider_id.title(),
        "kind": ProviderKind.GENERIC,
        "endpoint": f"https://{provider_id}.example.test/v1",
        "api_key": "secret",
        "retry_delay_seconds": 1.0,
    }
    values.update(overrides)
    return ProviderConfig(**values)


__all__ = [
    "DriverBook",
    "RecordingSleep",
    "ScriptedDriver",
    "StaticDispatcher",
    "failed_response",
    "provider_config",
    "rate_limited_response",
]
