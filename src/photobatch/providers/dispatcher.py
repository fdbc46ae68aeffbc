"""Provider dispatcher: rate limiting, per-call retry and failover.

The dispatcher owns the provider registry and the *current provider* pointer.
A dispatch starts at the current provider; if that provider ultimately fails
and another enabled, credentialed provider exists, the pointer moves to it and
the same request is tried again. Each provider is tried at most once per
dispatch.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from ..config import ProviderSettings
from ..exceptions import (
    NotFoundError,
    ProviderError,
    ProviderSemanticError,
    ProviderUnavailableError,
    RateLimitedError,
    TransientTransportError,
    ValidationError,
)
from .pricing import estimate_cost
from .provider_store import ProviderStore
from .providers_base import (
    AuthType,
    ProviderConfig,
    ProviderDriver,
    ProviderKind,
    TransformRequest,
    TransformResponse,
)
from .providers_factory import create_driver
from .rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

# 1x1 JPEG used by ``test_provider``.
SAMPLE_IMAGE_BASE64 = (
    "/9j/4AAQSkZJRgABAQAAAQABAAD/2wBDAAYEBQYFBAYGBQYHBwYIChAKCgkJChQODwwQFxQYGBcUFhYaHSUf"
    "GhsjHBYWICwgIyYnKSopGR8tMC0oMCUoKSj/2wBDAQcHBwoIChMKChMoGhYaKCgoKCgoKCgoKCgoKCgoKCgo"
    "KCgoKCgoKCgoKCgoKCgoKCgoKCgoKCgoKCgoKCgoKCj/wAARCAABAAEDASIAAhEBAxEB/8QAFQABAQAAAAAA"
    "AAAAAAAAAAAAAAv/xAAUEAEAAAAAAAAAAAAAAAAAAAAA/8QAFQEBAQAAAAAAAAAAAAAAAAAAAAX/xAAUEQEA"
    "AAAAAAAAAAAAAAAAAAAA/9oADAMBAAIRAxEAPwCdABmX/9k="
)

UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "endpoint",
        "api_key",
        "model",
        "auth_type",
        "auth_header",
        "custom_headers",
        "rate_limit",
        "max_retries",
        "retry_delay_seconds",
        "timeout_seconds",
        "enabled",
    }
)


def builtin_providers(settings: ProviderSettings) -> list[ProviderConfig]:
    """Doubao and Gemini entries seeded from configuration."""

    return [
        ProviderConfig(
            id="doubao",
            name="Doubao Seedream",
            kind=ProviderKind.DOUBAO,
            endpoint=settings.doubao_endpoint,
            api_key=settings.doubao_api_key,
            model=settings.doubao_model,
            auth_type=AuthType.BEARER,
            retry_delay_seconds=settings.retry_delay_seconds,
            timeout_seconds=settings.request_timeout_seconds,
            enabled=settings.doubao_enabled,
        ),
        ProviderConfig(
            id="gemini",
            name="Google Gemini",
            kind=ProviderKind.GEMINI,
            endpoint=settings.gemini_endpoint,
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            auth_type=AuthType.HEADER,
            auth_header="x-goog-api-key",
            retry_delay_seconds=settings.retry_delay_seconds,
            timeout_seconds=settings.request_timeout_seconds,
            enabled=settings.gemini_enabled,
        ),
    ]


class ProviderDispatcher:
    """Uniform entry point over all configured providers."""

    def __init__(
        self,
        providers: list[ProviderConfig],
        *,
        default_provider_id: str = "doubao",
        rate_limiter: SlidingWindowRateLimiter | None = None,
        driver_factory: Callable[[ProviderConfig], ProviderDriver] = create_driver,
        store: ProviderStore | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        self._lock = threading.RLock()
        self._configs: dict[str, ProviderConfig] = {}
        self._drivers: dict[str, ProviderDriver] = {}
        self._driver_factory = driver_factory
        self._limiter = rate_limiter or SlidingWindowRateLimiter()
        self._store = store
        self._sleep = sleep
        self._default_id = default_provider_id

        for config in providers:
            self._configs[config.id] = config
        # fields changed through the API on configured providers
        self._overrides: dict[str, dict[str, Any]] = {}
        current_id = default_provider_id
        if store is not None:
            snapshot = store.load()
            for stored in snapshot.configs:
                if stored.is_custom and stored.id not in self._configs:
                    self._configs[stored.id] = stored
            for provider_id, changes in snapshot.overrides.items():
                self._restore_override(provider_id, changes)
            if snapshot.current_id:
                current_id = snapshot.current_id
        if current_id not in self._configs:
            current_id = next(iter(self._configs), default_provider_id)
        self._current_id = current_id

    # registry -----------------------------------------------------------

    @property
    def current_provider_id(self) -> str:
        with self._lock:
            return self._current_id

    def get_config(self, provider_id: str) -> ProviderConfig:
        with self._lock:
            config = self._configs.get(provider_id)
        if config is None:
            raise NotFoundError(f"provider '{provider_id}' not found")
        return config

    def list_configs(self) -> list[ProviderConfig]:
        with self._lock:
            return list(self._configs.values())

    def set_current_provider(self, provider_id: str) -> None:
        with self._lock:
            config = self._configs.get(provider_id)
            if config is None or not config.is_available:
                raise ProviderUnavailableError(
                    f"provider '{provider_id}' is not available", provider_id=provider_id
                )
            self._current_id = provider_id
        logger.info("dispatcher.current.changed", extra={"provider_id": provider_id})
        self._persist()

    def add_custom_provider(
        self,
        *,
        name: str,
        endpoint: str,
        api_key: str = "",
        model: str = "",
        auth_type: AuthType | str = AuthType.BEARER,
        auth_header: str = "x-api-key",
        custom_headers: dict[str, str] | None = None,
        rate_limit: int = 3,
        max_retries: int = 3,
        timeout_seconds: float = 60.0,
        enabled: bool = True,
    ) -> ProviderConfig:
        if not name.strip():
            raise ValidationError("provider name is required")
        if not endpoint.startswith(("http://", "https://")):
            raise ValidationError("provider endpoint must be an http(s) URL")
        with self._lock:
            base_id = f"custom_{int(time.time() * 1000)}"
            provider_id = base_id
            suffix = 1
            while provider_id in self._configs:
                provider_id = f"{base_id}_{suffix}"
                suffix += 1
            config = ProviderConfig(
                id=provider_id,
                name=name.strip(),
                kind=ProviderKind.GENERIC,
                endpoint=endpoint,
                api_key=api_key,
                model=model,
                auth_type=AuthType(auth_type),
                auth_header=auth_header,
                custom_headers=dict(custom_headers or {}),
                rate_limit=rate_limit,
                max_retries=max_retries,
                timeout_seconds=timeout_seconds,
                enabled=enabled,
                is_custom=True,
            )
            self._configs[provider_id] = config
        logger.info("dispatcher.provider.added", extra={"provider_id": provider_id})
        self._persist()
        return config

    def remove_custom_provider(self, provider_id: str) -> None:
        with self._lock:
            config = self._configs.get(provider_id)
            if config is None:
                raise NotFoundError(f"provider '{provider_id}' not found")
            if not config.is_custom:
                raise ValidationError(f"built-in provider '{provider_id}' cannot be removed")
            del self._configs[provider_id]
            self._drivers.pop(provider_id, None)
            if self._current_id == provider_id:
                if self._default_id in self._configs:
                    self._current_id = self._default_id
                else:
                    self._current_id = next(iter(self._configs), self._default_id)
        self._limiter.reset(provider_id)
        logger.info("dispatcher.provider.removed", extra={"provider_id": provider_id})
        self._persist()

    def update_provider_config(self, provider_id: str, **changes: Any) -> ProviderConfig:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"unknown provider fields: {', '.join(sorted(unknown))}")
        if "auth_type" in changes:
            changes["auth_type"] = AuthType(changes["auth_type"])
        endpoint = changes.get("endpoint")
        if endpoint is not None and not str(endpoint).startswith(("http://", "https://")):
            raise ValidationError("provider endpoint must be an http(s) URL")
        with self._lock:
            config = self._configs.get(provider_id)
            if config is None:
                raise NotFoundError(f"provider '{provider_id}' not found")
            updated = dataclasses.replace(config, **changes)
            self._configs[provider_id] = updated
            if not updated.is_custom:
                self._overrides.setdefault(provider_id, {}).update(changes)
            # drivers are rebuilt lazily from the new config
            self._drivers.pop(provider_id, None)
        self._limiter.reset(provider_id)
        logger.info(
            "dispatcher.provider.updated",
            extra={"provider_id": provider_id, "fields": sorted(changes)},
        )
        self._persist()
        return updated

    def provider_status(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {
                config.id: {
                    "name": config.name,
                    "kind": str(config.kind),
                    "enabled": config.enabled,
                    "configured": bool(config.api_key),
                    "available": config.is_available,
                    "rate_limit": config.rate_limit,
                    "max_retries": config.max_retries,
                    "is_custom": config.is_custom,
                    "model": config.model,
                    "endpoint": config.endpoint,
                    "current": config.id == self._current_id,
                }
                for config in self._configs.values()
            }

    # dispatch -----------------------------------------------------------

    async def dispatch(self, request: TransformRequest) -> TransformResponse:
        """Send ``request`` to the current provider, failing over as needed."""

        started = time.monotonic()
        tried: set[str] = set()
        last_error: ProviderError | None = None
        only_rate_limited = True

        provider_id = self.current_provider_id
        while True:
            tried.add(provider_id)
            try:
                image, config = await self._call_provider(provider_id, request)
            except ProviderError as exc:
                last_error = exc
                if not isinstance(exc, RateLimitedError):
                    only_rate_limited = False
                logger.warning(
                    "dispatcher.provider.failed",
                    extra={"provider_id": provider_id, "error": str(exc)},
                )
                alternate = self._next_alternate(tried)
                if alternate is None:
                    break
                logger.info(
                    "dispatcher.failover",
                    extra={"from_provider": provider_id, "to_provider": alternate},
                )
                with self._lock:
                    self._current_id = alternate
                provider_id = alternate
                continue

            return TransformResponse(
                success=True,
                image_base64=image,
                cost=estimate_cost(config.kind, request.resolution),
                processing_time_ms=_elapsed_ms(started),
                provider_id=config.id,
            )

        return TransformResponse(
            success=False,
            error=str(last_error) if last_error else "no provider available",
            processing_time_ms=_elapsed_ms(started),
            provider_id=provider_id,
            rate_limited=last_error is not None and only_rate_limited,
        )

    async def test_provider(self, provider_id: str) -> bool:
        """Send a tiny sample image through one provider without moving the pointer."""

        config = self.get_config(provider_id)
        if not config.api_key:
            return False
        sample = TransformRequest(
            image_base64=SAMPLE_IMAGE_BASE64,
            prompt="test",
            strength=0.5,
            resolution="512x512",
            quality="fast",
        )
        try:
            await self._call_provider(provider_id, sample, require_enabled=False)
        except ProviderError as exc:
            logger.warning(
                "dispatcher.test.failed", extra={"provider_id": provider_id, "error": str(exc)}
            )
            return False
        return True

    async def _call_provider(
        self,
        provider_id: str,
        request: TransformRequest,
        *,
        require_enabled: bool = True,
    ) -> tuple[str, ProviderConfig]:
        with self._lock:
            config = self._configs.get(provider_id)
            if config is None:
                raise ProviderUnavailableError(
                    f"provider '{provider_id}' not configured", provider_id=provider_id
                )
            if require_enabled and not config.is_available:
                raise ProviderUnavailableError(
                    f"provider '{provider_id}' not configured", provider_id=provider_id
                )
            driver = self._drivers.get(provider_id)
            if driver is None:
                driver = self._driver_factory(config)
                self._drivers[provider_id] = driver

        if not self._limiter.try_acquire(provider_id, config.rate_limit):
            raise RateLimitedError(
                f"Rate limit exceeded for {provider_id}", provider_id=provider_id
            )

        attempt = 0
        while True:
            try:
                image = await asyncio.wait_for(
                    driver.transform(request), timeout=config.timeout_seconds
                )
                return image, config
            except asyncio.TimeoutError as exc:
                error: ProviderError = TransientTransportError(
                    f"{config.name} request timed out", provider_id=provider_id
                )
                error.__cause__ = exc
            except TransientTransportError as exc:
                error = exc
            except ProviderError:
                raise
            except Exception as exc:
                # an unexpected body shape or driver bug still counts as a provider failure
                raise ProviderSemanticError(
                    f"{config.name} failed: {exc.__class__.__name__}: {exc}",
                    provider_id=provider_id,
                ) from exc
            if attempt >= config.max_retries:
                raise error
            attempt += 1
            logger.info(
                "dispatcher.retry",
                extra={"provider_id": provider_id, "attempt": attempt, "error": str(error)},
            )
            await self._sleep(config.retry_delay_seconds * attempt)

    def _next_alternate(self, tried: set[str]) -> str | None:
        with self._lock:
            for config in self._configs.values():
                if config.id not in tried and config.is_available:
                    return config.id
        return None

    def _restore_override(self, provider_id: str, changes: dict[str, Any]) -> None:
        base = self._configs.get(provider_id)
        if base is None or base.is_custom:
            return
        fields = {name: value for name, value in changes.items() if name in UPDATABLE_FIELDS}
        if base.api_key:
            # a configured credential wins over one saved through the API
            fields.pop("api_key", None)
        try:
            if "auth_type" in fields:
                fields["auth_type"] = AuthType(fields["auth_type"])
            restored = dataclasses.replace(base, **fields)
        except (TypeError, ValueError):
            logger.warning("dispatcher.override.invalid", extra={"provider_id": provider_id})
            return
        if fields:
            self._configs[provider_id] = restored
            self._overrides[provider_id] = fields

    def _persist(self) -> None:
        if self._store is None:
            return
        with self._lock:
            custom = [config for config in self._configs.values() if config.is_custom]
            overrides = {provider_id: dict(changes) for provider_id, changes in self._overrides.items()}
            current = self._current_id
        self._store.save(custom, current, overrides)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
