"""Driver for user-registered providers exposing a Doubao-like ``/generate`` API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..exceptions import ProviderSemanticError
from .providers_base import HttpProviderDriver, ProviderConfig, TransformRequest
from .providers_doubao import build_generate_body

logger = logging.getLogger(__name__)

IMAGE_KEYS = ("image", "result", "output")


@dataclass(slots=True)
class GenericDriver(HttpProviderDriver):
    config: ProviderConfig
    log: logging.Logger = field(default_factory=lambda: logger)

    async def transform(self, request: TransformRequest) -> str:
        url = f"{self.config.endpoint.rstrip('/')}/generate"
        self.log.info("generic.request.start", extra={"provider_id": self.config.id})
        data = await self._post_json(url, build_generate_body(self.config, request))
        for key in IMAGE_KEYS:
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
        raise ProviderSemanticError(
            f"{self.config.name} response does not contain an image",
            provider_id=self.config.id,
        )
