"""Doubao (Seedream) provider driver."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..exceptions import ProviderSemanticError
from .providers_base import HttpProviderDriver, ProviderConfig, TransformRequest

logger = logging.getLogger(__name__)


def build_generate_body(config: ProviderConfig, request: TransformRequest) -> dict[str, Any]:
    """Body shared by Doubao and generic ``/generate`` endpoints."""

    return {
        "model": config.model,
        "prompt": request.prompt,
        "negative_prompt": request.negative_prompt,
        "image": request.image_base64,
        "strength": request.strength,
        "guidance_scale": request.guidance_scale,
        "num_inference_steps": request.steps,
        "output_format": "jpeg",
        "quality": "high" if request.quality == "high" else "standard",
    }


@dataclass(slots=True)
class DoubaoDriver(HttpProviderDriver):
    """POST ``{endpoint}/generate`` and read ``image`` from the answer."""

    config: ProviderConfig
    log: logging.Logger = field(default_factory=lambda: logger)

    async def transform(self, request: TransformRequest) -> str:
        url = f"{self.config.endpoint.rstrip('/')}/generate"
        self.log.info(
            "doubao.request.start",
            extra={"provider_id": self.config.id, "model": self.config.model},
        )
        data = await self._post_json(url, build_generate_body(self.config, request))
        image = data.get("image")
        if not image:
            raise ProviderSemanticError(
                "Doubao response does not contain an image", provider_id=self.config.id
            )
        self.log.info("doubao.request.success", extra={"provider_id": self.config.id})
        return image
