"""Gemini provider driver implementation."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..exceptions import ProviderSemanticError
from .providers_base import (
    RETRYABLE_STATUS_CODES,
    HttpProviderDriver,
    ProviderConfig,
    TransformRequest,
)

logger = logging.getLogger(__name__)

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


@dataclass(slots=True)
class GeminiDriver(HttpProviderDriver):
    """Call ``models/{model}:generateContent`` with the image as inline data."""

    config: ProviderConfig
    log: logging.Logger = field(default_factory=lambda: logger)

    async def transform(self, request: TransformRequest) -> str:
        url = f"{self.config.endpoint.rstrip('/')}/models/{self.config.model}:generateContent"
        body = build_body(request)
        self.log.info(
            "gemini.request.start",
            extra={
                "provider_id": self.config.id,
                "model": self.config.model,
                "prompt_len": len(request.prompt),
            },
        )
        data = await self._post_json(url, body)
        self.log.info("gemini.response.received %s", _response_summary(data))
        image = _parse_response(data)
        if image is None:
            preview = json.dumps(_mask_inline_data(data), ensure_ascii=False)[:1000]
            self.log.warning(
                "gemini.response.no_inline_data %s",
                preview,
                extra={"provider_id": self.config.id},
            )
            candidates = _candidates(data)
            if not candidates:
                raise ProviderSemanticError(
                    "No response from Gemini API", provider_id=self.config.id
                )
            first = candidates[0]
            finish_reason = first.get("finishReason") or first.get("finish_reason")
            if finish_reason:
                raise ProviderSemanticError(
                    f"Gemini response has no image (finish_reason={finish_reason})",
                    provider_id=self.config.id,
                )
            raise ProviderSemanticError(
                "No image data in Gemini response", provider_id=self.config.id
            )
        self.log.info("gemini.request.success", extra={"provider_id": self.config.id})
        return image

    def _should_retry(self, response: httpx.Response) -> bool:
        try:
            data = response.json()
        except ValueError:
            return response.status_code in RETRYABLE_STATUS_CODES
        error = data.get("error") if isinstance(data, dict) else None
        if not isinstance(error, dict):
            return response.status_code in RETRYABLE_STATUS_CODES
        status = (error.get("status") or "").upper()
        if status in {"RESOURCE_EXHAUSTED", "DEADLINE_EXCEEDED", "UNAVAILABLE"}:
            return True
        return response.status_code in RETRYABLE_STATUS_CODES


def build_body(request: TransformRequest) -> dict[str, Any]:
    return {
        "contents": [
            {
                "parts": [
                    {"text": request.prompt},
                    {
                        "inline_data": {
                            "mime_type": "image/jpeg",
                            "data": request.image_base64,
                        }
                    },
                ]
            }
        ],
        "generationConfig": {
            "temperature": 0.7,
            "topP": 0.8,
            "topK": 40,
            "maxOutputTokens": 2048,
        },
        "safetySettings": [
            {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
            for category in SAFETY_CATEGORIES
        ],
    }


def _candidates(data: Any) -> list[dict[str, Any]]:
    raw = data.get("candidates") if isinstance(data, dict) else None
    if not isinstance(raw, list):
        return []
    return [candidate for candidate in raw if isinstance(candidate, dict)]


def _parts(candidate: dict[str, Any]) -> list[dict[str, Any]]:
    content = candidate.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return []
    return [part for part in parts if isinstance(part, dict)]


def _parse_response(data: Any) -> str | None:
    for candidate in _candidates(data):
        for part in _parts(candidate):
            inline = part.get("inline_data") or part.get("inlineData")
            if isinstance(inline, dict) and isinstance(inline.get("data"), str) and inline["data"]:
                return inline["data"]
    return None


def _mask_inline_data(obj: Any) -> Any:
    """Remove inline_data payloads to avoid logging base64 blobs."""
    if isinstance(obj, dict):
        result = {}
        for key, value in obj.items():
            if key in {"inline_data", "inlineData"} and isinstance(value, dict):
                result[key] = {k: v for k, v in value.items() if k != "data"}
            else:
                result[key] = _mask_inline_data(value)
        return result
    if isinstance(obj, list):
        return [_mask_inline_data(item) for item in obj]
    return obj


def _response_summary(data: Any) -> str:
    candidates = _candidates(data)
    parts = _parts(candidates[0]) if candidates else []
    part_types = []
    for part in parts:
        if "inline_data" in part or "inlineData" in part:
            part_types.append("inline_data")
        if "text" in part:
            part_types.append("text")
    return f"candidates={len(candidates)} part_types={part_types}"
