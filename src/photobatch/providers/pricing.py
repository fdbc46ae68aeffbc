"""Per-call cost estimate."""

from __future__ import annotations

from ..domain.models import parse_resolution
from .providers_base import ProviderKind

DEFAULT_RESOLUTION = "1024x1024"


def estimate_cost(kind: ProviderKind, resolution: str | None = None) -> float:
    if kind is ProviderKind.GEMINI:
        return 0.08
    if kind is ProviderKind.GENERIC:
        return 0.05
    try:
        width, height = parse_resolution(resolution or DEFAULT_RESOLUTION)
    except ValueError:
        width, height = parse_resolution(DEFAULT_RESOLUTION)
    pixels = width * height
    if pixels <= 1024 * 1024:
        return 0.01
    if pixels <= 1920 * 1080:
        return 0.02
    return 0.03
