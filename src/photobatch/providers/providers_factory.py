"""Factory for provider drivers."""

from .providers_base import ProviderConfig, ProviderDriver, ProviderKind
from .providers_doubao import DoubaoDriver
from .providers_gemini import GeminiDriver
from .providers_generic import GenericDriver


def create_driver(config: ProviderConfig) -> ProviderDriver:
    """Instantiate the driver matching the provider's declared kind."""
    if config.kind is ProviderKind.DOUBAO:
        return DoubaoDriver(config=config)
    if config.kind is ProviderKind.GEMINI:
        return GeminiDriver(config=config)
    if config.kind is ProviderKind.GENERIC:
        return GenericDriver(config=config)
    raise ValueError(f"Unsupported provider kind '{config.kind}'")
