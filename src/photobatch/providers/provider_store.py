"""Persist user-made provider changes in the settings table.

Only custom providers and the fields changed through the API on built-in
providers are stored; everything else keeps coming from configuration.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import structlog

from ..repositories.settings_repository import SettingsRepository
from .providers_base import ProviderConfig

logger = structlog.get_logger(__name__)

REGISTRY_KEY = "providers.registry"
OVERRIDES_KEY = "providers.overrides"
CURRENT_KEY = "providers.current"


@dataclass(slots=True)
class ProviderSnapshot:
    configs: list[ProviderConfig]
    current_id: str | None
    overrides: dict[str, dict[str, Any]] = field(default_factory=dict)


class ProviderStore:
    def __init__(self, repo: SettingsRepository) -> None:
        self._repo = repo

    def load(self) -> ProviderSnapshot:
        configs: list[ProviderConfig] = []
        raw = self._repo.read(REGISTRY_KEY)
        if raw:
            try:
                configs = [ProviderConfig.from_dict(item) for item in json.loads(raw)]
            except (ValueError, TypeError, KeyError):
                logger.warning("providers.store.corrupt", key=REGISTRY_KEY)
                configs = []

        overrides: dict[str, dict[str, Any]] = {}
        raw = self._repo.read(OVERRIDES_KEY)
        if raw:
            try:
                decoded = json.loads(raw)
            except ValueError:
                decoded = None
            if isinstance(decoded, dict):
                overrides = {
                    provider_id: changes
                    for provider_id, changes in decoded.items()
                    if isinstance(changes, dict)
                }
            else:
                logger.warning("providers.store.corrupt", key=OVERRIDES_KEY)

        return ProviderSnapshot(
            configs=configs,
            current_id=self._repo.read(CURRENT_KEY),
            overrides=overrides,
        )

    def save(
        self,
        configs: list[ProviderConfig],
        current_id: str | None,
        overrides: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        payload = {
            REGISTRY_KEY: json.dumps([config.to_dict() for config in configs]),
            OVERRIDES_KEY: json.dumps(overrides or {}),
        }
        if current_id:
            payload[CURRENT_KEY] = current_id
        self._repo.bulk_upsert(payload, updated_by="dispatcher")
        logger.info(
            "providers.store.saved",
            providers=len(configs),
            overridden=sorted(overrides or {}),
            current_id=current_id,
        )
