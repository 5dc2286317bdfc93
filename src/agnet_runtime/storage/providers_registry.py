"""On-disk registry of user-registered providers."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from agnet_runtime.exceptions import AgnetError
from agnet_runtime.providers import ProviderConfig, validate_provider_config
from agnet_runtime.storage.chats import write_json

logger = logging.getLogger(__name__)

REGISTRY_VERSION = 1


class ProviderRegistryStore:
    def __init__(self, root: Path) -> None:
        self.path = root / "providers.json"

    def read(self) -> list[ProviderConfig]:
        """Registered providers in registration order; a missing or unreadable file reads as empty."""
        try:
            loaded = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("ignoring unreadable provider registry %s: %s", self.path, exc)
            return []
        if not isinstance(loaded, dict) or loaded.get("version") != REGISTRY_VERSION:
            return []
        raw_items = loaded.get("providers")
        if not isinstance(raw_items, list):
            return []

        providers: list[ProviderConfig] = []
        for item in raw_items:
            try:
                providers.append(validate_provider_config(item))
            except AgnetError as exc:
                logger.warning("skipping invalid registry entry: %s", exc.message)
        return providers

    def write(self, providers: list[ProviderConfig]) -> None:
        payload: dict[str, Any] = {
            "version": REGISTRY_VERSION,
            "providers": [provider.to_json_dict() for provider in providers],
        }
        write_json(self.path, payload)

    def upsert(self, configs: list[ProviderConfig]) -> list[ProviderConfig]:
        """Replace entries with the same agent id (last one wins) and append new ones."""
        current = {provider.agent.id: provider for provider in self.read()}
        for config in configs:
            current.pop(config.agent.id, None)
            current[config.agent.id] = config
        merged = list(current.values())
        self.write(merged)
        return merged
