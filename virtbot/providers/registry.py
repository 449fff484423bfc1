"""Provider type registry."""

from __future__ import annotations

import logging
from typing import Callable

from virtbot.core.exceptions import UnsupportedProviderError

from .base import VirtualizationProvider
from .proxmox import ProxmoxProvider

logger = logging.getLogger("virtbot.providers.registry")

ProviderFactory = Callable[[], VirtualizationProvider]


class ProviderRegistry:
    """Map a panel ``type`` discriminator to a factory producing fresh provider instances."""

    def __init__(self, factories: dict[str, ProviderFactory] | None = None) -> None:
        self._factories: dict[str, ProviderFactory] = dict(factories or {})

    def register(self, provider_type: str, factory: ProviderFactory) -> None:
        if provider_type in self._factories:
            logger.info("Replacing provider factory", extra={"provider": provider_type})
        self._factories[provider_type] = factory

    def create(self, provider_type: str) -> VirtualizationProvider:
        """Return a new, unauthenticated provider; instances are never shared."""
        factory = self._factories.get(provider_type)
        if factory is None:
            raise UnsupportedProviderError(provider_type)
        return factory()

    def types(self) -> list[str]:
        return sorted(self._factories)

    def copy(self) -> "ProviderRegistry":
        return ProviderRegistry(self._factories)

    def __contains__(self, provider_type: object) -> bool:
        return provider_type in self._factories


def default_registry() -> ProviderRegistry:
    return ProviderRegistry({"proxmox": ProxmoxProvider})


__all__ = ["ProviderFactory", "ProviderRegistry", "default_registry"]
