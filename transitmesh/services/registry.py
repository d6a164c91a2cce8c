from __future__ import annotations

import logging
import threading

from transitmesh.models import ModeCategory
from transitmesh.services.base import BaseProvider

logger = logging.getLogger(__name__)

CAPABILITY_FLAGS = frozenset({
    "can_plan",
    "can_report_updates",
    "can_book",
    "can_suggest_alternatives",
    "can_integrate_with_other_modes",
})


class ProviderRegistry:
    """Provider id -> provider, in registration order.

    The provider count is small (tens), so capability lookups are a linear
    filter over a snapshot taken under the lock.
    """

    def __init__(self) -> None:
        self._providers: dict[str, BaseProvider] = {}
        self._lock = threading.Lock()

    def register(self, provider: BaseProvider) -> BaseProvider | None:
        """Add *provider*; returns the provider it replaced, if any."""
        with self._lock:
            previous = self._providers.pop(provider.provider_id, None)
            self._providers[provider.provider_id] = provider
        if previous is not None:
            logger.info("Provider replaced: %s", provider.provider_id)
        else:
            logger.info("Provider registered: %s (%s)", provider.name, provider.provider_id)
        return previous

    def unregister(self, provider_id: str) -> BaseProvider | None:
        with self._lock:
            provider = self._providers.pop(provider_id, None)
        if provider is not None:
            logger.info("Provider unregistered: %s", provider_id)
        return provider

    def get(self, provider_id: str) -> BaseProvider | None:
        with self._lock:
            return self._providers.get(provider_id)

    def all(self) -> list[BaseProvider]:
        with self._lock:
            return list(self._providers.values())

    def with_capability(self, capability: str) -> list[BaseProvider]:
        if capability not in CAPABILITY_FLAGS:
            raise ValueError(f"unknown capability '{capability}'")
        return [p for p in self.all() if getattr(p.capabilities, capability)]

    def for_category(self, category: ModeCategory, capability: str) -> list[BaseProvider]:
        return [
            p for p in self.with_capability(capability)
            if category in p.capabilities.categories
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)

    def __contains__(self, provider_id: object) -> bool:
        with self._lock:
            return provider_id in self._providers
