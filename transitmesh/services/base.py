from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Callable

from transitmesh.errors import BookingUnavailable
from transitmesh.models import (
    BookingInfo,
    JourneySegment,
    LocationPoint,
    ProviderCapabilities,
    RealTimeUpdate,
    UserPreferences,
)

StatusListener = Callable[[str, bool], None]


class BaseProvider(ABC):
    """Contract for every transportation provider.

    Rules:
    - ``plan`` returns an empty list when nothing fits (mode avoided, trip out
      of range, outside coverage). It raises only when the provider itself is
      broken (``ProviderUnavailable``).
    - Never return a segment whose category is in ``preferences.avoid_modes``.
    - Segment ids are provider-unique and stable.
    - Capabilities are fixed at construction. A provider that goes down
      reports ``active=False`` and returns empty results.
    """

    def __init__(
        self,
        provider_id: str,
        name: str,
        capabilities: ProviderCapabilities,
    ) -> None:
        self.provider_id = provider_id
        self.name = name
        self._capabilities = capabilities
        self._active = False
        self._status_listeners: list[StatusListener] = []
        self.logger = logging.getLogger(f"provider.{provider_id}")

    @property
    def capabilities(self) -> ProviderCapabilities:
        return self._capabilities

    @property
    def is_active(self) -> bool:
        return self._active

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        self.set_active(True)

    async def close(self) -> None:
        self.set_active(False)

    # ── Status channel ────────────────────────────────────────────────────────

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        if listener in self._status_listeners:
            self._status_listeners.remove(listener)

    def set_active(self, active: bool) -> None:
        if active == self._active:
            return
        self._active = active
        self.logger.info("'%s' is now %s", self.name, "active" if active else "inactive")
        for listener in list(self._status_listeners):
            listener(self.provider_id, active)

    # ── Operations ────────────────────────────────────────────────────────────

    @abstractmethod
    async def plan(
        self,
        origin: LocationPoint,
        destination: LocationPoint,
        preferences: UserPreferences,
    ) -> list[JourneySegment]:
        ...

    async def report_updates(self, segment_id: str) -> list[RealTimeUpdate]:
        return []

    async def book(self, segment: JourneySegment) -> BookingInfo:
        raise BookingUnavailable(
            f"'{self.name}' does not take bookings", segment_id=segment.id,
        )

    async def alternatives(self, segment: JourneySegment) -> list[JourneySegment]:
        return []

    def release(self, segment_id: str) -> None:
        """Drop any per-segment state; no tracked plan references it any more.

        Called for every registered provider, so unknown ids must be ignored.
        """

    def new_segment_id(self) -> str:
        return f"{self.provider_id}-{uuid.uuid4().hex[:12]}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.provider_id!r})"
