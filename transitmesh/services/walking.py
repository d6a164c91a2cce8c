from __future__ import annotations

from datetime import datetime, timedelta

import pytz

from transitmesh.models import (
    JourneySegment,
    LocationPoint,
    ModeCategory,
    ModeType,
    ProviderCapabilities,
    TransportMode,
    UserPreferences,
)
from transitmesh.services.base import BaseProvider
from transitmesh.utils.geo import haversine_m, travel_minutes

WALK = TransportMode(
    id="walk",
    name="Walk",
    type=ModeType.ACTIVE,
    category=ModeCategory.WALKING,
    average_speed_kmh=4.5,
    accessibility_score=5,
)

# Straight-line distance understates street distance
DETOUR_FACTOR = 1.25


class WalkingProvider(BaseProvider):
    """On-foot legs, offered only within the rider's walking limit."""

    def __init__(self) -> None:
        super().__init__(
            "walking",
            "Walking",
            ProviderCapabilities(
                can_plan=True,
                can_integrate_with_other_modes=True,
                categories=frozenset({ModeCategory.WALKING}),
            ),
        )

    async def plan(
        self,
        origin: LocationPoint,
        destination: LocationPoint,
        preferences: UserPreferences,
    ) -> list[JourneySegment]:
        if preferences.avoids(ModeCategory.WALKING):
            return []
        distance = haversine_m(origin, destination) * DETOUR_FACTOR
        if distance > preferences.max_walking_distance:
            self.logger.debug(
                "%.0fm exceeds walking limit %.0fm", distance, preferences.max_walking_distance,
            )
            return []

        minutes = travel_minutes(distance, WALK.average_speed_kmh)
        now = datetime.now(tz=pytz.UTC)
        return [JourneySegment(
            id=self.new_segment_id(),
            mode=WALK,
            origin=origin,
            destination=destination,
            departure_time=now,
            arrival_time=now + timedelta(minutes=minutes),
            duration=minutes,
            distance=round(distance),
            cost=0.0,
            emissions=0.0,
            reliability=0.99,
            comfort=5,
            accessibility=WALK.accessibility_score,
        )]
