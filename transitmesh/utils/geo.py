from __future__ import annotations

import math

from transitmesh.models import LocationPoint

EARTH_RADIUS_M = 6_371_000


def haversine_m(a: LocationPoint, b: LocationPoint) -> float:
    """Great-circle distance between two points, in metres."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)
    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def travel_minutes(distance_m: float, speed_kmh: float) -> int:
    if speed_kmh <= 0:
        return 0
    return round(distance_m / 1000 / speed_kmh * 60)
