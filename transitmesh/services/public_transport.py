"""Berlin public transport via the VBB REST API (v6.vbb.transport.rest).

Planning calls /journeys with product filters derived from the rider's
avoided modes; each returned journey becomes one segment, typed by its first
transit leg.  Live updates refresh the journey through its refresh token
(/journeys/{token}) and translate delays, cancellations, platform changes and
warning remarks into RealTimeUpdates.

The API carries no booking; tickets are bought at the stop.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from urllib.parse import quote

import pytz

from transitmesh.errors import ProviderUnavailable
from transitmesh.models import (
    BookingInfo,
    CoverageArea,
    JourneySegment,
    LocationKind,
    LocationPoint,
    ModeCategory,
    ModeType,
    ProviderCapabilities,
    RealTimeUpdate,
    Severity,
    TransportMode,
    UpdateKind,
    UserPreferences,
)
from transitmesh.services.base import BaseProvider
from transitmesh.utils.cache import cached
from transitmesh.utils.geo import haversine_m
from transitmesh.utils.http import fetch_json


VBB_API_BASE = "https://v6.vbb.transport.rest"

BERLIN_BRANDENBURG = CoverageArea(
    city="Berlin", north=52.6755, south=52.3382, east=13.7611, west=13.0883,
)

# Zone AB / zone ABC single tickets
FARE_AB = 3.20
FARE_ABC = 4.40
ABC_THRESHOLD_M = 15_000


def _public(mode_id: str, name: str, category: ModeCategory, per_km: float,
            speed: float, co2: float, access: int) -> TransportMode:
    return TransportMode(
        id=mode_id,
        name=name,
        type=ModeType.PUBLIC,
        category=category,
        cost_per_km=per_km,
        average_speed_kmh=speed,
        co2_per_km=co2,
        accessibility_score=access,
        real_time_data=True,
    )


# VBB line.product → mode
PRODUCT_MODES: dict[str, TransportMode] = {
    "subway": _public("vbb-subway", "U-Bahn", ModeCategory.METRO, 0.15, 35, 20, 8),
    "suburban": _public("vbb-suburban", "S-Bahn", ModeCategory.TRAIN, 0.18, 45, 15, 7),
    "regional": _public("vbb-regional", "Regional train", ModeCategory.TRAIN, 0.18, 60, 15, 7),
    "express": _public("vbb-express", "Long-distance train", ModeCategory.TRAIN, 0.20, 90, 12, 7),
    "tram": _public("vbb-tram", "Tram", ModeCategory.TRAM, 0.13, 25, 18, 8),
    "bus": _public("vbb-bus", "Bus", ModeCategory.BUS, 0.12, 20, 25, 9),
    "ferry": _public("vbb-ferry", "Ferry", ModeCategory.FERRY, 0.15, 15, 30, 6),
}

RELIABILITY = {
    ModeCategory.METRO: 0.92,
    ModeCategory.TRAIN: 0.88,
    ModeCategory.TRAM: 0.90,
    ModeCategory.BUS: 0.85,
    ModeCategory.FERRY: 0.95,
}
COMFORT = {
    ModeCategory.METRO: 7,
    ModeCategory.TRAIN: 8,
    ModeCategory.TRAM: 7,
    ModeCategory.BUS: 6,
    ModeCategory.FERRY: 9,
}


def _products_key(origin: LocationPoint, destination: LocationPoint,
                  params: dict[str, Any]) -> str:
    return (
        f"{origin.latitude:.5f},{origin.longitude:.5f}>"
        f"{destination.latitude:.5f},{destination.longitude:.5f}|"
        + ",".join(f"{k}={v}" for k, v in sorted(params.items()))
    )


class PublicTransportProvider(BaseProvider):

    def __init__(self, api_base: str = VBB_API_BASE, results: int = 5) -> None:
        super().__init__(
            "berlin-public-transport",
            "Berlin Public Transport (VBB)",
            ProviderCapabilities(
                can_plan=True,
                can_report_updates=True,
                can_book=False,
                can_suggest_alternatives=True,
                can_integrate_with_other_modes=True,
                coverage=BERLIN_BRANDENBURG,
                categories=frozenset(m.category for m in PRODUCT_MODES.values()),
            ),
        )
        self.api_base = api_base.rstrip("/")
        self.results = results
        self._refresh_tokens: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    async def plan(
        self,
        origin: LocationPoint,
        destination: LocationPoint,
        preferences: UserPreferences,
    ) -> list[JourneySegment]:
        if not (self.capabilities.covers(origin) and self.capabilities.covers(destination)):
            return []
        params = self._filters(preferences)
        if not any(params[p] for p in PRODUCT_MODES):
            return []

        journeys = await self._fetch_journeys(origin, destination, params)
        segments: list[JourneySegment] = []
        for journey in journeys:
            segment = self._to_segment(journey, origin, destination)
            if segment is None or preferences.avoids(segment.mode.category):
                continue
            segments.append(segment)
        self.logger.info("VBB: %d journeys, %d segments", len(journeys), len(segments))
        return segments

    def _filters(self, preferences: UserPreferences) -> dict[str, Any]:
        params: dict[str, Any] = {
            product: not preferences.avoids(mode.category)
            for product, mode in PRODUCT_MODES.items()
        }
        if preferences.accessibility_needs:
            params["accessibility"] = "complete"
        return params

    @cached("vbb-journeys", key=_products_key)
    async def _fetch_journeys(
        self,
        origin: LocationPoint,
        destination: LocationPoint,
        params: dict[str, Any],
    ) -> list[dict]:
        query = {
            "from.latitude": origin.latitude,
            "from.longitude": origin.longitude,
            "from.address": origin.name,
            "to.latitude": destination.latitude,
            "to.longitude": destination.longitude,
            "to.address": destination.name,
            "results": self.results,
            "stopovers": False,
            "remarks": True,
            **params,
        }
        try:
            data = await fetch_json(f"{self.api_base}/journeys", params=query)
        except Exception as exc:
            raise ProviderUnavailable(self.provider_id, f"VBB /journeys unreachable: {exc}") from exc

        if not isinstance(data, dict) or not isinstance(data.get("journeys"), list):
            raise ProviderUnavailable(self.provider_id, "VBB /journeys returned unexpected format")
        return data["journeys"]

    def _to_segment(
        self,
        journey: dict,
        origin: LocationPoint,
        destination: LocationPoint,
    ) -> JourneySegment | None:
        legs = journey.get("legs") or []
        transit = [leg for leg in legs if not leg.get("walking") and leg.get("line")]
        if not transit:
            return None
        mode = PRODUCT_MODES.get(transit[0]["line"].get("product", ""))
        if mode is None:
            return None

        departure = _parse_time(legs[0].get("departure") or legs[0].get("plannedDeparture"))
        arrival = _parse_time(legs[-1].get("arrival") or legs[-1].get("plannedArrival"))
        if departure is None or arrival is None:
            return None

        distance = sum(_leg_distance(leg) for leg in legs)
        km = distance / 1000
        price = (journey.get("price") or {}).get("amount")
        cost = float(price) if price is not None else (FARE_ABC if distance > ABC_THRESHOLD_M else FARE_AB)

        segment_id = self.new_segment_id()
        token = journey.get("refreshToken")
        if token:
            self._refresh_tokens[segment_id] = token

        return JourneySegment(
            id=segment_id,
            mode=mode,
            origin=origin,
            destination=destination,
            departure_time=departure,
            arrival_time=arrival,
            duration=round((arrival - departure).total_seconds() / 60),
            distance=round(distance),
            cost=cost,
            emissions=round(km * mode.co2_per_km, 1),
            reliability=RELIABILITY.get(mode.category, 0.85),
            comfort=COMFORT.get(mode.category, 6),
            accessibility=mode.accessibility_score,
            real_time_updates=bool(token),
            booking_info=BookingInfo(
                required=False,
                provider="VBB",
                estimated_wait_minutes=2,
                cancellation_policy="No booking required for public transport",
            ),
        )

    # ------------------------------------------------------------------
    # Live updates
    # ------------------------------------------------------------------

    async def report_updates(self, segment_id: str) -> list[RealTimeUpdate]:
        token = self._refresh_tokens.get(segment_id)
        if token is None:
            return []
        try:
            data = await fetch_json(
                f"{self.api_base}/journeys/{quote(token, safe='')}",
                params={"stopovers": False, "remarks": True},
            )
        except Exception as exc:
            raise ProviderUnavailable(self.provider_id, f"VBB refresh failed: {exc}") from exc

        journey = data.get("journey") if isinstance(data, dict) else None
        if not isinstance(journey, dict):
            return []
        return journey_updates(segment_id, journey, datetime.now(tz=pytz.UTC))

    def release(self, segment_id: str) -> None:
        self._refresh_tokens.pop(segment_id, None)

    async def alternatives(self, segment: JourneySegment) -> list[JourneySegment]:
        options = await self.plan(
            segment.origin,
            segment.destination,
            UserPreferences(avoid_modes=[segment.mode.category.value], prioritize_speed=True),
        )
        return options[:3]


def journey_updates(segment_id: str, journey: dict, now: datetime) -> list[RealTimeUpdate]:
    """Translate a refreshed VBB journey into RealTimeUpdates."""
    legs = [leg for leg in journey.get("legs") or [] if not leg.get("walking")]
    updates: list[RealTimeUpdate] = []

    cancelled = [leg for leg in legs if leg.get("cancelled")]
    if cancelled:
        line = (cancelled[0].get("line") or {}).get("name", "A connection")
        updates.append(RealTimeUpdate(
            segment_id=segment_id,
            kind=UpdateKind.CANCELLATION,
            severity=Severity.CRITICAL,
            message=f"{line} is cancelled",
            timestamp=now,
        ))

    delay_s = max(
        (max(leg.get("departureDelay") or 0, leg.get("arrivalDelay") or 0) for leg in legs),
        default=0,
    )
    delay_min = round(delay_s / 60)
    if delay_min >= 2:
        if delay_min >= 15:
            severity = Severity.HIGH
        elif delay_min >= 5:
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW
        updates.append(RealTimeUpdate(
            segment_id=segment_id,
            kind=UpdateKind.DELAY,
            severity=severity,
            message=f"Running {delay_min} min late",
            estimated_delay=delay_min,
            timestamp=now,
        ))

    for leg in legs:
        planned = leg.get("plannedDeparturePlatform")
        actual = leg.get("departurePlatform")
        if planned and actual and planned != actual:
            stop = (leg.get("origin") or {}).get("name", "the stop")
            updates.append(RealTimeUpdate(
                segment_id=segment_id,
                kind=UpdateKind.PLATFORM_CHANGE,
                severity=Severity.LOW,
                message=f"Platform changed at {stop}: {planned} → {actual}",
                timestamp=now,
            ))

    seen: set[str] = set()
    for leg in legs:
        for remark in leg.get("remarks") or []:
            if remark.get("type") != "warning":
                continue
            text = remark.get("summary") or remark.get("text") or ""
            if not text or text in seen:
                continue
            seen.add(text)
            updates.append(RealTimeUpdate(
                segment_id=segment_id,
                kind=UpdateKind.DISRUPTION,
                severity=Severity.HIGH,
                message=text[:200],
                timestamp=now,
            ))
    return updates


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None
    return parsed if parsed.tzinfo else pytz.UTC.localize(parsed)


def _leg_distance(leg: dict) -> float:
    if leg.get("distance"):
        return float(leg["distance"])
    a = _stop_point(leg.get("origin"))
    b = _stop_point(leg.get("destination"))
    if a is None or b is None:
        return 0.0
    return haversine_m(a, b)


def _stop_point(stop: dict | None) -> LocationPoint | None:
    if not isinstance(stop, dict):
        return None
    loc = stop.get("location") or stop
    lat, lon = loc.get("latitude"), loc.get("longitude")
    if lat is None or lon is None:
        return None
    return LocationPoint(float(lat), float(lon), stop.get("name", ""), LocationKind.STOP)
