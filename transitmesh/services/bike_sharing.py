"""Bike-share adapter.

Docking stations with standard, electric and cargo bikes.  A trip is offered
only when both ends have an active station within 500 m and the distance is
between 500 m and 10 km.  Bookings hold a bike for 15 minutes; a lapsed hold
is reported as a cancellation on the next update poll.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable

import pytz

from transitmesh.errors import BookingUnavailable
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
from transitmesh.utils.geo import haversine_m, travel_minutes

STATION_RADIUS_M = 500
MIN_TRIP_M = 500
MAX_TRIP_M = 10_000
WALK_TO_DOCK_MIN = 3
HOLD_WINDOW = timedelta(minutes=15)
CANCELLATION_POLICY = "Free cancellation before bike pickup"


@dataclass(frozen=True)
class BikeType:
    kind: str
    price_per_minute: float
    comfort: int
    mode: TransportMode


def _bike_mode(kind: str, name: str, per_km: float, speed: float, co2: float, access: int) -> TransportMode:
    return TransportMode(
        id=f"bike-{kind}",
        name=name,
        type=ModeType.SHARED,
        category=ModeCategory.BIKESHARE,
        cost_per_km=per_km,
        average_speed_kmh=speed,
        co2_per_km=co2,
        accessibility_score=access,
        real_time_data=True,
        booking_required=True,
    )


BIKE_TYPES: dict[str, BikeType] = {
    "standard": BikeType("standard", 0.15, 6, _bike_mode("standard", "Standard Bike", 0.15, 15, 0, 4)),
    "electric": BikeType("electric", 0.25, 8, _bike_mode("electric", "Electric Bike", 0.25, 22, 5, 6)),
    "cargo": BikeType("cargo", 0.35, 5, _bike_mode("cargo", "Cargo Bike", 0.35, 12, 0, 3)),
}


@dataclass
class Station:
    id: str
    location: LocationPoint
    capacity: int
    bikes: dict[str, int]
    active: bool = True

    @property
    def available_bikes(self) -> int:
        return sum(self.bikes.values())

    @property
    def fill_ratio(self) -> float:
        return self.available_bikes / self.capacity if self.capacity else 0.0


@dataclass
class Reservation:
    ref: str
    station_id: str
    kind: str
    held_until: datetime
    segment: JourneySegment
    lapsed: bool = field(default=False)


def _station(station_id: str, name: str, lat: float, lon: float, capacity: int, **bikes: int) -> Station:
    return Station(
        id=station_id,
        location=LocationPoint(lat, lon, name, LocationKind.STATION),
        capacity=capacity,
        bikes=dict(bikes),
    )


def berlin_stations() -> list[Station]:
    return [
        _station("station-001", "Alexanderplatz", 52.5219, 13.4132, 12, standard=5, electric=3),
        _station("station-002", "Brandenburg Gate", 52.5163, 13.3777, 12, standard=5),
        _station("station-003", "Potsdamer Platz", 52.5096, 13.3760, 15, standard=6, electric=4, cargo=2),
        _station("station-004", "Hauptbahnhof", 52.5251, 13.3694, 20, standard=8, electric=6),
        _station("station-005", "Warschauer Strasse", 52.5058, 13.4494, 14, standard=6, electric=2),
    ]


def _utcnow() -> datetime:
    return datetime.now(tz=pytz.UTC)


class BikeSharingProvider(BaseProvider):

    def __init__(
        self,
        stations: list[Station] | None = None,
        coverage: CoverageArea | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        super().__init__(
            "bike-sharing",
            "Bike Sharing Services",
            ProviderCapabilities(
                can_plan=True,
                can_report_updates=True,
                can_book=True,
                can_suggest_alternatives=True,
                can_integrate_with_other_modes=True,
                coverage=coverage,
                categories=frozenset({ModeCategory.BIKESHARE}),
            ),
        )
        self.stations = {s.id: s for s in (stations if stations is not None else berlin_stations())}
        self._reservations: dict[str, Reservation] = {}
        self._clock = clock

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    async def plan(
        self,
        origin: LocationPoint,
        destination: LocationPoint,
        preferences: UserPreferences,
    ) -> list[JourneySegment]:
        if preferences.avoids(ModeCategory.BIKESHARE):
            return []
        distance = haversine_m(origin, destination)
        if not MIN_TRIP_M <= distance <= MAX_TRIP_M:
            return []
        pickups = self.nearby_stations(origin)
        dropoffs = self.nearby_stations(destination)
        if not pickups or not dropoffs:
            return []

        segments: list[JourneySegment] = []
        for kind, bike in BIKE_TYPES.items():
            stocked = [s for s in pickups if s.bikes.get(kind, 0) > 0]
            if not stocked:
                continue
            best = max(stocked, key=lambda s: s.bikes[kind])
            segments.append(self._segment(bike, best, origin, destination, distance))
        return segments

    def nearby_stations(self, point: LocationPoint, radius: float = STATION_RADIUS_M) -> list[Station]:
        found = [
            (haversine_m(point, s.location), s)
            for s in self.stations.values() if s.active
        ]
        return [s for d, s in sorted(found, key=lambda pair: pair[0]) if d <= radius]

    def _segment(
        self,
        bike: BikeType,
        station: Station,
        origin: LocationPoint,
        destination: LocationPoint,
        distance: float,
    ) -> JourneySegment:
        ride_min = travel_minutes(distance, bike.mode.average_speed_kmh)
        total_min = ride_min + 2 * WALK_TO_DOCK_MIN
        now = self._clock()
        return JourneySegment(
            id=self.new_segment_id(),
            mode=bike.mode,
            origin=origin,
            destination=destination,
            departure_time=now + timedelta(minutes=WALK_TO_DOCK_MIN),
            arrival_time=now + timedelta(minutes=total_min),
            duration=total_min,
            distance=round(distance),
            cost=round(ride_min * bike.price_per_minute, 2),
            emissions=round(distance / 1000 * bike.mode.co2_per_km, 1),
            reliability=self._reliability(station),
            comfort=bike.comfort,
            accessibility=bike.mode.accessibility_score,
            real_time_updates=True,
            booking_info=BookingInfo(
                required=True,
                provider="BikeShare",
                estimated_wait_minutes=WALK_TO_DOCK_MIN,
                cancellation_policy=CANCELLATION_POLICY,
            ),
        )

    @staticmethod
    def _reliability(station: Station) -> float:
        ratio = station.fill_ratio
        if ratio > 0.5:
            return 0.95
        if ratio > 0.25:
            return 0.85
        if ratio > 0.1:
            return 0.75
        return 0.6

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    async def book(self, segment: JourneySegment) -> BookingInfo:
        kind = segment.mode.id.removeprefix("bike-")
        station = next(
            (s for s in self.nearby_stations(segment.origin) if s.bikes.get(kind, 0) > 0),
            None,
        )
        if station is None:
            raise BookingUnavailable(
                f"no {kind} bikes left near {segment.origin.name}", segment_id=segment.id,
            )

        station.bikes[kind] -= 1
        ref = f"bike-{uuid.uuid4().hex[:10]}"
        self._reservations[segment.id] = Reservation(
            ref=ref, station_id=station.id, kind=kind,
            held_until=self._clock() + HOLD_WINDOW, segment=segment,
        )
        booking = BookingInfo(
            required=True,
            provider="BikeShare",
            reference=ref,
            booking_url=f"https://bikeshare.example/bike/{ref}",
            estimated_wait_minutes=WALK_TO_DOCK_MIN,
            cancellation_policy=CANCELLATION_POLICY,
        )
        segment.booking_info = booking
        self.logger.info("Bike %s held at %s for segment %s", ref, station.id, segment.id)
        return booking

    def cancel_reservation(self, segment_id: str) -> bool:
        reservation = self._reservations.pop(segment_id, None)
        if reservation is None:
            return False
        if not reservation.lapsed:
            self.stations[reservation.station_id].bikes[reservation.kind] += 1
            _clear_reference(reservation.segment)
        return True

    def release(self, segment_id: str) -> None:
        self.cancel_reservation(segment_id)

    # ------------------------------------------------------------------
    # Live updates & alternatives
    # ------------------------------------------------------------------

    async def report_updates(self, segment_id: str) -> list[RealTimeUpdate]:
        reservation = self._reservations.get(segment_id)
        if reservation is None or reservation.lapsed:
            return []
        now = self._clock()
        if now < reservation.held_until:
            return []

        reservation.lapsed = True
        self.stations[reservation.station_id].bikes[reservation.kind] += 1
        _clear_reference(reservation.segment)
        return [RealTimeUpdate(
            segment_id=segment_id,
            kind=UpdateKind.CANCELLATION,
            severity=Severity.HIGH,
            message=f"Bike hold {reservation.ref} lapsed, the bike was released",
            timestamp=now,
        )]

    async def alternatives(self, segment: JourneySegment) -> list[JourneySegment]:
        options = await self.plan(
            segment.origin,
            segment.destination,
            UserPreferences(preferred_modes=["bikeshare"], max_cost=20, prioritize_environment=True),
        )
        return [s for s in options if s.mode.id != segment.mode.id]


def _clear_reference(segment: JourneySegment) -> None:
    if segment.booking_info is not None:
        segment.booking_info = replace(segment.booking_info, reference=None, booking_url=None)
