"""Ride-hailing adapter.

Quotes economy, comfort and shared rides (plus a wheelchair-accessible van
when the rider needs one) from straight-line distance at city speed, with a
time-of-day surge multiplier.  Bookings draw from a finite driver pool; once
it is empty a booking fails with BookingUnavailable.
"""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

import pytz

from transitmesh.errors import BookingUnavailable
from transitmesh.models import (
    BookingInfo,
    CoverageArea,
    JourneySegment,
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

BERLIN_TZ = pytz.timezone("Europe/Berlin")

BERLIN = CoverageArea(city="Berlin", north=52.6755, south=52.3382, east=13.7611, west=13.0883)

CITY_SPEED_KMH = 25
BASE_FARE = 3.5
MAX_TRIP_M = 60_000
CANCELLATION_POLICY = "Free cancellation within 2 minutes of booking"


@dataclass(frozen=True)
class RideClass:
    mode: TransportMode
    provider: str
    comfort: int
    fare_factor: float
    accessible: bool = False


def _mode(mode_id: str, name: str, mode_type: ModeType, per_km: float,
          speed: float, co2: float, access: int) -> TransportMode:
    return TransportMode(
        id=mode_id,
        name=name,
        type=mode_type,
        category=ModeCategory.RIDEHAIL,
        cost_per_km=per_km,
        average_speed_kmh=speed,
        co2_per_km=co2,
        accessibility_score=access,
        real_time_data=True,
        booking_required=True,
    )


RIDE_CLASSES: tuple[RideClass, ...] = (
    RideClass(_mode("ridehail-economy", "Economy Ride", ModeType.PRIVATE, 1.2, 30, 120, 6), "RideShare", 6, 1.0),
    RideClass(_mode("ridehail-comfort", "Comfort Ride", ModeType.PRIVATE, 1.8, 32, 140, 7), "RideShare", 8, 1.5),
    RideClass(_mode("ridehail-shared", "Shared Ride", ModeType.SHARED, 0.8, 25, 60, 5), "RideShare", 5, 0.65),
    RideClass(_mode("ridehail-accessible", "Accessible Ride", ModeType.PRIVATE, 1.5, 28, 130, 10), "AccessRide", 7, 1.3, accessible=True),
)


@dataclass
class ActiveRide:
    booking_ref: str
    driver: str
    pickup_eta: int
    segment: JourneySegment


class RideHailingProvider(BaseProvider):

    def __init__(
        self,
        drivers: int = 25,
        rng: random.Random | None = None,
        coverage: CoverageArea = BERLIN,
    ) -> None:
        super().__init__(
            "ride-hailing",
            "Ride-Hailing Services",
            ProviderCapabilities(
                can_plan=True,
                can_report_updates=True,
                can_book=True,
                can_suggest_alternatives=True,
                can_integrate_with_other_modes=True,
                coverage=coverage,
                categories=frozenset({ModeCategory.RIDEHAIL, ModeCategory.TAXI}),
            ),
        )
        self.available_drivers = drivers
        self._rng = rng or random.Random()
        self._active_rides: dict[str, ActiveRide] = {}

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    async def plan(
        self,
        origin: LocationPoint,
        destination: LocationPoint,
        preferences: UserPreferences,
    ) -> list[JourneySegment]:
        if preferences.avoids(ModeCategory.RIDEHAIL):
            return []
        if not (self.capabilities.covers(origin) and self.capabilities.covers(destination)):
            return []
        distance = haversine_m(origin, destination)
        if distance > MAX_TRIP_M or self.available_drivers <= 0:
            return []

        needs_access = bool(preferences.accessibility_needs)
        classes = [c for c in RIDE_CLASSES if c.accessible == needs_access]
        return [self._quote(c, origin, destination, distance) for c in classes]

    def _quote(
        self,
        ride: RideClass,
        origin: LocationPoint,
        destination: LocationPoint,
        distance: float,
    ) -> JourneySegment:
        surge = self.current_surge()
        pickup_eta = self._rng.randint(2, 10)
        minutes = travel_minutes(distance, CITY_SPEED_KMH)
        km = distance / 1000
        now = datetime.now(tz=pytz.UTC)
        departure = now + timedelta(minutes=pickup_eta)
        return JourneySegment(
            id=self.new_segment_id(),
            mode=ride.mode,
            origin=origin,
            destination=destination,
            departure_time=departure,
            arrival_time=departure + timedelta(minutes=minutes),
            duration=minutes,
            distance=round(distance),
            cost=round((BASE_FARE + km * ride.mode.cost_per_km) * ride.fare_factor * surge, 2),
            emissions=round(km * ride.mode.co2_per_km, 1),
            reliability=self._reliability(pickup_eta, surge),
            comfort=ride.comfort,
            accessibility=ride.mode.accessibility_score,
            real_time_updates=True,
            booking_info=BookingInfo(
                required=True,
                provider=ride.provider,
                estimated_wait_minutes=pickup_eta,
                cancellation_policy=CANCELLATION_POLICY,
            ),
        )

    def current_surge(self, now: datetime | None = None) -> float:
        hour = (now or datetime.now(tz=BERLIN_TZ)).astimezone(BERLIN_TZ).hour
        if 7 <= hour <= 9 or 17 <= hour <= 19:
            return round(1.2 + self._rng.random() * 0.8, 2)
        if hour >= 22 or hour <= 2:
            return round(1.1 + self._rng.random() * 0.4, 2)
        return round(1.0 + self._rng.random() * 0.2, 2)

    @staticmethod
    def _reliability(pickup_eta: int, surge: float) -> float:
        score = 0.9
        if pickup_eta > 8:
            score -= 0.1
        if surge > 1.5:
            score -= 0.1
        return max(0.7, round(score, 2))

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    async def book(self, segment: JourneySegment) -> BookingInfo:
        if self.available_drivers <= 0:
            raise BookingUnavailable("no drivers available", segment_id=segment.id)

        self.available_drivers -= 1
        ref = f"ride-{uuid.uuid4().hex[:10]}"
        pickup_eta = int(segment.booking_info.estimated_wait_minutes) if segment.booking_info else 5
        self._active_rides[segment.id] = ActiveRide(
            booking_ref=ref, driver=f"driver-{uuid.uuid4().hex[:6]}",
            pickup_eta=pickup_eta, segment=segment,
        )
        booking = BookingInfo(
            required=True,
            provider=segment.booking_info.provider if segment.booking_info else "RideShare",
            reference=ref,
            booking_url=f"https://rideshare.example/ride/{ref}",
            estimated_wait_minutes=pickup_eta,
            cancellation_policy=CANCELLATION_POLICY,
        )
        segment.booking_info = booking
        self.logger.info("Ride %s booked for segment %s", ref, segment.id)
        return booking

    def cancel_ride(self, segment_id: str) -> bool:
        ride = self._active_rides.pop(segment_id, None)
        if ride is None:
            return False
        self.available_drivers += 1
        if ride.segment.booking_info is not None:
            ride.segment.booking_info = replace(
                ride.segment.booking_info, reference=None, booking_url=None,
            )
        self.logger.info("Ride %s cancelled", ride.booking_ref)
        return True

    def release(self, segment_id: str) -> None:
        self.cancel_ride(segment_id)

    def is_booked(self, segment_id: str) -> bool:
        return segment_id in self._active_rides

    # ------------------------------------------------------------------
    # Live updates & alternatives
    # ------------------------------------------------------------------

    async def report_updates(self, segment_id: str) -> list[RealTimeUpdate]:
        ride = self._active_rides.get(segment_id)
        if ride is None:
            return []
        now = datetime.now(tz=pytz.UTC)
        updates: list[RealTimeUpdate] = []
        if self._rng.random() < 0.1:
            minutes = self._rng.randint(1, 3)
            updates.append(RealTimeUpdate(
                segment_id=segment_id,
                kind=UpdateKind.DELAY,
                severity=Severity.LOW,
                message=f"Driver is {minutes} minutes away",
                estimated_delay=minutes,
                timestamp=now,
            ))
        if self._rng.random() < 0.05:
            updates.append(RealTimeUpdate(
                segment_id=segment_id,
                kind=UpdateKind.DELAY,
                severity=Severity.MEDIUM,
                message="Heavy traffic detected, route being optimised",
                estimated_delay=self._rng.randint(5, 14),
                timestamp=now,
            ))
        return updates

    async def alternatives(self, segment: JourneySegment) -> list[JourneySegment]:
        options = await self.plan(
            segment.origin,
            segment.destination,
            UserPreferences(preferred_modes=["ridehail"], max_cost=100, prioritize_speed=True),
        )
        return [s for s in options if s.mode.id != segment.mode.id]
