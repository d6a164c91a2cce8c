from __future__ import annotations

import random
from datetime import datetime

import pytest
import pytz

from conftest import ALEX, POTSDAMER, T0
from transitmesh.errors import BookingUnavailable, ProviderUnavailable
from transitmesh.models import LocationPoint, ModeCategory, Severity, UpdateKind, UserPreferences
from transitmesh.services import public_transport
from transitmesh.services.bike_sharing import BikeSharingProvider
from transitmesh.services.coordinator import Coordinator
from transitmesh.services.public_transport import PublicTransportProvider, journey_updates
from transitmesh.services.ranker import PlanRanker
from transitmesh.services.ride_hailing import RideHailingProvider
from transitmesh.services.walking import WalkingProvider

PARIS = LocationPoint(48.8566, 2.3522, "Paris")
NEAR_ALEX = LocationPoint(52.5230, 13.4140, "Alexa")


# ── Walking ──────────────────────────────────────────────────────────────────

async def test_walking_within_limit():
    [segment] = await WalkingProvider().plan(ALEX, NEAR_ALEX, UserPreferences())
    assert segment.mode.category == ModeCategory.WALKING
    assert segment.cost == 0 and segment.emissions == 0
    assert segment.duration >= 1
    assert segment.id.startswith("walking-")


async def test_walking_beyond_limit_or_avoided():
    walker = WalkingProvider()
    assert await walker.plan(ALEX, POTSDAMER, UserPreferences()) == []
    assert await walker.plan(ALEX, POTSDAMER, UserPreferences(max_walking_distance=10_000)) != []
    assert await walker.plan(ALEX, NEAR_ALEX, UserPreferences(avoid_modes=["walking"])) == []


# ── Bike sharing ─────────────────────────────────────────────────────────────

async def test_bike_plan_offers_stocked_types(clock):
    bikes = BikeSharingProvider(clock=clock)
    segments = await bikes.plan(ALEX, POTSDAMER, UserPreferences())
    assert sorted(s.mode.id for s in segments) == ["bike-electric", "bike-standard"]
    assert all(s.requires_booking for s in segments)
    assert all(s.departure_time > T0 for s in segments)


async def test_bike_plan_out_of_range(clock):
    bikes = BikeSharingProvider(clock=clock)
    assert await bikes.plan(ALEX, NEAR_ALEX, UserPreferences()) == []
    assert await bikes.plan(ALEX, PARIS, UserPreferences()) == []
    assert await bikes.plan(ALEX, POTSDAMER, UserPreferences(avoid_modes=["bikeshare"])) == []


async def test_bike_hold_lapses_into_cancellation(clock):
    bikes = BikeSharingProvider(clock=clock)
    segment = next(s for s in await bikes.plan(ALEX, POTSDAMER, UserPreferences())
                   if s.mode.id == "bike-standard")

    booking = await bikes.book(segment)

    assert booking.reference and segment.booking_info is booking
    assert bikes.stations["station-001"].bikes["standard"] == 4
    assert await bikes.report_updates(segment.id) == []

    clock.advance(minutes=16)
    [update] = await bikes.report_updates(segment.id)
    assert update.kind == UpdateKind.CANCELLATION
    assert update.severity == Severity.HIGH
    assert bikes.stations["station-001"].bikes["standard"] == 5
    assert await bikes.report_updates(segment.id) == []
    assert segment.booking_info.reference is None


async def test_bike_release_returns_the_held_bike(clock):
    bikes = BikeSharingProvider(clock=clock)
    segment = next(s for s in await bikes.plan(ALEX, POTSDAMER, UserPreferences())
                   if s.mode.id == "bike-standard")
    await bikes.book(segment)

    bikes.release(segment.id)
    bikes.release(segment.id)
    bikes.release("unknown-segment")

    assert bikes.stations["station-001"].bikes["standard"] == 5
    assert bikes._reservations == {}
    assert segment.booking_info.reference is None


async def test_bike_booking_fails_when_station_is_empty(clock):
    bikes = BikeSharingProvider(clock=clock)
    segment = next(s for s in await bikes.plan(ALEX, POTSDAMER, UserPreferences())
                   if s.mode.id == "bike-electric")
    bikes.stations["station-001"].bikes["electric"] = 0

    with pytest.raises(BookingUnavailable):
        await bikes.book(segment)


async def test_bike_alternatives_exclude_the_disrupted_type(clock):
    bikes = BikeSharingProvider(clock=clock)
    standard = next(s for s in await bikes.plan(ALEX, POTSDAMER, UserPreferences())
                    if s.mode.id == "bike-standard")
    alternatives = await bikes.alternatives(standard)
    assert [s.mode.id for s in alternatives] == ["bike-electric"]


# ── Ride hailing ─────────────────────────────────────────────────────────────

async def test_ride_quotes_standard_classes():
    rides = RideHailingProvider(rng=random.Random(7))
    segments = await rides.plan(ALEX, POTSDAMER, UserPreferences())
    assert [s.mode.id for s in segments] == ["ridehail-economy", "ridehail-comfort", "ridehail-shared"]
    assert all(s.cost > 0 and s.requires_booking for s in segments)


async def test_ride_accessible_class_for_accessibility_needs():
    rides = RideHailingProvider(rng=random.Random(7))
    [segment] = await rides.plan(ALEX, POTSDAMER, UserPreferences(accessibility_needs=["wheelchair"]))
    assert segment.mode.id == "ridehail-accessible"
    assert segment.booking_info.provider == "AccessRide"


async def test_ride_respects_coverage_and_avoidance():
    rides = RideHailingProvider(rng=random.Random(7))
    assert await rides.plan(ALEX, PARIS, UserPreferences()) == []
    assert await rides.plan(ALEX, POTSDAMER, UserPreferences(avoid_modes=["ridehail"])) == []


async def test_ride_booking_draws_from_driver_pool():
    rides = RideHailingProvider(drivers=1, rng=random.Random(7))
    first, second, _ = await rides.plan(ALEX, POTSDAMER, UserPreferences())

    booking = await rides.book(first)
    assert booking.reference.startswith("ride-")
    assert rides.is_booked(first.id)
    with pytest.raises(BookingUnavailable):
        await rides.book(second)

    assert rides.cancel_ride(first.id)
    assert rides.available_drivers == 1


async def test_ride_release_frees_the_driver():
    rides = RideHailingProvider(drivers=1, rng=random.Random(7))
    first, _, _ = await rides.plan(ALEX, POTSDAMER, UserPreferences())
    await rides.book(first)

    rides.release(first.id)
    rides.release("unknown-segment")

    assert rides.available_drivers == 1
    assert not rides.is_booked(first.id)
    assert first.booking_info.reference is None


async def test_ride_booked_twice_through_the_coordinator_holds_one_driver(clock):
    rides = RideHailingProvider(drivers=2, rng=random.Random(7))
    coordinator = Coordinator(clock=clock)
    coordinator.register_provider(rides)
    plan = (await coordinator.plan_journey(ALEX, POTSDAMER, UserPreferences()))[0]

    [first] = await coordinator.book_journey(plan.id)
    [second] = await coordinator.book_journey(plan.id)

    assert second.reference == first.reference
    assert rides.available_drivers == 1


def test_surge_by_time_of_day():
    rides = RideHailingProvider(rng=random.Random(7))
    berlin = pytz.timezone("Europe/Berlin")
    rush = rides.current_surge(berlin.localize(datetime(2024, 5, 6, 8, 0)))
    quiet = rides.current_surge(berlin.localize(datetime(2024, 5, 6, 14, 0)))
    assert 1.2 <= rush <= 2.0
    assert 1.0 <= quiet <= 1.2


# ── Public transport (VBB) ───────────────────────────────────────────────────

def _stop(name, lat, lon):
    return {"name": name, "location": {"latitude": lat, "longitude": lon}}


JOURNEY = {
    "refreshToken": "tok|42",
    "legs": [
        {
            "walking": True,
            "departure": "2024-05-06T14:00:00+02:00",
            "arrival": "2024-05-06T14:04:00+02:00",
            "distance": 200,
        },
        {
            "line": {"product": "subway", "name": "U2"},
            "departure": "2024-05-06T14:04:00+02:00",
            "arrival": "2024-05-06T14:16:00+02:00",
            "origin": _stop("Alexanderplatz", 52.5219, 13.4132),
            "destination": _stop("Potsdamer Platz", 52.5096, 13.3760),
        },
    ],
}


class FakeVbb(list):
    """Records fetch_json calls; answers from ``responses`` keyed by URL."""

    def __init__(self) -> None:
        super().__init__()
        self.responses: dict = {}

    async def __call__(self, url, *, params=None, retries=2):
        self.append((url, params))
        response = self.responses.get(url, {"journeys": [JOURNEY]})
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def vbb_calls(monkeypatch):
    fake = FakeVbb()
    monkeypatch.setattr(public_transport, "fetch_json", fake)
    return fake


def test_journey_becomes_segment():
    vbb = PublicTransportProvider()
    segment = vbb._to_segment(JOURNEY, ALEX, POTSDAMER)

    assert segment.mode.category == ModeCategory.METRO
    assert segment.duration == 16
    assert segment.cost == public_transport.FARE_AB
    assert segment.distance > 200
    assert segment.real_time_updates
    assert not segment.requires_booking


def test_walk_only_journey_is_skipped():
    vbb = PublicTransportProvider()
    assert vbb._to_segment({"legs": [JOURNEY["legs"][0]]}, ALEX, POTSDAMER) is None


async def test_plan_queries_vbb_with_product_filters(vbb_calls):
    vbb = PublicTransportProvider(api_base="https://vbb.test/")
    prefs = UserPreferences(avoid_modes=["bus"], accessibility_needs=["wheelchair"])

    [segment] = await vbb.plan(ALEX, POTSDAMER, prefs)

    url, params = vbb_calls[0]
    assert url == "https://vbb.test/journeys"
    assert params["bus"] is False and params["subway"] is True
    assert params["accessibility"] == "complete"
    assert segment.mode.id == "vbb-subway"


async def test_plan_drops_avoided_categories_and_caches(vbb_calls):
    vbb = PublicTransportProvider()
    prefs = UserPreferences(avoid_modes=["metro"])
    assert await vbb.plan(ALEX, POTSDAMER, prefs) == []
    assert await vbb.plan(ALEX, POTSDAMER, prefs) == []
    assert len(vbb_calls) == 1


async def test_plan_outside_coverage_skips_the_api(vbb_calls):
    assert await PublicTransportProvider().plan(ALEX, PARIS, UserPreferences()) == []
    assert vbb_calls == []


async def test_unreachable_api_raises_provider_unavailable(vbb_calls):
    vbb = PublicTransportProvider(api_base="https://down.test")
    vbb_calls.responses["https://down.test/journeys"] = OSError("connection refused")
    with pytest.raises(ProviderUnavailable):
        await vbb.plan(ALEX, POTSDAMER, UserPreferences())

    vbb_calls.responses["https://down.test/journeys"] = {"error": "nope"}
    with pytest.raises(ProviderUnavailable):
        await vbb.plan(ALEX, LocationPoint(52.52, 13.40, "Mitte"), UserPreferences())


async def test_report_updates_refreshes_by_token(vbb_calls):
    vbb = PublicTransportProvider(api_base="https://vbb.test")
    [segment] = await vbb.plan(ALEX, POTSDAMER, UserPreferences())
    cancelled = {"legs": [dict(JOURNEY["legs"][1], cancelled=True)]}
    vbb_calls.responses["https://vbb.test/journeys/tok%7C42"] = {"journey": cancelled}

    [update] = await vbb.report_updates(segment.id)

    assert update.kind == UpdateKind.CANCELLATION
    assert update.severity == Severity.CRITICAL
    assert await vbb.report_updates("unknown-segment") == []
    vbb.release(segment.id)
    assert await vbb.report_updates(segment.id) == []


async def test_refresh_tokens_are_dropped_with_their_plans(vbb_calls, clock):
    vbb = PublicTransportProvider(api_base="https://vbb.test")
    vbb_calls.responses["https://vbb.test/journeys"] = {
        "journeys": [dict(JOURNEY, refreshToken=f"tok|{i}") for i in range(5)],
    }
    coordinator = Coordinator(clock=clock)
    coordinator.register_provider(vbb)

    for _ in range(20):
        await coordinator.plan_journey(ALEX, POTSDAMER, UserPreferences())
    assert len(vbb._refresh_tokens) == 100

    clock.advance(minutes=31)
    await coordinator.monitor_tick()

    assert vbb._refresh_tokens == {}


async def test_refresh_tokens_are_kept_only_for_returned_plans(vbb_calls, clock):
    vbb = PublicTransportProvider(api_base="https://vbb.test")
    vbb_calls.responses["https://vbb.test/journeys"] = {
        "journeys": [dict(JOURNEY, refreshToken=f"tok|{i}") for i in range(5)],
    }
    coordinator = Coordinator(ranker=PlanRanker(max_results=2), clock=clock)
    coordinator.register_provider(vbb)

    plans = await coordinator.plan_journey(ALEX, POTSDAMER, UserPreferences())

    assert set(vbb._refresh_tokens) == {s.id for p in plans for s in p.segments}
    assert len(vbb._refresh_tokens) == 2


def test_journey_updates_translation():
    leg = dict(
        JOURNEY["legs"][1],
        departureDelay=360,
        plannedDeparturePlatform="1",
        departurePlatform="2",
        remarks=[
            {"type": "warning", "summary": "Signal failure"},
            {"type": "hint", "text": "Bicycles allowed"},
        ],
    )
    updates = journey_updates("seg-1", {"legs": [leg]}, T0)

    assert [(u.kind, u.severity) for u in updates] == [
        (UpdateKind.DELAY, Severity.MEDIUM),
        (UpdateKind.PLATFORM_CHANGE, Severity.LOW),
        (UpdateKind.DISRUPTION, Severity.HIGH),
    ]
    assert updates[0].estimated_delay == 6
    assert all(u.segment_id == "seg-1" for u in updates)


@pytest.mark.parametrize("delay_s, severity", [
    (60, None),
    (120, Severity.LOW),
    (300, Severity.MEDIUM),
    (900, Severity.HIGH),
])
def test_delay_severity_thresholds(delay_s, severity):
    leg = dict(JOURNEY["legs"][1], arrivalDelay=delay_s)
    updates = journey_updates("seg-1", {"legs": [leg]}, T0)
    assert [u.severity for u in updates] == ([severity] if severity else [])
