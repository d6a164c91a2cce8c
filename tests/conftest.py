from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timedelta

import pytest
import pytz

from transitmesh.errors import BookingUnavailable
from transitmesh.models import (
    BookingInfo,
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
from transitmesh.utils.cache import invalidate_all

T0 = datetime(2024, 5, 6, 12, 0, tzinfo=pytz.UTC)

ALEX = LocationPoint(52.5219, 13.4132, "Alexanderplatz")
POTSDAMER = LocationPoint(52.5096, 13.3760, "Potsdamer Platz")

_ids = itertools.count(1)

MODE_TYPES = {
    ModeCategory.BUS: ModeType.PUBLIC,
    ModeCategory.METRO: ModeType.PUBLIC,
    ModeCategory.TRAM: ModeType.PUBLIC,
    ModeCategory.TRAIN: ModeType.PUBLIC,
    ModeCategory.FERRY: ModeType.PUBLIC,
    ModeCategory.RIDEHAIL: ModeType.PRIVATE,
    ModeCategory.TAXI: ModeType.PRIVATE,
    ModeCategory.BIKESHARE: ModeType.SHARED,
    ModeCategory.SCOOTER: ModeType.SHARED,
    ModeCategory.WALKING: ModeType.ACTIVE,
}


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_mode(category: ModeCategory = ModeCategory.METRO, **overrides) -> TransportMode:
    fields = dict(
        id=f"mode-{category.value}",
        name=category.value.title(),
        type=MODE_TYPES[category],
        category=category,
    )
    fields.update(overrides)
    return TransportMode(**fields)


def make_segment(
    category: ModeCategory = ModeCategory.METRO,
    *,
    segment_id: str | None = None,
    duration: float = 20,
    cost: float = 3.0,
    distance: float = 5000,
    emissions: float = 100,
    reliability: float = 0.9,
    comfort: float = 7,
    accessibility: float = 8,
    real_time_updates: bool = True,
    booking: bool = False,
    mode: TransportMode | None = None,
) -> JourneySegment:
    return JourneySegment(
        id=segment_id or f"seg-{next(_ids)}",
        mode=mode or make_mode(category),
        origin=ALEX,
        destination=POTSDAMER,
        departure_time=T0,
        arrival_time=T0 + timedelta(minutes=duration),
        duration=duration,
        distance=distance,
        cost=cost,
        emissions=emissions,
        reliability=reliability,
        comfort=comfort,
        accessibility=accessibility,
        real_time_updates=real_time_updates,
        booking_info=BookingInfo(required=True, provider="fake") if booking else None,
    )


def make_update(
    segment_id: str,
    kind: UpdateKind = UpdateKind.DELAY,
    severity: Severity = Severity.LOW,
) -> RealTimeUpdate:
    return RealTimeUpdate(
        segment_id=segment_id,
        kind=kind,
        severity=severity,
        message=f"{kind.value} on {segment_id}",
        timestamp=T0,
    )


class FakeProvider(BaseProvider):
    """Scriptable provider that records every call it receives."""

    def __init__(
        self,
        provider_id: str = "fake",
        *,
        can_plan: bool = True,
        can_report_updates: bool = False,
        can_book: bool = False,
        can_suggest_alternatives: bool = False,
        categories: frozenset[ModeCategory] = frozenset(),
        segments: list[JourneySegment] | None = None,
        updates: dict[str, list[RealTimeUpdate]] | None = None,
        alternatives: list[JourneySegment] | None = None,
        fail_with: BaseException | None = None,
        delay: float = 0.0,
        book_fails: bool = False,
    ) -> None:
        super().__init__(
            provider_id,
            provider_id.title(),
            ProviderCapabilities(
                can_plan=can_plan,
                can_report_updates=can_report_updates,
                can_book=can_book,
                can_suggest_alternatives=can_suggest_alternatives,
                categories=categories,
            ),
        )
        self.segments = segments or []
        self.updates = updates or {}
        self.alternative_segments = alternatives or []
        self.fail_with = fail_with
        self.delay = delay
        self.book_fails = book_fails
        self.plan_calls = 0
        self.update_calls: list[str] = []
        self.booked: list[str] = []
        self.alternative_calls: list[str] = []
        self.released: list[str] = []

    async def _behave(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    async def plan(self, origin, destination, preferences: UserPreferences) -> list[JourneySegment]:
        self.plan_calls += 1
        await self._behave()
        return list(self.segments)

    async def report_updates(self, segment_id: str) -> list[RealTimeUpdate]:
        self.update_calls.append(segment_id)
        await self._behave()
        return list(self.updates.get(segment_id, []))

    async def book(self, segment: JourneySegment) -> BookingInfo:
        if self.book_fails:
            raise BookingUnavailable(f"{self.provider_id} is sold out", segment_id=segment.id)
        self.booked.append(segment.id)
        booking = BookingInfo(required=True, provider=self.provider_id, reference=f"ref-{segment.id}")
        segment.booking_info = booking
        return booking

    async def alternatives(self, segment: JourneySegment) -> list[JourneySegment]:
        self.alternative_calls.append(segment.id)
        await self._behave()
        return list(self.alternative_segments)

    def release(self, segment_id: str) -> None:
        self.released.append(segment_id)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _clear_cache():
    invalidate_all()
    yield
    invalidate_all()
