from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from transitmesh.errors import AssemblyInvariantViolation


class ModeType(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    SHARED = "shared"
    ACTIVE = "active"


class ModeCategory(str, Enum):
    BUS = "bus"
    METRO = "metro"
    TRAM = "tram"
    TRAIN = "train"
    FERRY = "ferry"
    RIDEHAIL = "ridehail"
    BIKESHARE = "bikeshare"
    SCOOTER = "scooter"
    WALKING = "walking"
    TAXI = "taxi"


class LocationKind(str, Enum):
    ADDRESS = "address"
    STOP = "stop"
    STATION = "station"
    POI = "poi"


class UpdateKind(str, Enum):
    DELAY = "delay"
    CANCELLATION = "cancellation"
    PLATFORM_CHANGE = "platform_change"
    DISRUPTION = "disruption"
    CAPACITY = "capacity"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class JourneyState(str, Enum):
    PLANNED = "planned"
    MONITORED = "monitored"
    DISRUPTED = "disrupted"
    REPLANNED = "replanned"
    EXPIRED = "expired"
    DROPPED = "dropped"


@dataclass(frozen=True)
class TransportMode:
    id: str
    name: str
    type: ModeType
    category: ModeCategory
    cost_per_km: float = 0.0
    average_speed_kmh: float = 0.0
    co2_per_km: float = 0.0
    accessibility_score: int = 5
    real_time_data: bool = False
    booking_required: bool = False


@dataclass(frozen=True)
class LocationPoint:
    latitude: float
    longitude: float
    name: str
    kind: LocationKind = LocationKind.ADDRESS
    address: str | None = None


@dataclass
class BookingInfo:
    required: bool
    provider: str
    reference: str | None = None
    booking_url: str | None = None
    estimated_wait_minutes: float = 0.0
    cancellation_policy: str = ""


@dataclass
class JourneySegment:
    """One leg of travel with a single mode.

    Everything but ``booking_info`` is fixed once a provider hands the
    segment out; the id stays stable while any plan references it.
    """

    id: str
    mode: TransportMode
    origin: LocationPoint
    destination: LocationPoint
    departure_time: datetime
    arrival_time: datetime
    duration: float
    distance: float
    cost: float
    emissions: float
    reliability: float
    comfort: float
    accessibility: float
    real_time_updates: bool = False
    booking_info: BookingInfo | None = None

    @property
    def requires_booking(self) -> bool:
        return self.booking_info is not None and self.booking_info.required


@dataclass(frozen=True)
class JourneyPlan:
    id: str
    segments: tuple[JourneySegment, ...]
    total_duration: float
    total_cost: float
    total_distance: float
    total_emissions: float
    reliability: float
    comfort: float
    accessibility: float
    created_at: datetime
    valid_until: datetime
    match_score: float = 0.0

    def __post_init__(self) -> None:
        if not self.segments:
            raise AssemblyInvariantViolation(f"plan '{self.id}' has no segments")

    def is_expired(self, now: datetime) -> bool:
        return now >= self.valid_until

    def segment(self, segment_id: str) -> JourneySegment | None:
        return next((s for s in self.segments if s.id == segment_id), None)

    @property
    def categories(self) -> list[ModeCategory]:
        return [s.mode.category for s in self.segments]


@dataclass
class UserPreferences:
    max_walking_distance: float = 1000.0
    preferred_modes: list[str] = field(default_factory=list)
    avoid_modes: list[str] = field(default_factory=list)
    max_cost: float = 50.0
    prioritize_speed: bool = False
    prioritize_cost: bool = False
    prioritize_comfort: bool = False
    prioritize_environment: bool = False
    accessibility_needs: list[str] = field(default_factory=list)
    real_time_updates_required: bool = False

    def avoids(self, category: ModeCategory | str) -> bool:
        value = category.value if isinstance(category, ModeCategory) else category
        return value in self.avoid_modes


@dataclass(frozen=True)
class RealTimeUpdate:
    segment_id: str
    kind: UpdateKind
    severity: Severity
    message: str
    timestamp: datetime
    estimated_delay: float | None = None
    alternatives: tuple[JourneySegment, ...] = ()

    @property
    def is_disruptive(self) -> bool:
        return self.severity == Severity.CRITICAL or self.kind == UpdateKind.CANCELLATION


@dataclass(frozen=True)
class CoverageArea:
    city: str
    north: float
    south: float
    east: float
    west: float

    def contains(self, point: LocationPoint) -> bool:
        return (
            self.south <= point.latitude <= self.north
            and self.west <= point.longitude <= self.east
        )


@dataclass(frozen=True)
class ProviderCapabilities:
    can_plan: bool = False
    can_report_updates: bool = False
    can_book: bool = False
    can_suggest_alternatives: bool = False
    can_integrate_with_other_modes: bool = False
    coverage: CoverageArea | None = None
    categories: frozenset[ModeCategory] = frozenset()

    def covers(self, point: LocationPoint) -> bool:
        return self.coverage is None or self.coverage.contains(point)


@dataclass
class TrackedJourney:
    plan: JourneyPlan
    origin: LocationPoint
    destination: LocationPoint
    preferences: UserPreferences
    state: JourneyState = JourneyState.PLANNED
    updates: list[RealTimeUpdate] = field(default_factory=list)
    last_polled_at: datetime | None = None

    @property
    def plan_id(self) -> str:
        return self.plan.id


# ── Outbound events ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProviderStatusChanged:
    provider_id: str
    active: bool


@dataclass(frozen=True)
class JourneyUpdate:
    plan_id: str
    update: RealTimeUpdate
    plan: JourneyPlan


@dataclass(frozen=True)
class AlternativesFound:
    original_segment_id: str
    alternatives: tuple[JourneySegment, ...]
    update: RealTimeUpdate
    provider_id: str
