"""Plan assembler: pure combination and aggregation.

Single-segment plans: one per returned segment.
Two-segment plans: every public trunk × every last-mile leg (bike-share,
scooter, walking).  No spatial feasibility check happens here; providers
are expected not to return legs that cannot connect to the request.

Aggregates: durations add up plus a transfer penalty between legs; cost,
distance and emissions are plain sums; reliability and accessibility take
the worst leg; comfort is the mean.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Sequence

import pytz

from transitmesh.errors import AssemblyInvariantViolation
from transitmesh.models import JourneyPlan, JourneySegment, ModeCategory, ModeType

logger = logging.getLogger(__name__)

LAST_MILE_CATEGORIES = frozenset({
    ModeCategory.BIKESHARE,
    ModeCategory.SCOOTER,
    ModeCategory.WALKING,
})

TRANSFER_PENALTY_MINUTES = 5
PLAN_VALIDITY = timedelta(minutes=30)


def _utcnow() -> datetime:
    return datetime.now(tz=pytz.UTC)


class PlanAssembler:

    def __init__(
        self,
        transfer_penalty_minutes: float = TRANSFER_PENALTY_MINUTES,
        validity: timedelta = PLAN_VALIDITY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.transfer_penalty_minutes = transfer_penalty_minutes
        self.validity = validity
        self._clock = clock

    def assemble(self, segments: Sequence[JourneySegment]) -> list[JourneyPlan]:
        created_at = self._clock()
        plans = [self.build_plan([s], created_at) for s in segments]

        trunks = [s for s in segments if s.mode.type == ModeType.PUBLIC]
        last_miles = [s for s in segments if s.mode.category in LAST_MILE_CATEGORIES]
        for trunk in trunks:
            for last_mile in last_miles:
                plans.append(self.build_plan([trunk, last_mile], created_at))

        logger.debug(
            "Assembled %d plans from %d segments (%d trunks, %d last-mile)",
            len(plans), len(segments), len(trunks), len(last_miles),
        )
        return plans

    def build_plan(
        self,
        segments: Sequence[JourneySegment],
        created_at: datetime | None = None,
    ) -> JourneyPlan:
        if not segments:
            raise AssemblyInvariantViolation("refusing to build a plan without segments")
        created_at = created_at or self._clock()
        transfers = len(segments) - 1
        return JourneyPlan(
            id=f"plan-{uuid.uuid4().hex[:12]}",
            segments=tuple(segments),
            total_duration=sum(s.duration for s in segments)
            + transfers * self.transfer_penalty_minutes,
            total_cost=sum(s.cost for s in segments),
            total_distance=sum(s.distance for s in segments),
            total_emissions=sum(s.emissions for s in segments),
            reliability=min(s.reliability for s in segments),
            comfort=sum(s.comfort for s in segments) / len(segments),
            accessibility=min(s.accessibility for s in segments),
            created_at=created_at,
            valid_until=created_at + self.validity,
        )
