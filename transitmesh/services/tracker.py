from __future__ import annotations

import logging
import threading
from datetime import datetime

from transitmesh.models import JourneyState, RealTimeUpdate, TrackedJourney

logger = logging.getLogger(__name__)


class JourneyTracker:
    """The tracked-journeys table: plan id -> TrackedJourney.

    Inserts and deletes are atomic under one lock; readers work on
    snapshots so a monitoring tick never holds the lock across awaits.
    """

    def __init__(self) -> None:
        self._journeys: dict[str, TrackedJourney] = {}
        self._lock = threading.Lock()

    def add(self, journey: TrackedJourney) -> None:
        with self._lock:
            self._journeys[journey.plan_id] = journey

    def get(self, plan_id: str) -> TrackedJourney | None:
        with self._lock:
            return self._journeys.get(plan_id)

    def remove(self, plan_id: str) -> TrackedJourney | None:
        with self._lock:
            journey = self._journeys.pop(plan_id, None)
        if journey is not None:
            journey.state = JourneyState.DROPPED
        return journey

    def snapshot(self) -> list[TrackedJourney]:
        with self._lock:
            return list(self._journeys.values())

    def drop_expired(self, now: datetime) -> list[str]:
        with self._lock:
            expired = [j for j in self._journeys.values() if j.plan.is_expired(now)]
            for journey in expired:
                journey.state = JourneyState.EXPIRED
                del self._journeys[journey.plan_id]
        for journey in expired:
            journey.state = JourneyState.DROPPED
            logger.info("Journey %s expired and was dropped", journey.plan_id)
        return [j.plan_id for j in expired]

    def affected_by(self, segment_id: str) -> list[TrackedJourney]:
        return [j for j in self.snapshot() if j.plan.segment(segment_id) is not None]

    def mark(self, plan_id: str, state: JourneyState) -> None:
        with self._lock:
            journey = self._journeys.get(plan_id)
            if journey is not None:
                journey.state = state

    def record(self, plan_id: str, update: RealTimeUpdate) -> bool:
        """Append ``update`` to the journey's history.

        Returns False when the journey is gone or already holds an update
        with the same segment, kind, severity and delay.
        """
        with self._lock:
            journey = self._journeys.get(plan_id)
            if journey is None:
                return False
            if any(_same_event(seen, update) for seen in journey.updates):
                return False
            journey.updates.append(update)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._journeys)

    def __contains__(self, plan_id: object) -> bool:
        with self._lock:
            return plan_id in self._journeys


def _same_event(a: RealTimeUpdate, b: RealTimeUpdate) -> bool:
    return (a.segment_id, a.kind, a.severity, a.estimated_delay) == (
        b.segment_id, b.kind, b.severity, b.estimated_delay,
    )
