"""Coordinator: owns the registry and the tracked-journeys table.

    plan_journey()   fan-out to planning providers → assemble → rank → track
    book_journey()   route each required booking to a provider for its mode
    monitor_tick()   poll update providers, emit events, look for alternatives

asyncio.gather(..., return_exceptions=True) with a per-call deadline means one
slow or broken provider never fails a request; it just contributes nothing.
Monitoring results are processed sequentially after the join so every tick
emits its events in a fixed order.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, Callable, Union

import pytz

from transitmesh.errors import (
    BookingUnavailable,
    JourneyNotFound,
    NoProvidersAvailable,
    ProviderUnavailable,
)
from transitmesh.models import (
    AlternativesFound,
    BookingInfo,
    JourneyPlan,
    JourneySegment,
    JourneyState,
    JourneyUpdate,
    LocationPoint,
    ProviderStatusChanged,
    RealTimeUpdate,
    TrackedJourney,
    UserPreferences,
)
from transitmesh.services.assembler import PlanAssembler
from transitmesh.services.base import BaseProvider
from transitmesh.services.ranker import PlanRanker
from transitmesh.services.registry import ProviderRegistry
from transitmesh.services.tracker import JourneyTracker

logger = logging.getLogger(__name__)

Event = Union[ProviderStatusChanged, JourneyUpdate, AlternativesFound]
Listener = Callable[[Event], None]

DEFAULT_PROVIDER_TIMEOUT = 10.0
DEFAULT_MONITOR_INTERVAL = 30.0


def _utcnow() -> datetime:
    return datetime.now(tz=pytz.UTC)


class Coordinator:

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        assembler: PlanAssembler | None = None,
        ranker: PlanRanker | None = None,
        tracker: JourneyTracker | None = None,
        *,
        provider_timeout: float = DEFAULT_PROVIDER_TIMEOUT,
        monitor_interval: float = DEFAULT_MONITOR_INTERVAL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.registry = registry or ProviderRegistry()
        self.assembler = assembler or PlanAssembler(clock=clock)
        self.ranker = ranker or PlanRanker()
        self.tracker = tracker or JourneyTracker()
        self.provider_timeout = provider_timeout
        self.monitor_interval = monitor_interval
        self._clock = clock
        self._listeners: list[Listener] = []
        self._monitor_task: asyncio.Task | None = None

    # ── Providers ─────────────────────────────────────────────────────────────

    def register_provider(self, provider: BaseProvider) -> None:
        previous = self.registry.register(provider)
        if previous is not None:
            previous.remove_status_listener(self._on_provider_status)
        provider.remove_status_listener(self._on_provider_status)
        provider.add_status_listener(self._on_provider_status)

    def unregister_provider(self, provider_id: str) -> None:
        provider = self.registry.unregister(provider_id)
        if provider is not None:
            provider.remove_status_listener(self._on_provider_status)

    async def initialize_providers(self) -> None:
        providers = self.registry.all()
        results = await asyncio.gather(
            *(p.initialize() for p in providers), return_exceptions=True,
        )
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                logger.warning("'%s' failed to initialize: %s", provider.provider_id, result)

    async def close_providers(self) -> None:
        providers = self.registry.all()
        results = await asyncio.gather(
            *(p.close() for p in providers), return_exceptions=True,
        )
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                logger.warning("'%s' failed to close: %s", provider.provider_id, result)

    def _on_provider_status(self, provider_id: str, active: bool) -> None:
        self._emit(ProviderStatusChanged(provider_id=provider_id, active=active))

    # ── Subscribers ───────────────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: Event) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener %r failed on %s", listener, type(event).__name__)

    # ── Planning ──────────────────────────────────────────────────────────────

    async def plan_journey(
        self,
        origin: LocationPoint,
        destination: LocationPoint,
        preferences: UserPreferences | None = None,
    ) -> list[JourneyPlan]:
        preferences = preferences or UserPreferences()
        providers = self.registry.with_capability("can_plan")
        if not providers:
            raise NoProvidersAvailable("can_plan")

        results = await asyncio.gather(
            *(self._deadline(p.plan(origin, destination, preferences)) for p in providers),
            return_exceptions=True,
        )
        segments: list[JourneySegment] = []
        for provider, result in zip(providers, results):
            segments.extend(self._unpack(result, provider, "plan") or [])

        plans = self.assembler.assemble(segments)
        ranked = self.ranker.rank(plans, preferences)
        for plan in ranked:
            self.tracker.add(TrackedJourney(
                plan=plan,
                origin=origin,
                destination=destination,
                preferences=preferences,
            ))
        self._release_unreferenced(segments)

        logger.info(
            "Planned %s → %s: %d segments from %d providers, %d candidates, %d returned",
            origin.name, destination.name, len(segments), len(providers),
            len(plans), len(ranked),
        )
        return ranked

    async def replan_journey(self, plan_id: str) -> list[JourneyPlan]:
        """Plan again from the tracked plan's original request.

        The new plans get new ids; the old entry stays tracked (as
        ``replanned``) until it expires or is cancelled.
        """
        journey = self.tracker.get(plan_id)
        if journey is None:
            raise JourneyNotFound(plan_id)
        plans = await self.plan_journey(journey.origin, journey.destination, journey.preferences)
        self.tracker.mark(plan_id, JourneyState.REPLANNED)
        return plans

    # ── Booking ───────────────────────────────────────────────────────────────

    async def book_journey(self, plan_id: str) -> list[BookingInfo]:
        """Book every segment that requires it, in plan order.

        Stops at the first failure. Bookings already confirmed are not
        cancelled; they travel on the raised ``BookingUnavailable``.
        """
        journey = self.tracker.get(plan_id)
        if journey is None:
            raise JourneyNotFound(plan_id)

        confirmed: list[BookingInfo] = []
        for segment in journey.plan.segments:
            if not segment.requires_booking:
                continue
            if segment.booking_info.reference:
                confirmed.append(segment.booking_info)
                logger.debug(
                    "%s/%s already booked as %s", plan_id, segment.id, segment.booking_info.reference,
                )
                continue
            category = segment.mode.category
            candidates = self.registry.for_category(category, "can_book")
            if not candidates:
                raise BookingUnavailable(
                    f"no booking provider serves '{category.value}'",
                    plan_id=plan_id, segment_id=segment.id, confirmed=confirmed,
                )
            provider = candidates[0]
            try:
                booking = await self._deadline(provider.book(segment))
            except BookingUnavailable as exc:
                logger.error("Booking failed for %s/%s: %s", plan_id, segment.id, exc)
                raise BookingUnavailable(
                    str(exc), plan_id=plan_id, segment_id=segment.id, confirmed=confirmed,
                ) from exc
            except (ProviderUnavailable, asyncio.TimeoutError) as exc:
                logger.error("Booking failed for %s/%s: %r", plan_id, segment.id, exc)
                raise BookingUnavailable(
                    f"'{provider.name}' could not complete the booking",
                    plan_id=plan_id, segment_id=segment.id, confirmed=confirmed,
                ) from exc
            confirmed.append(booking)
            logger.info("Booked %s/%s with %s", plan_id, segment.id, provider.provider_id)
        return confirmed

    # ── Tracking ──────────────────────────────────────────────────────────────

    def cancel_journey_monitoring(self, plan_id: str) -> None:
        journey = self.tracker.remove(plan_id)
        if journey is not None:
            logger.info("Monitoring cancelled for %s", plan_id)
            self._release_unreferenced(journey.plan.segments)

    def get_journey_status(self, plan_id: str) -> TrackedJourney | None:
        return self.tracker.get(plan_id)

    def tracked_journeys(self) -> list[TrackedJourney]:
        return self.tracker.snapshot()

    # ── Monitoring ────────────────────────────────────────────────────────────

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    def start_monitoring(self) -> None:
        """Start the periodic monitoring task on the running loop."""
        if self.is_monitoring:
            return
        self._monitor_task = asyncio.get_running_loop().create_task(
            self._monitor_loop(), name="journey-monitor",
        )

    async def stop_monitoring(self) -> None:
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Monitoring stopped")

    async def _monitor_loop(self) -> None:
        logger.info("Monitoring every %.0fs", self.monitor_interval)
        while True:
            await asyncio.sleep(self.monitor_interval)
            try:
                await self.monitor_tick()
            except Exception:
                logger.exception("Monitoring tick failed")

    async def monitor_tick(self) -> None:
        now = self._clock()
        before = {j.plan_id: j for j in self.tracker.snapshot()}
        dropped = self.tracker.drop_expired(now)
        if dropped:
            self._release_unreferenced(
                s for plan_id in dropped if plan_id in before
                for s in before[plan_id].plan.segments
            )
        journeys = self.tracker.snapshot()
        if not journeys:
            return

        segments: dict[str, JourneySegment] = {}
        for journey in journeys:
            if journey.state == JourneyState.PLANNED:
                self.tracker.mark(journey.plan_id, JourneyState.MONITORED)
            journey.last_polled_at = now
            for segment in journey.plan.segments:
                segments.setdefault(segment.id, segment)

        providers = self.registry.with_capability("can_report_updates")
        pairs = [(s, p) for s in segments.values() for p in providers]
        if not pairs:
            return

        results = await asyncio.gather(
            *(self._deadline(p.report_updates(s.id)) for s, p in pairs),
            return_exceptions=True,
        )
        for (segment, provider), result in zip(pairs, results):
            for update in self._unpack(result, provider, f"updates[{segment.id}]") or []:
                await self.handle_update(update)

    async def handle_update(self, update: RealTimeUpdate) -> None:
        """Fan one update out to every tracked plan containing its segment."""
        affected = self.tracker.affected_by(update.segment_id)
        if not affected:
            logger.debug("Discarding update for untracked segment %s", update.segment_id)
            return

        fresh = [j for j in affected if self.tracker.record(j.plan_id, update)]
        if not fresh:
            logger.debug(
                "Update %s/%s on %s already reported",
                update.kind.value, update.severity.value, update.segment_id,
            )
            return
        for journey in fresh:
            self._emit(JourneyUpdate(plan_id=journey.plan_id, update=update, plan=journey.plan))

        if not update.is_disruptive:
            return
        logger.warning(
            "Disruption on %s (%s/%s): %s",
            update.segment_id, update.kind.value, update.severity.value, update.message,
        )
        for journey in fresh:
            self.tracker.mark(journey.plan_id, JourneyState.DISRUPTED)
        segment = fresh[0].plan.segment(update.segment_id)
        if segment is not None:
            await self._find_alternatives(segment, update)

    async def _find_alternatives(self, segment: JourneySegment, update: RealTimeUpdate) -> None:
        providers = self.registry.with_capability("can_suggest_alternatives")
        results = await asyncio.gather(
            *(self._deadline(p.alternatives(segment)) for p in providers),
            return_exceptions=True,
        )
        for provider, result in zip(providers, results):
            alternatives = self._unpack(result, provider, "alternatives")
            if alternatives is None:
                continue
            self._emit(AlternativesFound(
                original_segment_id=segment.id,
                alternatives=tuple(alternatives),
                update=update,
                provider_id=provider.provider_id,
            ))
            self._release_unreferenced(alternatives)

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _deadline(self, coro: Any) -> Any:
        return await asyncio.wait_for(coro, timeout=self.provider_timeout)

    def _release_unreferenced(self, segments: Iterable[JourneySegment]) -> None:
        """Tell every provider to forget segments no tracked plan holds."""
        held = {s.id for j in self.tracker.snapshot() for s in j.plan.segments}
        orphans = {s.id for s in segments} - held
        if not orphans:
            return
        for provider in self.registry.all():
            for segment_id in orphans:
                try:
                    provider.release(segment_id)
                except Exception:
                    logger.exception("%s failed to release %s", provider.provider_id, segment_id)
        logger.debug("Released %d untracked segments", len(orphans))

    def _unpack(self, result: object, provider: BaseProvider, label: str) -> list | None:
        """Unwrap a gather result.  None means the provider failed this round."""
        if isinstance(result, Sequence) and not isinstance(result, (str, bytes)):
            return list(result)
        if isinstance(result, asyncio.TimeoutError):
            logger.warning(
                "%s/%s timed out after %.1fs", provider.provider_id, label, self.provider_timeout,
            )
        elif isinstance(result, BaseException):
            logger.warning("%s/%s failed: %r", provider.provider_id, label, result)
        else:
            logger.warning("%s/%s returned %s, expected a sequence", provider.provider_id, label, type(result).__name__)
        return None
